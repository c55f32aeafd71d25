from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import AsyncIterator

from newsroom.services.entities import Comment, ContentKind, Entity, ModerationEvent, Story, Topic
from newsroom.services.errors import (
    ConcurrentModificationError,
    NotFoundError,
    StorageUnavailableError,
    ValidationFailedError,
)
from newsroom.services.queries import SortOrder
from newsroom.services.storage import TransactionScopeMixin

logger = logging.getLogger(__name__)

_Key = tuple[ContentKind, int]


class InMemoryStore(TransactionScopeMixin):
    """Versioned entity arena used when no database is configured."""

    def __init__(self) -> None:
        self._tables: dict[ContentKind, dict[int, Entity]] = {kind: {} for kind in ContentKind}
        self._events: list[ModerationEvent] = []
        self._sequences = {kind: itertools.count(1) for kind in ContentKind}
        self._event_sequence = itertools.count(1)
        self._lock = threading.Lock()

    async def begin(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    async def scan(self, kind: ContentKind, sort: SortOrder = SortOrder.ASC) -> AsyncIterator[Entity]:
        with self._lock:
            rows = [entity.copy() for entity in self._tables[kind].values()]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=sort is SortOrder.DESC)
        for row in rows:
            yield row

    async def list_events(self, kind: ContentKind, entity_id: int) -> list[ModerationEvent]:
        with self._lock:
            return [
                event
                for event in self._events
                if event.entity_kind is kind and event.entity_id == entity_id
            ]

    async def close(self) -> None:
        return None

    def _read(self, kind: ContentKind, entity_id: int) -> Entity | None:
        with self._lock:
            row = self._tables[kind].get(entity_id)
            return row.copy() if row is not None else None

    def _ids(self, kind: ContentKind) -> list[int]:
        with self._lock:
            return list(self._tables[kind])

    def _next_id(self, kind: ContentKind) -> int:
        with self._lock:
            return next(self._sequences[kind])

    def _apply(
        self,
        *,
        base_versions: dict[_Key, int | None],
        checked: set[_Key],
        writes: dict[_Key, Entity | None],
        events: list[ModerationEvent],
    ) -> None:
        with self._lock:
            for kind, entity_id in checked:
                base = base_versions.get((kind, entity_id))
                if base is None:
                    continue
                current = self._tables[kind].get(entity_id)
                if current is None or current.version != base:
                    raise ConcurrentModificationError(f"{kind.value} {entity_id} was modified concurrently")

            for (kind, entity_id), entity in writes.items():
                if entity is None:
                    self._check_unreferenced(kind, entity_id, writes)

            for (kind, entity_id), entity in writes.items():
                if entity is not None and kind is not ContentKind.COMMENT:
                    self._check_unique_name(kind, entity_id, entity.name, writes)

            for (kind, entity_id), entity in writes.items():
                if entity is None:
                    self._tables[kind].pop(entity_id, None)
                    continue
                entity.version = (base_versions.get((kind, entity_id)) or 0) + 1
                self._tables[kind][entity_id] = entity.copy()

            for event in events:
                event.id = next(self._event_sequence)
                self._events.append(event)

    def _check_unreferenced(self, kind: ContentKind, entity_id: int, writes: dict[_Key, Entity | None]) -> None:
        # Committed rows this transaction never rewrote must not point at a deleted entity.
        if kind is ContentKind.TOPIC:
            referrers = [
                (ContentKind.STORY, story_id)
                for story_id, story in self._tables[ContentKind.STORY].items()
                if entity_id in story.topic_ids
            ]
            referrers.extend(
                (ContentKind.TOPIC, topic_id)
                for topic_id, topic in self._tables[ContentKind.TOPIC].items()
                if topic.parent_id == entity_id
            )
        elif kind is ContentKind.STORY:
            referrers = [
                (ContentKind.COMMENT, comment_id)
                for comment_id, comment in self._tables[ContentKind.COMMENT].items()
                if comment.story_id == entity_id
            ]
        else:
            return
        for key in referrers:
            if key not in writes:
                raise ConcurrentModificationError(
                    f"{kind.value} {entity_id} gained a reference from {key[0].value} {key[1]} concurrently"
                )

    def _check_unique_name(
        self,
        kind: ContentKind,
        entity_id: int,
        name: str,
        writes: dict[_Key, Entity | None],
    ) -> None:
        for other_id, other in self._tables[kind].items():
            if other_id == entity_id or other.name != name:
                continue
            pending = writes.get((kind, other_id), other)
            if pending is not None and pending.name == name:
                raise ValidationFailedError(f"a {kind.value} named {name!r} already exists")


class InMemoryTransaction:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store
        self._loaded: dict[_Key, Entity] = {}
        self._base_versions: dict[_Key, int | None] = {}
        self._writes: dict[_Key, Entity | None] = {}
        self._guards: set[_Key] = set()
        self._events: list[ModerationEvent] = []
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageUnavailableError("transaction is closed")

    async def load(self, kind: ContentKind, entity_id: int) -> Entity:
        self._ensure_open()
        key = (kind, entity_id)
        if key in self._writes and self._writes[key] is None:
            raise NotFoundError(f"{kind.value} not found")
        if key in self._loaded:
            return self._loaded[key]

        row = self._store._read(kind, entity_id)
        if row is None:
            raise NotFoundError(f"{kind.value} not found")
        self._loaded[key] = row
        self._base_versions[key] = row.version
        return row

    async def save(self, entity: Entity) -> Entity:
        self._ensure_open()
        if entity.id is None:
            entity.id = self._store._next_id(entity.kind)
            self._base_versions[(entity.kind, entity.id)] = None
        key = (entity.kind, entity.id)
        self._base_versions.setdefault(key, entity.version)
        self._loaded[key] = entity
        self._writes[key] = entity
        return entity

    async def delete(self, kind: ContentKind, entity_id: int) -> None:
        await self.load(kind, entity_id)
        key = (kind, entity_id)
        self._loaded.pop(key, None)
        self._writes[key] = None

    async def guard(self, entity: Entity) -> None:
        self._ensure_open()
        key = (entity.kind, entity.id)
        self._base_versions.setdefault(key, entity.version)
        self._guards.add(key)

    async def children_of(self, topic_id: int) -> list[Topic]:
        return [topic for topic in await self._current(ContentKind.TOPIC) if topic.parent_id == topic_id]

    async def stories_with_topic(self, topic_id: int) -> list[Story]:
        return [story for story in await self._current(ContentKind.STORY) if topic_id in story.topic_ids]

    async def comments_of(self, story_id: int) -> list[Comment]:
        return [comment for comment in await self._current(ContentKind.COMMENT) if comment.story_id == story_id]

    async def find_by_name(self, kind: ContentKind, name: str) -> Entity | None:
        for entity in await self._current(kind):
            if entity.name == name:
                return entity
        return None

    async def record_event(self, event: ModerationEvent) -> None:
        self._ensure_open()
        self._events.append(event)

    async def commit(self) -> None:
        self._ensure_open()
        self._closed = True
        self._store._apply(
            base_versions=self._base_versions,
            checked=set(self._writes) | self._guards,
            writes=self._writes,
            events=self._events,
        )
        logger.debug("in-memory transaction committed writes=%s events=%s", len(self._writes), len(self._events))

    async def rollback(self) -> None:
        self._closed = True
        self._loaded.clear()
        self._writes.clear()
        self._guards.clear()
        self._events.clear()

    async def _current(self, kind: ContentKind) -> list[Entity]:
        self._ensure_open()
        ids = set(self._store._ids(kind))
        ids.update(entity_id for (entry_kind, entity_id) in self._writes if entry_kind is kind)
        rows: list[Entity] = []
        for entity_id in sorted(ids):
            key = (kind, entity_id)
            if key in self._writes and self._writes[key] is None:
                continue
            try:
                rows.append(await self.load(kind, entity_id))
            except NotFoundError:
                # Removed by a committed writer after the id listing.
                continue
        return rows
