from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from functools import lru_cache
from typing import Any, TypeVar

from opentelemetry import trace

from newsroom.core.auth import Caller, Role
from newsroom.core.config import Settings, get_settings
from newsroom.services.associations import AssociationValidator
from newsroom.services.entities import (
    Comment,
    ContentKind,
    Entity,
    ModerationEvent,
    Story,
    StoryState,
    Topic,
)
from newsroom.services.errors import (
    ConcurrentModificationError,
    DeniedError,
    NotFoundError,
    ValidationFailedError,
)
from newsroom.services.hierarchy import TopicHierarchy
from newsroom.services.queries import SortOrder
from newsroom.services.repository import get_repository
from newsroom.services.state_machine import Command, TransitionResult, attempt_transition, authorize_role
from newsroom.services.storage import Storage, StorageTransaction
from newsroom.services.visibility import ensure_visible, visibility_predicate

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

CREATE_ROLES: dict[ContentKind, frozenset[Role]] = {
    ContentKind.STORY: frozenset({Role.JOURNALIST}),
    ContentKind.TOPIC: frozenset({Role.JOURNALIST, Role.CURATOR}),
    ContentKind.COMMENT: frozenset({Role.ANONYMOUS, Role.JOURNALIST, Role.CURATOR}),
}


class ModerationService:
    """Single entry point for every moderated write and every filtered read.

    Each write runs inside one storage transaction: either all of its side
    effects (cascades, attachments, audit events) commit, or none do. A
    ``ConcurrentModificationError`` from the commit is retried with a fresh
    snapshot up to ``concurrent_modification_retries`` times.
    """

    def __init__(self, storage: Storage, settings: Settings) -> None:
        self.storage = storage
        self.settings = settings
        self.hierarchy = TopicHierarchy(max_depth=settings.topic_max_depth)
        self.associations = AssociationValidator(strict_topic_ids=settings.strict_topic_ids)

    async def create(self, kind: ContentKind | str, caller: Caller, payload: dict[str, Any]) -> dict[str, Any]:
        kind = _coerce_kind(kind)
        with tracer.start_as_current_span("moderation.create") as span:
            span.set_attribute("moderation.kind", kind.value)
            span.set_attribute("moderation.role", caller.role.value)
            if caller.role not in CREATE_ROLES[kind]:
                raise DeniedError(f"role {caller.role.value} cannot create a {kind.value}")

            builders: dict[ContentKind, Callable[[StorageTransaction], Awaitable[Entity]]] = {
                ContentKind.STORY: lambda tx: self._create_story(tx, caller, payload),
                ContentKind.TOPIC: lambda tx: self._create_topic(tx, caller, payload),
                ContentKind.COMMENT: lambda tx: self._create_comment(tx, caller, payload),
            }
            entity = await self._run(f"create_{kind.value}", builders[kind])
            logger.info(
                "entity created kind=%s id=%s role=%s actor=%s",
                kind.value,
                entity.id,
                caller.role.value,
                caller.username,
            )
            return entity.snapshot()

    async def moderate(
        self,
        kind: ContentKind | str,
        entity_id: int,
        command: Command | str,
        caller: Caller,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Apply ``command`` to an entity. Returns ``None`` when the entity was deleted."""
        kind = _coerce_kind(kind)
        command = _coerce_command(command)
        payload = dict(payload or {})
        with tracer.start_as_current_span("moderation.transition") as span:
            span.set_attribute("moderation.kind", kind.value)
            span.set_attribute("moderation.entity_id", entity_id)
            span.set_attribute("moderation.command", command.value)
            span.set_attribute("moderation.role", caller.role.value)
            # Role authority is settled before any entity state is read.
            authorize_role(kind, command, caller)

            entity = await self._run(
                f"{command.value}_{kind.value}",
                lambda tx: self._transition(tx, kind, entity_id, command, caller, payload),
            )
            logger.info(
                "transition committed kind=%s id=%s command=%s role=%s actor=%s state=%s",
                kind.value,
                entity_id,
                command.value,
                caller.role.value,
                caller.username,
                entity.state.value if entity is not None else "deleted",
            )
            return entity.snapshot() if entity is not None else None

    async def read(self, kind: ContentKind | str, entity_id: int, caller: Caller) -> dict[str, Any]:
        kind = _coerce_kind(kind)
        with tracer.start_as_current_span("moderation.read") as span:
            span.set_attribute("moderation.kind", kind.value)
            span.set_attribute("moderation.entity_id", entity_id)
            async with self.storage.transaction() as tx:
                entity = await tx.load(kind, entity_id)
            ensure_visible(entity, caller)
            return entity.snapshot()

    async def list_entities(
        self,
        kind: ContentKind | str,
        caller: Caller,
        predicate: Callable[[Any], bool] | None = None,
        *,
        sort: SortOrder = SortOrder.ASC,
    ) -> AsyncIterator[dict[str, Any]]:
        """Lazily yield snapshots the caller may see and ``predicate`` accepts, in ``sort`` order."""
        kind = _coerce_kind(kind)
        visible = visibility_predicate(caller)
        async with aclosing(self.storage.scan(kind, SortOrder(sort))) as entities:
            async for entity in entities:
                if not visible(entity):
                    continue
                if predicate is not None and not predicate(entity):
                    continue
                yield entity.snapshot()

    async def list_page(
        self,
        kind: ContentKind | str,
        caller: Caller,
        predicate: Callable[[Any], bool] | None = None,
        *,
        limit: int = 20,
        offset: int = 0,
        sort: SortOrder = SortOrder.ASC,
    ) -> list[dict[str, Any]]:
        with tracer.start_as_current_span("moderation.list") as span:
            span.set_attribute("moderation.kind", _coerce_kind(kind).value)
            rows: list[dict[str, Any]] = []
            skipped = 0
            async with aclosing(self.list_entities(kind, caller, predicate, sort=sort)) as snapshots:
                async for row in snapshots:
                    if skipped < offset:
                        skipped += 1
                        continue
                    rows.append(row)
                    if len(rows) >= limit:
                        break
            return rows

    async def history(self, kind: ContentKind | str, entity_id: int, caller: Caller) -> list[dict[str, Any]]:
        kind = _coerce_kind(kind)
        if caller.role is not Role.CURATOR:
            raise DeniedError("moderation history is restricted to curators")
        events = await self.storage.list_events(kind, entity_id)
        if not events:
            raise NotFoundError(f"{kind.value} not found")
        return [event.snapshot() for event in events]

    async def _run(self, operation: str, work: Callable[[StorageTransaction], Awaitable[T]]) -> T:
        retries = max(0, self.settings.concurrent_modification_retries)
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.storage.transaction() as tx:
                    return await work(tx)
            except ConcurrentModificationError:
                if attempt > retries:
                    raise
                logger.warning("concurrent modification op=%s attempt=%s; retrying with fresh snapshot", operation, attempt)

    async def _create_story(self, tx: StorageTransaction, caller: Caller, payload: dict[str, Any]) -> Story:
        name = self._text(payload, "name", max_length=self.settings.story_name_max_length)
        content = self._text(
            payload,
            "content",
            min_length=self.settings.story_content_min_length,
            max_length=self.settings.story_content_max_length,
        )
        await self._ensure_unique_name(tx, ContentKind.STORY, name)

        story = Story(name=name, content=content, owner=caller.username)
        topic_ids = payload.get("topic_ids")
        if topic_ids is not None:
            for topic in await self.associations.resolve_topic_ids(tx, _id_list(topic_ids, "topic_ids")):
                await self.associations.attach(tx, story, topic)

        await tx.save(story)
        await self._record(tx, story, "created", caller, {"state": story.state.value})
        for topic_id in sorted(story.topic_ids):
            await self._record_attachment(tx, story, topic_id, caller)
        return story

    async def _create_topic(self, tx: StorageTransaction, caller: Caller, payload: dict[str, Any]) -> Topic:
        name = self._text(payload, "name", max_length=self.settings.topic_name_max_length)
        await self._ensure_unique_name(tx, ContentKind.TOPIC, name)

        topic = Topic(name=name, owner=caller.username)
        parent_id = payload.get("parent_id")
        if parent_id is not None:
            await self.hierarchy.set_parent(tx, topic, _id(parent_id, "parent_id"))
        else:
            await tx.save(topic)
        await self._record(tx, topic, "created", caller, {"state": topic.state.value, "parent_id": topic.parent_id})
        return topic

    async def _create_comment(self, tx: StorageTransaction, caller: Caller, payload: dict[str, Any]) -> Comment:
        content = self._text(payload, "content")
        story_id = payload.get("story_id")
        if story_id is None:
            raise ValidationFailedError("story_id is required")

        story = await tx.load(ContentKind.STORY, _id(story_id, "story_id"))
        if story.state is not StoryState.PUBLISHED:
            raise NotFoundError("story not found")
        # The parent story must survive until this comment commits.
        await tx.guard(story)

        comment = Comment(story_id=story.id, content=content, owner=caller.username)
        await tx.save(comment)
        await self._record(tx, comment, "created", caller, {"state": comment.state.value, "story_id": story.id})
        return comment

    async def _transition(
        self,
        tx: StorageTransaction,
        kind: ContentKind,
        entity_id: int,
        command: Command,
        caller: Caller,
        payload: dict[str, Any],
    ) -> Entity | None:
        entity = await tx.load(kind, entity_id)
        ensure_visible(entity, caller)
        decision = attempt_transition(
            kind,
            entity.state,
            entity.owner,
            command,
            caller,
            reason=payload.get("reason"),
        )

        if decision.deletes:
            await self._delete(tx, entity, decision, caller)
            return None

        if command is Command.EDIT:
            await self._edit(tx, entity, caller, payload)
        elif command is Command.ATTACH_TOPIC:
            await self._attach_topic(tx, entity, caller, payload)
        elif command is Command.DETACH_TOPIC:
            await self._detach_topic(tx, entity, caller, payload)
        else:
            await self._change_state(tx, entity, decision, caller)
        return entity

    async def _change_state(
        self,
        tx: StorageTransaction,
        entity: Entity,
        decision: TransitionResult,
        caller: Caller,
    ) -> None:
        if isinstance(entity, Story):
            if decision.command is Command.REJECT:
                entity.rejection_reason = self._bounded(
                    decision.reason or "",
                    "reason",
                    min_length=self.settings.rejection_reason_min_length,
                    max_length=self.settings.rejection_reason_max_length,
                )
            elif decision.command is Command.APPROVE:
                entity.rejection_reason = None

        entity.state = decision.to_state
        await tx.save(entity)
        await self._record(
            tx,
            entity,
            "state_changed",
            caller,
            {
                "command": decision.command.value,
                "from_state": decision.from_state.value,
                "to_state": decision.to_state.value,
                "reason": decision.reason,
            },
        )

    async def _delete(
        self,
        tx: StorageTransaction,
        entity: Entity,
        decision: TransitionResult,
        caller: Caller,
    ) -> None:
        details: dict[str, Any] = {"command": decision.command.value, "from_state": decision.from_state.value}
        if isinstance(entity, Story):
            comment_ids: list[int] = []
            for comment in await tx.comments_of(entity.id):
                await tx.delete(ContentKind.COMMENT, comment.id)
                comment_ids.append(comment.id)
            await tx.delete(ContentKind.STORY, entity.id)
            details["deleted_comment_ids"] = comment_ids
        elif isinstance(entity, Topic):
            details.update(await self.hierarchy.delete_topic(tx, entity))
        else:
            await tx.delete(entity.kind, entity.id)

        event_type = "rejected" if decision.command is Command.REJECT else "deleted"
        await self._record(tx, entity, event_type, caller, details)

    async def _edit(self, tx: StorageTransaction, entity: Entity, caller: Caller, payload: dict[str, Any]) -> None:
        changes: dict[str, Any] = {}
        attached: list[int] = []
        detached: list[int] = []
        if isinstance(entity, Story):
            if not {"name", "content"} & payload.keys() and payload.get("topic_ids") is None:
                raise ValidationFailedError("edit requires at least one field")
            if "name" in payload:
                name = self._text(payload, "name", max_length=self.settings.story_name_max_length)
                if name != entity.name:
                    await self._ensure_unique_name(tx, ContentKind.STORY, name)
                    entity.name = changes["name"] = name
            if "content" in payload:
                content = self._text(
                    payload,
                    "content",
                    min_length=self.settings.story_content_min_length,
                    max_length=self.settings.story_content_max_length,
                )
                if content != entity.content:
                    entity.content = changes["content"] = content
            if payload.get("topic_ids") is not None:
                attached, detached = await self.associations.replace_topics(
                    tx,
                    entity,
                    _id_list(payload["topic_ids"], "topic_ids"),
                )
                if attached or detached:
                    changes["topic_ids"] = sorted(entity.topic_ids)
        elif isinstance(entity, Topic):
            if not {"name", "parent_id"} & payload.keys():
                raise ValidationFailedError("edit requires at least one field")
            if "name" in payload:
                name = self._text(payload, "name", max_length=self.settings.topic_name_max_length)
                if name != entity.name:
                    await self._ensure_unique_name(tx, ContentKind.TOPIC, name)
                    entity.name = changes["name"] = name
            if "parent_id" in payload:
                parent_id = payload["parent_id"]
                parent_id = None if parent_id is None else _id(parent_id, "parent_id")
                if parent_id != entity.parent_id:
                    await self.hierarchy.set_parent(tx, entity, parent_id)
                    changes["parent_id"] = entity.parent_id
        else:
            content = self._text(payload, "content")
            if content != entity.content:
                entity.content = changes["content"] = content

        if not changes:
            # Every field sent already holds its current value.
            return
        await tx.save(entity)
        await self._record(tx, entity, "edited", caller, changes)
        for topic_id in attached:
            await self._record_attachment(tx, entity, topic_id, caller)
        for topic_id in detached:
            await self._record(tx, entity, "topic_detached", caller, {"topic_id": topic_id})

    async def _attach_topic(self, tx: StorageTransaction, story: Story, caller: Caller, payload: dict[str, Any]) -> None:
        topic_id = _id(payload.get("topic_id"), "topic_id")
        topic = await tx.load(ContentKind.TOPIC, topic_id)
        if await self.associations.attach(tx, story, topic):
            await tx.save(story)
            await self._record_attachment(tx, story, topic.id, caller, topic_state=topic.state.value)

    async def _detach_topic(self, tx: StorageTransaction, story: Story, caller: Caller, payload: dict[str, Any]) -> None:
        topic_id = _id(payload.get("topic_id"), "topic_id")
        if self.associations.detach(story, topic_id):
            await tx.save(story)
            await self._record(tx, story, "topic_detached", caller, {"topic_id": topic_id})

    async def _ensure_unique_name(self, tx: StorageTransaction, kind: ContentKind, name: str) -> None:
        if await tx.find_by_name(kind, name) is not None:
            raise ValidationFailedError(f"a {kind.value} named {name!r} already exists")

    async def _record_attachment(
        self,
        tx: StorageTransaction,
        story: Story,
        topic_id: int,
        caller: Caller,
        *,
        topic_state: str = "APPROVED",
    ) -> None:
        await self._record(tx, story, "topic_attached", caller, {"topic_id": topic_id, "topic_state": topic_state})

    @staticmethod
    async def _record(
        tx: StorageTransaction,
        entity: Entity,
        event_type: str,
        caller: Caller,
        payload: dict[str, Any],
    ) -> None:
        await tx.record_event(
            ModerationEvent(
                entity_kind=entity.kind,
                entity_id=entity.id,
                event_type=event_type,
                actor_role=caller.role.value,
                actor_id=caller.username,
                payload=payload,
            )
        )

    @classmethod
    def _text(
        cls,
        payload: dict[str, Any],
        field: str,
        *,
        min_length: int = 1,
        max_length: int | None = None,
    ) -> str:
        value = payload.get(field)
        if value is None:
            raise ValidationFailedError(f"{field} is required")
        if not isinstance(value, str):
            raise ValidationFailedError(f"{field} must be a string")
        return cls._bounded(value, field, min_length=min_length, max_length=max_length)

    @staticmethod
    def _bounded(value: str, field: str, *, min_length: int = 1, max_length: int | None = None) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValidationFailedError(f"{field} must not be blank")
        if len(stripped) < min_length:
            raise ValidationFailedError(f"{field} must be at least {min_length} characters")
        if max_length is not None and len(stripped) > max_length:
            raise ValidationFailedError(f"{field} must be at most {max_length} characters")
        return stripped


def _coerce_kind(value: ContentKind | str) -> ContentKind:
    try:
        return ContentKind(value)
    except ValueError as exc:
        raise ValidationFailedError(f"unknown content kind: {value}") from exc


def _coerce_command(value: Command | str) -> Command:
    try:
        return Command(value)
    except ValueError as exc:
        raise ValidationFailedError(f"unknown command: {value}") from exc


def _id(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailedError(f"{field} must be an integer id")
    return value


def _id_list(values: Any, field: str) -> list[int | None]:
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise ValidationFailedError(f"{field} must be a list of ids")
    return [None if value is None else _id(value, field) for value in values]


@lru_cache
def get_moderation_service() -> ModerationService:
    return ModerationService(get_repository(), get_settings())
