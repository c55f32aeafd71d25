from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from newsroom.core.config import get_settings
from newsroom.services.entities import (
    Comment,
    CommentState,
    ContentKind,
    Entity,
    ModerationEvent,
    Story,
    StoryState,
    Topic,
    TopicState,
)
from newsroom.services.errors import (
    ConcurrentModificationError,
    NotFoundError,
    StorageUnavailableError,
    ValidationFailedError,
)
from newsroom.services.queries import SortOrder
from newsroom.services.storage import Storage, TransactionScopeMixin
from newsroom.services.store import InMemoryStore

logger = logging.getLogger(__name__)

_Key = tuple[ContentKind, int]

TABLES: dict[ContentKind, str] = {
    ContentKind.STORY: "stories",
    ContentKind.TOPIC: "topics",
    ContentKind.COMMENT: "comments",
}

ALIASES: dict[ContentKind, str] = {
    ContentKind.STORY: "s",
    ContentKind.TOPIC: "t",
    ContentKind.COMMENT: "c",
}

SELECTS: dict[ContentKind, str] = {
    ContentKind.STORY: """
        select
          s.id,
          s.name,
          s.content,
          s.owner,
          s.state,
          s.rejection_reason,
          s.created_at,
          s.version,
          coalesce(
            array_agg(st.topic_id) filter (where st.topic_id is not null),
            '{{}}'
          ) as topic_ids
        from stories s
        left join story_topics st on st.story_id = s.id
        {where}
        group by s.id
        order by s.created_at {direction}, s.id {direction}
    """,
    ContentKind.TOPIC: """
        select
          t.id,
          t.name,
          t.owner,
          t.state,
          t.parent_id,
          t.created_at,
          t.version
        from topics t
        {where}
        order by t.created_at {direction}, t.id {direction}
    """,
    ContentKind.COMMENT: """
        select
          c.id,
          c.story_id,
          c.content,
          c.owner,
          c.state,
          c.created_at,
          c.version
        from comments c
        {where}
        order by c.created_at {direction}, c.id {direction}
    """,
}


@contextmanager
def _translate_pg_errors() -> Iterator[None]:
    try:
        yield
    except pg_exc.UniqueViolationError as exc:
        raise ValidationFailedError("name already exists") from exc
    except (pg_exc.ForeignKeyViolationError, pg_exc.SerializationError, pg_exc.DeadlockDetectedError) as exc:
        raise ConcurrentModificationError("referenced row changed concurrently") from exc
    except (OSError, pg_exc.PostgresConnectionError, pg_exc.InterfaceError) as exc:
        raise StorageUnavailableError("database unavailable") from exc


class PostgresRepository(TransactionScopeMixin):
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def begin(self) -> PostgresTransaction:
        pool = await self._get_pool()
        with _translate_pg_errors():
            conn = await pool.acquire()
            transaction = conn.transaction()
            try:
                await transaction.start()
            except BaseException:
                await pool.release(conn)
                raise
        return PostgresTransaction(pool=pool, conn=conn, transaction=transaction)

    async def scan(self, kind: ContentKind, sort: SortOrder = SortOrder.ASC) -> AsyncIterator[Entity]:
        pool = await self._get_pool()
        with _translate_pg_errors():
            async with pool.acquire() as conn:
                async with conn.transaction():
                    async for row in conn.cursor(SELECTS[kind].format(where="", direction=sort.value)):
                        yield self._row_to_entity(kind, row)

    async def list_events(self, kind: ContentKind, entity_id: int) -> list[ModerationEvent]:
        pool = await self._get_pool()
        with _translate_pg_errors():
            rows = await pool.fetch(
                """
                select
                  id,
                  entity_kind,
                  entity_id,
                  event_type,
                  actor_role,
                  actor_id,
                  payload,
                  created_at
                from moderation_events
                where entity_kind = $1
                  and entity_id = $2
                order by created_at asc, id asc
                """,
                kind.value,
                entity_id,
            )
        return [self._event_row_to_event(row) for row in rows]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise StorageUnavailableError("NR_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise StorageUnavailableError("database unavailable") from exc

    @staticmethod
    def _row_to_entity(kind: ContentKind, row: asyncpg.Record) -> Entity:
        if kind is ContentKind.STORY:
            return Story(
                id=int(row["id"]),
                name=row["name"],
                content=row["content"],
                owner=row["owner"],
                state=StoryState(row["state"]),
                rejection_reason=row["rejection_reason"],
                topic_ids={int(topic_id) for topic_id in row["topic_ids"] or []},
                created_at=row["created_at"],
                version=int(row["version"]),
            )
        if kind is ContentKind.TOPIC:
            return Topic(
                id=int(row["id"]),
                name=row["name"],
                owner=row["owner"],
                state=TopicState(row["state"]),
                parent_id=int(row["parent_id"]) if row["parent_id"] is not None else None,
                created_at=row["created_at"],
                version=int(row["version"]),
            )
        return Comment(
            id=int(row["id"]),
            story_id=int(row["story_id"]),
            content=row["content"],
            owner=row["owner"],
            state=CommentState(row["state"]),
            created_at=row["created_at"],
            version=int(row["version"]),
        )

    @staticmethod
    def _event_row_to_event(row: asyncpg.Record) -> ModerationEvent:
        payload = row["payload"]
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                payload = {}
        if not isinstance(payload, dict):
            payload = {}
        return ModerationEvent(
            id=int(row["id"]),
            entity_kind=ContentKind(row["entity_kind"]),
            entity_id=int(row["entity_id"]),
            event_type=row["event_type"],
            actor_role=row["actor_role"],
            actor_id=row["actor_id"],
            payload=payload,
            created_at=row["created_at"],
        )


class PostgresTransaction:
    """One connection-scoped transaction with an identity map over loaded rows."""

    def __init__(self, *, pool: asyncpg.Pool, conn: asyncpg.Connection, transaction: Any) -> None:
        self._pool = pool
        self._conn = conn
        self._transaction = transaction
        self._loaded: dict[_Key, Entity] = {}
        self._closed = False

    async def load(self, kind: ContentKind, entity_id: int) -> Entity:
        key = (kind, entity_id)
        if key in self._loaded:
            return self._loaded[key]
        rows = await self._select(kind, f"where {ALIASES[kind]}.id = $1", entity_id)
        if not rows:
            raise NotFoundError(f"{kind.value} not found")
        return rows[0]

    async def save(self, entity: Entity) -> Entity:
        self._ensure_open()
        with _translate_pg_errors():
            if entity.id is None:
                await self._insert(entity)
            else:
                await self._update(entity)
            if isinstance(entity, Story):
                await self._sync_story_topics(entity)
        self._loaded[(entity.kind, entity.id)] = entity
        return entity

    async def delete(self, kind: ContentKind, entity_id: int) -> None:
        entity = await self.load(kind, entity_id)
        with _translate_pg_errors():
            status = await self._conn.execute(
                f"delete from {TABLES[kind]} where id = $1 and version = $2",
                entity_id,
                entity.version,
            )
        if status == "DELETE 0":
            raise ConcurrentModificationError(f"{kind.value} {entity_id} was modified concurrently")
        self._loaded.pop((kind, entity_id), None)

    async def guard(self, entity: Entity) -> None:
        self._ensure_open()
        with _translate_pg_errors():
            version = await self._conn.fetchval(
                f"select version from {TABLES[entity.kind]} where id = $1 for share",
                entity.id,
            )
        if version is None or int(version) != entity.version:
            raise ConcurrentModificationError(f"{entity.kind.value} {entity.id} was modified concurrently")

    async def children_of(self, topic_id: int) -> list[Topic]:
        return await self._select(ContentKind.TOPIC, "where t.parent_id = $1", topic_id)

    async def stories_with_topic(self, topic_id: int) -> list[Story]:
        return await self._select(
            ContentKind.STORY,
            "where s.id in (select story_id from story_topics where topic_id = $1)",
            topic_id,
        )

    async def comments_of(self, story_id: int) -> list[Comment]:
        return await self._select(ContentKind.COMMENT, "where c.story_id = $1", story_id)

    async def find_by_name(self, kind: ContentKind, name: str) -> Entity | None:
        if kind is ContentKind.COMMENT:
            raise ValidationFailedError("comments are not named")
        rows = await self._select(kind, f"where {ALIASES[kind]}.name = $1", name)
        return rows[0] if rows else None

    async def record_event(self, event: ModerationEvent) -> None:
        self._ensure_open()
        with _translate_pg_errors():
            row = await self._conn.fetchrow(
                """
                insert into moderation_events (
                  entity_kind,
                  entity_id,
                  event_type,
                  actor_role,
                  actor_id,
                  payload
                )
                values ($1, $2, $3, $4, $5, $6::jsonb)
                returning id, created_at
                """,
                event.entity_kind.value,
                event.entity_id,
                event.event_type,
                event.actor_role,
                event.actor_id,
                json.dumps(event.payload, default=str),
            )
        event.id = int(row["id"])
        event.created_at = row["created_at"]

    async def commit(self) -> None:
        self._ensure_open()
        self._closed = True
        try:
            with _translate_pg_errors():
                await self._transaction.commit()
        finally:
            await self._pool.release(self._conn)

    async def rollback(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            with _translate_pg_errors():
                await self._transaction.rollback()
        finally:
            await self._pool.release(self._conn)

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageUnavailableError("transaction is closed")

    async def _select(self, kind: ContentKind, where: str, *args: Any) -> list[Any]:
        self._ensure_open()
        with _translate_pg_errors():
            rows = await self._conn.fetch(SELECTS[kind].format(where=where, direction="asc"), *args)
        entities: list[Any] = []
        for row in rows:
            key = (kind, int(row["id"]))
            if key not in self._loaded:
                self._loaded[key] = PostgresRepository._row_to_entity(kind, row)
            entities.append(self._loaded[key])
        return entities

    async def _insert(self, entity: Entity) -> None:
        if isinstance(entity, Story):
            row = await self._conn.fetchrow(
                """
                insert into stories (name, content, owner, state, rejection_reason)
                values ($1, $2, $3, $4, $5)
                returning id, created_at, version
                """,
                entity.name,
                entity.content,
                entity.owner,
                entity.state.value,
                entity.rejection_reason,
            )
        elif isinstance(entity, Topic):
            row = await self._conn.fetchrow(
                """
                insert into topics (name, owner, state, parent_id)
                values ($1, $2, $3, $4)
                returning id, created_at, version
                """,
                entity.name,
                entity.owner,
                entity.state.value,
                entity.parent_id,
            )
        else:
            row = await self._conn.fetchrow(
                """
                insert into comments (story_id, content, owner, state)
                values ($1, $2, $3, $4)
                returning id, created_at, version
                """,
                entity.story_id,
                entity.content,
                entity.owner,
                entity.state.value,
            )
        entity.id = int(row["id"])
        entity.created_at = row["created_at"]
        entity.version = int(row["version"])

    async def _update(self, entity: Entity) -> None:
        if isinstance(entity, Story):
            version = await self._conn.fetchval(
                """
                update stories
                set
                  name = $3,
                  content = $4,
                  state = $5,
                  rejection_reason = $6,
                  version = version + 1
                where id = $1
                  and version = $2
                returning version
                """,
                entity.id,
                entity.version,
                entity.name,
                entity.content,
                entity.state.value,
                entity.rejection_reason,
            )
        elif isinstance(entity, Topic):
            version = await self._conn.fetchval(
                """
                update topics
                set
                  name = $3,
                  state = $4,
                  parent_id = $5,
                  version = version + 1
                where id = $1
                  and version = $2
                returning version
                """,
                entity.id,
                entity.version,
                entity.name,
                entity.state.value,
                entity.parent_id,
            )
        else:
            version = await self._conn.fetchval(
                """
                update comments
                set
                  content = $3,
                  state = $4,
                  version = version + 1
                where id = $1
                  and version = $2
                returning version
                """,
                entity.id,
                entity.version,
                entity.content,
                entity.state.value,
            )
        if version is None:
            raise ConcurrentModificationError(f"{entity.kind.value} {entity.id} was modified concurrently")
        entity.version = int(version)

    async def _sync_story_topics(self, story: Story) -> None:
        topic_ids = sorted(story.topic_ids)
        await self._conn.execute(
            """
            delete from story_topics
            where story_id = $1
              and not (topic_id = any($2::bigint[]))
            """,
            story.id,
            topic_ids,
        )
        await self._conn.execute(
            """
            insert into story_topics (story_id, topic_id)
            select $1, unnest($2::bigint[])
            on conflict do nothing
            """,
            story.id,
            topic_ids,
        )


@lru_cache
def get_repository() -> Storage:
    settings = get_settings()
    if not settings.database_url:
        logger.info("NR_DATABASE_URL not set; serving from the in-memory store")
        return InMemoryStore()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
