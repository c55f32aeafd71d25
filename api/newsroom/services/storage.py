from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from newsroom.services.entities import Comment, ContentKind, Entity, ModerationEvent, Story, Topic
from newsroom.services.queries import SortOrder


class StorageTransaction(Protocol):
    async def load(self, kind: ContentKind, entity_id: int) -> Entity: ...

    async def save(self, entity: Entity) -> Entity: ...

    async def delete(self, kind: ContentKind, entity_id: int) -> None: ...

    async def guard(self, entity: Entity) -> None: ...

    async def children_of(self, topic_id: int) -> list[Topic]: ...

    async def stories_with_topic(self, topic_id: int) -> list[Story]: ...

    async def comments_of(self, story_id: int) -> list[Comment]: ...

    async def find_by_name(self, kind: ContentKind, name: str) -> Entity | None: ...

    async def record_event(self, event: ModerationEvent) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class Storage(Protocol):
    async def begin(self) -> StorageTransaction: ...

    def transaction(self) -> AbstractAsyncContextManager[StorageTransaction]: ...

    def scan(self, kind: ContentKind, sort: SortOrder = ...) -> AsyncIterator[Entity]: ...

    async def list_events(self, kind: ContentKind, entity_id: int) -> list[ModerationEvent]: ...

    async def close(self) -> None: ...


class TransactionScopeMixin:
    """Commit on a clean exit, roll back on any exception."""

    async def begin(self) -> StorageTransaction:
        raise NotImplementedError

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageTransaction]:
        tx = await self.begin()
        try:
            yield tx
        except BaseException:
            await tx.rollback()
            raise
        await tx.commit()
