from __future__ import annotations

import asyncio

import pytest

from newsroom.services.associations import AssociationValidator
from newsroom.services.entities import ContentKind, Story, Topic, TopicState
from newsroom.services.errors import NotFoundError, TopicNotApprovedError, ValidationFailedError
from newsroom.services.store import InMemoryStore


async def _seed(store: InMemoryStore) -> tuple[int, int]:
    async with store.transaction() as tx:
        approved = await tx.save(Topic(name="Sports", owner="alice", state=TopicState.APPROVED))
        pending = await tx.save(Topic(name="Drafts", owner="alice"))
    return approved.id, pending.id


def test_attach_requires_approved_topic_and_is_idempotent() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        approved_id, pending_id = await _seed(store)
        validator = AssociationValidator()
        story = Story(name="Finals", content="Match report", owner="alice")

        async with store.transaction() as tx:
            approved = await tx.load(ContentKind.TOPIC, approved_id)
            pending = await tx.load(ContentKind.TOPIC, pending_id)
            assert await validator.attach(tx, story, approved) is True
            assert await validator.attach(tx, story, approved) is False
            with pytest.raises(TopicNotApprovedError):
                await validator.attach(tx, story, pending)

        assert story.topic_ids == {approved_id}

    asyncio.run(scenario())


def test_detach_ignores_missing_association() -> None:
    story = Story(name="Finals", content="Match report", owner="alice", topic_ids={1})
    assert AssociationValidator.detach(story, 2) is False
    assert AssociationValidator.detach(story, 1) is True
    assert story.topic_ids == set()


def test_resolve_topic_ids_skips_unknown_and_unapproved_by_default() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        approved_id, pending_id = await _seed(store)
        validator = AssociationValidator()

        async with store.transaction() as tx:
            topics = await validator.resolve_topic_ids(tx, [approved_id, pending_id, 404, approved_id])
            assert [topic.id for topic in topics] == [approved_id]
            assert await validator.resolve_topic_ids(tx, []) == []
            with pytest.raises(ValidationFailedError):
                await validator.resolve_topic_ids(tx, [approved_id, None])

    asyncio.run(scenario())


def test_resolve_topic_ids_strict_mode_raises() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        approved_id, pending_id = await _seed(store)
        validator = AssociationValidator(strict_topic_ids=True)

        async with store.transaction() as tx:
            with pytest.raises(NotFoundError):
                await validator.resolve_topic_ids(tx, [404])
            with pytest.raises(TopicNotApprovedError):
                await validator.resolve_topic_ids(tx, [approved_id, pending_id])

    asyncio.run(scenario())


def test_replace_topics_reports_changes() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        approved_id, _ = await _seed(store)
        async with store.transaction() as tx:
            extra = await tx.save(Topic(name="Politics", owner="carol", state=TopicState.APPROVED))
        validator = AssociationValidator()
        story = Story(name="Finals", content="Match report", owner="alice", topic_ids={approved_id})

        async with store.transaction() as tx:
            attached, detached = await validator.replace_topics(tx, story, [extra.id])

        assert attached == [extra.id]
        assert detached == [approved_id]
        assert story.topic_ids == {extra.id}

    asyncio.run(scenario())
