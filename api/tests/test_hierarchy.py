from __future__ import annotations

import asyncio
import random

import pytest

from newsroom.services.entities import ContentKind, Story, Topic, TopicState
from newsroom.services.errors import CycleDetectedError, NotFoundError, ParentNotFoundError
from newsroom.services.hierarchy import TopicHierarchy
from newsroom.services.store import InMemoryStore


async def _seed_topics(store: InMemoryStore, count: int) -> list[int]:
    async with store.transaction() as tx:
        topics = [await tx.save(Topic(name=f"topic-{index}", owner="alice")) for index in range(count)]
    return [topic.id for topic in topics]


async def _set_parent(store: InMemoryStore, hierarchy: TopicHierarchy, topic_id: int, parent_id: int | None) -> None:
    async with store.transaction() as tx:
        topic = await tx.load(ContentKind.TOPIC, topic_id)
        await hierarchy.set_parent(tx, topic, parent_id)


async def _parents(store: InMemoryStore) -> dict[int, int | None]:
    return {topic.id: topic.parent_id async for topic in store.scan(ContentKind.TOPIC)}


def test_set_parent_rejects_self_and_descendants() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        hierarchy = TopicHierarchy()
        root, child, grandchild = await _seed_topics(store, 3)
        await _set_parent(store, hierarchy, child, root)
        await _set_parent(store, hierarchy, grandchild, child)

        with pytest.raises(CycleDetectedError):
            await _set_parent(store, hierarchy, root, root)
        with pytest.raises(CycleDetectedError):
            await _set_parent(store, hierarchy, root, grandchild)

        assert await _parents(store) == {root: None, child: root, grandchild: child}

    asyncio.run(scenario())


def test_set_parent_requires_existing_parent_in_any_state() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        hierarchy = TopicHierarchy()
        parent, child = await _seed_topics(store, 2)

        with pytest.raises(ParentNotFoundError):
            await _set_parent(store, hierarchy, child, 999)

        # Parent/child links have no approval precondition.
        await _set_parent(store, hierarchy, child, parent)
        async with store.transaction() as tx:
            loaded = await tx.load(ContentKind.TOPIC, parent)
        assert loaded.state is TopicState.SUBMITTED
        assert (await _parents(store))[child] == parent

        await _set_parent(store, hierarchy, child, None)
        assert (await _parents(store))[child] is None

    asyncio.run(scenario())


def test_set_parent_enforces_max_depth() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        hierarchy = TopicHierarchy(max_depth=3)
        first, second, third, fourth = await _seed_topics(store, 4)
        await _set_parent(store, hierarchy, second, first)
        await _set_parent(store, hierarchy, third, second)

        with pytest.raises(CycleDetectedError):
            await _set_parent(store, hierarchy, fourth, third)

    asyncio.run(scenario())


def test_set_parent_counts_the_moved_subtree_against_max_depth() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        hierarchy = TopicHierarchy(max_depth=3)
        a, b, c, d, e = await _seed_topics(store, 5)
        await _set_parent(store, hierarchy, b, a)
        await _set_parent(store, hierarchy, d, c)
        await _set_parent(store, hierarchy, e, d)

        with pytest.raises(CycleDetectedError):
            await _set_parent(store, hierarchy, c, b)
        assert (await _parents(store))[c] is None

        # A two-level subtree still fits under a root.
        async with store.transaction() as tx:
            assert await hierarchy.subtree_height(tx, await tx.load(ContentKind.TOPIC, d)) == 2
        await _set_parent(store, hierarchy, d, a)
        assert (await _parents(store))[d] == a

    asyncio.run(scenario())


def test_random_reparenting_keeps_forest_acyclic() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        hierarchy = TopicHierarchy()
        topic_ids = await _seed_topics(store, 12)
        rng = random.Random(20240611)

        for _ in range(300):
            topic_id = rng.choice(topic_ids)
            parent_id = rng.choice([*topic_ids, None])
            try:
                await _set_parent(store, hierarchy, topic_id, parent_id)
            except CycleDetectedError:
                continue

        parents = await _parents(store)
        for topic_id in topic_ids:
            seen = {topic_id}
            current = parents[topic_id]
            while current is not None:
                assert current not in seen
                seen.add(current)
                current = parents[current]

    asyncio.run(scenario())


def test_delete_topic_orphans_children_and_detaches_stories() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        hierarchy = TopicHierarchy()
        parent, left, right = await _seed_topics(store, 3)
        await _set_parent(store, hierarchy, left, parent)
        await _set_parent(store, hierarchy, right, parent)
        async with store.transaction() as tx:
            story = await tx.save(Story(name="Finals", content="Match report", owner="alice", topic_ids={parent, left}))

        async with store.transaction() as tx:
            topic = await tx.load(ContentKind.TOPIC, parent)
            cascade = await hierarchy.delete_topic(tx, topic)

        assert cascade == {"detached_story_ids": [story.id], "orphaned_topic_ids": [left, right]}
        assert await _parents(store) == {left: None, right: None}
        async with store.transaction() as tx:
            reloaded = await tx.load(ContentKind.STORY, story.id)
            with pytest.raises(NotFoundError):
                await tx.load(ContentKind.TOPIC, parent)
        assert reloaded.topic_ids == {left}

    asyncio.run(scenario())
