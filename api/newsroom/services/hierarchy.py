from __future__ import annotations

import logging

from newsroom.services.entities import ContentKind, Topic
from newsroom.services.errors import CycleDetectedError, NotFoundError, ParentNotFoundError
from newsroom.services.storage import StorageTransaction

logger = logging.getLogger(__name__)


class TopicHierarchy:
    """Keeps the topic forest acyclic and applies the topic-deletion cascade.

    All mutations go through the caller's transaction; nothing here commits.
    """

    def __init__(self, *, max_depth: int = 64) -> None:
        self.max_depth = max(1, max_depth)

    async def ancestors(self, tx: StorageTransaction, topic: Topic) -> list[Topic]:
        chain: list[Topic] = []
        seen = {topic.id}
        parent_id = topic.parent_id
        while parent_id is not None:
            if parent_id in seen:
                raise CycleDetectedError(f"topic {parent_id} appears twice in its own ancestry")
            if len(chain) >= self.max_depth:
                raise CycleDetectedError(f"topic ancestry exceeds max depth {self.max_depth}")
            parent = await tx.load(ContentKind.TOPIC, parent_id)
            chain.append(parent)
            seen.add(parent.id)
            parent_id = parent.parent_id
        return chain

    async def subtree_height(self, tx: StorageTransaction, topic: Topic) -> int:
        """Levels in the subtree rooted at ``topic``, counting the topic itself."""
        if topic.id is None:
            return 1
        height = 1
        seen = {topic.id}
        level = [topic.id]
        while True:
            below: list[int] = []
            for topic_id in level:
                children = await tx.children_of(topic_id)
                below.extend(child.id for child in children if child.id not in seen)
            if not below:
                return height
            height += 1
            if height > self.max_depth:
                return height
            seen.update(below)
            level = below

    async def set_parent(self, tx: StorageTransaction, topic: Topic, parent_id: int | None) -> Topic:
        if parent_id is None:
            topic.parent_id = None
            return await tx.save(topic)

        if topic.id is not None and parent_id == topic.id:
            raise CycleDetectedError("a topic cannot be its own parent")

        try:
            parent = await tx.load(ContentKind.TOPIC, parent_id)
        except NotFoundError as exc:
            raise ParentNotFoundError(f"parent topic {parent_id} not found") from exc

        lineage = await self.ancestors(tx, parent)
        if topic.id is not None and any(ancestor.id == topic.id for ancestor in lineage):
            raise CycleDetectedError(f"topic {parent_id} is a descendant of topic {topic.id}")
        height = await self.subtree_height(tx, topic)
        if len(lineage) + 1 + height > self.max_depth:
            raise CycleDetectedError(f"topic depth would exceed {self.max_depth}")

        # A concurrent re-parenting anywhere on this chain must fail our commit.
        for ancestor in (parent, *lineage):
            await tx.guard(ancestor)
        topic.parent_id = parent.id
        return await tx.save(topic)

    async def delete_topic(self, tx: StorageTransaction, topic: Topic) -> dict[str, list[int]]:
        """Detach from stories, orphan direct children, then remove the topic."""
        detached: list[int] = []
        for story in await tx.stories_with_topic(topic.id):
            story.topic_ids.discard(topic.id)
            await tx.save(story)
            detached.append(story.id)

        orphaned: list[int] = []
        for child in await tx.children_of(topic.id):
            child.parent_id = None
            await tx.save(child)
            orphaned.append(child.id)

        await tx.delete(ContentKind.TOPIC, topic.id)
        logger.info(
            "topic cascade topic_id=%s detached_stories=%s orphaned_children=%s",
            topic.id,
            detached,
            orphaned,
        )
        return {"detached_story_ids": detached, "orphaned_topic_ids": orphaned}
