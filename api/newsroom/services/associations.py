from __future__ import annotations

import logging
from collections.abc import Iterable

from newsroom.services.entities import ContentKind, Story, Topic, TopicState
from newsroom.services.errors import NotFoundError, TopicNotApprovedError, ValidationFailedError
from newsroom.services.storage import StorageTransaction

logger = logging.getLogger(__name__)


class AssociationValidator:
    """Gates story/topic attachment: only approved topics may be newly attached."""

    def __init__(self, *, strict_topic_ids: bool = False) -> None:
        self.strict_topic_ids = strict_topic_ids

    async def attach(self, tx: StorageTransaction, story: Story, topic: Topic) -> bool:
        """Attach ``topic`` to ``story``. Returns False when already attached."""
        if topic.id in story.topic_ids:
            return False
        if topic.state is not TopicState.APPROVED:
            raise TopicNotApprovedError(f"topic {topic.id} is {topic.state.value}, not APPROVED")
        # The topic must still be approved when the attachment commits.
        await tx.guard(topic)
        story.topic_ids.add(topic.id)
        return True

    @staticmethod
    def detach(story: Story, topic_id: int) -> bool:
        """Detach ``topic_id``; missing associations are ignored."""
        if topic_id not in story.topic_ids:
            return False
        story.topic_ids.discard(topic_id)
        return True

    async def resolve_topic_ids(self, tx: StorageTransaction, topic_ids: Iterable[int | None]) -> list[Topic]:
        """Load the approved topics named by ``topic_ids``.

        ``None`` entries always fail validation. Unknown or unapproved ids are
        skipped unless ``strict_topic_ids`` is set.
        """
        topics: dict[int, Topic] = {}
        for topic_id in topic_ids:
            if topic_id is None:
                raise ValidationFailedError("topic_ids must not contain null entries")
            if topic_id in topics:
                continue
            try:
                topic = await tx.load(ContentKind.TOPIC, topic_id)
            except NotFoundError:
                if self.strict_topic_ids:
                    raise
                logger.info("skipping unknown topic id=%s", topic_id)
                continue
            if topic.state is not TopicState.APPROVED:
                if self.strict_topic_ids:
                    raise TopicNotApprovedError(f"topic {topic.id} is {topic.state.value}, not APPROVED")
                logger.info("skipping unapproved topic id=%s state=%s", topic.id, topic.state.value)
                continue
            topics[topic.id] = topic
        return list(topics.values())

    async def replace_topics(
        self,
        tx: StorageTransaction,
        story: Story,
        topic_ids: Iterable[int | None],
    ) -> tuple[list[int], list[int]]:
        """Make the story's topic set equal to the resolved ``topic_ids``."""
        resolved = await self.resolve_topic_ids(tx, topic_ids)
        wanted = {topic.id for topic in resolved}

        detached = sorted(topic_id for topic_id in story.topic_ids if topic_id not in wanted)
        for topic_id in detached:
            self.detach(story, topic_id)

        attached = [topic.id for topic in resolved if await self.attach(tx, story, topic)]
        return attached, detached
