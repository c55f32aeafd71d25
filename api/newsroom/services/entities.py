from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union


class ContentKind(str, Enum):
    STORY = "story"
    TOPIC = "topic"
    COMMENT = "comment"


class StoryState(str, Enum):
    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"


class TopicState(str, Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"


class CommentState(str, Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Story:
    name: str
    content: str
    owner: str
    state: StoryState = StoryState.CREATED
    rejection_reason: str | None = None
    topic_ids: set[int] = field(default_factory=set)
    id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)
    version: int = 0

    kind: ClassVar[ContentKind] = ContentKind.STORY

    def copy(self) -> Story:
        return replace(self, topic_ids=set(self.topic_ids))

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "content": self.content,
            "owner": self.owner,
            "state": self.state.value,
            "rejection_reason": self.rejection_reason,
            "topic_ids": sorted(self.topic_ids),
            "created_at": self.created_at,
            "version": self.version,
        }


@dataclass(slots=True)
class Topic:
    name: str
    owner: str
    state: TopicState = TopicState.SUBMITTED
    parent_id: int | None = None
    id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)
    version: int = 0

    kind: ClassVar[ContentKind] = ContentKind.TOPIC

    def copy(self) -> Topic:
        return replace(self)

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "owner": self.owner,
            "state": self.state.value,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
            "version": self.version,
        }


@dataclass(slots=True)
class Comment:
    story_id: int
    content: str
    owner: str | None = None
    state: CommentState = CommentState.SUBMITTED
    id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)
    version: int = 0

    kind: ClassVar[ContentKind] = ContentKind.COMMENT

    def copy(self) -> Comment:
        return replace(self)

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "story_id": self.story_id,
            "content": self.content,
            "owner": self.owner,
            "state": self.state.value,
            "created_at": self.created_at,
            "version": self.version,
        }


Entity = Union[Story, Topic, Comment]


@dataclass(slots=True)
class ModerationEvent:
    """One committed change to a content entity, kept for audit and replay."""

    entity_kind: ContentKind
    entity_id: int
    event_type: str
    actor_role: str
    actor_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_kind": self.entity_kind.value,
            "entity_id": self.entity_id,
            "event_type": self.event_type,
            "actor_role": self.actor_role,
            "actor_id": self.actor_id,
            "payload": dict(self.payload),
            "created_at": self.created_at,
        }
