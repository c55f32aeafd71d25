from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from newsroom.services.entities import Comment, Story, StoryState, Topic


class SortOrder(str, Enum):
    """Listing order by creation time; ties fall back to id."""

    ASC = "asc"
    DESC = "desc"


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class StoryQuery:
    name: str | None = None
    content: str | None = None
    min_date: datetime | None = None
    max_date: datetime | None = None
    state: StoryState | None = None
    topic_id: int | None = None

    def __post_init__(self) -> None:
        self.min_date = _aware(self.min_date)
        self.max_date = _aware(self.max_date)

    def __call__(self, story: Story) -> bool:
        if self.name and self.name.casefold() not in story.name.casefold():
            return False
        if self.content and self.content.casefold() not in story.content.casefold():
            return False
        if self.min_date is not None and story.created_at < self.min_date:
            return False
        if self.max_date is not None and story.created_at > self.max_date:
            return False
        if self.state is not None and story.state is not self.state:
            return False
        if self.topic_id is not None and self.topic_id not in story.topic_ids:
            return False
        return True


@dataclass(slots=True)
class TopicQuery:
    name: str | None = None
    parent_id: int | None = None

    def __call__(self, topic: Topic) -> bool:
        if self.name and self.name.casefold() not in topic.name.casefold():
            return False
        if self.parent_id is not None and topic.parent_id != self.parent_id:
            return False
        return True


@dataclass(slots=True)
class CommentQuery:
    story_id: int | None = None

    def __call__(self, comment: Comment) -> bool:
        return self.story_id is None or comment.story_id == self.story_id
