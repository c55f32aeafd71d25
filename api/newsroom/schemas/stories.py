from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

StoryState = Literal["CREATED", "SUBMITTED", "APPROVED", "PUBLISHED"]


class StoryOut(BaseModel):
    id: int
    name: str
    content: str
    owner: str
    state: StoryState
    rejection_reason: str | None = None
    topic_ids: list[int] = Field(default_factory=list)
    created_at: datetime
    version: int


class StoryCreateRequest(BaseModel):
    name: str
    content: str
    topic_ids: list[int | None] | None = None


class StoryEditRequest(BaseModel):
    name: str | None = None
    content: str | None = None
    topic_ids: list[int | None] | None = None


class StoryTopicRequest(BaseModel):
    topic_id: int
