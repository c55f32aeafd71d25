from datetime import datetime
from typing import Literal

from pydantic import BaseModel

TopicState = Literal["SUBMITTED", "APPROVED"]


class TopicOut(BaseModel):
    id: int
    name: str
    owner: str
    state: TopicState
    parent_id: int | None = None
    created_at: datetime
    version: int


class TopicCreateRequest(BaseModel):
    name: str
    parent_id: int | None = None


class TopicEditRequest(BaseModel):
    name: str | None = None
    parent_id: int | None = None
