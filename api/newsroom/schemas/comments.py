from datetime import datetime
from typing import Literal

from pydantic import BaseModel

CommentState = Literal["SUBMITTED", "APPROVED"]


class CommentOut(BaseModel):
    id: int
    story_id: int
    content: str
    owner: str | None = None
    state: CommentState
    created_at: datetime
    version: int


class CommentCreateRequest(BaseModel):
    story_id: int
    content: str


class CommentEditRequest(BaseModel):
    content: str
