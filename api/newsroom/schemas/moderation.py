from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

StateCommand = Literal["submit", "approve", "reject", "publish"]


class TransitionRequest(BaseModel):
    command: StateCommand
    reason: str | None = None


class ModerationEventOut(BaseModel):
    id: int
    entity_kind: str
    entity_id: int
    event_type: str
    actor_role: str
    actor_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
