from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from newsroom.core.auth import Caller, Role
from newsroom.services.entities import CommentState, ContentKind, Entity, StoryState, TopicState
from newsroom.services.errors import NotFoundError

PUBLIC_STATES: dict[ContentKind, frozenset[Enum]] = {
    ContentKind.STORY: frozenset({StoryState.PUBLISHED}),
    ContentKind.TOPIC: frozenset({TopicState.APPROVED}),
    ContentKind.COMMENT: frozenset({CommentState.APPROVED}),
}

# CREATED stories stay private to their author.
CURATOR_STATES: dict[ContentKind, frozenset[Enum]] = {
    ContentKind.STORY: frozenset({StoryState.SUBMITTED, StoryState.APPROVED, StoryState.PUBLISHED}),
    ContentKind.TOPIC: frozenset({TopicState.SUBMITTED, TopicState.APPROVED}),
    ContentKind.COMMENT: frozenset({CommentState.SUBMITTED, CommentState.APPROVED}),
}

VISIBLE_STATES: dict[Role, dict[ContentKind, frozenset[Enum]]] = {
    Role.ANONYMOUS: PUBLIC_STATES,
    Role.JOURNALIST: PUBLIC_STATES,
    Role.CURATOR: CURATOR_STATES,
}


def is_visible(kind: ContentKind, state: Enum, owner: str | None, caller: Caller) -> bool:
    if caller.owns(owner):
        return True
    return state in VISIBLE_STATES[caller.role][kind]


def can_see(entity: Entity, caller: Caller) -> bool:
    return is_visible(entity.kind, entity.state, entity.owner, caller)


def ensure_visible(entity: Entity, caller: Caller) -> None:
    if not can_see(entity, caller):
        raise NotFoundError(f"{entity.kind.value} not found")


def visibility_predicate(caller: Caller) -> Callable[[Entity], bool]:
    return lambda entity: can_see(entity, caller)
