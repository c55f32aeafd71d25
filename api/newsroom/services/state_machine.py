"""
Guarded transition tables for story, topic and comment moderation.

The engine only decides. It never touches storage: callers apply the returned
``TransitionResult`` inside their own transaction scope.

Story:    CREATED --submit--> SUBMITTED --approve--> APPROVED --publish--> PUBLISHED
                               SUBMITTED --reject(reason)--> CREATED
Topic:    SUBMITTED --approve--> APPROVED,  SUBMITTED --reject--> deleted
Comment:  SUBMITTED --approve--> APPROVED,  SUBMITTED --reject--> deleted
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from newsroom.core.auth import Caller, Role
from newsroom.services.entities import CommentState, ContentKind, StoryState, TopicState
from newsroom.services.errors import DeniedError, InvalidTransitionError, ValidationFailedError


class Command(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    PUBLISH = "publish"
    EDIT = "edit"
    DELETE = "delete"
    ATTACH_TOPIC = "attach_topic"
    DETACH_TOPIC = "detach_topic"


class Actor(str, Enum):
    OWNER = "owner"
    CURATOR = "curator"


@dataclass(frozen=True, slots=True)
class Transition:
    source: Enum
    command: Command
    target: Enum | None
    actors: frozenset[Actor]
    requires_reason: bool = False


@dataclass(frozen=True, slots=True)
class TransitionResult:
    kind: ContentKind
    command: Command
    from_state: Enum
    to_state: Enum | None
    reason: str | None = None

    @property
    def deletes(self) -> bool:
        return self.to_state is None


_OWNER = frozenset({Actor.OWNER})
_CURATOR = frozenset({Actor.CURATOR})
_OWNER_OR_CURATOR = frozenset({Actor.OWNER, Actor.CURATOR})

TRANSITIONS: dict[ContentKind, tuple[Transition, ...]] = {
    ContentKind.STORY: (
        Transition(StoryState.CREATED, Command.SUBMIT, StoryState.SUBMITTED, _OWNER),
        Transition(StoryState.CREATED, Command.EDIT, StoryState.CREATED, _OWNER),
        Transition(StoryState.CREATED, Command.ATTACH_TOPIC, StoryState.CREATED, _OWNER),
        Transition(StoryState.CREATED, Command.DETACH_TOPIC, StoryState.CREATED, _OWNER),
        Transition(StoryState.CREATED, Command.DELETE, None, _OWNER),
        Transition(StoryState.SUBMITTED, Command.APPROVE, StoryState.APPROVED, _CURATOR),
        Transition(StoryState.SUBMITTED, Command.REJECT, StoryState.CREATED, _CURATOR, requires_reason=True),
        Transition(StoryState.APPROVED, Command.PUBLISH, StoryState.PUBLISHED, _CURATOR),
    ),
    ContentKind.TOPIC: (
        Transition(TopicState.SUBMITTED, Command.APPROVE, TopicState.APPROVED, _CURATOR),
        Transition(TopicState.SUBMITTED, Command.REJECT, None, _CURATOR),
        Transition(TopicState.SUBMITTED, Command.EDIT, TopicState.SUBMITTED, _OWNER_OR_CURATOR),
        Transition(TopicState.SUBMITTED, Command.DELETE, None, _CURATOR),
        Transition(TopicState.APPROVED, Command.DELETE, None, _CURATOR),
    ),
    ContentKind.COMMENT: (
        Transition(CommentState.SUBMITTED, Command.APPROVE, CommentState.APPROVED, _CURATOR),
        Transition(CommentState.SUBMITTED, Command.REJECT, None, _CURATOR),
        Transition(CommentState.SUBMITTED, Command.EDIT, CommentState.SUBMITTED, _OWNER_OR_CURATOR),
        Transition(CommentState.APPROVED, Command.EDIT, CommentState.APPROVED, _CURATOR),
    ),
}

_ROLE_ACTORS: dict[Role, frozenset[Actor]] = {
    Role.ANONYMOUS: frozenset(),
    Role.JOURNALIST: _OWNER,
    Role.CURATOR: _OWNER_OR_CURATOR,
}

_INDEX: dict[tuple[ContentKind, Enum, Command], Transition] = {
    (kind, transition.source, transition.command): transition
    for kind, transitions in TRANSITIONS.items()
    for transition in transitions
}


def outgoing(kind: ContentKind, state: Enum) -> list[Transition]:
    return [transition for transition in TRANSITIONS[kind] if transition.source == state]


def is_terminal(kind: ContentKind, state: Enum) -> bool:
    return not outgoing(kind, state)


def commands_for(kind: ContentKind) -> set[Command]:
    return {transition.command for transition in TRANSITIONS[kind]}


def role_may_issue(kind: ContentKind, command: Command, role: Role) -> bool:
    """True when ``role`` can issue ``command`` on ``kind`` in at least one state."""
    actors = _ROLE_ACTORS[role]
    return any(transition.command is command and transition.actors & actors for transition in TRANSITIONS[kind])


def authorize_role(kind: ContentKind, command: Command, caller: Caller) -> None:
    if command not in commands_for(kind):
        raise InvalidTransitionError(f"{command.value} is not defined for a {kind.value}")
    if not role_may_issue(kind, command, caller.role):
        raise DeniedError(f"role {caller.role.value} cannot {command.value} a {kind.value}")


def _caller_actors(caller: Caller, owner: str | None) -> set[Actor]:
    actors: set[Actor] = set()
    if caller.role is Role.CURATOR:
        actors.add(Actor.CURATOR)
    if caller.owns(owner):
        actors.add(Actor.OWNER)
    return actors


def attempt_transition(
    kind: ContentKind,
    state: Enum,
    owner: str | None,
    command: Command,
    caller: Caller,
    *,
    reason: str | None = None,
) -> TransitionResult:
    """Decide whether ``caller`` may apply ``command`` to an entity in ``state``.

    Terminal states reject every command with ``InvalidTransitionError`` for
    every role. Otherwise the command must exist for the kind
    (``InvalidTransitionError``), the role must be able to issue it at all
    (``DeniedError``), the command must be defined for the current state
    (``InvalidTransitionError``), and the caller must hold one of the actor
    slots of that particular transition (``DeniedError``).
    """
    if is_terminal(kind, state):
        raise InvalidTransitionError(f"{kind.value} in state {state.value} accepts no further commands")
    authorize_role(kind, command, caller)

    transition = _INDEX.get((kind, state, command))
    if transition is None:
        raise InvalidTransitionError(f"cannot {command.value} a {kind.value} in state {state.value}")
    if not transition.actors & _caller_actors(caller, owner):
        raise DeniedError(f"caller may not {command.value} this {kind.value}")

    normalized_reason = reason.strip() if isinstance(reason, str) else None
    if transition.requires_reason and not normalized_reason:
        raise ValidationFailedError(f"{command.value} requires a reason")

    return TransitionResult(
        kind=kind,
        command=command,
        from_state=state,
        to_state=transition.target,
        reason=normalized_reason or None,
    )
