class ModerationError(Exception):
    """Base moderation error."""


class DeniedError(ModerationError):
    """Raised when the caller's role lacks authority for the requested command."""


class InvalidTransitionError(ModerationError):
    """Raised when a command is not defined for the entity's current state."""


class NotFoundError(ModerationError):
    """Raised when an entity is absent or hidden from the caller."""


class TopicNotApprovedError(ModerationError):
    """Raised when a story would reference a topic that is not approved."""


class CycleDetectedError(ModerationError):
    """Raised when a parent assignment would make a topic its own ancestor."""


class ParentNotFoundError(ModerationError):
    """Raised when the requested parent topic does not exist."""


class ConcurrentModificationError(ModerationError):
    """Raised when another writer committed the same entity first."""


class ValidationFailedError(ModerationError):
    """Raised when payload validation fails before persistence."""


class StorageUnavailableError(ModerationError):
    """Raised when the storage backend is unavailable or not configured."""
