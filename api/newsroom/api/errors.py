from fastapi import HTTPException, status

from newsroom.services.errors import (
    ConcurrentModificationError,
    CycleDetectedError,
    DeniedError,
    InvalidTransitionError,
    ModerationError,
    NotFoundError,
    ParentNotFoundError,
    StorageUnavailableError,
    TopicNotApprovedError,
    ValidationFailedError,
)

ERROR_STATUS: tuple[tuple[type[ModerationError], int], ...] = (
    (DeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationFailedError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ParentNotFoundError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (TopicNotApprovedError, status.HTTP_409_CONFLICT),
    (CycleDetectedError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: ModerationError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="moderation failure")
