import logging

from fastapi import APIRouter, Depends, HTTPException, status

from newsroom.services.errors import StorageUnavailableError
from newsroom.services.repository import get_repository
from newsroom.services.storage import Storage

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(repository: Storage = Depends(get_repository)) -> dict[str, str]:
    """Open and commit an empty transaction against the configured storage."""
    try:
        async with repository.transaction():
            pass
    except StorageUnavailableError as exc:
        logger.warning("readiness probe failed error=%s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ready"}
