import logging
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from newsroom.core.auth import Caller, Role, parse_role
from newsroom.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

ELEVATED_ROLE_ORDER: tuple[Role, ...] = (Role.CURATOR, Role.JOURNALIST)


async def get_caller(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Caller:
    """Resolve the request's caller; a missing ``Authorization`` header is anonymous."""
    if authorization is None:
        return Caller.anonymous()

    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="bearer token required")

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_caller_role(user)
    if role is None:
        logger.info("rejected caller without a newsroom role user_id=%s", user_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="unsupported role")

    return Caller(role=role, username=_resolve_username(user))


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_caller_role(user: dict[str, Any]) -> Role | None:
    # user_metadata is writable by the user, so only app_metadata can grant a role.
    app_metadata = user.get("app_metadata")
    if not isinstance(app_metadata, dict):
        return None

    role = parse_role(app_metadata.get("role")) if isinstance(app_metadata.get("role"), str) else None
    if role is not None and role is not Role.ANONYMOUS:
        return role

    roles = app_metadata.get("roles")
    if isinstance(roles, list):
        granted = {parse_role(item) for item in roles if isinstance(item, str)}
        for candidate in ELEVATED_ROLE_ORDER:
            if candidate in granted:
                return candidate
    return None


def _resolve_username(user: dict[str, Any]) -> str:
    app_metadata = user.get("app_metadata")
    if isinstance(app_metadata, dict):
        username = app_metadata.get("username")
        if isinstance(username, str) and username.strip():
            return username.strip()
    email = user.get("email")
    if isinstance(email, str) and email:
        return email
    return str(user["id"])
