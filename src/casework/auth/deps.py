"""
casework.auth.deps

FastAPI dependency functions for caller identity.

Responsibilities:
- Convert a bearer token into a typed `Principal`.
- Require that the caller is an end user (sub = user id) so services get an explicit actor.
"""

from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from casework.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from casework.auth.models import Principal
from casework.settings import Settings, get_settings

_bearer = HTTPBearer(auto_error=False)


def get_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Principal:
    settings: Settings = getattr(request.app.state, "settings", None) or get_settings()
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    try:
        cfg = JwtConfig.from_settings(settings)
        payload = decode_and_validate(cfg=cfg, token=creds.credentials)
    except JwtValidationError as e:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e

    subject = str(payload.get("sub", ""))
    roles_raw = payload.get("roles", [])
    if not subject:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    if not isinstance(roles_raw, list):
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid token roles")

    return Principal(subject=subject, roles=frozenset(str(r) for r in roles_raw))


def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.user_id is None:
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="User identity required")
    return principal


def require_user_id(principal: Principal = Depends(get_principal)) -> uuid.UUID:
    user_id = principal.user_id
    if user_id is None:
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="User identity required")
    return user_id


# --- Module Notes -----------------------------------------------------------
# Authorization decisions that depend on domain data (administrator-only role changes,
# student-only route-sheet entries) are made by the services, not here.
