"""Caller authentication.

Feature-flagged via ``ENABLE_AUTH``. When enabled, requests carry the hosted
backend's access token as ``Authorization: Bearer <jwt>``; the token is
verified with the project's JWT secret and its ``sub`` claim is the user id.
When disabled, the caller names itself with an ``X-User-Id`` header, which
is only suitable for local development and tests.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
USER_ID_HEADER = "x-user-id"


@dataclass(frozen=True)
class AuthContext:
    """Resolved identity of the caller.

    ``token`` is the raw bearer token when one was presented; it is forwarded
    to the completion function so the call runs with the user's identity.
    """
    user_id: uuid.UUID
    email: Optional[str] = None
    token: Optional[str] = None


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Decode and validate an access token.

    Raises:
        JWTError: On invalid signature, expired token, wrong audience or malformed JWT.
    """
    if not settings.supabase_jwt_secret:
        raise JWTError("JWT secret is not configured")
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[ALGORITHM],
        audience=settings.jwt_audience,
    )


def _parse_user_id(value: Optional[str]) -> uuid.UUID:
    if not value:
        raise HTTPException(status_code=401, detail="Missing user identity")
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user identity")


def _settings_for(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


async def get_auth_context(request: Request) -> AuthContext:
    """Resolve the caller from the request headers.

    Raises 401 when no valid identity is provided.
    """
    settings = _settings_for(request)
    auth_header = request.headers.get("authorization", "")

    if not settings.enable_auth:
        token = auth_header[7:] if auth_header.startswith("Bearer ") else None
        return AuthContext(
            user_id=_parse_user_id(request.headers.get(USER_ID_HEADER)),
            token=token,
        )

    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    raw_token = auth_header[7:]
    try:
        payload = decode_access_token(raw_token, settings)
    except JWTError as e:
        logger.debug("Rejected access token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return AuthContext(
        user_id=_parse_user_id(payload.get("sub")),
        email=payload.get("email") or None,
        token=raw_token,
    )
