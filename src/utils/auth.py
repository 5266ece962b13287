from __future__ import annotations

import logging
from typing import Mapping, Optional

from fastapi import HTTPException, Request

from ..coursework.errors import AccessDenied
from ..coursework.principal import Principal
from ..services.auth_service import verify_jwt_token

logger = logging.getLogger(__name__)


def extract_token(headers: Mapping[str, str]) -> Optional[str]:
    """
    Pull the token out of ``Authorization`` (or legacy ``X-Authorization``).

    Accepts both ``Bearer <token>`` and a bare token. Returns None when no
    usable token is present.
    """
    if headers is None:
        return None
    raw = headers.get("authorization") or headers.get("x-authorization")
    if not raw or not raw.strip():
        return None
    raw = raw.strip()
    if raw.lower().startswith("bearer "):
        raw = raw.split(" ", 1)[1].strip()
    return raw or None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def current_principal(request: Request) -> Principal:
    """
    FastAPI dependency resolving the authenticated caller.

    Uses the claims the JWT middleware attached when it is enabled, and
    otherwise verifies the request's token directly.
    """
    claims = getattr(request.state, "auth", None)
    if claims is None:
        token = extract_token(request.headers)
        if token is None:
            raise _unauthorized()
        claims = verify_jwt_token(token)
        if claims is None:
            raise _unauthorized()
        request.state.auth = claims

    principal = Principal.from_claims(claims)
    if principal is None:
        logger.warning("Token carries no recognised user id or role")
        raise AccessDenied("Token does not carry a recognised role", code="UNKNOWN_ROLE")
    return principal
