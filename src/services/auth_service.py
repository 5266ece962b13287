"""
JWT helpers shared by the auth middleware and the principal dependency.

Tokens are HS256-signed with `JWT_SECRET`. The secret is read on every call
so a process can be reconfigured (and tests can patch the environment)
without re-importing this module.
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MINUTES = 60


def _secret() -> Optional[str]:
    return os.getenv("JWT_SECRET")


def _algorithm() -> str:
    return os.getenv("JWT_ALGORITHM", "HS256")


def create_jwt_token(claims: Dict[str, Any], expires_minutes: int = DEFAULT_EXPIRY_MINUTES) -> str:
    """Sign `claims` (plus iat, exp and jti) into a token."""
    secret = _secret()
    if not secret:
        raise RuntimeError("JWT_SECRET is not configured")
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload.setdefault("jti", str(uuid.uuid4()))
    payload["iat"] = int(now.timestamp())
    payload["exp"] = int((now + timedelta(minutes=expires_minutes)).timestamp())
    return jwt.encode(payload, secret, algorithm=_algorithm())


def verify_jwt_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the decoded claims, or None if the token is invalid or expired."""
    secret = _secret()
    if not secret:
        logger.error("JWT_SECRET is not configured; rejecting token")
        return None
    try:
        return jwt.decode(token, secret, algorithms=[_algorithm()])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected invalid token: {e}")
        return None
