from __future__ import annotations

"""
JWT enforcement middleware for the coursework API.

Requests to the public endpoints (health check and API docs) pass straight
through. Everything else must carry a valid HS256 token in `Authorization`
(Bearer) or `X-Authorization`; the decoded claims land on
`request.state.auth`, where the principal dependency picks them up. Missing,
malformed or expired credentials get `401 {"detail": "Unauthorized"}`.

Role checks are not done here; they belong to the service layer.
"""

import os
from typing import Iterable
from urllib.parse import unquote

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..services.auth_service import verify_jwt_token
from ..utils.auth import extract_token

# Exact paths, or prefixes when ending with a slash
DEFAULT_EXEMPT: tuple[str, ...] = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
)


def _is_exempt(path: str, exempt: Iterable[str]) -> bool:
    for p in exempt:
        if p.endswith("/") and path.startswith(p):
            return True
        if path == p:
            return True
    return False


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        {"detail": "Unauthorized"},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, exempt_paths: Iterable[str] = DEFAULT_EXEMPT) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths)
        self.algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        if self.algorithm != "HS256":
            raise ValueError("This middleware currently supports HS256 only.")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        # Strip any deployment prefix (e.g. /prod) before matching exempt paths
        raw_path = unquote(request.scope.get("path", "") or request.url.path)
        root_prefix = request.scope.get("root_path", "") or request.headers.get(
            "X-Forwarded-Prefix", ""
        )
        path = (
            raw_path[len(root_prefix) :]
            if root_prefix and raw_path.startswith(root_prefix)
            else raw_path
        )

        if _is_exempt(path, self.exempt_paths):
            return await call_next(request)

        token = extract_token(request.headers)
        if not token:
            return _unauthorized()

        payload = verify_jwt_token(token)
        if not payload:
            return _unauthorized()

        request.state.auth = payload
        return await call_next(request)
