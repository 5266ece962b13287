"""
FastAPI application for the coursework API.

Wires logging (console plus optional CloudWatch via watchtower), the
correlation-id logging middleware, optional JWT enforcement, the error
handlers and the routers. The coursework store is constructed once in the
application lifespan and shared through `app.state.store`.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

import watchtower
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .aws_clients import logs_client
from .coursework.errors import CourseworkError
from .coursework.store import CourseworkStore, build_store
from .middleware.errorHandler import error_handler, validation_error_handler
from .middleware.jwt_auth import JWTAuthMiddleware
from .routes import coursework, system
from .utils.correlation import (
    CORRELATION_HEADER,
    CorrelationIdFilter,
    correlation_id,
    new_correlation_id,
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)

_logging_configured = False


def configure_logging() -> None:
    global _logging_configured
    if _logging_configured:
        return

    root = logging.getLogger()
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    correlation_filter = CorrelationIdFilter()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console.addFilter(correlation_filter)
    root.addHandler(console)

    log_group = os.getenv("CLOUDWATCH_LOG_GROUP")
    if log_group:
        try:
            cloudwatch = watchtower.CloudWatchLogHandler(
                log_group_name=log_group,
                log_stream_name=os.getenv("CLOUDWATCH_LOG_STREAM", "coursework-api"),
                boto3_client=logs_client(),
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"CloudWatch logging disabled: {e}")
        else:
            cloudwatch.setFormatter(logging.Formatter(LOG_FORMAT))
            cloudwatch.addFilter(correlation_filter)
            root.addHandler(cloudwatch)
            logger.info(f"Shipping logs to CloudWatch group {log_group}")

    _logging_configured = True


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get(CORRELATION_HEADER) or new_correlation_id()
        request.state.correlation_id = cid
        token = correlation_id.set(cid)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - start) * 1000
            auth = getattr(request.state, "auth", None)
            if auth:
                caller = f"User(id={auth.get('user_id') or auth.get('sub')}, roles={auth.get('roles') or auth.get('role')})"
            else:
                caller = "Anonymous"
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({elapsed_ms:.1f} ms) {caller}"
            )
            response.headers[CORRELATION_HEADER] = cid
            return response
        finally:
            correlation_id.reset(token)


def _auth_enabled() -> bool:
    return os.getenv("ENABLE_AUTH", "").lower() == "true" or bool(os.getenv("JWT_SECRET"))


def create_app(store: Optional[CourseworkStore] = None) -> FastAPI:
    """Build the application; `store` overrides the configured backend."""
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store if store is not None else build_store()
        logger.info(f"Coursework API started with {type(app.state.store).__name__}")
        yield
        logger.info("Coursework API stopped")

    app = FastAPI(title="Coursework API", version="1.0.0", lifespan=lifespan)
    if store is not None:
        app.state.store = store

    if _auth_enabled():
        app.add_middleware(JWTAuthMiddleware)
    # Outermost, so auth rejections are logged too
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(CourseworkError, error_handler)
    app.add_exception_handler(StarletteHTTPException, error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, error_handler)

    app.include_router(system.router)
    app.include_router(coursework.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.index:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
