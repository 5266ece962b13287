"""
Uniform JSON error envelope for the API.

Domain errors keep their kind, message and code. Store failures arrive here
already translated, so nothing backend-specific reaches the caller; any other
unexpected exception is logged with its traceback and reported generically.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..coursework.errors import CourseworkError, ErrorKind
from ..utils.correlation import CORRELATION_HEADER, correlation_id

logger = logging.getLogger(__name__)


def _correlation(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or correlation_id.get()


def _envelope(request: Request, status: int, error: Dict[str, Any], headers=None) -> JSONResponse:
    cid = _correlation(request)
    response_headers = dict(headers or {})
    response_headers[CORRELATION_HEADER] = cid
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": error, "correlationId": cid},
        headers=response_headers,
    )


def error_handler(request: Request, exc: Exception) -> JSONResponse:
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None) or 500

    if isinstance(exc, CourseworkError):
        error = {"type": exc.kind.value, "message": exc.message, "code": exc.code}
        if status >= 500:
            logger.error(f"{exc.kind.value}: {exc.message}")
        else:
            logger.info(f"Request rejected with {exc.kind.value} ({exc.code}): {exc.message}")
    elif isinstance(exc, StarletteHTTPException):
        error = {"type": "HTTPException", "message": str(exc.detail), "code": str(status)}
    else:
        if status >= 500:
            logger.error(
                f"Unhandled {type(exc).__name__} while serving {request.scope.get('path', '-')}",
                exc_info=exc,
            )
        error = {
            "type": type(exc).__name__,
            "message": "Something went wrong" if status >= 500 else (str(exc) or "Something went wrong"),
            "code": str(status),
        }

    return _envelope(request, status, error, headers=getattr(exc, "headers", None))


def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    message = "; ".join(problems) or "Invalid request"
    logger.info(f"Invalid request parameters: {message}")
    return _envelope(
        request,
        400,
        {"type": ErrorKind.VALIDATION_ERROR.value, "message": message, "code": "INVALID_PARAMETERS"},
    )
