"""
Tests for errorHandler.py middleware
"""
import json
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.coursework.errors import (
    AlreadyGradedByOther,
    CourseworkError,
    NotFound,
    StoreFailure,
    StoreUnavailable,
)
from src.middleware.errorHandler import error_handler, validation_error_handler


def _request(cid="cid-123"):
    request = MagicMock()
    request.state.correlation_id = cid
    request.scope = {"path": "/grades"}
    return request


def _body(response):
    return json.loads(response.body)


@pytest.fixture
def app():
    """Create test app with the error handlers registered"""
    app = FastAPI()
    app.add_exception_handler(CourseworkError, error_handler)
    app.add_exception_handler(StarletteHTTPException, error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, error_handler)

    @app.get("/missing")
    def missing():
        raise NotFound("Assignment not found", code="ASSIGNMENT_NOT_FOUND")

    @app.get("/http")
    def http():
        raise HTTPException(status_code=404, detail="Not found")

    @app.get("/paged")
    def paged(limit: int = Query(20, ge=1, le=100)):
        return {"limit": limit}

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret connection string")

    return app


@pytest.fixture
def client(app):
    """Create test client"""
    return TestClient(app, raise_server_exceptions=False)


class TestErrorHandler:
    """Test error handler middleware"""

    def test_coursework_error_envelope(self, client):
        """Test domain errors keep kind, message and code"""
        response = client.get("/missing")
        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["error"] == {
            "type": "NOT_FOUND",
            "message": "Assignment not found",
            "code": "ASSIGNMENT_NOT_FOUND",
        }
        assert "correlationId" in data

    def test_http_exception_handling(self, client):
        """Test HTTPException handling"""
        response = client.get("/http")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Not found"

    def test_validation_error(self, client):
        """Test out-of-range query parameters become 400"""
        response = client.get("/paged?limit=101")
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["type"] == "VALIDATION_ERROR"
        assert error["code"] == "INVALID_PARAMETERS"
        assert "limit" in error["message"]

    def test_unexpected_exception_hides_details(self, client):
        """Test unknown failures are reported generically"""
        response = client.get("/boom")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["message"] == "Something went wrong"
        assert "secret" not in response.text

    @pytest.mark.parametrize(
        "exc,status,kind",
        [
            (AlreadyGradedByOther("graded elsewhere"), 409, "ALREADY_GRADED_BY_OTHER"),
            (StoreUnavailable("busy"), 503, "STORE_UNAVAILABLE"),
            (StoreFailure("broken"), 500, "STORE_ERROR"),
        ],
    )
    def test_status_per_kind(self, exc, status, kind):
        """Test each error kind maps to its HTTP status"""
        response = error_handler(_request(), exc)
        assert response.status_code == status
        assert _body(response)["error"]["type"] == kind

    def test_correlation_id_echoed(self):
        """Test the correlation id appears in body and header"""
        response = error_handler(_request("cid-xyz"), NotFound("gone"))
        assert response.headers["X-Correlation-ID"] == "cid-xyz"
        assert _body(response)["correlationId"] == "cid-xyz"

    def test_error_handler_with_status_code(self):
        """Test error handler with status code attribute"""
        class CustomException(Exception):
            status_code = 403

        response = error_handler(_request(), CustomException("Forbidden"))
        assert response.status_code == 403
        assert _body(response)["error"]["message"] == "Forbidden"

    def test_error_handler_with_status_attr(self):
        """Test error handler with status attribute"""
        class CustomException(Exception):
            status = 422

        response = error_handler(_request(), CustomException("Bad input"))
        assert response.status_code == 422
