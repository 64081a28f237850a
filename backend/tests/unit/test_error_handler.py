"""
Tests for the error envelope and HTTP-facing exceptions.
"""
import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from reviewhub.api.middleware.error_handler import (
    AppException,
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)


@pytest.mark.unit
def test_not_found_message_and_details():
    """Test not found message and details."""
    exc = NotFoundException("Review", "r-1")

    assert exc.message == "Review with id 'r-1' not found"
    assert exc.status_code == 404
    assert exc.details == {"resource": "Review", "resource_id": "r-1"}
    assert NotFoundException("Review").message == "Review not found"


@pytest.mark.unit
@pytest.mark.parametrize(
    "exc, status_code",
    [
        (UnauthorizedException(), 401),
        (ForbiddenException(), 403),
        (BadRequestException("bad"), 400),
        (ConflictException("taken"), 409),
        (AppException("boom"), 500),
    ],
)
def test_status_codes(exc, status_code):
    """Test status codes."""
    assert exc.status_code == status_code


@pytest.fixture
def error_app():
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    class Payload(BaseModel):
        rating: int = Field(..., ge=1, le=5)

    @app.get("/forbidden")
    def forbidden():
        raise ForbiddenException("You can only modify your own reviews")

    @app.get("/missing")
    def missing():
        raise NotFoundException("Review", "r-1")

    @app.post("/validate")
    def validate(payload: Payload):
        return payload

    @app.get("/crash")
    def crash():
        raise RuntimeError("unexpected")

    return app


@pytest.mark.unit
def test_app_exception_envelope(error_app):
    """Test app exception envelope."""
    response = TestClient(error_app).get("/forbidden")

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "You can only modify your own reviews"
    assert "correlation_id" in body
    assert "details" not in body


@pytest.mark.unit
def test_details_included_when_present(error_app):
    """Test details included when present."""
    body = TestClient(error_app).get("/missing").json()

    assert body["details"] == {"resource": "Review", "resource_id": "r-1"}


@pytest.mark.unit
def test_validation_error_envelope(error_app):
    """Test validation error envelope."""
    response = TestClient(error_app).post("/validate", json={"rating": 9})

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Validation error"
    assert body["details"]["errors"][0]["loc"] == ["body", "rating"]


@pytest.mark.unit
def test_unknown_route_uses_envelope(error_app):
    """Test unknown route uses envelope."""
    response = TestClient(error_app).get("/nope")

    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"


@pytest.mark.unit
def test_unhandled_exception_is_generic(error_app):
    """Test unhandled exception is generic."""
    response = TestClient(error_app, raise_server_exceptions=False).get("/crash")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
