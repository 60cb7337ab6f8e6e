"""
Tests for error handler middleware and custom exceptions.
"""
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from src.api.middleware.error_handler import (
    AppException,
    ComputationDegradedException,
    DataUnavailableException,
    ForbiddenException,
    InvalidPeriodException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)


@pytest.mark.unit
def test_app_exception_creation():
    """Test creating custom AppException."""
    exc = AppException(
        message="Test error",
        status_code=500,
        details={"key": "value"},
    )

    assert exc.message == "Test error"
    assert exc.status_code == 500
    assert exc.details == {"key": "value"}


@pytest.mark.unit
def test_not_found_exception():
    """Test NotFoundException creation."""
    exc = NotFoundException("Scheduled report", "123")

    assert exc.message == "Scheduled report with id '123' not found"
    assert exc.status_code == 404
    assert exc.details["resource"] == "Scheduled report"
    assert exc.details["resource_id"] == "123"


@pytest.mark.unit
def test_not_found_exception_without_id():
    exc = NotFoundException("Provider")

    assert exc.message == "Provider not found"
    assert exc.status_code == 404


@pytest.mark.unit
def test_auth_exceptions():
    assert UnauthorizedException().status_code == 401
    assert ForbiddenException("Access denied").message == "Access denied"
    assert ForbiddenException().status_code == 403


@pytest.mark.unit
def test_validation_exception():
    """Test ValidationException creation."""
    exc = ValidationException("Limit must be between 1 and 100", errors={"limit": 0})

    assert exc.status_code == 422
    assert exc.details["errors"] == {"limit": 0}


@pytest.mark.unit
def test_invalid_period_lists_valid_periods():
    exc = InvalidPeriodException("90days", ["7days", "30days"])

    assert isinstance(exc, ValidationException)
    assert exc.message == "Invalid period '90days'"
    assert exc.details["errors"]["valid_periods"] == ["7days", "30days"]


@pytest.mark.unit
def test_data_unavailable_is_retryable():
    exc = DataUnavailableException(details={"query": "payments"})

    assert exc.status_code == 503
    assert exc.details == {"query": "payments", "retryable": True}


@pytest.mark.unit
def test_computation_degraded_lists_failed_sections():
    exc = ComputationDegradedException(["revenue", "customers"])

    assert exc.message == "Sections failed: revenue, customers"
    assert exc.details["failed_sections"] == ["revenue", "customers"]


@pytest.mark.integration
def test_app_exception_handler_in_route():
    """Test custom exception handler in actual route."""
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)

    @app.get("/test-error")
    async def test_error():
        raise NotFoundException("Scheduled report", "123")

    client = TestClient(app)
    response = client.get("/test-error")

    assert response.status_code == 404
    data = response.json()
    assert "Scheduled report with id '123' not found" in data["error"]
    assert "correlation_id" in data


@pytest.mark.integration
def test_validation_error_handler():
    """Test Pydantic validation error handler."""
    app = FastAPI()

    from fastapi.exceptions import RequestValidationError
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    class TestModel(BaseModel):
        limit: int = Field(..., ge=1, le=100)

    @app.post("/test-validation")
    async def test_validation(data: TestModel):
        return {"ok": True}

    client = TestClient(app)
    response = client.post("/test-validation", json={"limit": 200})

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "Validation error"
    assert "errors" in data["details"]


@pytest.mark.integration
def test_http_exception_handler():
    """Test HTTP exception handler."""
    app = FastAPI()

    from starlette.exceptions import HTTPException as StarletteHTTPException
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    @app.get("/test-http-error")
    async def test_http_error():
        raise StarletteHTTPException(status_code=404, detail="Page not found")

    client = TestClient(app)
    response = client.get("/test-http-error")

    assert response.status_code == 404
    assert response.json()["error"] == "Page not found"


@pytest.mark.integration
def test_unhandled_exception_handler():
    """Test handler for unhandled exceptions."""
    app = FastAPI()
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/test-unhandled")
    async def test_unhandled():
        raise ValueError("Unexpected error")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/test-unhandled")

    assert response.status_code == 500
    data = response.json()
    assert data["error"] == "Internal server error"
    assert "correlation_id" in data


@pytest.mark.integration
def test_exception_with_correlation_id_and_details():
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)

    @app.get("/test-correlation")
    async def test_correlation(request: Request):
        request.state.correlation_id = "test-correlation-123"
        raise DataUnavailableException(details={"query": "ratings"})

    client = TestClient(app)
    response = client.get("/test-correlation")

    assert response.status_code == 503
    data = response.json()
    assert data["correlation_id"] == "test-correlation-123"
    assert data["details"]["retryable"] is True
    assert response.headers["Retry-After"] == "30"
