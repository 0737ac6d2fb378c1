"""
Tests for the exception taxonomy and the API error handlers.
"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from fieldops.api.middleware import OperationFailedException, register_exception_handlers
from fieldops.lib.errors import (
    AppException,
    ConflictAlreadyAssignedException,
    ConflictException,
    InvalidTransitionException,
    NoEligibleCandidateException,
    NotFoundException,
    UpstreamLookupException,
    ValidationException,
    http_status_for,
)
from fieldops.models.bookings import BookingStatus


@pytest.mark.unit
def test_not_found_exception():
    exc = NotFoundException("Booking", "123")

    assert exc.message == "Booking with id '123' not found"
    assert exc.status_code == 404
    assert exc.error_code == "NOT_FOUND"
    assert exc.details == {"resource": "Booking", "resource_id": "123"}


@pytest.mark.unit
def test_not_found_exception_without_id():
    exc = NotFoundException("Service or site")
    assert exc.message == "Service or site not found"


@pytest.mark.unit
def test_invalid_transition_accepts_enums():
    exc = InvalidTransitionException(BookingStatus.PENDING, BookingStatus.COMPLETED)

    assert exc.message == "Cannot change status from pending to completed"
    assert exc.status_code == 409
    assert exc.details == {"from_status": "pending", "to_status": "completed"}


@pytest.mark.unit
def test_no_eligible_candidate_carries_candidates():
    candidates = [{"engineer_id": "e1", "score": 0, "reasons": ["No competency for this service"]}]
    exc = NoEligibleCandidateException("b1", candidates)

    assert exc.message == "No suitable engineer found"
    assert exc.status_code == 422
    assert exc.details["candidates"] == candidates


@pytest.mark.unit
def test_already_assigned_is_a_conflict():
    exc = ConflictAlreadyAssignedException("b1")

    assert isinstance(exc, ConflictException)
    assert exc.error_code == "ALREADY_ASSIGNED"
    assert exc.message == "Job already assigned to another engineer"
    assert exc.status_code == 409


@pytest.mark.unit
def test_upstream_and_validation_codes():
    assert UpstreamLookupException("down").status_code == 502
    exc = ValidationException("bad", errors={"qty": 0})
    assert exc.status_code == 422
    assert exc.details == {"errors": {"qty": 0}}


@pytest.mark.unit
@pytest.mark.parametrize("code,status_code", [
    ("NOT_FOUND", 404),
    ("INVALID_TRANSITION", 409),
    ("NO_ELIGIBLE_CANDIDATE", 422),
    ("ALREADY_ASSIGNED", 409),
    ("CONFLICT", 409),
    ("UPSTREAM_LOOKUP_FAILED", 502),
    ("VALIDATION_ERROR", 422),
    ("INTERNAL_ERROR", 500),
    ("SOMETHING_NEW", 500),
    (None, 500),
])
def test_http_status_for_error_code(code, status_code):
    assert http_status_for(code) == status_code


@pytest.mark.unit
def test_operation_failed_takes_status_from_code():
    exc = OperationFailedException("Job already assigned to another engineer", "ALREADY_ASSIGNED", {"booking_id": "b1"})

    assert exc.status_code == 409
    assert exc.error_code == "ALREADY_ASSIGNED"
    assert AppException.error_code == "INTERNAL_ERROR"


class QuantityModel(BaseModel):
    qty: int = Field(..., gt=0)


def build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing")
    def missing():
        raise NotFoundException("Booking", "abc")

    @app.get("/claimed")
    def claimed():
        raise OperationFailedException("Job already assigned to another engineer", "ALREADY_ASSIGNED")

    @app.post("/quantity")
    def quantity(body: QuantityModel):
        return body

    @app.get("/boom")
    def boom():
        raise RuntimeError("unexpected")

    return app


@pytest.mark.unit
def test_app_exception_handler_response():
    client = TestClient(build_app())

    response = client.get("/missing")

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Booking with id 'abc' not found"
    assert body["error_code"] == "NOT_FOUND"
    assert body["details"]["resource"] == "Booking"


@pytest.mark.unit
def test_operation_failure_response():
    client = TestClient(build_app())

    response = client.get("/claimed")

    assert response.status_code == 409
    assert response.json()["error_code"] == "ALREADY_ASSIGNED"


@pytest.mark.unit
def test_request_validation_response():
    client = TestClient(build_app())

    response = client.post("/quantity", json={"qty": 0})

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"][0]["loc"] == ["body", "qty"]


@pytest.mark.unit
def test_unknown_route_response():
    client = TestClient(build_app())

    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"


@pytest.mark.unit
def test_unhandled_exception_response():
    client = TestClient(build_app(), raise_server_exceptions=False)

    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


@pytest.mark.unit
def test_correlation_id_defaults_without_middleware():
    client = TestClient(build_app())

    response = client.get("/missing")

    assert response.json()["correlation_id"] == "unknown"
