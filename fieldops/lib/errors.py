"""
Domain exceptions for the decision engine.

Every failure a public operation can report is one of these classes. Each
carries a stable ``error_code`` (returned in OperationResult) and the HTTP
status the API adapter maps it to.
"""
from typing import Any, Dict, List, Optional

from fastapi import status


class AppException(Exception):
    """Base application exception."""

    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Booking, site, service or engineer absent."""

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Optional[Any] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "resource_id": str(resource_id) if resource_id else None},
        )


class InvalidTransitionException(AppException):
    """The booking state machine rejected a status change."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, from_status: Any, to_status: Any, message: Optional[str] = None):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            message=message or f"Cannot change status from {from_value} to {to_value}",
            status_code=status.HTTP_409_CONFLICT,
            details={"from_status": from_value, "to_status": to_value},
        )


class NoEligibleCandidateException(AppException):
    """Allocation found no engineer with a positive score."""

    error_code = "NO_ELIGIBLE_CANDIDATE"

    def __init__(self, booking_id: Any, candidates: List[Dict[str, Any]]):
        super().__init__(
            message="No suitable engineer found",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"booking_id": str(booking_id), "candidates": candidates},
        )


class ConflictException(AppException):
    """Resource changed underneath the caller."""

    error_code = "CONFLICT"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class ConflictAlreadyAssignedException(ConflictException):
    """An atomic claim lost the race to another engineer."""

    error_code = "ALREADY_ASSIGNED"

    def __init__(self, booking_id: Any):
        super().__init__(
            message="Job already assigned to another engineer",
            details={"booking_id": str(booking_id)},
        )


class UpstreamLookupException(AppException):
    """Postcode lookup service unreachable or returned garbage."""

    error_code = "UPSTREAM_LOOKUP_FAILED"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details or {},
        )


class ValidationException(AppException):
    """Malformed input, e.g. a non-positive quantity."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": errors or {}},
        )


HTTP_STATUS_BY_CODE: Dict[str, int] = {
    AppException.error_code: status.HTTP_500_INTERNAL_SERVER_ERROR,
    NotFoundException.error_code: status.HTTP_404_NOT_FOUND,
    InvalidTransitionException.error_code: status.HTTP_409_CONFLICT,
    NoEligibleCandidateException.error_code: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictException.error_code: status.HTTP_409_CONFLICT,
    ConflictAlreadyAssignedException.error_code: status.HTTP_409_CONFLICT,
    UpstreamLookupException.error_code: status.HTTP_502_BAD_GATEWAY,
    ValidationException.error_code: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def http_status_for(error_code: Optional[str]) -> int:
    """HTTP status the API returns for an error code."""
    return HTTP_STATUS_BY_CODE.get(error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
