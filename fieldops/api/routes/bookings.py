"""
Booking API routes: creation, lifecycle, reassignment and claims.
"""
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from fieldops.api.dependencies import get_engine, unwrap
from fieldops.models.bookings import BookingStatus
from fieldops.models.engineers import TimeSlot
from fieldops.services.booking_service import MAX_NOTES_LENGTH, MAX_QUANTITY
from fieldops.services.decision_engine import AllocationLogView, BookingView, DecisionEngine


# Pydantic schemas
class CreateBookingRequest(BaseModel):
    customer_id: UUID
    site_id: UUID
    service_id: UUID
    scheduled_date: date
    estimated_qty: int = Field(..., ge=1, le=MAX_QUANTITY)
    slot: Optional[TimeSlot] = None
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)
    engineer_id: Optional[UUID] = None


class ReassignRequest(BaseModel):
    engineer_id: UUID
    reason: str = Field(..., min_length=1, max_length=2000)


class StatusRequest(BaseModel):
    status: BookingStatus


class ClaimRequest(BaseModel):
    engineer_id: UUID


# Router
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingView, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: CreateBookingRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> BookingView:
    """Create a priced booking. Repeating the same request within a minute returns the first booking."""
    return unwrap(engine.create_booking(**request.model_dump()))


@router.post("/{booking_id}/reallocate", response_model=AllocationLogView)
def reallocate(
    booking_id: UUID,
    request: ReassignRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> AllocationLogView:
    """Move the booking to another approved engineer."""
    return unwrap(engine.reallocate(booking_id, request.engineer_id, request.reason))


@router.post("/{booking_id}/override", response_model=AllocationLogView)
def admin_override(
    booking_id: UUID,
    request: ReassignRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> AllocationLogView:
    """Admin assignment to any engineer, recorded as an override."""
    return unwrap(engine.admin_override(booking_id, request.engineer_id, request.reason))


@router.post("/{booking_id}/status", response_model=BookingView)
def transition_status(
    booking_id: UUID,
    request: StatusRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> BookingView:
    """Apply a status transition; 409 when the state machine refuses it."""
    return unwrap(engine.transition_status(booking_id, request.status))


@router.post("/{booking_id}/claim", response_model=BookingView)
def claim_job(
    booking_id: UUID,
    request: ClaimRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> BookingView:
    """Self-assign an unassigned job; 409 ALREADY_ASSIGNED if someone got there first."""
    return unwrap(engine.claim_job(booking_id, request.engineer_id))


@router.get("/{booking_id}/allocation-logs", response_model=List[AllocationLogView])
def allocation_logs(
    booking_id: UUID,
    engine: DecisionEngine = Depends(get_engine),
) -> List[AllocationLogView]:
    """Allocation history, newest first."""
    return unwrap(engine.get_allocation_logs(booking_id))
