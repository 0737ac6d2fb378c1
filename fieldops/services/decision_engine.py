"""
Caller-facing contract of the decision engine.

Every operation returns an OperationResult instead of raising. Domain errors
keep their error_code and details; anything unexpected is logged with its
stack trace and reported as INTERNAL_ERROR.
"""
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from fieldops.lib.errors import AppException, NotFoundException, ValidationException
from fieldops.lib.logging import get_logger
from fieldops.models.allocation_logs import AllocationAction
from fieldops.models.bookings import BookingStatus
from fieldops.models.engineers import EngineerStatus, TimeSlot
from fieldops.services.allocation_service import AllocationService
from fieldops.services.booking_service import BookingService
from fieldops.services.booking_state import BookingStatusService
from fieldops.services.engineer_service import AvailabilityEntry, EngineerService
from fieldops.services.postcode_service import CoordinateResolver
from fieldops.services.pricing_service import PricingService

logger = get_logger(__name__)


class OperationResult(BaseModel):
    """Uniform outcome of a contract operation."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: AppException) -> "OperationResult":
        return cls(success=False, error=exc.message, error_code=exc.error_code, details=exc.details)


class BookingView(BaseModel):
    id: UUID
    reference: str
    customer_id: UUID
    site_id: UUID
    service_id: UUID
    engineer_id: Optional[UUID] = None
    status: BookingStatus
    scheduled_date: date
    slot: TimeSlot
    estimated_qty: int
    estimated_duration: Optional[int] = None
    original_price: float
    discount_percent: float
    quoted_price: float
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AllocationLogView(BaseModel):
    id: UUID
    booking_id: UUID
    action: AllocationAction
    from_engineer_id: Optional[UUID] = None
    to_engineer_id: Optional[UUID] = None
    reason: Optional[str] = None
    score: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="extra_data")
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class EngineerProfileView(BaseModel):
    id: UUID
    user_id: UUID
    status: EngineerStatus
    years_experience: int
    approved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AvailabilityView(BaseModel):
    date: date
    slot: TimeSlot
    is_available: bool

    model_config = {"from_attributes": True}


def parse_status(value: Any) -> BookingStatus:
    """Accept a BookingStatus, its value ("confirmed") or its name ("CONFIRMED")."""
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(value)
    except ValueError:
        pass
    try:
        return BookingStatus[str(value).upper()]
    except KeyError:
        raise ValidationException("Unknown booking status", errors={"status": str(value)})


class DecisionEngine:
    """
    In-process entry point for pricing, allocation and lifecycle decisions.

    One instance per unit of work; it shares the caller's session.
    """

    def __init__(self, db_session: Session, resolver: Optional[CoordinateResolver] = None):
        self.db = db_session
        resolver = resolver or CoordinateResolver()
        self.pricing = PricingService(db_session, resolver=resolver)
        self.allocation = AllocationService(db_session, resolver=resolver)
        self.bookings = BookingService(db_session, resolver=resolver)
        self.status = BookingStatusService(db_session)
        self.engineers = EngineerService(db_session, resolver=resolver)

    def _run(self, operation: str, func: Callable[[], Any]) -> OperationResult:
        try:
            data = func()
        except AppException as e:
            self.db.rollback()
            logger.warning(
                f"{operation} failed: {e.message}",
                extra={"operation": operation, "error_code": e.error_code},
            )
            return OperationResult.fail(e)
        except Exception:
            self.db.rollback()
            logger.exception(f"{operation} failed unexpectedly", extra={"operation": operation})
            return OperationResult(
                success=False,
                error="Internal server error",
                error_code=AppException.error_code,
            )
        return OperationResult.ok(data)

    # ===== Pricing =====

    def quote_price(self, service_id: UUID, site_id: UUID, target_date: date, quantity: int) -> OperationResult:
        def run():
            quote = self.pricing.get_available_discount(service_id, site_id, target_date, quantity)
            if quote is None:
                raise NotFoundException("Service or site")
            self.db.commit()
            return quote

        return self._run("quote_price", run)

    def quote_price_range(
        self,
        service_id: UUID,
        site_id: UUID,
        start_date: date,
        end_date: date,
        quantity: int,
    ) -> OperationResult:
        def run():
            quotes = self.pricing.get_date_range_discounts(service_id, site_id, start_date, end_date, quantity)
            if quotes is None:
                raise NotFoundException("Service or site")
            self.db.commit()
            return list(quotes.values())

        return self._run("quote_price_range", run)

    # ===== Allocation =====

    def find_best_engineer(self, booking_id: UUID) -> OperationResult:
        def run():
            decision = self.allocation.find_best_engineer(booking_id)
            self.db.commit()
            return decision

        return self._run("find_best_engineer", run)

    def auto_allocate(self, booking_id: UUID) -> OperationResult:
        return self._run("auto_allocate", lambda: self.allocation.auto_allocate(booking_id))

    def reallocate(self, booking_id: UUID, new_engineer_id: UUID, reason: str) -> OperationResult:
        return self._run(
            "reallocate",
            lambda: AllocationLogView.model_validate(
                self.allocation.reallocate_booking(booking_id, new_engineer_id, reason)
            ),
        )

    def admin_override(self, booking_id: UUID, new_engineer_id: UUID, reason: str) -> OperationResult:
        return self._run(
            "admin_override",
            lambda: AllocationLogView.model_validate(
                self.allocation.admin_override(booking_id, new_engineer_id, reason)
            ),
        )

    def claim_job(self, booking_id: UUID, engineer_id: UUID) -> OperationResult:
        return self._run(
            "claim_job",
            lambda: BookingView.model_validate(self.allocation.claim_job(booking_id, engineer_id)),
        )

    def get_route(self, engineer_id: UUID, route_date: date) -> OperationResult:
        return self._run("get_route", lambda: self.allocation.get_optimized_route(engineer_id, route_date))

    def get_allocation_logs(self, booking_id: UUID) -> OperationResult:
        return self._run(
            "get_allocation_logs",
            lambda: [
                AllocationLogView.model_validate(entry)
                for entry in self.allocation.get_allocation_logs(booking_id)
            ],
        )

    # ===== Lifecycle =====

    def transition_status(self, booking_id: UUID, new_status: BookingStatus) -> OperationResult:
        def run():
            target = parse_status(new_status)
            return BookingView.model_validate(self.status.transition(booking_id, target))

        return self._run("transition_status", run)

    def create_booking(
        self,
        customer_id: UUID,
        site_id: UUID,
        service_id: UUID,
        scheduled_date: date,
        estimated_qty: int,
        slot: Optional[TimeSlot] = None,
        notes: Optional[str] = None,
        engineer_id: Optional[UUID] = None,
    ) -> OperationResult:
        return self._run(
            "create_booking",
            lambda: BookingView.model_validate(
                self.bookings.create_booking(
                    customer_id=customer_id,
                    site_id=site_id,
                    service_id=service_id,
                    scheduled_date=scheduled_date,
                    estimated_qty=estimated_qty,
                    slot=slot,
                    notes=notes,
                    engineer_id=engineer_id,
                )
            ),
        )

    def cancel_booking(self, booking_id: UUID) -> OperationResult:
        return self._run(
            "cancel_booking",
            lambda: BookingView.model_validate(self.bookings.cancel_booking(booking_id)),
        )

    # ===== Engineers =====

    def approve_engineer(self, profile_id: UUID) -> OperationResult:
        return self._run(
            "approve_engineer",
            lambda: EngineerProfileView.model_validate(self.engineers.approve(profile_id)),
        )

    def suspend_engineer(self, profile_id: UUID) -> OperationResult:
        return self._run(
            "suspend_engineer",
            lambda: EngineerProfileView.model_validate(self.engineers.suspend(profile_id)),
        )

    def reject_engineer(self, profile_id: UUID) -> OperationResult:
        return self._run(
            "reject_engineer",
            lambda: EngineerProfileView.model_validate(self.engineers.reject(profile_id)),
        )

    def set_availability(self, profile_id: UUID, entries: Iterable[AvailabilityEntry]) -> OperationResult:
        return self._run(
            "set_availability",
            lambda: [
                AvailabilityView.model_validate(record)
                for record in self.engineers.set_availability(profile_id, entries)
            ],
        )

    def block_time_off(self, profile_id: UUID, start: date, end: date) -> OperationResult:
        return self._run(
            "block_time_off",
            lambda: [
                AvailabilityView.model_validate(record)
                for record in self.engineers.block_time_off(profile_id, start, end)
            ],
        )

    def resolve_coverage_centres(self, profile_id: UUID) -> OperationResult:
        return self._run(
            "resolve_coverage_centres",
            lambda: {"resolved": self.engineers.resolve_coverage_centres(profile_id)},
        )

    def backfill_site_coordinates(self, limit: int = 500) -> OperationResult:
        """Bulk-resolve coordinates for sites that have none."""
        return self._run("backfill_site_coordinates", lambda: self.pricing.backfill_site_coordinates(limit))
