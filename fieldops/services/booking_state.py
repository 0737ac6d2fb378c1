"""
Booking lifecycle state machine.

    PENDING     -> CONFIRMED, CANCELLED
    CONFIRMED   -> IN_PROGRESS, CANCELLED, PENDING
    IN_PROGRESS -> COMPLETED, CANCELLED
    COMPLETED   -> (terminal)
    CANCELLED   -> PENDING (reopen)

Every status write is a conditional UPDATE on the status the caller observed,
so two racing transitions cannot both apply.
CONFIRMED and IN_PROGRESS are only entered with an engineer bound.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from fieldops.lib.errors import ConflictException, InvalidTransitionException, NotFoundException
from fieldops.lib.logging import get_logger, log_decision
from fieldops.lib.metrics import get_metrics_collector
from fieldops.models.bookings import Booking, BookingStatus

logger = get_logger(__name__)


VALID_TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
        BookingStatus.PENDING,
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset({BookingStatus.PENDING}),
}

# Statuses that only make sense with an engineer bound to the booking
REQUIRES_ENGINEER = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: BookingStatus, to_status: BookingStatus) -> None:
    """
    Raises:
        InvalidTransitionException: to_status is not reachable from from_status
    """
    if not can_transition(from_status, to_status):
        allowed = sorted(status.value for status in VALID_TRANSITIONS.get(from_status, ()))
        message = f"Cannot change status from {from_status.value} to {to_status.value}"
        if not allowed:
            message += f" ({from_status.value} is terminal)"
        raise InvalidTransitionException(from_status, to_status, message=message)


def transition_values(
    booking: Booking,
    to_status: BookingStatus,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Column values to write when entering to_status. Lifecycle timestamps are write-once."""
    now = now or datetime.now(timezone.utc)
    values: Dict[str, Any] = {"status": to_status}
    if to_status == BookingStatus.IN_PROGRESS and booking.started_at is None:
        values["started_at"] = now
    if to_status == BookingStatus.COMPLETED and booking.completed_at is None:
        values["completed_at"] = now
    return values


class BookingStatusService:
    """Applies validated status transitions to stored bookings."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.metrics = get_metrics_collector()

    def apply(
        self,
        booking: Booking,
        to_status: BookingStatus,
        values: Optional[Dict[str, Any]] = None,
        conditions: Iterable[Any] = (),
    ) -> bool:
        """
        Validate and write a transition without committing.

        Extra column values and WHERE conditions are folded into the same
        UPDATE, so engine binding and status change land together.

        Returns:
            False if the row no longer matched (status changed or a condition failed)

        Raises:
            InvalidTransitionException: Transition not in the table, or it
                needs an engineer and none is bound
        """
        from_status = booking.status
        validate_transition(from_status, to_status)

        row_values = transition_values(booking, to_status)
        row_values.update(values or {})
        conditions = list(conditions)
        if to_status in REQUIRES_ENGINEER and row_values.get("engineer_id") is None:
            if booking.engineer_id is None:
                raise InvalidTransitionException(
                    from_status,
                    to_status,
                    message=f"Cannot change status to {to_status.value} without an engineer, assign an engineer first",
                )
            conditions.append(Booking.engineer_id.isnot(None))

        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == from_status, *conditions)
            .values(**row_values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self.metrics.increment_transitions(from_status=from_status.value, to_status=to_status.value)
        return True

    def transition(self, booking_id: UUID, to_status: BookingStatus) -> Booking:
        """
        Move a booking to a new status and commit.

        Raises:
            NotFoundException: Booking does not exist
            InvalidTransitionException: Transition not in the table
            ConflictException: Status changed between read and write
        """
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundException("Booking", booking_id)

        from_status = booking.status
        if not self.apply(booking, to_status):
            self.db.rollback()
            raise ConflictException(
                "Booking status changed concurrently, reload and retry",
                details={"booking_id": str(booking_id), "observed_status": from_status.value},
            )
        self.db.commit()
        self.db.refresh(booking)

        log_decision(
            logger, "transition", "Booking status changed",
            booking_id=str(booking_id),
            from_status=from_status.value,
            to_status=to_status.value,
        )
        return booking
