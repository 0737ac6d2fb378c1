"""
Unit tests for the booking status transition table.
"""
from datetime import datetime, timezone
from itertools import product

import pytest

from fieldops.lib.errors import InvalidTransitionException
from fieldops.models.bookings import Booking, BookingStatus
from fieldops.services.booking_state import (
    VALID_TRANSITIONS,
    can_transition,
    transition_values,
    validate_transition,
)


ALLOWED = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.PENDING),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
    (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
    (BookingStatus.CANCELLED, BookingStatus.PENDING),
}


@pytest.mark.unit
@pytest.mark.parametrize("from_status,to_status", list(product(BookingStatus, BookingStatus)))
def test_transition_table_is_closed(from_status, to_status):
    expected = (from_status, to_status) in ALLOWED
    assert can_transition(from_status, to_status) is expected
    if expected:
        validate_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransitionException):
            validate_transition(from_status, to_status)


@pytest.mark.unit
def test_every_status_has_an_entry():
    assert set(VALID_TRANSITIONS) == set(BookingStatus)


@pytest.mark.unit
def test_completed_is_terminal():
    with pytest.raises(InvalidTransitionException) as exc_info:
        validate_transition(BookingStatus.COMPLETED, BookingStatus.PENDING)

    assert "terminal" in exc_info.value.message
    assert exc_info.value.details == {"from_status": "completed", "to_status": "pending"}
    assert exc_info.value.error_code == "INVALID_TRANSITION"


@pytest.mark.unit
def test_entering_in_progress_stamps_started_at():
    now = datetime(2030, 3, 12, 9, 0, tzinfo=timezone.utc)
    values = transition_values(Booking(), BookingStatus.IN_PROGRESS, now=now)
    assert values == {"status": BookingStatus.IN_PROGRESS, "started_at": now}


@pytest.mark.unit
def test_timestamps_are_write_once():
    earlier = datetime(2030, 3, 12, 9, 0, tzinfo=timezone.utc)
    booking = Booking(started_at=earlier, completed_at=earlier)

    assert transition_values(booking, BookingStatus.IN_PROGRESS) == {"status": BookingStatus.IN_PROGRESS}
    assert transition_values(booking, BookingStatus.COMPLETED) == {"status": BookingStatus.COMPLETED}


@pytest.mark.unit
def test_entering_completed_stamps_completed_at():
    now = datetime(2030, 3, 12, 15, 0, tzinfo=timezone.utc)
    values = transition_values(Booking(), BookingStatus.COMPLETED, now=now)
    assert values["completed_at"] == now
    assert "started_at" not in values
