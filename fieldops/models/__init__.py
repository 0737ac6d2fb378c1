"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from fieldops.models.users import User, UserRole
from fieldops.models.sites import Site
from fieldops.models.services import Service
from fieldops.models.engineers import (
    EngineerProfile,
    EngineerStatus,
    EngineerCompetency,
    CoverageArea,
    Qualification,
    EngineerAvailability,
    TimeSlot,
)
from fieldops.models.bookings import Booking, BookingStatus, ACTIVE_STATUSES
from fieldops.models.allocation_logs import AllocationLog, AllocationAction, AllocationLogImmutableError

__all__ = [
    "User",
    "UserRole",
    "Site",
    "Service",
    "EngineerProfile",
    "EngineerStatus",
    "EngineerCompetency",
    "CoverageArea",
    "Qualification",
    "EngineerAvailability",
    "TimeSlot",
    "Booking",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "AllocationLog",
    "AllocationAction",
    "AllocationLogImmutableError",
]
