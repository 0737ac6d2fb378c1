"""
Engineer approval lifecycle and availability management.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fieldops.lib.errors import InvalidTransitionException, NotFoundException, ValidationException
from fieldops.lib.logging import get_logger
from fieldops.models.engineers import (
    EngineerAvailability,
    EngineerProfile,
    EngineerStatus,
    TimeSlot,
)
from fieldops.services.postcode_service import CoordinateResolver

logger = get_logger(__name__)


PROFILE_TRANSITIONS: Dict[EngineerStatus, frozenset] = {
    EngineerStatus.PENDING_APPROVAL: frozenset({EngineerStatus.APPROVED, EngineerStatus.REJECTED}),
    EngineerStatus.APPROVED: frozenset({EngineerStatus.SUSPENDED}),
    EngineerStatus.SUSPENDED: frozenset({EngineerStatus.APPROVED}),
    EngineerStatus.REJECTED: frozenset(),
}

# Longest time-off block accepted in one request
MAX_TIME_OFF_DAYS = 366


class AvailabilityEntry(BaseModel):
    date: date
    slot: TimeSlot
    is_available: bool


class EngineerService:
    """Service for engineer profile status and availability."""

    def __init__(self, db_session: Session, resolver: CoordinateResolver = None):
        self.db = db_session
        self.resolver = resolver or CoordinateResolver()

    def _get_profile(self, profile_id: UUID) -> EngineerProfile:
        profile = self.db.get(EngineerProfile, profile_id)
        if profile is None:
            raise NotFoundException("Engineer profile", profile_id)
        return profile

    def _change_status(self, profile_id: UUID, to_status: EngineerStatus) -> EngineerProfile:
        profile = self._get_profile(profile_id)
        from_status = profile.status
        if to_status not in PROFILE_TRANSITIONS[from_status]:
            raise InvalidTransitionException(
                from_status,
                to_status,
                message=f"Cannot change engineer status from {from_status.value} to {to_status.value}",
            )
        profile.status = to_status
        if to_status == EngineerStatus.APPROVED and profile.approved_at is None:
            profile.approved_at = datetime.now(timezone.utc)
        self.db.commit()

        logger.info(
            "Engineer status changed",
            extra={
                "profile_id": str(profile_id),
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return profile

    def approve(self, profile_id: UUID) -> EngineerProfile:
        return self._change_status(profile_id, EngineerStatus.APPROVED)

    def suspend(self, profile_id: UUID) -> EngineerProfile:
        return self._change_status(profile_id, EngineerStatus.SUSPENDED)

    def reject(self, profile_id: UUID) -> EngineerProfile:
        return self._change_status(profile_id, EngineerStatus.REJECTED)

    def set_availability(
        self,
        profile_id: UUID,
        entries: Iterable[AvailabilityEntry],
    ) -> List[EngineerAvailability]:
        """Upsert availability records, one per date and slot."""
        self._get_profile(profile_id)
        entries = list(entries)
        if not entries:
            return []

        dates = {entry.date for entry in entries}
        existing = {
            (record.date, record.slot): record
            for record in self.db.scalars(
                select(EngineerAvailability).where(
                    EngineerAvailability.profile_id == profile_id,
                    EngineerAvailability.date.in_(dates),
                )
            )
        }

        records = []
        for entry in entries:
            record = existing.get((entry.date, entry.slot))
            if record is None:
                record = EngineerAvailability(
                    profile_id=profile_id,
                    date=entry.date,
                    slot=entry.slot,
                )
                self.db.add(record)
                existing[(entry.date, entry.slot)] = record
            record.is_available = entry.is_available
            records.append(record)
        self.db.commit()

        logger.info(
            "Availability updated",
            extra={"profile_id": str(profile_id), "records": len(records)},
        )
        return records

    def block_time_off(self, profile_id: UUID, start: date, end: date) -> List[EngineerAvailability]:
        """Mark every day in [start, end] unavailable for the full day."""
        if end < start:
            raise ValidationException(
                "End date must not be before start date",
                errors={"start": start.isoformat(), "end": end.isoformat()},
            )
        days = (end - start).days + 1
        if days > MAX_TIME_OFF_DAYS:
            raise ValidationException(
                f"Time off is limited to {MAX_TIME_OFF_DAYS} days per request",
                errors={"days": days},
            )
        return self.set_availability(
            profile_id,
            [
                AvailabilityEntry(date=start + timedelta(days=offset), slot=TimeSlot.FULL_DAY, is_available=False)
                for offset in range(days)
            ],
        )

    def resolve_coverage_centres(self, profile_id: UUID) -> int:
        """
        Fill in missing coverage-area centres from their outward codes.

        Returns the number of areas that now have a centre.
        """
        profile = self.db.scalar(
            select(EngineerProfile)
            .where(EngineerProfile.id == profile_id)
            .options(selectinload(EngineerProfile.coverage_areas))
        )
        if profile is None:
            raise NotFoundException("Engineer profile", profile_id)

        resolved = sum(
            1 for area in profile.coverage_areas
            if self.resolver.coverage_centre(self.db, area) is not None
        )
        self.db.commit()
        return resolved
