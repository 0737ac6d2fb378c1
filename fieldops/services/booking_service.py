"""
Booking creation and cancellation.

Creation validates the request, returns an identical booking made within the
idempotency window instead of duplicating it, prices through the pricing
engine and stamps a human-readable reference.
"""
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops.lib.errors import NotFoundException, ValidationException
from fieldops.lib.logging import get_logger
from fieldops.lib.settings import settings
from fieldops.models.allocation_logs import AllocationAction, AllocationLog
from fieldops.models.bookings import Booking, BookingStatus
from fieldops.models.engineers import EngineerProfile, EngineerStatus, TimeSlot
from fieldops.models.services import Service
from fieldops.models.sites import Site
from fieldops.services.booking_state import BookingStatusService
from fieldops.services.postcode_service import CoordinateResolver
from fieldops.services.pricing_service import PricingService, calculate_duration

logger = get_logger(__name__)

# No 0/O or 1/I so references survive being read over the phone
REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERENCE_PREFIX = "CC-"
REFERENCE_LENGTH = 6

MAX_QUANTITY = 10000
MAX_NOTES_LENGTH = 1000


def generate_reference() -> str:
    return REFERENCE_PREFIX + "".join(
        secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH)
    )


class BookingService:
    """Service for creating and cancelling bookings."""

    def __init__(self, db_session: Session, resolver: Optional[CoordinateResolver] = None):
        self.db = db_session
        self.pricing = PricingService(db_session, resolver=resolver)
        self.status_service = BookingStatusService(db_session)

    def _validate_request(self, estimated_qty: int, notes: Optional[str]) -> None:
        errors = {}
        if estimated_qty is None or not 1 <= estimated_qty <= MAX_QUANTITY:
            errors["estimated_qty"] = f"Must be between 1 and {MAX_QUANTITY}"
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            errors["notes"] = f"Must be at most {MAX_NOTES_LENGTH} characters"
        if errors:
            raise ValidationException("Invalid booking request", errors=errors)

    def _unique_reference(self) -> str:
        while True:
            reference = generate_reference()
            exists = self.db.scalar(select(Booking.id).where(Booking.reference == reference))
            if exists is None:
                return reference

    def _recent_duplicate(
        self,
        customer_id: UUID,
        site_id: UUID,
        service_id: UUID,
        scheduled_date: date,
        slot: TimeSlot,
    ) -> Optional[Booking]:
        window = settings.booking_idempotency_seconds
        if window <= 0:
            return None
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=window)
        return self.db.scalars(
            select(Booking)
            .where(
                Booking.customer_id == customer_id,
                Booking.site_id == site_id,
                Booking.service_id == service_id,
                Booking.scheduled_date == scheduled_date,
                Booking.slot == slot,
                Booking.status != BookingStatus.CANCELLED,
                Booking.created_at >= cutoff,
            )
            .order_by(Booking.created_at.desc())
            .limit(1)
        ).first()

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
    ) -> Booking:
        """
        Create a priced booking.

        slot defaults to the one the estimated duration needs. Binding an
        engineer up front creates the booking CONFIRMED and logs the
        assignment as an admin override.

        Raises:
            ValidationException: Bad quantity/notes, inactive service or unapproved engineer
            NotFoundException: Site (for this customer), service or engineer missing
        """
        self._validate_request(estimated_qty, notes)

        site = self.db.get(Site, site_id)
        if site is None or site.customer_id != customer_id:
            raise NotFoundException("Site", site_id)
        service = self.db.get(Service, service_id)
        if service is None:
            raise NotFoundException("Service", service_id)
        if not service.active:
            raise ValidationException(
                "Service is not available for booking",
                errors={"service_id": str(service_id)},
            )

        duration = calculate_duration(service, estimated_qty)
        try:
            slot = TimeSlot(slot) if slot is not None else duration.slot
        except ValueError:
            raise ValidationException("Invalid booking request", errors={"slot": str(slot)})

        existing = self._recent_duplicate(customer_id, site_id, service_id, scheduled_date, slot)
        if existing is not None:
            logger.info(
                "Duplicate booking request, returning existing booking",
                extra={"booking_id": str(existing.id), "customer_id": str(customer_id)},
            )
            return existing

        if engineer_id is not None:
            profile = self.db.scalar(
                select(EngineerProfile).where(EngineerProfile.user_id == engineer_id)
            )
            if profile is None:
                raise NotFoundException("Engineer", engineer_id)
            if profile.status != EngineerStatus.APPROVED:
                raise ValidationException(
                    "Engineer is not approved",
                    errors={"engineer_id": str(engineer_id)},
                )

        quote = self.pricing.calculate_dynamic_price(service, site, scheduled_date, estimated_qty)

        booking = Booking(
            reference=self._unique_reference(),
            customer_id=customer_id,
            site_id=site_id,
            service_id=service_id,
            engineer_id=engineer_id,
            status=BookingStatus.CONFIRMED if engineer_id else BookingStatus.PENDING,
            scheduled_date=scheduled_date,
            slot=slot,
            estimated_qty=estimated_qty,
            estimated_duration=duration.estimated_minutes,
            original_price=quote.original_price,
            discount_percent=quote.discount_percent,
            quoted_price=quote.discounted_price,
            notes=notes,
        )
        self.db.add(booking)
        self.db.flush()

        if engineer_id is not None:
            self.db.add(AllocationLog(
                booking_id=booking.id,
                action=AllocationAction.ADMIN_OVERRIDE,
                to_engineer_id=engineer_id,
                reason="Assigned at booking creation",
            ))

        self.db.commit()
        self.db.refresh(booking)

        logger.info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "reference": booking.reference,
                "status": booking.status.value,
                "quoted_price": booking.quoted_price,
                "discount_percent": booking.discount_percent,
            },
        )
        return booking

    def cancel_booking(self, booking_id: UUID) -> Booking:
        """Cancel through the state machine; completed or already-cancelled bookings are refused."""
        return self.status_service.transition(booking_id, BookingStatus.CANCELLED)
