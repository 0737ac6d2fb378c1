"""
Booking model - compliance testing appointments.
"""
from datetime import date as date_type, datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    Uuid,
    Enum as SQLEnum,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops.lib.db import Base
from fieldops.models.engineers import TimeSlot
from fieldops.models.services import Service
from fieldops.models.sites import Site


class BookingStatus(str, enum.Enum):
    """Booking status state machine (see services.booking_state)."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that compete for engineers and attract proximity discounts
ACTIVE_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
)


class Booking(Base):
    """
    Booking entity - one service at one site on one date and slot.
    quoted_price = original_price * (1 - discount_percent / 100).
    """
    __tablename__ = "bookings"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    reference: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    # Relationships
    customer_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    site_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    engineer_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # Scheduling
    scheduled_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    slot: Mapped[TimeSlot] = mapped_column(
        SQLEnum(TimeSlot, name="time_slot"),
        nullable=False,
        default=TimeSlot.AM,
    )
    estimated_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_duration: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Estimated on-site minutes",
    )

    # Pricing
    original_price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    discount_percent: Mapped[float] = mapped_column(
        Numeric(5, 2, asdecimal=False),
        nullable=False,
        default=0,
    )
    quoted_price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Lifecycle timestamps (write-once)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    site: Mapped[Site] = relationship(lazy="joined")
    service: Mapped[Service] = relationship(lazy="joined")

    __table_args__ = (
        CheckConstraint("estimated_qty > 0", name="booking_qty_positive"),
        CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="booking_discount_range",
        ),
        CheckConstraint(
            "completed_at IS NULL OR started_at IS NULL OR completed_at >= started_at",
            name="booking_complete_after_start",
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, engineer_id={self.engineer_id})>"
