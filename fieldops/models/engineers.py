"""
Engineer models - profile plus competencies, coverage, qualifications and availability.
"""
from datetime import date as date_type, datetime
from typing import List, Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    String,
    Integer,
    Float,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Uuid,
    Enum as SQLEnum,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops.lib.db import Base


class EngineerStatus(str, enum.Enum):
    """Engineer approval status. Only APPROVED engineers are allocated work."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class TimeSlot(str, enum.Enum):
    """Coarse booking windows."""
    AM = "am"
    PM = "pm"
    FULL_DAY = "full_day"


class EngineerProfile(Base):
    """
    Engineer profile (1:1 with an engineer User).
    """
    __tablename__ = "engineer_profiles"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    status: Mapped[EngineerStatus] = mapped_column(
        SQLEnum(EngineerStatus, name="engineer_status"),
        nullable=False,
        default=EngineerStatus.PENDING_APPROVAL,
        index=True,
    )
    years_experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bio: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    competencies: Mapped[List["EngineerCompetency"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
    )
    coverage_areas: Mapped[List["CoverageArea"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
    )
    qualifications: Mapped[List["Qualification"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
    )
    availability: Mapped[List["EngineerAvailability"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<EngineerProfile(id={self.id}, user_id={self.user_id}, status={self.status})>"


class EngineerCompetency(Base):
    """Service an engineer can perform, with experience."""
    __tablename__ = "engineer_competencies"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("engineer_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    experience_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    certified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    profile: Mapped[EngineerProfile] = relationship(back_populates="competencies")

    __table_args__ = (
        UniqueConstraint("profile_id", "service_id", name="competency_profile_service"),
    )


class CoverageArea(Base):
    """Postcode prefix an engineer travels to, with a radius."""
    __tablename__ = "coverage_areas"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("engineer_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    postcode_prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    radius_km: Mapped[float] = mapped_column(Float, nullable=False, default=20.0)
    center_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    center_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    profile: Mapped[EngineerProfile] = relationship(back_populates="coverage_areas")

    @property
    def has_center(self) -> bool:
        return self.center_latitude is not None and self.center_longitude is not None


class Qualification(Base):
    """Certificate held by an engineer; expiry is optional."""
    __tablename__ = "qualifications"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("engineer_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    issuing_body: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    certificate_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[Optional[date_type]] = mapped_column(Date, nullable=True)

    profile: Mapped[EngineerProfile] = relationship(back_populates="qualifications")

    def is_valid_on(self, on_date: date_type) -> bool:
        return self.expiry_date is None or self.expiry_date >= on_date


class EngineerAvailability(Base):
    """
    Explicit availability for one date and slot.
    No record for a date/slot means the engineer is available.
    """
    __tablename__ = "engineer_availability"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("engineer_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    slot: Mapped[TimeSlot] = mapped_column(
        SQLEnum(TimeSlot, name="time_slot"),
        nullable=False,
    )
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    profile: Mapped[EngineerProfile] = relationship(back_populates="availability")

    __table_args__ = (
        UniqueConstraint("profile_id", "date", "slot", name="availability_profile_date_slot"),
    )
