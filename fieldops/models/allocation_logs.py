"""
Allocation log model - append-only audit trail of engineer assignments.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON, Uuid, Enum as SQLEnum, event
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.lib.db import Base


class AllocationAction(str, enum.Enum):
    """Kind of allocation decision recorded."""
    AUTO_ASSIGNED = "auto_assigned"
    REALLOCATED = "reallocated"
    ADMIN_OVERRIDE = "admin_override"


class AllocationLog(Base):
    """
    One allocation decision. Rows are inserted once and never modified.
    """
    __tablename__ = "allocation_logs"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    booking_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[AllocationAction] = mapped_column(
        SQLEnum(AllocationAction, name="allocation_action"),
        nullable=False,
    )
    from_engineer_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    to_engineer_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Additional metadata (using extra_data to avoid SQLAlchemy reserved name)
    extra_data: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        name="metadata",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AllocationLog(booking_id={self.booking_id}, action={self.action}, to={self.to_engineer_id})>"


class AllocationLogImmutableError(RuntimeError):
    """Raised when code tries to modify or delete a persisted log entry."""


@event.listens_for(AllocationLog, "before_update")
def _refuse_update(mapper, connection, target):
    raise AllocationLogImmutableError(f"Allocation log {target.id} is append-only")


@event.listens_for(AllocationLog, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AllocationLogImmutableError(f"Allocation log {target.id} is append-only")
