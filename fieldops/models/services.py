"""
Service model - catalog of bookable compliance tests.
"""
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Numeric, Integer, Boolean, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.lib.db import Base


class Service(Base):
    """
    Service entity - priced per unit with a minimum charge.
    Read-only to the decision engine.
    """
    __tablename__ = "services"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Service details
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Pricing
    base_price: Mapped[float] = mapped_column(
        Numeric(10, 2, asdecimal=False),
        nullable=False,
    )
    min_charge: Mapped[float] = mapped_column(
        Numeric(10, 2, asdecimal=False),
        nullable=False,
        default=0,
    )
    unit_name: Mapped[str] = mapped_column(String(50), nullable=False, default="item")

    # Duration model: base_minutes + minutes_per_unit * quantity
    base_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minutes_per_unit: Mapped[float] = mapped_column(
        Numeric(8, 2, asdecimal=False),
        nullable=False,
        default=0,
    )

    # Status
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name={self.name})>"
