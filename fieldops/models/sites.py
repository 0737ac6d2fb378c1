"""
Site model - physical locations where compliance tests take place.
"""
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Float, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.lib.db import Base


class Site(Base):
    """
    Site entity - owned by exactly one customer.
    Coordinates are resolved lazily from the postcode and then persisted.
    """
    __tablename__ = "sites"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Owner
    customer_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Location
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    postcode: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self) -> str:
        return f"<Site(id={self.id}, postcode={self.postcode})>"
