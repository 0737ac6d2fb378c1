"""
Dynamic pricing engine.

Quotes a price for a service at a site on a date, discounted by how much
existing work is already nearby:

1. Same site, same day -> same_site_discount_percent (50%)
2. Same postcode area or within drive time, same day -> same_area_discount_percent (25%)
3. Tier 2 condition against the day before or after -> adjacent_day_discount_percent (10%)
4. Otherwise no discount

The single-date and date-range queries both feed pre-fetched bookings into
resolve_discount, so a range quote always equals the per-day quotes.
"""
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops.lib.config_flags import PricingPolicy, get_pricing_policy
from fieldops.lib.errors import ValidationException
from fieldops.lib.geo import distance_km, postcode_area
from fieldops.lib.logging import get_logger, log_decision
from fieldops.lib.metrics import get_metrics_collector
from fieldops.models.bookings import Booking, ACTIVE_STATUSES
from fieldops.models.engineers import TimeSlot
from fieldops.models.services import Service
from fieldops.models.sites import Site
from fieldops.services.postcode_service import CoordinateResolver

logger = get_logger(__name__)

TIER_SAME_SITE = "same_site"
TIER_SAME_AREA = "same_area"
TIER_ADJACENT_DAY = "adjacent_day"
TIER_NONE = "none"

# Jobs longer than this take the whole day
FULL_DAY_THRESHOLD_MINUTES = 180


@dataclass(frozen=True)
class SitePoint:
    """Location snapshot of a site, as used by discount resolution."""
    site_id: UUID
    postcode: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Discount:
    percent: float
    tier: str
    reason: Optional[str] = None


class PriceQuote(BaseModel):
    """Quoted price for one date."""
    date: date
    original_price: float
    discount_percent: float
    discounted_price: float
    tier: str = TIER_NONE
    reason: Optional[str] = None


class DurationEstimate(BaseModel):
    estimated_minutes: int
    slot: TimeSlot


def base_price(service: Service, quantity: int) -> float:
    """max(base_price * quantity, min_charge), rounded to pence."""
    return round(max(service.base_price * quantity, service.min_charge), 2)


def apply_discount(original_price: float, discount_percent: float) -> float:
    return round(original_price * (1 - discount_percent / 100), 2)


def calculate_duration(service: Service, quantity: int) -> DurationEstimate:
    """
    Estimate on-site minutes and the slot they need.

    Jobs over three hours need a full day; everything else defaults to AM.
    """
    minutes = math.ceil(service.base_minutes + service.minutes_per_unit * quantity)
    slot = TimeSlot.FULL_DAY if minutes > FULL_DAY_THRESHOLD_MINUTES else TimeSlot.AM
    return DurationEstimate(estimated_minutes=minutes, slot=slot)


def _is_nearby(site: SitePoint, other: SitePoint, policy: PricingPolicy) -> bool:
    if other.site_id == site.site_id:
        return True
    area = postcode_area(site.postcode)
    if area and area == postcode_area(other.postcode):
        return True
    if site.has_coordinates and other.has_coordinates:
        distance = distance_km(site.latitude, site.longitude, other.latitude, other.longitude)
        return distance <= policy.proximity_km
    return False


def resolve_discount(
    site: SitePoint,
    target_date: date,
    bookings_by_date: Mapping[date, Sequence[SitePoint]],
    policy: PricingPolicy,
) -> Discount:
    """
    Pick the most generous discount tier that applies.

    Args:
        site: Site being quoted
        target_date: Date being quoted
        bookings_by_date: Sites of active bookings, keyed by scheduled date.
            Must cover target_date and the days either side.
        policy: Discount percentages and proximity threshold
    """
    same_day = bookings_by_date.get(target_date, ())

    if any(other.site_id == site.site_id for other in same_day):
        return Discount(
            percent=policy.same_site_discount_percent,
            tier=TIER_SAME_SITE,
            reason="Same location discount - another service booked here today",
        )

    area = postcode_area(site.postcode)
    if any(_is_nearby(site, other, policy) for other in same_day):
        return Discount(
            percent=policy.same_area_discount_percent,
            tier=TIER_SAME_AREA,
            reason=f"Area discount - booking in or near {area or site.postcode} today",
        )

    for neighbour in (target_date - timedelta(days=1), target_date + timedelta(days=1)):
        if any(_is_nearby(site, other, policy) for other in bookings_by_date.get(neighbour, ())):
            return Discount(
                percent=policy.adjacent_day_discount_percent,
                tier=TIER_ADJACENT_DAY,
                reason="Adjacent day discount - nearby booking the day before/after",
            )

    return Discount(percent=0.0, tier=TIER_NONE)


class PricingService:
    """Service quoting dynamic prices against the booking store."""

    def __init__(
        self,
        db_session: Session,
        resolver: Optional[CoordinateResolver] = None,
        policy: Optional[PricingPolicy] = None,
    ):
        self.db = db_session
        self.resolver = resolver or CoordinateResolver()
        self.policy = policy or get_pricing_policy()
        self.metrics = get_metrics_collector()

    def _active_bookings_between(
        self,
        start: date,
        end: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Dict[date, List[SitePoint]]:
        """One query for active bookings in [start, end], grouped by date."""
        query = (
            select(
                Booking.scheduled_date,
                Site.id,
                Site.postcode,
                Site.latitude,
                Site.longitude,
            )
            .join(Site, Site.id == Booking.site_id)
            .where(
                Booking.scheduled_date >= start,
                Booking.scheduled_date <= end,
                Booking.status.in_(ACTIVE_STATUSES),
            )
        )
        if exclude_booking_id is not None:
            query = query.where(Booking.id != exclude_booking_id)

        grouped: Dict[date, List[SitePoint]] = defaultdict(list)
        for scheduled_date, site_id, postcode, latitude, longitude in self.db.execute(query):
            grouped[scheduled_date].append(
                SitePoint(site_id=site_id, postcode=postcode, latitude=latitude, longitude=longitude)
            )
        return grouped

    def _site_point(self, site: Site) -> SitePoint:
        coordinates = self.resolver.site_coordinates(self.db, site)
        latitude, longitude = coordinates if coordinates else (None, None)
        return SitePoint(site_id=site.id, postcode=site.postcode, latitude=latitude, longitude=longitude)

    def _quote(self, site_point: SitePoint, target_date: date, original_price: float, grouped) -> PriceQuote:
        discount = resolve_discount(site_point, target_date, grouped, self.policy)
        return PriceQuote(
            date=target_date,
            original_price=original_price,
            discount_percent=discount.percent,
            discounted_price=apply_discount(original_price, discount.percent),
            tier=discount.tier,
            reason=discount.reason,
        )

    @staticmethod
    def _validate_quantity(quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationException(
                "Quantity must be positive",
                errors={"quantity": quantity},
            )

    def calculate_dynamic_price(
        self,
        service: Service,
        site: Site,
        target_date: date,
        quantity: int,
        exclude_booking_id: Optional[UUID] = None,
    ) -> PriceQuote:
        """
        Quote one date.

        Raises:
            ValidationException: quantity is not positive
        """
        self._validate_quantity(quantity)
        original_price = base_price(service, quantity)
        site_point = self._site_point(site)
        grouped = self._active_bookings_between(
            target_date - timedelta(days=1),
            target_date + timedelta(days=1),
            exclude_booking_id=exclude_booking_id,
        )
        quote = self._quote(site_point, target_date, original_price, grouped)

        self.metrics.increment_quotes(tier=quote.tier)
        log_decision(
            logger, "quote", "Price quoted",
            site_id=str(site.id),
            service_id=str(service.id),
            date=target_date.isoformat(),
            tier=quote.tier,
            discount_percent=quote.discount_percent,
        )
        return quote

    def get_available_discount(
        self,
        service_id: UUID,
        site_id: UUID,
        target_date: date,
        quantity: int,
    ) -> Optional[PriceQuote]:
        """Quote by id. Returns None when the service or site does not exist."""
        service = self.db.get(Service, service_id)
        site = self.db.get(Site, site_id)
        if service is None or site is None:
            return None
        return self.calculate_dynamic_price(service, site, target_date, quantity)

    def get_date_range_discounts(
        self,
        service_id: UUID,
        site_id: UUID,
        start_date: date,
        end_date: date,
        quantity: int,
    ) -> Optional[Dict[date, PriceQuote]]:
        """
        Quote every day in [start_date, end_date] from a single bookings query.

        Returns None when the service or site does not exist.

        Raises:
            ValidationException: quantity not positive or end before start
        """
        self._validate_quantity(quantity)
        if end_date < start_date:
            raise ValidationException(
                "End date must not be before start date",
                errors={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        service = self.db.get(Service, service_id)
        site = self.db.get(Site, site_id)
        if service is None or site is None:
            return None

        original_price = base_price(service, quantity)
        site_point = self._site_point(site)
        grouped = self._active_bookings_between(
            start_date - timedelta(days=1),
            end_date + timedelta(days=1),
        )

        quotes: Dict[date, PriceQuote] = {}
        current = start_date
        while current <= end_date:
            quote = self._quote(site_point, current, original_price, grouped)
            quotes[current] = quote
            self.metrics.increment_quotes(tier=quote.tier)
            current += timedelta(days=1)

        logger.info(
            "Date range quoted",
            extra={
                "site_id": str(site_id),
                "service_id": str(service_id),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "days": len(quotes),
            },
        )
        return quotes

    def backfill_site_coordinates(self, limit: int = 500) -> Dict[str, int]:
        """
        Resolve coordinates for up to `limit` sites that have none, in bulk.

        Neighbouring sites with coordinates are matched by distance rather
        than by postcode area when quoting.
        """
        if limit <= 0:
            raise ValidationException("Limit must be positive", errors={"limit": limit})
        sites = list(self.db.scalars(
            select(Site)
            .where((Site.latitude.is_(None)) | (Site.longitude.is_(None)))
            .order_by(Site.id)
            .limit(limit)
        ))
        resolved = self.resolver.resolve_sites(self.db, sites)
        self.db.commit()
        return {"checked": len(sites), "resolved": resolved}
