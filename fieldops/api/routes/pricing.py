"""
Pricing API routes.
"""
from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from fieldops.api.dependencies import get_engine, unwrap
from fieldops.lib.errors import ValidationException
from fieldops.services.decision_engine import DecisionEngine
from fieldops.services.pricing_service import PriceQuote

# Longest span a calendar view asks for in one request
MAX_RANGE_DAYS = 92


router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/quote", response_model=PriceQuote)
def quote_price(
    service_id: UUID = Query(..., description="Service being booked"),
    site_id: UUID = Query(..., description="Site the work is at"),
    date: date = Query(..., description="Scheduled date"),
    qty: int = Query(..., gt=0, description="Number of units"),
    engine: DecisionEngine = Depends(get_engine),
) -> PriceQuote:
    """Quote the price for one date, including any proximity discount."""
    return unwrap(engine.quote_price(service_id, site_id, date, qty))


@router.get("/range", response_model=List[PriceQuote])
def quote_price_range(
    service_id: UUID = Query(...),
    site_id: UUID = Query(...),
    start: date = Query(..., description="First date, inclusive"),
    end: date = Query(..., description="Last date, inclusive"),
    qty: int = Query(..., gt=0),
    engine: DecisionEngine = Depends(get_engine),
) -> List[PriceQuote]:
    """
    Quote every date in [start, end].

    Used by calendar views; one bookings query serves the whole range.
    """
    if (end - start).days + 1 > MAX_RANGE_DAYS:
        raise ValidationException(
            f"Date range is limited to {MAX_RANGE_DAYS} days",
            errors={"start": start.isoformat(), "end": end.isoformat()},
        )
    return unwrap(engine.quote_price_range(service_id, site_id, start, end, qty))
