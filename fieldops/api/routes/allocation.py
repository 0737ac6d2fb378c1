"""
Allocation API routes: auto-allocation and engineer routes.
"""
from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from fieldops.api.dependencies import get_engine, unwrap
from fieldops.services.allocation_service import AllocationDecision, RouteStop
from fieldops.services.decision_engine import DecisionEngine


class AllocateRequest(BaseModel):
    booking_id: UUID


router = APIRouter(tags=["allocation"])


@router.post("/admin/allocate", response_model=AllocationDecision)
def auto_allocate(
    request: AllocateRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> AllocationDecision:
    """
    Assign the best-scoring approved engineer to a pending booking.

    Returns 422 with every candidate's reasons when nobody is eligible.
    """
    return unwrap(engine.auto_allocate(request.booking_id))


@router.get("/engineers/{engineer_id}/route", response_model=List[RouteStop])
def engineer_route(
    engineer_id: UUID,
    date: date = Query(..., description="Day to plan"),
    engine: DecisionEngine = Depends(get_engine),
) -> List[RouteStop]:
    """
    Suggested visiting order for an engineer's jobs on a day.

    Jobs are grouped by postcode district; this is not a shortest-route solution.
    """
    return unwrap(engine.get_route(engineer_id, date))
