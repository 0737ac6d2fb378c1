"""
Engineer admin routes: approval lifecycle, availability and coverage.

- POST /admin/engineers/{profile_id}/approve | suspend | reject
- PUT  /admin/engineers/{profile_id}/availability
- POST /admin/engineers/{profile_id}/time-off
- POST /admin/engineers/{profile_id}/coverage/resolve
- POST /admin/sites/resolve-coordinates
"""
from datetime import date
from typing import Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from fieldops.api.dependencies import get_engine, unwrap
from fieldops.services.decision_engine import AvailabilityView, DecisionEngine, EngineerProfileView
from fieldops.services.engineer_service import AvailabilityEntry


class AvailabilityRequest(BaseModel):
    entries: List[AvailabilityEntry] = Field(..., max_length=400)


class TimeOffRequest(BaseModel):
    start: date
    end: date


router = APIRouter(prefix="/admin", tags=["admin", "engineers"])


@router.post("/engineers/{profile_id}/approve", response_model=EngineerProfileView)
def approve_engineer(profile_id: UUID, engine: DecisionEngine = Depends(get_engine)) -> EngineerProfileView:
    return unwrap(engine.approve_engineer(profile_id))


@router.post("/engineers/{profile_id}/suspend", response_model=EngineerProfileView)
def suspend_engineer(profile_id: UUID, engine: DecisionEngine = Depends(get_engine)) -> EngineerProfileView:
    return unwrap(engine.suspend_engineer(profile_id))


@router.post("/engineers/{profile_id}/reject", response_model=EngineerProfileView)
def reject_engineer(profile_id: UUID, engine: DecisionEngine = Depends(get_engine)) -> EngineerProfileView:
    """Rejection is final; a rejected profile cannot be approved later."""
    return unwrap(engine.reject_engineer(profile_id))


@router.put("/engineers/{profile_id}/availability", response_model=List[AvailabilityView])
def set_availability(
    profile_id: UUID,
    request: AvailabilityRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> List[AvailabilityView]:
    """Upsert availability, one record per date and slot."""
    return unwrap(engine.set_availability(profile_id, request.entries))


@router.post("/engineers/{profile_id}/time-off", response_model=List[AvailabilityView])
def block_time_off(
    profile_id: UUID,
    request: TimeOffRequest,
    engine: DecisionEngine = Depends(get_engine),
) -> List[AvailabilityView]:
    return unwrap(engine.block_time_off(profile_id, request.start, request.end))


@router.post("/engineers/{profile_id}/coverage/resolve")
def resolve_coverage_centres(profile_id: UUID, engine: DecisionEngine = Depends(get_engine)) -> Dict[str, int]:
    return unwrap(engine.resolve_coverage_centres(profile_id))


@router.post("/sites/resolve-coordinates")
def backfill_site_coordinates(
    limit: int = Query(500, ge=1, le=5000, description="Sites to check in this run"),
    engine: DecisionEngine = Depends(get_engine),
) -> Dict[str, int]:
    return unwrap(engine.backfill_site_coordinates(limit))
