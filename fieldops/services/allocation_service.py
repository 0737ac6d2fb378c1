"""
Engineer allocation engine.

Scores every approved engineer for a booking and binds the best one. Hard
filters (no competency, only expired qualifications, marked unavailable)
force a candidate's score to 0; a zero score never wins.

Also covers manual reallocation, admin override, atomic self-assignment
(claims) and per-engineer route grouping.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from fieldops.lib.config_flags import (
    AllocationWeights,
    QualificationRules,
    get_allocation_weights,
    get_feature_flags,
    get_qualification_rules,
)
from fieldops.lib.errors import (
    ConflictAlreadyAssignedException,
    ConflictException,
    InvalidTransitionException,
    NoEligibleCandidateException,
    NotFoundException,
    ValidationException,
)
from fieldops.lib.geo import (
    distance_km,
    estimated_drive_minutes,
    postcode_area,
    postcode_district,
    prefix_covers,
)
from fieldops.lib.logging import get_logger, log_decision
from fieldops.lib.metrics import get_metrics_collector
from fieldops.models.allocation_logs import AllocationAction, AllocationLog
from fieldops.models.bookings import Booking, BookingStatus, ACTIVE_STATUSES
from fieldops.models.engineers import EngineerProfile, EngineerStatus, TimeSlot
from fieldops.models.sites import Site
from fieldops.models.users import User
from fieldops.services.booking_state import BookingStatusService, validate_transition
from fieldops.services.postcode_service import CoordinateResolver

logger = get_logger(__name__)

QUALIFICATION_EXPIRED = "qualification expired before job date"

# Bookings that belong on an engineer's route for the day
ROUTE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

SLOT_ORDER = {TimeSlot.AM: 0, TimeSlot.FULL_DAY: 1, TimeSlot.PM: 2}


@dataclass(frozen=True)
class JobLocation:
    """Where a booking takes place."""
    postcode: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def distance_to(self, latitude: Optional[float], longitude: Optional[float]) -> Optional[float]:
        if not self.has_coordinates or latitude is None or longitude is None:
            return None
        return distance_km(self.latitude, self.longitude, latitude, longitude)


@dataclass(frozen=True)
class JobContext:
    """The booking being allocated, reduced to what scoring needs."""
    booking_id: UUID
    service_id: UUID
    service_name: str
    scheduled_date: date
    slot: TimeSlot
    location: JobLocation


class Candidate(BaseModel):
    """Score breakdown for one engineer."""
    engineer_id: UUID
    engineer_name: str
    score: int = 0
    reasons: List[str] = Field(default_factory=list)
    distance_km: Optional[float] = None
    drive_minutes: Optional[int] = None
    has_competency: bool = False
    is_available: bool = False
    existing_jobs_on_day: int = 0


class AllocationDecision(BaseModel):
    """Result of scoring every approved engineer for a booking."""
    booking_id: UUID
    selected_engineer_id: Optional[UUID] = None
    score: Optional[int] = None
    reasons: List[str] = Field(default_factory=list)
    candidates: List[Candidate] = Field(default_factory=list)


class RouteStop(BaseModel):
    booking_id: UUID
    reference: str
    service_name: str
    site_name: str
    postcode: str
    slot: TimeSlot
    status: BookingStatus
    suggested_order: int


def slots_to_check(slot: TimeSlot) -> Tuple[TimeSlot, ...]:
    """Availability slots that can block a booking in the given slot."""
    if slot == TimeSlot.FULL_DAY:
        return (TimeSlot.AM, TimeSlot.PM, TimeSlot.FULL_DAY)
    return (slot, TimeSlot.FULL_DAY)


def _geo_points(distance: float, radius_km: float, weights: AllocationWeights) -> int:
    if distance > radius_km:
        return 0
    if distance <= weights.very_close_km:
        return weights.geo_very_close_points
    if distance <= weights.close_km:
        return weights.geo_close_points
    if distance <= weights.moderate_km:
        return weights.geo_moderate_points
    return weights.geo_in_range_points


def score_candidate(
    profile: EngineerProfile,
    engineer_name: str,
    job: JobContext,
    other_jobs: Sequence[JobLocation],
    weights: AllocationWeights,
    rules: QualificationRules,
) -> Candidate:
    """
    Score one engineer for a job.

    profile must have competencies, coverage_areas, qualifications and
    availability loaded. other_jobs are the engineer's other active jobs on
    the job date.
    """
    candidate = Candidate(engineer_id=profile.user_id, engineer_name=engineer_name)

    # Hard filters
    competency = next(
        (c for c in profile.competencies if c.service_id == job.service_id),
        None,
    )
    if competency is None:
        candidate.reasons = ["No competency for this service"]
        return candidate
    candidate.has_competency = True

    relevant = [q for q in profile.qualifications if rules.is_relevant(job.service_name, q.name)]
    valid = [q for q in relevant if q.is_valid_on(job.scheduled_date)]
    if relevant and not valid:
        candidate.reasons = [QUALIFICATION_EXPIRED]
        return candidate

    blocking_slots = slots_to_check(job.slot)
    blocked = any(
        record.date == job.scheduled_date
        and record.slot in blocking_slots
        and not record.is_available
        for record in profile.availability
    )
    if blocked:
        candidate.reasons = ["Not available for this slot"]
        return candidate
    candidate.is_available = True

    score = weights.competency_points
    reasons = ["Has required competency"]

    if valid:
        score += weights.valid_qualification_points
        reasons.append(f"Holds valid qualification: {valid[0].name}")

    # Geographic fit: best coverage area wins
    geo_points = 0
    geo_reason = "Site outside coverage areas"
    for area in profile.coverage_areas:
        distance = job.location.distance_to(area.center_latitude, area.center_longitude)
        if distance is not None:
            points = _geo_points(distance, area.radius_km, weights)
            if points > geo_points:
                geo_points = points
                geo_reason = f"Covers site area ({distance:.1f} km from centre)"
                candidate.distance_km = round(distance, 2)
                candidate.drive_minutes = estimated_drive_minutes(distance)
        elif prefix_covers(area.postcode_prefix, job.location.postcode):
            if weights.geo_prefix_match_points > geo_points:
                geo_points = weights.geo_prefix_match_points
                geo_reason = f"Covers site postcode area {area.postcode_prefix.upper()}"
    score += geo_points
    reasons.append(geo_reason)

    score += weights.availability_points
    reasons.append("Available for the time slot")

    # Same-day route efficiency
    candidate.existing_jobs_on_day = len(other_jobs)
    site_area = postcode_area(job.location.postcode)
    nearby = []
    for other in other_jobs:
        distance = job.location.distance_to(other.latitude, other.longitude)
        if distance is not None:
            if distance <= weights.cluster_km:
                nearby.append(other)
        elif site_area and postcode_area(other.postcode) == site_area:
            nearby.append(other)
    if nearby:
        score += weights.cluster_points
        reasons.append(f"Has {len(nearby)} other job(s) nearby - route efficient")
    elif other_jobs and len(other_jobs) <= weights.busy_day_max_jobs:
        score += weights.busy_day_points
        reasons.append(f"Has {len(other_jobs)} other job(s) on this day")
    elif not other_jobs:
        score += weights.free_day_points
        reasons.append("Day is free - flexible scheduling")

    if competency.experience_years >= weights.experience_years_threshold:
        score += weights.experience_points
        reasons.append(f"{competency.experience_years} years experience")

    candidate.score = score
    candidate.reasons = reasons
    return candidate


def rank_candidates(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Highest score first, ties broken by engineer id."""
    return sorted(candidates, key=lambda c: (-c.score, str(c.engineer_id)))


class RouteStrategy(Protocol):
    """Orders an engineer's bookings for one day."""

    def order(self, bookings: Sequence[Booking]) -> List[Booking]:
        ...


@dataclass
class PostcodeGroupingStrategy:
    """
    Greedy grouping by postcode district.

    Districts appear in the order their first booking does (bookings are
    considered AM, FULL_DAY, PM); within a district bookings run in slot
    order. This is a clustering heuristic, not a shortest-route solver.
    """
    slot_order: Dict[TimeSlot, int] = field(default_factory=lambda: dict(SLOT_ORDER))

    def _slot_key(self, booking: Booking) -> int:
        return self.slot_order.get(booking.slot, len(self.slot_order))

    def order(self, bookings: Sequence[Booking]) -> List[Booking]:
        groups: Dict[str, List[Booking]] = {}
        for booking in sorted(bookings, key=self._slot_key):
            groups.setdefault(postcode_district(booking.site.postcode), []).append(booking)
        ordered: List[Booking] = []
        for group in groups.values():
            ordered.extend(sorted(group, key=self._slot_key))
        return ordered


class AllocationService:
    """Service binding engineers to bookings."""

    def __init__(
        self,
        db_session: Session,
        resolver: Optional[CoordinateResolver] = None,
        weights: Optional[AllocationWeights] = None,
        rules: Optional[QualificationRules] = None,
        route_strategy: Optional[RouteStrategy] = None,
    ):
        self.db = db_session
        self.resolver = resolver or CoordinateResolver()
        self.weights = weights or get_allocation_weights()
        self.rules = rules or get_qualification_rules()
        self.route_strategy = route_strategy or PostcodeGroupingStrategy()
        self.status_service = BookingStatusService(db_session)
        self.metrics = get_metrics_collector()

    # ===== Lookups =====

    def _get_booking(self, booking_id: UUID) -> Booking:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundException("Booking", booking_id)
        return booking

    def _get_profile(self, engineer_id: UUID) -> EngineerProfile:
        profile = self.db.scalar(
            select(EngineerProfile).where(EngineerProfile.user_id == engineer_id)
        )
        if profile is None:
            raise NotFoundException("Engineer", engineer_id)
        return profile

    def _require_approved(self, engineer_id: UUID) -> EngineerProfile:
        profile = self._get_profile(engineer_id)
        if profile.status != EngineerStatus.APPROVED:
            raise ValidationException(
                "Engineer is not approved",
                errors={"engineer_id": str(engineer_id), "status": profile.status.value},
            )
        return profile

    def _job_context(self, booking: Booking) -> JobContext:
        coordinates = self.resolver.site_coordinates(self.db, booking.site)
        latitude, longitude = coordinates if coordinates else (None, None)
        return JobContext(
            booking_id=booking.id,
            service_id=booking.service_id,
            service_name=booking.service.name,
            scheduled_date=booking.scheduled_date,
            slot=booking.slot,
            location=JobLocation(booking.site.postcode, latitude, longitude),
        )

    def _other_jobs_by_engineer(
        self,
        engineer_ids: Sequence[UUID],
        job: JobContext,
    ) -> Dict[UUID, List[JobLocation]]:
        """Active jobs of the given engineers on the job date, excluding the job itself."""
        if not engineer_ids:
            return {}
        rows = self.db.execute(
            select(Booking.engineer_id, Site.postcode, Site.latitude, Site.longitude)
            .join(Site, Site.id == Booking.site_id)
            .where(
                Booking.engineer_id.in_(engineer_ids),
                Booking.scheduled_date == job.scheduled_date,
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.id != job.booking_id,
            )
        )
        jobs: Dict[UUID, List[JobLocation]] = defaultdict(list)
        for engineer_id, postcode, latitude, longitude in rows:
            jobs[engineer_id].append(JobLocation(postcode, latitude, longitude))
        return jobs

    # ===== Scoring =====

    def find_best_engineer(self, booking_id: UUID) -> AllocationDecision:
        """
        Score every approved engineer for a booking.

        Deterministic for a fixed snapshot: candidates are ranked by score
        then engineer id. selected_engineer_id is None when nobody scores
        above zero.

        Raises:
            NotFoundException: Booking does not exist
        """
        booking = self._get_booking(booking_id)
        job = self._job_context(booking)

        rows = self.db.execute(
            select(EngineerProfile, User.name)
            .join(User, User.id == EngineerProfile.user_id)
            .where(EngineerProfile.status == EngineerStatus.APPROVED)
            .options(
                selectinload(EngineerProfile.competencies),
                selectinload(EngineerProfile.coverage_areas),
                selectinload(EngineerProfile.qualifications),
                selectinload(EngineerProfile.availability),
            )
        ).all()

        other_jobs = self._other_jobs_by_engineer([profile.user_id for profile, _ in rows], job)
        candidates = rank_candidates([
            score_candidate(
                profile,
                name,
                job,
                other_jobs.get(profile.user_id, []),
                self.weights,
                self.rules,
            )
            for profile, name in rows
        ])

        decision = AllocationDecision(booking_id=booking.id, candidates=candidates)
        best = candidates[0] if candidates and candidates[0].score > 0 else None
        if best is not None:
            decision.selected_engineer_id = best.engineer_id
            decision.score = best.score
            decision.reasons = list(best.reasons)

        logger.info(
            "Engineers scored",
            extra={
                "booking_id": str(booking.id),
                "candidates": len(candidates),
                "eligible": sum(1 for c in candidates if c.score > 0),
                "selected_engineer_id": str(best.engineer_id) if best else None,
                "top_score": best.score if best else 0,
            },
        )
        return decision

    # ===== Binding =====

    def _append_log(
        self,
        booking_id: UUID,
        action: AllocationAction,
        to_engineer_id: UUID,
        from_engineer_id: Optional[UUID] = None,
        reason: Optional[str] = None,
        score: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> AllocationLog:
        entry = AllocationLog(
            booking_id=booking_id,
            action=action,
            from_engineer_id=from_engineer_id,
            to_engineer_id=to_engineer_id,
            reason=reason,
            score=score,
            extra_data=metadata,
        )
        self.db.add(entry)
        return entry

    def auto_allocate(self, booking_id: UUID) -> AllocationDecision:
        """
        Bind the best-scoring engineer and confirm the booking.

        Raises:
            NotFoundException: Booking does not exist
            InvalidTransitionException: Booking is not PENDING
            ValidationException: Scheduler V2 requested but not available
            NoEligibleCandidateException: No engineer scored above zero
            ConflictAlreadyAssignedException: Booking already has an engineer
        """
        if get_feature_flags().scheduler_v2_enabled:
            raise ValidationException(
                "Scheduler V2 is not available",
                errors={"scheduler_v2_enabled": True},
            )

        booking = self._get_booking(booking_id)
        validate_transition(booking.status, BookingStatus.CONFIRMED)
        if booking.engineer_id is not None:
            self.metrics.increment_allocations(action=AllocationAction.AUTO_ASSIGNED.value, outcome="conflict")
            raise ConflictAlreadyAssignedException(booking_id)

        decision = self.find_best_engineer(booking_id)
        if decision.selected_engineer_id is None:
            self.metrics.increment_allocations(action=AllocationAction.AUTO_ASSIGNED.value, outcome="no_candidate")
            logger.warning(
                "No suitable engineer found",
                extra={"booking_id": str(booking_id), "candidates": len(decision.candidates)},
            )
            # Persist any coordinates resolved while scoring
            self.db.commit()
            raise NoEligibleCandidateException(
                booking_id,
                [c.model_dump(mode="json") for c in decision.candidates],
            )

        applied = self.status_service.apply(
            booking,
            BookingStatus.CONFIRMED,
            values={"engineer_id": decision.selected_engineer_id},
            conditions=(Booking.engineer_id.is_(None),),
        )
        if not applied:
            self.db.rollback()
            self.metrics.increment_allocations(action=AllocationAction.AUTO_ASSIGNED.value, outcome="conflict")
            raise ConflictAlreadyAssignedException(booking_id)

        self._append_log(
            booking_id,
            AllocationAction.AUTO_ASSIGNED,
            to_engineer_id=decision.selected_engineer_id,
            reason="; ".join(decision.reasons),
            score=decision.score,
            metadata={"candidates": len(decision.candidates), "top_score": decision.score},
        )
        self.db.commit()
        self.db.refresh(booking)

        self.metrics.increment_allocations(action=AllocationAction.AUTO_ASSIGNED.value, outcome="success")
        log_decision(
            logger, "allocation", "Booking auto-allocated",
            booking_id=str(booking_id),
            engineer_id=str(decision.selected_engineer_id),
            score=decision.score,
        )
        return decision

    def _rebind(
        self,
        booking_id: UUID,
        new_engineer_id: UUID,
        reason: str,
        action: AllocationAction,
    ) -> AllocationLog:
        if not reason or not reason.strip():
            raise ValidationException("A reason is required", errors={"reason": reason})

        booking = self._get_booking(booking_id)
        if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidTransitionException(
                booking.status,
                BookingStatus.CONFIRMED,
                message=f"Cannot reassign a booking that is {booking.status.value}",
            )
        if action == AllocationAction.ADMIN_OVERRIDE:
            self._get_profile(new_engineer_id)
        else:
            self._require_approved(new_engineer_id)

        previous_engineer_id = booking.engineer_id
        observed_status = booking.status
        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == observed_status)
            .values(engineer_id=new_engineer_id, status=BookingStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.metrics.increment_allocations(action=action.value, outcome="conflict")
            raise ConflictException(
                "Booking changed concurrently, reload and retry",
                details={"booking_id": str(booking_id)},
            )
        if observed_status != BookingStatus.CONFIRMED:
            self.metrics.increment_transitions(
                from_status=observed_status.value,
                to_status=BookingStatus.CONFIRMED.value,
            )

        entry = self._append_log(
            booking_id,
            action,
            to_engineer_id=new_engineer_id,
            from_engineer_id=previous_engineer_id,
            reason=reason.strip(),
        )
        self.db.commit()
        self.db.refresh(booking)

        self.metrics.increment_allocations(action=action.value, outcome="success")
        log_decision(
            logger, "allocation", "Booking reassigned",
            booking_id=str(booking_id),
            action=action.value,
            from_engineer_id=str(previous_engineer_id) if previous_engineer_id else None,
            to_engineer_id=str(new_engineer_id),
        )
        return entry

    def reallocate_booking(self, booking_id: UUID, new_engineer_id: UUID, reason: str) -> AllocationLog:
        """
        Move a booking to an explicitly chosen approved engineer, bypassing scoring.

        Raises:
            ValidationException: Empty reason or engineer not approved
            NotFoundException: Booking or engineer does not exist
            InvalidTransitionException: Booking is not PENDING or CONFIRMED
            ConflictException: Booking changed between read and write
        """
        return self._rebind(booking_id, new_engineer_id, reason, AllocationAction.REALLOCATED)

    def admin_override(self, booking_id: UUID, new_engineer_id: UUID, reason: str) -> AllocationLog:
        """Same as reallocate_booking but logged as an admin override; approval is not required."""
        return self._rebind(booking_id, new_engineer_id, reason, AllocationAction.ADMIN_OVERRIDE)

    def claim_job(self, booking_id: UUID, engineer_id: UUID) -> Booking:
        """
        Atomically assign an unassigned PENDING booking to the claiming engineer.

        The single conditional UPDATE decides the winner: exactly one of any
        number of concurrent claims affects a row.

        Raises:
            NotFoundException: Booking or engineer does not exist
            ValidationException: Engineer not approved
            InvalidTransitionException: Booking unassigned but not PENDING
            ConflictAlreadyAssignedException: Another engineer holds the booking
        """
        self._require_approved(engineer_id)

        result = self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.engineer_id.is_(None),
                Booking.status == BookingStatus.PENDING,
            )
            .values(engineer_id=engineer_id, status=BookingStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self.db.commit()
            booking = self._get_booking(booking_id)
            self.db.refresh(booking)
            self.metrics.increment_claims(outcome="won")
            self.metrics.increment_transitions(
                from_status=BookingStatus.PENDING.value,
                to_status=BookingStatus.CONFIRMED.value,
            )
            log_decision(
                logger, "claim", "Job claimed",
                booking_id=str(booking_id), engineer_id=str(engineer_id),
            )
            return booking

        self.db.rollback()
        booking = self._get_booking(booking_id)
        self.db.refresh(booking)
        if booking.engineer_id is None:
            self.metrics.increment_claims(outcome="rejected")
            validate_transition(booking.status, BookingStatus.CONFIRMED)
            raise ConflictException(
                "Booking changed concurrently, reload and retry",
                details={"booking_id": str(booking_id)},
            )
        self.metrics.increment_claims(outcome="conflict")
        log_decision(
            logger, "claim", "Claim lost, job already assigned", level=logging.WARNING,
            booking_id=str(booking_id),
            engineer_id=str(engineer_id),
            assigned_engineer_id=str(booking.engineer_id) if booking.engineer_id else None,
        )
        raise ConflictAlreadyAssignedException(booking_id)

    # ===== Read side =====

    def get_optimized_route(self, engineer_id: UUID, route_date: date) -> List[RouteStop]:
        """
        The engineer's confirmed and in-progress jobs for a day in suggested visiting order.

        Ordering comes from the configured RouteStrategy; the default groups
        by postcode district and does not minimise distance.
        """
        bookings = self.db.scalars(
            select(Booking).where(
                Booking.engineer_id == engineer_id,
                Booking.scheduled_date == route_date,
                Booking.status.in_(ROUTE_STATUSES),
            )
            .order_by(Booking.created_at, Booking.id)
        ).all()

        return [
            RouteStop(
                booking_id=booking.id,
                reference=booking.reference,
                service_name=booking.service.name,
                site_name=booking.site.name,
                postcode=booking.site.postcode,
                slot=booking.slot,
                status=booking.status,
                suggested_order=index,
            )
            for index, booking in enumerate(self.route_strategy.order(bookings), start=1)
        ]

    def get_allocation_logs(self, booking_id: UUID) -> List[AllocationLog]:
        """Allocation history for a booking, newest first."""
        self._get_booking(booking_id)
        return list(self.db.scalars(
            select(AllocationLog)
            .where(AllocationLog.booking_id == booking_id)
            .order_by(AllocationLog.created_at.desc(), AllocationLog.id.desc())
        ))
