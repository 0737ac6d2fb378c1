"""
Shared fixtures: SQLite databases under tmp_path, an offline postcode
client and small factories for the domain rows.
"""
import os

# Settings are read at import time; keep the module-level engine off Postgres.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_JSON", "false")

from datetime import date
from itertools import count
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from tenacity import wait_none

from fieldops.lib.config_flags import reset_all_configs
from fieldops.lib.db import Base, engine_options
from fieldops.lib.metrics import reset_metrics
from fieldops.models import (
    Booking,
    BookingStatus,
    CoverageArea,
    EngineerAvailability,
    EngineerCompetency,
    EngineerProfile,
    EngineerStatus,
    Qualification,
    Service,
    Site,
    TimeSlot,
    User,
    UserRole,
)
from fieldops.services.postcode_service import PostcodeClient, PostcodeCache, set_postcode_client

JOB_DATE = date(2030, 3, 12)


def offline_transport() -> httpx.MockTransport:
    """Postcode API that knows no postcodes."""
    return httpx.MockTransport(
        lambda request: httpx.Response(404, json={"status": 404, "error": "Invalid postcode"})
    )


def make_client(handler, retries: int = 3) -> PostcodeClient:
    return PostcodeClient(
        base_url="https://postcodes.test",
        retries=retries,
        cache=PostcodeCache(ttl_seconds=3600, max_entries=100),
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
    )


@pytest.fixture(autouse=True)
def reset_state():
    """Fresh config, metrics and an offline postcode client for every test."""
    reset_all_configs()
    reset_metrics()
    client = PostcodeClient(
        base_url="https://postcodes.test",
        transport=offline_transport(),
        retry_wait=wait_none(),
    )
    set_postcode_client(client)
    yield
    client.close()
    set_postcode_client(None)
    reset_all_configs()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'fieldops.db'}"


@pytest.fixture
def db_engine(db_url):
    engine = create_engine(db_url, **engine_options(db_url))
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


class Factory:
    """Creates and commits domain rows with sensible defaults."""

    def __init__(self, session):
        self.db = session
        self._seq = count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def user(self, role=UserRole.CUSTOMER, name=None):
        n = next(self._seq)
        return self._save(User(
            id=uuid4(),
            name=name or f"{role.value.title()} {n}",
            email=f"{role.value}.{n}@example.com",
            role=role,
        ))

    def customer(self, name=None):
        return self.user(UserRole.CUSTOMER, name)

    def site(self, customer=None, postcode="SW1A 1AA", latitude=None, longitude=None, name=None):
        customer = customer or self.customer()
        return self._save(Site(
            id=uuid4(),
            customer_id=customer.id,
            name=name or f"Site {postcode}",
            address="1 Test Street",
            postcode=postcode,
            latitude=latitude,
            longitude=longitude,
        ))

    def service(self, name="PAT Testing", base_price=1.50, min_charge=50.0,
                base_minutes=30, minutes_per_unit=2.5, active=True):
        n = next(self._seq)
        return self._save(Service(
            id=uuid4(),
            name=name,
            slug=f"service-{n}",
            base_price=base_price,
            min_charge=min_charge,
            unit_name="item",
            base_minutes=base_minutes,
            minutes_per_unit=minutes_per_unit,
            active=active,
        ))

    def engineer(self, name=None, status=EngineerStatus.APPROVED, competencies=(),
                 coverage=(), qualifications=(), availability=()):
        """
        competencies: (service, experience_years)
        coverage: (prefix, radius_km, center_lat, center_lon)
        qualifications: (name, expiry_date)
        availability: (date, slot, is_available)
        """
        user = self.user(UserRole.ENGINEER, name)
        profile = EngineerProfile(id=uuid4(), user_id=user.id, status=status)
        profile.competencies = [
            EngineerCompetency(service_id=service.id, experience_years=years)
            for service, years in competencies
        ]
        profile.coverage_areas = [
            CoverageArea(postcode_prefix=prefix, radius_km=radius, center_latitude=lat, center_longitude=lon)
            for prefix, radius, lat, lon in coverage
        ]
        profile.qualifications = [
            Qualification(name=qname, issuing_body="City & Guilds", expiry_date=expiry)
            for qname, expiry in qualifications
        ]
        profile.availability = [
            EngineerAvailability(date=day, slot=slot, is_available=available)
            for day, slot, available in availability
        ]
        self._save(profile)
        return user, profile

    def booking(self, site, service, scheduled_date=JOB_DATE, slot=TimeSlot.AM,
                status=BookingStatus.PENDING, engineer=None, qty=40, customer_id=None):
        n = next(self._seq)
        price = max(service.base_price * qty, service.min_charge)
        return self._save(Booking(
            id=uuid4(),
            reference=f"CC-T{n:05d}",
            customer_id=customer_id or site.customer_id,
            site_id=site.id,
            service_id=service.id,
            engineer_id=engineer.id if engineer is not None else None,
            status=status,
            scheduled_date=scheduled_date,
            slot=slot,
            estimated_qty=qty,
            original_price=price,
            discount_percent=0,
            quoted_price=price,
        ))


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def postcode_client():
    """Build a PostcodeClient over a request handler; closed after the test."""
    clients = []

    def build(handler, retries=3):
        client = make_client(handler, retries=retries)
        clients.append(client)
        return client

    yield build
    for client in clients:
        client.close()
