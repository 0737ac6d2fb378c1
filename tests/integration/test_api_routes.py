"""
Integration tests for the HTTP adapter.
"""
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import JOB_DATE
from fieldops.api.app import app
from fieldops.api.dependencies import get_db
from fieldops.models import BookingStatus, EngineerStatus, TimeSlot


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def setup(factory):
    service = factory.service()
    site = factory.site(postcode="SW1A 1AA", latitude=51.501, longitude=-0.1416)
    return service, site


@pytest.mark.integration
def test_quote_endpoint(client, factory, setup):
    service, site = setup
    factory.booking(site, service, JOB_DATE)

    response = client.get("/pricing/quote", params={
        "service_id": str(service.id),
        "site_id": str(site.id),
        "date": JOB_DATE.isoformat(),
        "qty": 40,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["original_price"] == 60.0
    assert data["discounted_price"] == 30.0
    assert data["tier"] == "same_site"


@pytest.mark.integration
def test_quote_unknown_site(client, setup):
    service, _ = setup

    response = client.get("/pricing/quote", params={
        "service_id": str(service.id),
        "site_id": str(uuid4()),
        "date": JOB_DATE.isoformat(),
        "qty": 40,
    })

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


@pytest.mark.integration
def test_quote_rejects_zero_quantity(client, setup):
    service, site = setup

    response = client.get("/pricing/quote", params={
        "service_id": str(service.id),
        "site_id": str(site.id),
        "date": JOB_DATE.isoformat(),
        "qty": 0,
    })

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.integration
def test_range_endpoint(client, setup):
    service, site = setup

    response = client.get("/pricing/range", params={
        "service_id": str(service.id),
        "site_id": str(site.id),
        "start": JOB_DATE.isoformat(),
        "end": (JOB_DATE + timedelta(days=6)).isoformat(),
        "qty": 40,
    })

    assert response.status_code == 200
    assert len(response.json()) == 7


@pytest.mark.integration
def test_range_endpoint_limits(client, setup):
    service, site = setup
    params = {"service_id": str(service.id), "site_id": str(site.id), "qty": 40}

    too_long = client.get("/pricing/range", params={
        **params,
        "start": JOB_DATE.isoformat(),
        "end": (JOB_DATE + timedelta(days=120)).isoformat(),
    })
    inverted = client.get("/pricing/range", params={
        **params,
        "start": JOB_DATE.isoformat(),
        "end": (JOB_DATE - timedelta(days=1)).isoformat(),
    })

    assert too_long.status_code == 422
    assert inverted.status_code == 422
    assert inverted.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.integration
def test_create_booking_endpoint(client, setup):
    service, site = setup

    response = client.post("/bookings", json={
        "customer_id": str(site.customer_id),
        "site_id": str(site.id),
        "service_id": str(service.id),
        "scheduled_date": JOB_DATE.isoformat(),
        "estimated_qty": 40,
    })

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["slot"] == "am"
    assert data["quoted_price"] == 60.0
    assert data["reference"].startswith("CC-")


@pytest.mark.integration
def test_allocate_endpoint(client, factory, setup):
    service, site = setup
    user, _ = factory.engineer(competencies=[(service, 2)], coverage=[("SW", 20, 51.501, -0.1416)])
    booking = factory.booking(site, service, JOB_DATE)

    response = client.post("/admin/allocate", json={"booking_id": str(booking.id)})

    assert response.status_code == 200
    data = response.json()
    assert data["selected_engineer_id"] == str(user.id)
    assert data["candidates"][0]["score"] == data["score"]


@pytest.mark.integration
def test_allocate_without_candidates(client, factory, setup):
    service, site = setup
    factory.engineer()  # no competency
    booking = factory.booking(site, service, JOB_DATE)

    response = client.post("/admin/allocate", json={"booking_id": str(booking.id)})

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "NO_ELIGIBLE_CANDIDATE"
    assert body["details"]["candidates"][0]["reasons"] == ["No competency for this service"]


@pytest.mark.integration
def test_claim_endpoint_conflict(client, factory, setup):
    service, site = setup
    first, _ = factory.engineer()
    second, _ = factory.engineer()
    booking = factory.booking(site, service, JOB_DATE)

    won = client.post(f"/bookings/{booking.id}/claim", json={"engineer_id": str(first.id)})
    lost = client.post(f"/bookings/{booking.id}/claim", json={"engineer_id": str(second.id)})

    assert won.status_code == 200
    assert won.json()["engineer_id"] == str(first.id)
    assert lost.status_code == 409
    assert lost.json()["error_code"] == "ALREADY_ASSIGNED"
    assert lost.json()["error"] == "Job already assigned to another engineer"


@pytest.mark.integration
def test_status_endpoint(client, factory, setup):
    service, site = setup
    booking = factory.booking(site, service, JOB_DATE)

    bad = client.post(f"/bookings/{booking.id}/status", json={"status": "completed"})
    good = client.post(f"/bookings/{booking.id}/status", json={"status": "cancelled"})
    unknown = client.post(f"/bookings/{booking.id}/status", json={"status": "archived"})

    assert bad.status_code == 409
    assert bad.json()["error_code"] == "INVALID_TRANSITION"
    assert good.status_code == 200
    assert good.json()["status"] == "cancelled"
    assert unknown.status_code == 422


@pytest.mark.integration
def test_reallocate_and_logs_endpoints(client, factory, setup):
    service, site = setup
    first, _ = factory.engineer()
    second, _ = factory.engineer()
    booking = factory.booking(site, service, JOB_DATE, status=BookingStatus.CONFIRMED, engineer=first)

    moved = client.post(
        f"/bookings/{booking.id}/reallocate",
        json={"engineer_id": str(second.id), "reason": "Closer to site"},
    )
    overridden = client.post(
        f"/bookings/{booking.id}/override",
        json={"engineer_id": str(first.id), "reason": "Customer preference"},
    )
    logs = client.get(f"/bookings/{booking.id}/allocation-logs")

    assert moved.status_code == 200
    assert moved.json()["action"] == "reallocated"
    assert overridden.status_code == 200
    assert [entry["action"] for entry in logs.json()] == ["admin_override", "reallocated"]
    assert logs.json()[1]["from_engineer_id"] == str(first.id)


@pytest.mark.integration
def test_reallocate_requires_reason(client, factory, setup):
    service, site = setup
    user, _ = factory.engineer()
    booking = factory.booking(site, service, JOB_DATE)

    response = client.post(f"/bookings/{booking.id}/reallocate", json={"engineer_id": str(user.id), "reason": ""})

    assert response.status_code == 422


@pytest.mark.integration
def test_logs_for_unknown_booking(client):
    response = client.get(f"/bookings/{uuid4()}/allocation-logs")

    assert response.status_code == 404


@pytest.mark.integration
def test_route_endpoint(client, factory, setup):
    service, site = setup
    user, _ = factory.engineer()
    pm = factory.booking(site, service, JOB_DATE, slot=TimeSlot.PM, status=BookingStatus.CONFIRMED, engineer=user)
    am = factory.booking(site, service, JOB_DATE, slot=TimeSlot.AM, status=BookingStatus.CONFIRMED, engineer=user)

    response = client.get(f"/engineers/{user.id}/route", params={"date": JOB_DATE.isoformat()})

    assert response.status_code == 200
    assert [stop["booking_id"] for stop in response.json()] == [str(am.id), str(pm.id)]


@pytest.mark.integration
def test_correlation_id_round_trip(client):
    response = client.get("/health", headers={"X-Correlation-ID": "req-123"})

    assert response.headers["X-Correlation-ID"] == "req-123"


@pytest.mark.integration
def test_engineer_approval_endpoints(client, factory):
    _, pending = factory.engineer(status=EngineerStatus.PENDING_APPROVAL)
    _, rejected = factory.engineer(status=EngineerStatus.PENDING_APPROVAL)

    approved = client.post(f"/admin/engineers/{pending.id}/approve")
    suspended = client.post(f"/admin/engineers/{pending.id}/suspend")
    client.post(f"/admin/engineers/{rejected.id}/reject")
    reapproved = client.post(f"/admin/engineers/{rejected.id}/approve")
    missing = client.post(f"/admin/engineers/{uuid4()}/approve")

    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_at"] is not None
    assert suspended.json()["status"] == "suspended"
    assert reapproved.status_code == 409
    assert reapproved.json()["error_code"] == "INVALID_TRANSITION"
    assert missing.status_code == 404


@pytest.mark.integration
def test_availability_and_time_off_endpoints(client, factory):
    _, profile = factory.engineer()

    upserted = client.put(f"/admin/engineers/{profile.id}/availability", json={"entries": [
        {"date": JOB_DATE.isoformat(), "slot": "am", "is_available": False},
        {"date": JOB_DATE.isoformat(), "slot": "pm", "is_available": True},
    ]})
    blocked = client.post(f"/admin/engineers/{profile.id}/time-off", json={
        "start": JOB_DATE.isoformat(),
        "end": (JOB_DATE + timedelta(days=2)).isoformat(),
    })
    backwards = client.post(f"/admin/engineers/{profile.id}/time-off", json={
        "start": JOB_DATE.isoformat(),
        "end": (JOB_DATE - timedelta(days=1)).isoformat(),
    })

    assert upserted.status_code == 200
    assert [entry["slot"] for entry in upserted.json()] == ["am", "pm"]
    assert blocked.status_code == 200
    assert len(blocked.json()) == 3
    assert all(entry["slot"] == "full_day" and not entry["is_available"] for entry in blocked.json())
    assert backwards.status_code == 422
    assert backwards.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.integration
def test_site_backfill_endpoint_with_lookups_offline(client, factory):
    factory.site(postcode="E1 6AN")

    response = client.post("/admin/sites/resolve-coordinates", params={"limit": 10})

    assert response.status_code == 200
    assert response.json() == {"checked": 1, "resolved": 0}
