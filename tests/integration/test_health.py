"""
Integration tests for the health and metrics endpoints.
"""
import pytest
from httpx import AsyncClient, ASGITransport

from fieldops.api.app import app
from fieldops.lib.metrics import get_metrics_collector


@pytest.mark.asyncio
async def test_health_endpoint():
    """Test that /health returns 200 with {status: ok}."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_metrics_endpoint_exports_counters():
    metrics = get_metrics_collector()
    metrics.increment_quotes(tier="same_area")
    metrics.increment_claims(outcome="won")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'quotes_total{tier="same_area"} 1' in response.text
    assert 'claims_total{outcome="won"} 1' in response.text


@pytest.mark.asyncio
async def test_unknown_route_has_error_body():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/does-not-exist")

    assert response.status_code == 404
    assert "correlation_id" in response.json()
