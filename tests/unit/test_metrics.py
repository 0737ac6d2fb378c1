"""
Unit tests for the metrics collector.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from fieldops.lib.metrics import MetricsCollector, get_metrics_collector, reset_metrics


@pytest.mark.unit
def test_counters_by_label():
    metrics = MetricsCollector()
    metrics.increment_quotes(tier="same_site")
    metrics.increment_quotes(tier="SAME_SITE")
    metrics.increment_quotes(tier="none")

    assert metrics.get_counter_value("quotes_total", {"tier": "same_site"}) == 2
    assert metrics.get_counter_value("quotes_total", {"tier": "none"}) == 1
    assert metrics.get_counter_value("quotes_total", {"tier": "adjacent_day"}) == 0


@pytest.mark.unit
def test_label_order_does_not_matter():
    metrics = MetricsCollector()
    metrics.increment_transitions(from_status="pending", to_status="confirmed")

    assert metrics.get_counter_value(
        "status_transitions_total", {"to_status": "confirmed", "from_status": "pending"}
    ) == 1


@pytest.mark.unit
def test_prometheus_export_format():
    metrics = MetricsCollector()
    metrics.increment_allocations(action="auto_assigned", outcome="success")
    metrics.increment_claims(outcome="conflict")

    output = metrics.export_prometheus()

    assert "# TYPE allocations_total counter" in output
    assert 'allocations_total{action="auto_assigned",outcome="success"} 1' in output
    assert "# HELP claims_total Total number of engineer self-assignment attempts" in output
    assert 'claims_total{outcome="conflict"} 1' in output


@pytest.mark.unit
def test_concurrent_increments_are_counted():
    metrics = MetricsCollector()

    with ThreadPoolExecutor(max_workers=8) as pool:
        for _ in range(400):
            pool.submit(metrics.increment_postcode_lookups, "resolved")

    assert metrics.get_counter_value("postcode_lookups_total", {"outcome": "resolved"}) == 400


@pytest.mark.unit
def test_global_collector_reset():
    metrics = get_metrics_collector()
    metrics.increment_claims(outcome="won")

    reset_metrics()

    assert get_metrics_collector() is metrics
    assert metrics.get_counter_value("claims_total", {"outcome": "won"}) == 0


@pytest.mark.unit
def test_wrong_label_names_rejected():
    metrics = MetricsCollector()

    with pytest.raises(ValueError):
        metrics._increment("claims_total", outcome="won", engineer="x")

    assert metrics.export_prometheus() == ""
