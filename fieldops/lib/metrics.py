"""
In-process counters for decision outcomes, exported in Prometheus text format.

    metrics = get_metrics_collector()
    metrics.increment_quotes(tier="same_site")
    metrics.increment_claims(outcome="conflict")
    body = metrics.export_prometheus()
"""

from typing import Dict, List, Tuple
from threading import Lock

LabelSet = Tuple[Tuple[str, str], ...]

# name -> (help text, label names)
COUNTERS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "quotes_total": (
        "Total number of price quotes by discount tier",
        ("tier",),
    ),
    "allocations_total": (
        "Total number of engineer allocation attempts",
        ("action", "outcome"),
    ),
    "claims_total": (
        "Total number of engineer self-assignment attempts",
        ("outcome",),
    ),
    "status_transitions_total": (
        "Total number of applied booking status transitions",
        ("from_status", "to_status"),
    ),
    "postcode_lookups_total": (
        "Total number of postcode coordinate lookups",
        ("outcome",),
    ),
}


def _label_set(labels: Dict[str, str]) -> LabelSet:
    return tuple(sorted((name, str(value).lower()) for name, value in labels.items()))


class MetricsCollector:
    """
    Thread-safe counter store keyed by metric name and label set.

    Label values are lower-cased so enum values and their names count together.
    """

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[str, Dict[LabelSet, int]] = {}

    def _increment(self, metric_name: str, amount: int = 1, **labels: str) -> None:
        expected = COUNTERS[metric_name][1]
        if set(labels) != set(expected):
            raise ValueError(f"{metric_name} takes labels {expected}, got {tuple(labels)}")
        key = _label_set(labels)
        with self._lock:
            series = self._counters.setdefault(metric_name, {})
            series[key] = series.get(key, 0) + amount

    # ===== Decision counters =====

    def increment_quotes(self, tier: str, amount: int = 1):
        """tier: same_site, same_area, adjacent_day or none."""
        self._increment("quotes_total", amount, tier=tier)

    def increment_allocations(self, action: str, outcome: str, amount: int = 1):
        """outcome: success, no_candidate or conflict."""
        self._increment("allocations_total", amount, action=action, outcome=outcome)

    def increment_claims(self, outcome: str, amount: int = 1):
        self._increment("claims_total", amount, outcome=outcome)

    def increment_transitions(self, from_status: str, to_status: str, amount: int = 1):
        self._increment("status_transitions_total", amount, from_status=from_status, to_status=to_status)

    def increment_postcode_lookups(self, outcome: str, amount: int = 1):
        """outcome: cache_hit, resolved, not_found or failed."""
        self._increment("postcode_lookups_total", amount, outcome=outcome)

    # ===== Read side =====

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        key = _label_set(labels)
        with self._lock:
            return self._counters.get(metric_name, {}).get(key, 0)

    def export_prometheus(self) -> str:
        """Render every counter that has been touched, sorted by name then labels."""
        with self._lock:
            snapshot = {name: dict(series) for name, series in self._counters.items()}

        lines: List[str] = []
        for metric_name in sorted(snapshot):
            help_text = COUNTERS.get(metric_name, ("Counter metric", ()))[0]
            lines.append(f"# HELP {metric_name} {help_text}")
            lines.append(f"# TYPE {metric_name} counter")
            for label_set, value in sorted(snapshot[metric_name].items()):
                rendered = ",".join(f'{name}="{val}"' for name, val in label_set)
                lines.append(f"{metric_name}{{{rendered}}} {value}")
            lines.append("")

        return "\n".join(lines)

    def reset_all(self):
        with self._lock:
            self._counters.clear()


_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Process-wide collector, created on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Zero the process-wide collector in place (tests)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
