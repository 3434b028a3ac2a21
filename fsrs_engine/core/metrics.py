"""
Process-wide scheduling metrics

Lightweight counters, histograms and gauges for observing the engine.
Nothing recorded here is read back by the scheduler.
"""
from threading import Lock
import time
import logging

logger = logging.getLogger(__name__)

_lock = Lock()

# Metrics storage (simplified - export with format_prometheus_metrics)
_metrics = {
    "fsrs_reviews_total": {},
    "fsrs_review_duration_ms": [],
    "fsrs_create_duration_ms": [],
    "fsrs_cards_created_total": 0,
    "fsrs_errors_total": {},
}

_MAX_HISTOGRAM_SAMPLES = 1000


def _label_key(labels: dict) -> str:
    return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


def increment_counter(name: str, labels: dict = None):
    """Increment a counter metric"""
    with _lock:
        if labels is None:
            _metrics[name] = _metrics.get(name, 0) + 1
            return
        if not isinstance(_metrics.get(name), dict):
            _metrics[name] = {}
        key = _label_key(labels)
        _metrics[name][key] = _metrics[name].get(key, 0) + 1


def observe_histogram(name: str, value: float, labels: dict = None):
    """Record a histogram observation"""
    with _lock:
        samples = _metrics.setdefault(name, [])
        samples.append({"value": value, "labels": labels, "time": time.time()})
        if len(samples) > _MAX_HISTOGRAM_SAMPLES:
            samples.pop(0)  # Keep rolling window


def set_gauge(name: str, value: float):
    """Set a gauge metric"""
    with _lock:
        _metrics[name] = value


def get_metrics() -> dict:
    """Get all metrics for export"""
    with _lock:
        return {
            k: (v.copy() if isinstance(v, (dict, list)) else v)
            for k, v in _metrics.items()
        }


def reset_metrics():
    """Clear every recorded value"""
    with _lock:
        for name, value in list(_metrics.items()):
            if isinstance(value, dict):
                _metrics[name] = {}
            elif isinstance(value, list):
                _metrics[name] = []
            else:
                _metrics[name] = 0
    logger.debug("Scheduling metrics reset")


def format_prometheus_metrics() -> str:
    """Format metrics in Prometheus text format"""
    snapshot = get_metrics()
    lines = []

    lines.append("# HELP fsrs_reviews_total Total reviews by rating")
    lines.append("# TYPE fsrs_reviews_total counter")
    for key, value in snapshot.get("fsrs_reviews_total", {}).items():
        lines.append(f"fsrs_reviews_total{{{key}}} {value}")

    lines.append("# HELP fsrs_review_duration_ms Review computation time")
    lines.append("# TYPE fsrs_review_duration_ms histogram")
    durations = snapshot.get("fsrs_review_duration_ms", [])
    if durations:
        total = sum(d["value"] for d in durations)
        lines.append(f"fsrs_review_duration_ms_sum {total}")
        lines.append(f"fsrs_review_duration_ms_count {len(durations)}")

    lines.append("# HELP fsrs_cards_created_total Cards created")
    lines.append("# TYPE fsrs_cards_created_total counter")
    lines.append(f"fsrs_cards_created_total {snapshot.get('fsrs_cards_created_total', 0)}")

    return "\n".join(lines)
