# =============================================
# File: storefront/utils/metrics.py
# Purpose: In-process counters & latency histograms for /metrics
#          (HTTP traffic, interaction ingest, affinity runs, ranker outcomes)
# =============================================
from __future__ import annotations
from typing import Dict, Any, List
import threading
import time

_lock = threading.Lock()

_counters: Dict[str, int] = {
    "requests_total": 0,
    "rate_limit_hits_total": 0,
    "interactions_recorded_total": 0,
    "aggregation_runs_total": 0,
    "aggregation_users_total": 0,
    "aggregation_rows_total": 0,
    "aggregation_user_failures_total": 0,
}

# Labeled counters
_interactions_by_type: Dict[str, int] = {}   # event_type -> count
_rec_outcomes: Dict[str, int] = {}           # "ok" | "empty" | "failed:<kind>" -> count

# Fixed-bucket latency histograms (milliseconds), last slot is +Inf
_BUCKETS: List[int] = [5, 20, 50, 100, 200, 500, 1000, 2000, 5000]
_histograms: Dict[str, List[int]] = {
    "request": [0] * (len(_BUCKETS) + 1),
    "ranker": [0] * (len(_BUCKETS) + 1),
}

# Per-endpoint latency samples (bounded) for avg/p95
_MAX_SAMPLES: int = 1000
_endpoint_latency: Dict[str, List[float]] = {}   # "METHOD /path" -> [ms]
_endpoint_counts: Dict[str, int] = {}


def _avg(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _p95(values: List[float]) -> float:
    if not values:
        return 0.0
    xs = sorted(values)
    return xs[int(0.95 * (len(xs) - 1))]


def _observe(name: str, ms: float) -> None:
    counts = _histograms[name]
    for i, thr in enumerate(_BUCKETS):
        if ms <= thr:
            counts[i] += 1
            return
    counts[-1] += 1


def record_request(latency_ms: int) -> None:
    with _lock:
        _counters["requests_total"] += 1
        _observe("request", latency_ms)


def record_rate_limit_hit() -> None:
    with _lock:
        _counters["rate_limit_hits_total"] += 1


def record_interaction(event_type: str) -> None:
    with _lock:
        _counters["interactions_recorded_total"] += 1
        _interactions_by_type[event_type] = _interactions_by_type.get(event_type, 0) + 1


def record_recommendation_outcome(outcome: str) -> None:
    with _lock:
        _rec_outcomes[outcome] = _rec_outcomes.get(outcome, 0) + 1


def record_ranker_latency(latency_ms: float) -> None:
    with _lock:
        _observe("ranker", latency_ms)


def record_aggregation(users: int, rows: int, failures: int) -> None:
    with _lock:
        _counters["aggregation_runs_total"] += 1
        _counters["aggregation_users_total"] += int(users)
        _counters["aggregation_rows_total"] += int(rows)
        _counters["aggregation_user_failures_total"] += int(failures)


def record_endpoint(method: str, path: str, latency_ms: float) -> None:
    key = f"{method.upper()} {path}"
    with _lock:
        _endpoint_counts[key] = _endpoint_counts.get(key, 0) + 1
        buf = _endpoint_latency.setdefault(key, [])
        buf.append(float(latency_ms))
        if len(buf) > _MAX_SAMPLES:
            del buf[: len(buf) - _MAX_SAMPLES]


def snapshot() -> Dict[str, Any]:
    with _lock:
        perf = {
            key: {
                "count": float(_endpoint_counts.get(key, 0)),
                "avg_latency_ms": _avg(buf),
                "p95_latency_ms": _p95(buf),
            }
            for key, buf in _endpoint_latency.items()
        }
        return {
            "counters": dict(_counters),
            "interactions_by_type": dict(_interactions_by_type),
            "recommendation_outcomes": dict(_rec_outcomes),
            "latency_ms": {
                "buckets": list(_BUCKETS) + ["+Inf"],
                **{name: list(counts) for name, counts in _histograms.items()},
            },
            "performance": {
                "endpoints": perf,
                "generated_at": time.time(),
            },
        }


def reset() -> None:
    """For tests: zero every counter and drop samples."""
    with _lock:
        for k in _counters:
            _counters[k] = 0
        _interactions_by_type.clear()
        _rec_outcomes.clear()
        _endpoint_latency.clear()
        _endpoint_counts.clear()
        for counts in _histograms.values():
            counts[:] = [0] * len(counts)
