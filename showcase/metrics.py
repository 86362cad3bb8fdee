"""
Thread-safe in-memory metrics and error sink for the showcase service.

Tracks per-job signals:
  - Outcomes: jobs.<name>.started / .succeeded / .failed counters
  - Latency:  duration samples per job (last 100)
  - Saturation: in-flight jobs gauge
  - Errors:   bounded log of recent job failures for root-cause analysis

All data is ephemeral (resets on restart) and served by GET /metrics.
"""

import time
import threading
from typing import Dict, List
from collections import defaultdict

_lock = threading.Lock()

_counters: Dict[str, int] = defaultdict(int)

_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

_gauges: Dict[str, float] = defaultdict(float)

_recent_errors: List[dict] = []
MAX_ERRORS = 50


# ── Public API ────────────────────────────────────────────────────────────────

def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'jobs.image.failed', 'webhooks.billing')."""
    with _lock:
        _counters[name] += amount


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_latency(job: str, duration_ms: float):
    """Record a latency sample in milliseconds."""
    with _lock:
        samples = _latency_samples[job]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[job] = samples[-MAX_SAMPLES:]


def record_error(job: str, error_type: str, message: str, user_id: str = "", project_id: str = ""):
    """Report a job failure."""
    with _lock:
        _counters[f"errors.{job}.{error_type}"] += 1
        _recent_errors.append({
            "timestamp": time.time(),
            "job": job,
            "error_type": error_type,
            "message": message[:300],
            "user_id": user_id,
            "project_id": project_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


class job_timer:
    """
    Context manager around one job run.

        with metrics.job_timer("video"):
            ...

    Counts start/success/failure, tracks in-flight jobs and records latency.
    """

    def __init__(self, job: str):
        self.job = job
        self._start = 0.0

    def __enter__(self) -> "job_timer":
        self._start = time.monotonic()
        inc_counter(f"jobs.{self.job}.started")
        add_gauge("jobs_in_flight", 1)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        add_gauge("jobs_in_flight", -1)
        record_latency(self.job, (time.monotonic() - self._start) * 1000)
        outcome = "failed" if exc_type else "succeeded"
        inc_counter(f"jobs.{self.job}.{outcome}")


def get_snapshot() -> dict:
    """Complete metrics snapshot for the /metrics endpoint."""
    now = time.time()

    with _lock:
        latency_stats = {}
        for job, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[job] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "recent_errors": list(_recent_errors[-10:]),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }


def reset():
    """Drop all collected data."""
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _gauges.clear()
        _recent_errors.clear()
