"""Prometheus counters for membership reconciliation outcomes."""

from __future__ import annotations

import time

from core.logging import get_logger
from services.prometheus_helpers import build_counter, build_gauge

logger = get_logger(__name__)

_ASSIGN_COUNTER = build_counter(
    "membership_assignments_total",
    "Membership assignments grouped by trigger and outcome.",
    ("source", "result"),
)
_REPAIR_COUNTER = build_counter(
    "membership_repairs_total",
    "Repair runs grouped by the candidate path that won.",
    ("path",),
)
_SWEEP_EXPIRED_COUNTER = build_counter(
    "membership_sweep_expired_records_total",
    "Records transitioned active -> expired by the sweeper.",
)
_SWEEP_REPOINTED_COUNTER = build_counter(
    "membership_sweep_repointed_users_total",
    "Users whose active pointer changed during a sweep.",
    ("outcome",),
)
_SWEEP_FAILURE_COUNTER = build_counter(
    "membership_sweep_user_failures_total",
    "Per-user failures isolated by the sweeper.",
)
_SWEEP_LAST_RUN_GAUGE = build_gauge(
    "membership_sweep_last_run_timestamp",
    "Unix timestamp of the last completed sweep.",
)


def record_assignment(source: str, result: str) -> None:
    if _ASSIGN_COUNTER is None:
        return
    _ASSIGN_COUNTER.labels(source=source or "unknown", result=result).inc()


def record_repair(path: str) -> None:
    if _REPAIR_COUNTER is None:
        return
    _REPAIR_COUNTER.labels(path=path).inc()


def record_sweep(*, expired: int, adopted: int, fallback: int, failed: int) -> None:
    if _SWEEP_EXPIRED_COUNTER is not None and expired:
        _SWEEP_EXPIRED_COUNTER.inc(expired)
    if _SWEEP_REPOINTED_COUNTER is not None:
        if adopted:
            _SWEEP_REPOINTED_COUNTER.labels(outcome="adopted").inc(adopted)
        if fallback:
            _SWEEP_REPOINTED_COUNTER.labels(outcome="fallback").inc(fallback)
    if _SWEEP_FAILURE_COUNTER is not None and failed:
        _SWEEP_FAILURE_COUNTER.inc(failed)
    if _SWEEP_LAST_RUN_GAUGE is not None:
        _SWEEP_LAST_RUN_GAUGE.set(time.time())


__all__ = ["record_assignment", "record_repair", "record_sweep"]
