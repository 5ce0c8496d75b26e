"""Utilities for creating Prometheus collectors that tolerate re-registration."""

from __future__ import annotations

from typing import Sequence

from prometheus_client import REGISTRY, Counter, Gauge

from core.logging import get_logger

logger = get_logger(__name__)


def _lookup_collector(name: str):
    existing = getattr(REGISTRY, "_names_to_collectors", None)
    if isinstance(existing, dict):
        # Counters register under their ``_total`` sample name as well.
        return existing.get(name) or existing.get(f"{name}_total")
    return None


def build_counter(name: str, documentation: str, labelnames: Sequence[str] | None = None):
    """Create a Counter, or return the one already registered under ``name``."""

    labels = tuple(labelnames or ())
    try:
        return Counter(name, documentation, labels)
    except ValueError:
        collector = _lookup_collector(name)
        if collector is None:
            logger.debug("Counter %s already registered but not found in registry.", name)
        return collector


def build_gauge(name: str, documentation: str, labelnames: Sequence[str] | None = None):
    """Create a Gauge, or return the one already registered under ``name``."""

    labels = tuple(labelnames or ())
    try:
        return Gauge(name, documentation, labels)
    except ValueError:
        collector = _lookup_collector(name)
        if collector is None:
            logger.debug("Gauge %s already registered but not found in registry.", name)
        return collector


__all__ = ["build_counter", "build_gauge"]
