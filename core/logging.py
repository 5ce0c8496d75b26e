"""Shared logging helpers."""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def _level_from_env(default: int) -> int:
    raw = (os.getenv("LOG_LEVEL") or "").strip().upper()
    if not raw:
        return default
    resolved = logging.getLevelName(raw)
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: int = logging.INFO, *, fmt: Optional[str] = None) -> None:
    """Ensure root logger is configured once."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    logging.basicConfig(level=_level_from_env(level), format=fmt or _DEFAULT_FORMAT)
    _CONFIGURED = True


def get_logger(name: str, *, level: int = logging.INFO) -> logging.Logger:
    """Return configured logger for a module."""
    setup_logging(level=level)
    return logging.getLogger(name)


def format_context(**fields: Any) -> str:
    """Render ``key=value`` pairs for log lines, skipping empty values."""
    parts = [f"{key}={value}" for key, value in fields.items() if value not in (None, "")]
    return " ".join(parts)


__all__ = ["format_context", "get_logger", "setup_logging"]
