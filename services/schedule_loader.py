"""Celery beat schedule for membership maintenance, read from YAML.

Each entry under ``entries`` names a registered task and a 5-field cron
expression. Entries can be switched off with ``enabled: false``; entries
missing a task or cron are skipped with a warning so one bad line does not
take beat down.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from celery.schedules import crontab

from core.env import env_str
from core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SCHEDULE_FILE = Path(__file__).resolve().parent.parent / "configs" / "schedules" / "memberships.yml"

ScheduleEntries = Dict[str, Dict[str, Any]]


def resolve_schedule_path(path: Optional[Path] = None) -> Path:
    """Explicit path, then ``MEMBERSHIP_SCHEDULE_FILE``, then the bundled default."""
    if path is not None:
        return Path(path)
    override = (env_str("MEMBERSHIP_SCHEDULE_FILE") or "").strip()
    return Path(override) if override else DEFAULT_SCHEDULE_FILE


def parse_cron(expr: str) -> crontab:
    fields = str(expr or "").split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression '{expr}'. Expected 5 fields.")
    minute, hour, day_of_month, month, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month,
        day_of_week=day_of_week,
    )


def _normalize_entry(name: str, payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        logger.warning("Schedule entry %s is not a mapping; skipped.", name)
        return None
    if payload.get("enabled") is False:
        logger.info("Schedule entry %s is disabled.", name)
        return None
    task = payload.get("task")
    cron = payload.get("cron")
    if not task or not cron:
        logger.warning("Schedule entry %s needs both 'task' and 'cron'; skipped.", name)
        return None
    return {
        "task": str(task),
        "cron": str(cron),
        "args": list(payload.get("args") or []),
        "kwargs": dict(payload.get("kwargs") or {}),
        "options": dict(payload.get("options") or {}),
    }


def load_schedule_config(path: Optional[Path] = None) -> Tuple[Optional[str], ScheduleEntries, Path]:
    """Return ``(timezone, entries, path)``; a missing file yields no entries."""
    schedule_path = resolve_schedule_path(path)
    if not schedule_path.exists():
        logger.warning("Membership schedule file %s not found; beat will run no membership jobs.", schedule_path)
        return None, {}, schedule_path

    try:
        raw = yaml.safe_load(schedule_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - config parse guard
        raise RuntimeError(f"Failed to parse membership schedule file: {schedule_path}") from exc

    entries: ScheduleEntries = {}
    for name, payload in (raw.get("entries") or {}).items():
        entry = _normalize_entry(str(name), payload)
        if entry is not None:
            entries[str(name)] = entry
    timezone_name = raw.get("timezone")
    return (str(timezone_name) if timezone_name else None), entries, schedule_path


def as_celery_schedule(entries: ScheduleEntries) -> Dict[str, Dict[str, Any]]:
    """Build ``beat_schedule`` from loaded entries; an invalid cron names its entry."""
    schedule: Dict[str, Dict[str, Any]] = {}
    for name, payload in entries.items():
        try:
            cron = parse_cron(payload["cron"])
        except ValueError as exc:
            raise ValueError(f"Schedule entry {name}: {exc}") from exc
        entry: Dict[str, Any] = {
            "task": payload["task"],
            "schedule": cron,
            "args": payload.get("args", []),
            "kwargs": payload.get("kwargs", {}),
        }
        if payload.get("options"):
            entry["options"] = payload["options"]
        schedule[name] = entry
    return schedule


__all__ = [
    "DEFAULT_SCHEDULE_FILE",
    "as_celery_schedule",
    "load_schedule_config",
    "parse_cron",
    "resolve_schedule_path",
]
