"""Helpers for loading optional .env files."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

from core.logging import get_logger

logger = get_logger(__name__)


def load_dotenv_if_available(path: Path | None = None) -> None:
    """Load variables from a .env file when one exists; real env values win."""
    env_path = path or Path(".env")
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)
        logger.debug("Loaded environment variables from %s", env_path)


__all__ = ["load_dotenv_if_available"]
