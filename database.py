"""Engine and session wiring for the membership store."""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from core.env import env_int, env_str
from core.env_utils import load_dotenv_if_available

load_dotenv_if_available()

TEST_DATABASE_URL: Optional[str] = env_str("TEST_DATABASE_URL")
DATABASE_URL: Optional[str] = env_str("DATABASE_URL") or TEST_DATABASE_URL
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL or TEST_DATABASE_URL must be set.")

ALLOW_NON_POSTGRES = env_str("DATABASE_ALLOW_NON_POSTGRES", "0") == "1"
IS_POSTGRES = DATABASE_URL.lower().startswith("postgresql")
if not IS_POSTGRES and not ALLOW_NON_POSTGRES:
    raise RuntimeError(f"DATABASE_URL must be a PostgreSQL DSN. Got: {DATABASE_URL}")


def _engine_options() -> dict:
    if DATABASE_URL.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    options: dict = {"pool_pre_ping": True}
    if IS_POSTGRES:
        options["pool_size"] = env_int("DATABASE_POOL_SIZE", 5, minimum=1)
        options["max_overflow"] = env_int("DATABASE_MAX_OVERFLOW", 10, minimum=0)
        options["pool_recycle"] = env_int("DATABASE_POOL_RECYCLE_SECONDS", 1800, minimum=0)
    return options


engine = create_engine(DATABASE_URL, **_engine_options())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


def get_db():
    """Yield a request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for workers and scripts; membership steps commit on their own."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
