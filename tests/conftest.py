import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Generator, Optional

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import UUID  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import database as database_module  # noqa: E402
from database import Base, IS_POSTGRES  # noqa: E402

# Lightweight fallback for the PostgreSQL-only UUID column type when using SQLite.
if not IS_POSTGRES:

    @compiles(UUID, "sqlite")  # type: ignore[misc]
    def _compile_uuid_sqlite(_element, _compiler, **_kw):  # pragma: no cover - sqlite compat
        return "TEXT"


import models  # noqa: E402,F401
from core.membership_constants import MembershipState  # noqa: E402
from models.membership import MembershipRecord, MembershipType  # noqa: E402
from models.user import User  # noqa: E402
from services.membership_settings import MembershipSettings  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database per test; engine writes commit step by step."""
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine, monkeypatch: pytest.MonkeyPatch) -> sessionmaker:
    factory = sessionmaker(bind=engine, autoflush=False)
    monkeypatch.setattr(database_module, "SessionLocal", factory)
    monkeypatch.setattr(database_module, "engine", engine)
    return factory


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make_user(email: Optional[str] = None, *, active_membership_id: Optional[uuid.UUID] = None) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            active_membership_id=active_membership_id,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_type(db_session: Session) -> Callable[..., MembershipType]:
    def _make_type(
        name: str,
        *,
        price: str = "0",
        duration_months: int = 1,
        feature_flags: Optional[Dict[str, Any]] = None,
        **limits: Any,
    ) -> MembershipType:
        membership_type = MembershipType(
            id=uuid.uuid4(),
            name=name,
            price=Decimal(price),
            currency="EUR",
            duration_months=duration_months,
            feature_flags=feature_flags or {},
            **limits,
        )
        db_session.add(membership_type)
        db_session.commit()
        return membership_type

    return _make_type


@pytest.fixture()
def make_record(db_session: Session) -> Callable[..., MembershipRecord]:
    def _make_record(
        user: User,
        membership_type: MembershipType,
        *,
        starts_at: datetime,
        ends_at: datetime,
        state: MembershipState = MembershipState.ACTIVE,
        created_at: Optional[datetime] = None,
        point: bool = False,
    ) -> MembershipRecord:
        record = MembershipRecord(
            id=uuid.uuid4(),
            user_id=user.id,
            membership_type_id=membership_type.id,
            starts_at=starts_at,
            ends_at=ends_at,
            state=MembershipState(state).value,
            source="admin",
            created_at=created_at or starts_at,
        )
        db_session.add(record)
        if point:
            user.active_membership_id = record.id
            db_session.add(user)
        db_session.commit()
        return record

    return _make_record


@pytest.fixture()
def free_plan(make_type: Callable[..., MembershipType]) -> MembershipType:
    return make_type("Plan Gratuito", price="0", duration_months=0, provider_limit=1, item_limit=10, list_limit=1)


@pytest.fixture()
def basic_plan(make_type: Callable[..., MembershipType]) -> MembershipType:
    return make_type("Plan Standard", price="4.99", duration_months=1, provider_limit=3, item_limit=100)


@pytest.fixture()
def premium_plan(make_type: Callable[..., MembershipType]) -> MembershipType:
    return make_type("Plan Premium", price="9.99", duration_months=1, feature_flags={"ai": True})


@pytest.fixture()
def settings(free_plan: MembershipType) -> MembershipSettings:
    return MembershipSettings(default_plan_id=free_plan.id, default_validity_days=3650)
