from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

import database
from models.user import User
from web.deps_admin import load_admin_token_map


def test_healthz_and_metrics(session_factory) -> None:
    from web.main import app

    client = TestClient(app)
    try:
        health = client.get("/healthz")
        assert health.status_code == 200, health.text
        assert health.json()["database"]["ok"] is True

        metrics = client.get("/metrics")
        assert metrics.status_code == 200
        assert "membership_assignments_total" in metrics.text
    finally:
        client.close()


def test_admin_token_map_parses_actor_entries(monkeypatch) -> None:
    monkeypatch.setenv("ADMIN_API_TOKENS", "ops:token-a, token-b ,")
    monkeypatch.setenv("ADMIN_API_TOKEN", "token-c")
    monkeypatch.setenv("ADMIN_API_ACTOR", "support")

    assert load_admin_token_map() == {"token-a": "ops", "token-b": "support", "token-c": "support"}


def test_session_scope_rolls_back_uncommitted_work(session_factory, db_session) -> None:
    user_id = uuid.uuid4()

    with pytest.raises(RuntimeError):
        with database.session_scope() as db:
            db.add(User(id=user_id, email="rollback@example.com"))
            db.flush()
            raise RuntimeError("boom")

    assert db_session.get(User, user_id) is None


def test_session_scope_keeps_committed_work(session_factory, db_session) -> None:
    user_id = uuid.uuid4()

    with database.session_scope() as db:
        db.add(User(id=user_id, email="kept@example.com"))
        db.commit()

    assert db_session.get(User, user_id) is not None
