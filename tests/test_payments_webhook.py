from __future__ import annotations

import uuid
from typing import Any, Dict, List

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import select

from core.membership_constants import MembershipState
from database import get_db
from models.membership import MembershipRecord
from web.deps import get_settings
from web.routers import payments


@pytest.fixture()
def delivered(monkeypatch: pytest.MonkeyPatch) -> List[Dict[str, Any]]:
    captured: List[Dict[str, Any]] = []
    monkeypatch.setattr(payments, "deliver_notification", lambda payload: captured.append(payload))
    return captured


@pytest.fixture()
def webhook_client(session_factory, settings, delivered):
    app = FastAPI()
    app.include_router(payments.router, prefix="/api/v1")

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    client = TestClient(app)
    try:
        yield client
    finally:
        client.close()


def _checkout_event(user_id: Any, membership_type_id: Any) -> Dict[str, Any]:
    session = {
        "id": "cs_test_123",
        "subscription": "sub_456",
        "metadata": {"userId": str(user_id), "membershipTypeId": str(membership_type_id)},
    }
    return {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": session}}


def test_checkout_completed_assigns_membership(
    webhook_client: TestClient, delivered, db_session, make_user, premium_plan
) -> None:
    user = make_user()

    response = webhook_client.post("/api/v1/payments/webhook", json=_checkout_event(user.id, premium_plan.id))
    assert response.status_code == 200, response.text

    payload = response.json()
    assert payload["received"] is True
    assert payload["handled"] is True
    assert payload["membership"]["source"] == "checkout"
    assert payload["membership"]["externalReference"] == "sub_456"

    records = list(
        db_session.execute(select(MembershipRecord).where(MembershipRecord.user_id == user.id)).scalars().all()
    )
    assert len(records) == 1
    assert records[0].state == MembershipState.ACTIVE.value
    assert delivered[0]["event"] == "membership.purchased"
    assert delivered[0]["membershipId"] == payload["membership"]["id"]


def test_checkout_replay_renews_same_record(webhook_client: TestClient, make_user, premium_plan) -> None:
    user = make_user()
    event = _checkout_event(user.id, premium_plan.id)

    first = webhook_client.post("/api/v1/payments/webhook", json=event)
    second = webhook_client.post("/api/v1/payments/webhook", json=event)

    assert first.status_code == second.status_code == 200
    assert first.json()["membership"]["id"] == second.json()["membership"]["id"]


def test_other_event_types_are_acknowledged(webhook_client: TestClient, delivered) -> None:
    response = webhook_client.post(
        "/api/v1/payments/webhook",
        json={"id": "evt_2", "type": "invoice.paid", "data": {"object": {}}},
    )
    assert response.status_code == 200
    assert response.json() == {"received": True, "handled": False, "membership": None}
    assert delivered == []


def test_checkout_without_metadata_is_rejected(webhook_client: TestClient, premium_plan) -> None:
    response = webhook_client.post(
        "/api/v1/payments/webhook",
        json=_checkout_event("not-a-uuid", premium_plan.id),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "payments.invalid_metadata"


def test_checkout_for_unknown_plan_reports_error(webhook_client: TestClient, make_user) -> None:
    user = make_user()

    response = webhook_client.post("/api/v1/payments/webhook", json=_checkout_event(user.id, uuid.uuid4()))
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["code"] == "membership.invalid_request"
