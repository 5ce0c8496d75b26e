from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from services.membership_catalog import (
    feature_enabled,
    list_membership_types,
    membership_limits,
    resolve_default_plan,
    tier_rank,
)
from services.membership_errors import MembershipNotFoundError
from services.membership_settings import MembershipSettings, load_membership_settings


def test_list_membership_types_orders_by_price(db_session, premium_plan, free_plan, basic_plan) -> None:
    names = [item.name for item in list_membership_types(db_session)]
    assert names == ["Plan Gratuito", "Plan Standard", "Plan Premium"]


def test_tier_rank_prefers_feature_flags_over_price(make_type) -> None:
    expensive_basic = make_type("Plan Empresa", price="99.00", duration_months=1)
    cheap_premium = make_type("Plan IA", price="1.00", duration_months=1, feature_flags={"ai": True})

    assert tier_rank(cheap_premium) > tier_rank(expensive_basic)
    assert tier_rank(None) == (-1, Decimal(-1))


def test_membership_limits_treat_null_and_zero_as_unlimited(make_type) -> None:
    plan = make_type("Plan Limitado", price="2.00", provider_limit=2, item_limit=0)
    assert membership_limits(plan) == {"providers": 2, "items": None, "lists": None}


def test_feature_enabled_reads_flags(premium_plan, free_plan) -> None:
    assert feature_enabled(premium_plan, "ai") is True
    assert feature_enabled(free_plan, "ai") is False
    assert feature_enabled(None, "ai") is False


def test_resolve_default_plan_uses_configured_id(db_session, basic_plan, free_plan) -> None:
    settings = MembershipSettings(default_plan_id=basic_plan.id)
    assert resolve_default_plan(db_session, settings).id == basic_plan.id


def test_resolve_default_plan_falls_back_to_name_hint(db_session, premium_plan, free_plan) -> None:
    settings = MembershipSettings(default_plan_id=uuid.uuid4())
    assert resolve_default_plan(db_session, settings).id == free_plan.id


def test_resolve_default_plan_falls_back_to_cheapest_plain_plan(db_session, make_type) -> None:
    make_type("Plan IA", price="1.00", feature_flags={"ai": True})
    cheapest_plain = make_type("Plan Inicial", price="3.00")
    make_type("Plan Plus", price="6.00")

    assert resolve_default_plan(db_session, MembershipSettings()).id == cheapest_plain.id


def test_resolve_default_plan_requires_catalog(db_session) -> None:
    with pytest.raises(MembershipNotFoundError):
        resolve_default_plan(db_session, MembershipSettings())


def test_load_membership_settings_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    plan_id = uuid.uuid4()
    monkeypatch.setenv("MEMBERSHIP_DEFAULT_PLAN_ID", str(plan_id))
    monkeypatch.setenv("MEMBERSHIP_DEFAULT_VALIDITY_DAYS", "30")

    settings = load_membership_settings()

    assert settings.default_plan_id == plan_id
    assert settings.default_validity.days == 30


def test_load_membership_settings_ignores_malformed_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMBERSHIP_DEFAULT_PLAN_ID", "not-a-uuid")
    monkeypatch.setenv("MEMBERSHIP_DEFAULT_VALIDITY_DAYS", "0")

    settings = load_membership_settings()

    assert settings.default_plan_id is None
    assert settings.default_validity_days == 3650
