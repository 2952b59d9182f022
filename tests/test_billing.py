"""Billing gate tests."""

from __future__ import annotations

import asyncio

import pytest

from chinabot.config import DEFAULT_LOVER_NAME_PATTERN
from chinabot.models import Plan
from chinabot.services.billing import BillingGate, parse_billing_event
from chinabot.services.kv_memory import MemoryStore
from chinabot.services.repository import UserRepository


def _gate(urls=None) -> BillingGate:
    repo = UserRepository(MemoryStore(), lover_name_pattern=DEFAULT_LOVER_NAME_PATTERN)
    return BillingGate(repo, urls or {})


def test_set_and_get_plan() -> None:
    gate = _gate()

    async def scenario() -> None:
        assert await gate.get_plan("U1") is Plan.FREE
        record = await gate.set_plan("U1", Plan.TIER2)
        assert record.plan is Plan.TIER2
        assert await gate.get_plan("U1") is Plan.TIER2
        await gate.set_plan("U1", Plan.FREE)
        assert await gate.get_plan("U1") is Plan.FREE

    asyncio.run(scenario())


def test_plan_change_for_unseen_user_fetches_profile_once() -> None:
    calls: list[str] = []

    async def loader(user_id: str) -> str:
        calls.append(user_id)
        return "しょうた"

    repo = UserRepository(MemoryStore(), lover_name_pattern=DEFAULT_LOVER_NAME_PATTERN)
    gate = BillingGate(repo, {}, profile_loader=loader)

    async def scenario() -> None:
        record = await gate.set_plan("U7", Plan.TIER1)
        assert record.display_name == "しょうた"
        assert record.lover_mode is True
        assert await repo.list_user_ids() == ["U7"]

        await gate.set_plan("U7", Plan.TIER2)
        stored = await repo.get_user("U7")
        assert stored.plan is Plan.TIER2
        assert stored.display_name == "しょうた"
        assert calls == ["U7"]

    asyncio.run(scenario())


def test_checkout_link_appends_reference() -> None:
    gate = _gate(
        {
            Plan.TIER1: "https://pay.example.com/buy/abc",
            Plan.TIER2: "https://pay.example.com/buy?prefilled_email=a%40b.c&client_reference_id=old",
        }
    )
    assert gate.checkout_link("U1", Plan.TIER1) == "https://pay.example.com/buy/abc?client_reference_id=U1"
    assert (
        gate.checkout_link("U1", Plan.TIER2)
        == "https://pay.example.com/buy?prefilled_email=a%40b.c&client_reference_id=U1"
    )
    assert gate.checkout_link("U1", Plan.TIER3) is None
    assert list(gate.checkout_links("U1")) == [Plan.TIER1, Plan.TIER2]


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"user_id": "U1", "plan": "tier2"}, Plan.TIER2),
        ({"user_id": "U1", "plan": "TIER3"}, Plan.TIER3),
        ({"user_id": "U1", "status": "canceled"}, Plan.FREE),
        ({"user_id": "U1", "plan": "tier1", "status": "cancelled"}, Plan.FREE),
    ],
)
def test_parse_billing_event(payload, expected) -> None:
    event = parse_billing_event(payload)
    assert event.user_id == "U1"
    assert event.plan is expected


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"plan": "tier1"},
        {"user_id": "U1"},
        {"user_id": "U1", "plan": "gold"},
        {"user_id": "U1", "plan": 2},
        {"user_id": "U1", "plan": ["tier1"]},
        {"user_id": "U1", "plan": "  "},
    ],
)
def test_parse_billing_event_rejects_bad_payloads(payload) -> None:
    with pytest.raises(ValueError):
        parse_billing_event(payload)
