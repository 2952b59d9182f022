from __future__ import annotations

import json
import random
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import pytest

from chinabot.config import DEFAULT_LOVER_NAME_PATTERN, LLMConfig, QuotaConfig
from chinabot.models import EventKind, InboundEvent, OutboundMessage, Plan
from chinabot.onboarding import OnboardingMachine
from chinabot.router import ResponseRouter
from chinabot.services.billing import BillingGate
from chinabot.services.kv_memory import MemoryStore
from chinabot.services.llm import ConversationHistory, LanguageModelAdapter
from chinabot.services.quota import QuotaLedger
from chinabot.services.repository import UserRepository
from chinabot.services.templates import TemplateBank

AFTERNOON = datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)


class Harness:
    """Fully wired router on top of an in-memory store."""

    def __init__(
        self,
        *,
        limits: QuotaConfig = QuotaConfig(),
        owner_ids: Iterable[str] = (),
        api_key: Optional[str] = "test-key",
        checkout_urls: Optional[dict[Plan, str]] = None,
        now: datetime = AFTERNOON,
    ) -> None:
        self.now = now
        self.store = MemoryStore()
        self.repository = UserRepository(
            self.store, owner_ids=owner_ids, lover_name_pattern=DEFAULT_LOVER_NAME_PATTERN
        )
        self.quota = QuotaLedger(self.store, limits)
        self.templates = TemplateBank(self.store, rng=random.Random(7))
        self.llm_calls: list[dict[str, Any]] = []
        self.llm_status = 200
        self.llm_reply = "うんうん、聞いてるよ"
        self.llm_config = LLMConfig(api_key=api_key)
        self.llm = LanguageModelAdapter(self.llm_config, self.store, requester=self._requester)
        self.billing = BillingGate(self.repository, checkout_urls or {})
        self.router = ResponseRouter(
            repository=self.repository,
            quota=self.quota,
            templates=self.templates,
            onboarding=OnboardingMachine(
                lover_name_pattern=DEFAULT_LOVER_NAME_PATTERN, rng=random.Random(1)
            ),
            llm=self.llm,
            history=ConversationHistory(self.store, self.llm_config.history_turns),
            billing=self.billing,
            clock=lambda: self.now,
            rng=random.Random(3),
        )

    async def _requester(self, url, payload, headers, timeout):
        self.llm_calls.append(payload)
        if self.llm_status != 200:
            return self.llm_status, json.dumps({"error": {"code": "rate_limit_exceeded"}})
        return 200, json.dumps({"choices": [{"message": {"content": f"  {self.llm_reply}  "}}]})

    async def send(self, text: str, user_id: str = "U1") -> list[OutboundMessage]:
        return await self.router.handle(InboundEvent(user_id, EventKind.TEXT, text))

    async def send_image(self, user_id: str = "U1") -> list[OutboundMessage]:
        return await self.router.handle(InboundEvent(user_id, EventKind.IMAGE))

    async def onboard(self, user_id: str = "U1", name: str = "あかり") -> None:
        for text in ("こんにちは", "同意", name, "スキップ"):
            await self.send(text, user_id)

    async def used_today(self, user_id: str = "U1") -> int:
        usage = await self.quota.usage(user_id, Plan.FREE, now=self.now)
        return usage.used


@pytest.fixture
def make_harness():
    return Harness
