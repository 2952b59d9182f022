"""Plan bookkeeping driven by the payment processor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from chinabot.models import Plan, UserRecord
from chinabot.services.repository import ProfileLoader, StaleRecordError, UserRepository
from logger import get_logger, info_domain

LOGGER = get_logger("billing")

SAVE_RETRIES = 3
CANCELED_STATUSES = frozenset({"canceled", "cancelled", "expired"})


@dataclass(frozen=True, slots=True)
class BillingEvent:
    user_id: str
    plan: Plan


def parse_billing_event(payload: Any) -> BillingEvent:
    """Read ``{"user_id", "plan"}`` or ``{"user_id", "status": "canceled"}``."""

    if not isinstance(payload, Mapping):
        raise ValueError("billing payload must be an object")
    user_id = str(payload.get("user_id") or "").strip()
    if not user_id:
        raise ValueError("billing payload has no user_id")
    status = str(payload.get("status") or "").strip().lower()
    if status in CANCELED_STATUSES:
        return BillingEvent(user_id, Plan.FREE)
    return BillingEvent(user_id, Plan.parse(payload.get("plan")))


class BillingGate:
    """Reads and writes the user's plan and builds checkout links.

    A plan change for an id the bot has not seen yet creates the record the
    same way a first message does, profile lookup included.
    """

    def __init__(
        self,
        repository: UserRepository,
        checkout_urls: Mapping[Plan, str] | None = None,
        *,
        profile_loader: Optional[ProfileLoader] = None,
    ) -> None:
        self._repository = repository
        self._checkout_urls = dict(checkout_urls or {})
        self._profile_loader = profile_loader

    async def get_plan(self, user_id: str) -> Plan:
        record = await self._repository.get_user(user_id)
        return record.plan if record else Plan.FREE

    async def set_plan(self, user_id: str, plan: Plan) -> UserRecord:
        """Store ``plan`` for the user; the quota limit follows immediately."""

        for _ in range(SAVE_RETRIES):
            record = await self._repository.ensure_user(user_id, self._profile_loader)
            previous = record.plan
            record.plan = plan
            try:
                saved = await self._repository.save_user(record)
            except StaleRecordError:
                continue
            info_domain(
                "billing",
                "Plan updated",
                user_id=user_id,
                previous=previous.value,
                plan=plan.value,
            )
            return saved
        raise StaleRecordError(f"could not update plan for {user_id}")

    def checkout_link(self, user_id: str, plan: Plan) -> Optional[str]:
        base = self._checkout_urls.get(plan)
        if not base:
            return None
        parts = urlsplit(base)
        query = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key != "client_reference_id"
        ]
        query.append(("client_reference_id", user_id))
        return urlunsplit(parts._replace(query=urlencode(query)))

    def checkout_links(self, user_id: str) -> dict[Plan, str]:
        links: dict[Plan, str] = {}
        for plan in (Plan.TIER1, Plan.TIER2, Plan.TIER3):
            link = self.checkout_link(user_id, plan)
            if link:
                links[plan] = link
        return links
