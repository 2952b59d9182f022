"""Daily per-user turn quota."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional

from chinabot.config import QuotaConfig
from chinabot.models import Plan
from chinabot.services.kv_base import KeyValueStore
from chinabot.services.repository import quota_prefix

# Two days so a key outlives its own day in every timezone.
QUOTA_KEY_TTL = 2 * 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    limit: int
    used: int


class QuotaLedger:
    """Counts billable turns per ``(user, calendar day)``.

    The day boundary comes from one reference timezone for the whole process.
    Plan limits are looked up on every call, so a plan change applies at once.
    """

    def __init__(self, store: KeyValueStore, limits: QuotaConfig, tz: tzinfo = timezone.utc) -> None:
        self._store = store
        self._limits = limits
        self._tz = tz

    def limit_for(self, plan: Plan) -> int:
        return self._limits.limit_for(plan)

    def day_key(self, user_id: str, now: Optional[datetime] = None) -> str:
        moment = (now or datetime.now(timezone.utc)).astimezone(self._tz)
        return f"{quota_prefix(user_id)}{moment.date().isoformat()}"

    async def check_and_consume(
        self, user_id: str, plan: Plan, *, now: Optional[datetime] = None
    ) -> QuotaDecision:
        limit = self.limit_for(plan)
        allowed, used = await self._store.incr_below(
            self.day_key(user_id, now), limit, ttl=QUOTA_KEY_TTL
        )
        return QuotaDecision(allowed=allowed, remaining=max(limit - used, 0), limit=limit, used=used)

    async def usage(self, user_id: str, plan: Plan, *, now: Optional[datetime] = None) -> QuotaDecision:
        """Report today's usage without consuming anything."""

        limit = self.limit_for(plan)
        raw = await self._store.get(self.day_key(user_id, now))
        used = int(raw) if raw else 0
        return QuotaDecision(allowed=used < limit, remaining=max(limit - used, 0), limit=limit, used=used)
