"""Scheduled pushes to every consented, unmuted user."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, time as dtime, timezone, tzinfo
from typing import Optional, Protocol, Sequence

from chinabot.models import OutboundMessage, TextMessage
from chinabot.services.line_client import LineApiError
from chinabot.services.repository import UserRepository
from chinabot.services.templates import TemplateBank
from chinabot.texts import messages as msg
from logger import get_logger, info_domain

LOGGER = get_logger("broadcast")

OCCASION_POOLS: dict[str, tuple[str, ...]] = {
    "morning": msg.BROADCAST_MORNING_POOL,
    "night": msg.BROADCAST_NIGHT_POOL,
    "random": msg.BROADCAST_RANDOM_POOL,
}
DAYTIME_START = dtime(9, 0)
DAYTIME_END = dtime(21, 0)


class PushSender(Protocol):
    async def push(self, user_id: str, messages: Sequence[OutboundMessage]) -> None: ...


@dataclass(frozen=True, slots=True)
class BroadcastResult:
    occasion: str
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    outside_window: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "occasion": self.occasion,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "outside_window": self.outside_window,
        }


def in_daytime_window(moment: datetime) -> bool:
    return DAYTIME_START <= moment.time() < DAYTIME_END


class Broadcaster:
    def __init__(
        self,
        repository: UserRepository,
        sender: PushSender,
        templates: TemplateBank,
        *,
        tz: tzinfo = timezone.utc,
        random_talk_rate: float = 0.5,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._sender = sender
        self._templates = templates
        self._tz = tz
        self._random_talk_rate = random_talk_rate
        self._rng = rng or random.Random()

    async def broadcast_once(self, occasion: str, *, now: Optional[datetime] = None) -> BroadcastResult:
        """Push one message for ``occasion`` to every eligible user.

        Raises :class:`ValueError` for an unknown occasion. ``random`` is only
        sent during the daytime window and to each user with the configured
        probability.
        """

        pool = OCCASION_POOLS.get(occasion)
        if pool is None:
            raise ValueError(f"unknown broadcast occasion: {occasion!r}")
        moment = (now or datetime.now(timezone.utc)).astimezone(self._tz)
        if occasion == "random" and not in_daytime_window(moment):
            LOGGER.debug("Random talk skipped outside daytime", payload={"hour": moment.hour})
            return BroadcastResult(occasion, outside_window=True)

        sent = failed = skipped = 0
        for user_id in await self._repository.list_user_ids():
            record = await self._repository.get_user(user_id)
            if record is None or not record.consent or record.muted:
                skipped += 1
                continue
            if occasion == "random" and self._rng.random() >= self._random_talk_rate:
                skipped += 1
                continue
            text = await self._templates.pick(f"broadcast_{occasion}", pool, user_id)
            try:
                await self._sender.push(user_id, [TextMessage(text)])
            except LineApiError as exc:
                failed += 1
                LOGGER.warning(
                    "Broadcast push failed",
                    user_id=user_id,
                    stage="BROADCAST",
                    payload={"status": exc.status_code},
                )
                continue
            sent += 1

        result = BroadcastResult(occasion, sent=sent, failed=failed, skipped=skipped)
        info_domain("broadcast", "Broadcast finished", stage="BROADCAST", **result.as_dict())
        return result
