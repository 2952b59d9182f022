"""Per-message orchestration: safety, onboarding, intents, quota and replies."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional

from chinabot.infrastructure.concurrency import UserLocks
from chinabot.intents import Intent, classify, is_flagged, is_metered
from chinabot.keyboards import upgrade_card
from chinabot.models import (
    EventKind,
    InboundEvent,
    OutboundMessage,
    Plan,
    StickerMessage,
    TextMessage,
    UserRecord,
)
from chinabot.onboarding import OnboardingMachine, suggest_nickname
from chinabot.services.billing import BillingGate
from chinabot.services.llm import ConversationHistory, LanguageModelAdapter
from chinabot.services.quota import QuotaDecision, QuotaLedger
from chinabot.services.repository import ProfileLoader, UserRepository
from chinabot.services.templates import TemplateBank
from chinabot.texts import messages as msg
from logger import get_logger, info_domain

LOGGER = get_logger("router")

MAX_REPLIES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _Turn:
    user_id: str
    now: datetime
    deleted: bool = False


class ResponseRouter:
    """Turns one inbound event into the replies for it.

    Events of the same user are handled one at a time in arrival order.
    Whatever happens, the user's turn counter is advanced afterwards unless
    the record was deleted during the turn.
    """

    def __init__(
        self,
        *,
        repository: UserRepository,
        quota: QuotaLedger,
        templates: TemplateBank,
        onboarding: OnboardingMachine,
        llm: Optional[LanguageModelAdapter] = None,
        history: Optional[ConversationHistory] = None,
        billing: Optional[BillingGate] = None,
        profile_loader: Optional[ProfileLoader] = None,
        locks: Optional[UserLocks] = None,
        status_every_n_turns: int = 10,
        low_quota_warning: int = 3,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._quota = quota
        self._templates = templates
        self._onboarding = onboarding
        self._llm = llm
        self._history = history
        self._billing = billing
        self._profile_loader = profile_loader
        self._locks = locks or UserLocks()
        self._status_every = status_every_n_turns
        self._low_quota_warning = low_quota_warning
        self._tz = tz
        self._clock = clock
        self._rng = rng or random.Random()

    async def handle(self, event: InboundEvent) -> list[OutboundMessage]:
        turn = _Turn(event.user_id, self._clock())
        async with self._locks.for_user(event.user_id):
            try:
                replies = await self._dispatch(event, turn)
            except Exception:
                LOGGER.exception("Message handling failed", user_id=event.user_id, stage="ROUTER")
                replies = [TextMessage(msg.FALLBACK_APOLOGY)]
            finally:
                if not turn.deleted:
                    await self._touch(turn)
        return replies[:MAX_REPLIES]

    async def reset_user(self, user_id: str) -> bool:
        """Delete the user's record and every key derived from it."""

        async with self._locks.for_user(user_id):
            return await self._delete(user_id)

    async def _dispatch(self, event: InboundEvent, turn: _Turn) -> list[OutboundMessage]:
        user = await self._repository.ensure_user(event.user_id, self._profile_loader, now=turn.now)
        text = event.text if event.kind is EventKind.TEXT else ""

        if text and is_flagged(text):
            LOGGER.info("Safety redirect", user_id=user.user_id, stage="SAFETY")
            return [TextMessage(msg.SAFETY_REDIRECT)]

        outcome = self._onboarding.evaluate(user, text)
        if outcome.consumed:
            await self._repository.save_user(user)
            return outcome.replies

        intent = Intent.MEDIA if event.kind is not EventKind.TEXT else classify(text)
        if not is_metered(intent):
            return await self._handle_free(intent, user, text, turn)

        decision = await self._quota.check_and_consume(user.user_id, user.plan, now=turn.now)
        if not decision.allowed:
            info_domain("router", "Daily limit reached", user_id=user.user_id, limit=decision.limit)
            return self._limit_replies(user, decision)

        replies = await self._metered_reply(intent, user, text, turn)
        status = self._status_line(user, decision)
        if status:
            replies.append(TextMessage(status))
        return replies

    async def _handle_free(
        self, intent: Intent, user: UserRecord, text: str, turn: _Turn
    ) -> list[OutboundMessage]:
        if intent is Intent.SELF_RESET:
            await self._delete(user.user_id)
            turn.deleted = True
            return [TextMessage(msg.RESET_DONE)]
        if intent is Intent.CONSENT:
            return [TextMessage(msg.CONSENT_ALREADY)]
        if intent is Intent.DECLINE:
            return [TextMessage(msg.DECLINE_AFTER_CONSENT)]
        if intent is Intent.PLAN_INQUIRY:
            return await self._plan_replies(user, turn)

        if intent in (Intent.MUTE, Intent.UNMUTE):
            user.muted = intent is Intent.MUTE
            reply = msg.MUTED if user.muted else msg.UNMUTED
        elif intent is Intent.NICKNAME:
            nick = suggest_nickname(
                user.chosen_name or user.display_name, lover=user.lover_mode, rng=self._rng
            )
            user.nickname = nick
            reply = msg.NICKNAME_SUGGESTION.format(nick=nick)
        else:
            gender = _parse_gender(text)
            if gender is None:
                return [TextMessage(msg.GENDER_UNKNOWN)]
            user.gender = gender
            reply = msg.GENDER_NOTED
        await self._repository.save_user(user)
        return [TextMessage(reply)]

    async def _plan_replies(self, user: UserRecord, turn: _Turn) -> list[OutboundMessage]:
        usage = await self._quota.usage(user.user_id, user.plan, now=turn.now)
        replies: list[OutboundMessage] = [
            TextMessage(
                msg.PLAN_STATUS.format(
                    plan=msg.PLAN_NAMES[user.plan.value],
                    used=usage.used,
                    limit=usage.limit,
                    remaining=usage.remaining,
                )
            )
        ]
        if user.plan is Plan.FREE:
            card = self._upgrade_card(user.user_id)
            if card is not None:
                replies.append(TextMessage(msg.PLAN_UPGRADE_HINT))
                replies.append(card)
        return replies

    def _limit_replies(self, user: UserRecord, decision: QuotaDecision) -> list[OutboundMessage]:
        replies: list[OutboundMessage] = [TextMessage(msg.LIMIT_REACHED.format(limit=decision.limit))]
        card = self._upgrade_card(user.user_id)
        if card is not None:
            replies.append(card)
        return replies

    def _upgrade_card(self, user_id: str):
        if self._billing is None:
            return None
        return upgrade_card(self._billing.checkout_links(user_id))

    async def _metered_reply(
        self, intent: Intent, user: UserRecord, text: str, turn: _Turn
    ) -> list[OutboundMessage]:
        uid = user.user_id
        lover = user.lover_mode
        if intent is Intent.MORNING:
            line = await self._templates.pick("morning", msg.MORNING_POOL, uid)
            return [TextMessage(line + msg.LOVER_MORNING_SUFFIX if lover else line)]
        if intent is Intent.NIGHT:
            line = await self._templates.pick("night", msg.NIGHT_POOL, uid)
            return [TextMessage(line + msg.LOVER_NIGHT_SUFFIX if lover else line)]
        if intent is Intent.DISTRESS:
            return [TextMessage(msg.COMFORT_FEMALE if user.gender == "female" else msg.COMFORT_DEFAULT)]
        if intent is Intent.SONG:
            return [TextMessage(await self._templates.pick("song", msg.SONG_POOL, uid))]
        if intent is Intent.STICKER:
            sticker_id = await self._templates.pick("sticker", msg.STICKER_POOL, uid)
            return [StickerMessage(msg.STICKER_PACKAGE_ID, sticker_id)]
        if intent is Intent.MEDIA:
            return [TextMessage(msg.MEDIA_THANKS_LOVER if lover else msg.MEDIA_THANKS)]
        return [TextMessage(await self._free_chat(user, text, turn))]

    async def _free_chat(self, user: UserRecord, text: str, turn: _Turn) -> str:
        if self._llm is not None and self._llm.enabled:
            history = await self._history.load(user.user_id) if self._history else []
            generated = await self._llm.generate(user, text, history)
            if generated:
                if self._history:
                    await self._history.append(user.user_id, text, generated)
                return generated
            LOGGER.warning("Falling back to template reply", user_id=user.user_id, stage="LLM_FALLBACK")

        if turn.now.astimezone(self._tz).hour < 12:
            tag, pool = "ambient_morning", msg.AMBIENT_MORNING_POOL
        else:
            tag, pool = "ambient_day", msg.AMBIENT_DAY_POOL
        line = (await self._templates.pick(tag, pool, user.user_id)).format(call=user.call_name)
        return line + msg.LOVER_AMBIENT_SUFFIX if user.lover_mode else line

    def _status_line(self, user: UserRecord, decision: QuotaDecision) -> Optional[str]:
        plan_name = msg.PLAN_NAMES[user.plan.value]
        if user.plan is Plan.FREE and decision.remaining <= self._low_quota_warning:
            return msg.LOW_QUOTA_LINE.format(remaining=decision.remaining)
        turn_number = user.turns_total + 1
        if self._status_every > 0 and turn_number % self._status_every == 0:
            return msg.STATUS_LINE.format(remaining=decision.remaining, limit=decision.limit, plan=plan_name)
        return None

    async def _delete(self, user_id: str) -> bool:
        removed = await self._repository.delete_user(user_id)
        info_domain("router", "User data reset", user_id=user_id, removed=removed)
        return removed

    async def _touch(self, turn: _Turn) -> None:
        try:
            await self._repository.touch(turn.user_id, now=turn.now)
        except Exception:
            LOGGER.exception("Turn counter update failed", user_id=turn.user_id, stage="ROUTER")


def _parse_gender(text: str) -> Optional[str]:
    if "女" in text:
        return "female"
    if "男" in text:
        return "male"
    return None
