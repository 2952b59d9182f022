"""Consent gate and the name/nickname onboarding dialogue."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Iterable, Optional

from chinabot.keyboards import consent_card, nickname_prompt
from chinabot.models import OnboardingStep, OutboundMessage, TextMessage, UserRecord
from chinabot.services.repository import matches_lover_pattern
from chinabot.texts import messages as msg
from logger import get_logger, info_domain

LOGGER = get_logger("onboarding")

NAME_MAX_LENGTH = 20
NICKNAME_MAX_LENGTH = 16
_HONORIFICS = ("さん", "くん", "ちゃん")


@dataclass(slots=True)
class OnboardingOutcome:
    consumed: bool
    replies: list[OutboundMessage] = field(default_factory=list)
    next_step: OnboardingStep = OnboardingStep.NONE


def suggest_nickname(name: str, *, lover: bool = False, rng: Optional[random.Random] = None) -> str:
    """Build a playful nickname from ``name``."""

    chooser = rng or random
    if lover:
        return chooser.choice(msg.LOVER_NICKNAMES)
    base = (name or "").strip()
    for honorific in _HONORIFICS:
        if base.endswith(honorific) and len(base) > len(honorific):
            base = base[: -len(honorific)]
            break
    base = base[:4] or msg.DEFAULT_CALL
    return chooser.choice(msg.NICKNAME_SUFFIXES).format(base=base)


class OnboardingMachine:
    """Walks a user through consent, then name and nickname capture.

    :meth:`evaluate` mutates the given record in place; persisting it is the
    caller's job. Steps only ever move forward.
    """

    def __init__(
        self,
        *,
        lover_name_pattern: str,
        accept_keyword: str = msg.CONSENT_KEYWORD,
        decline_keyword: str = msg.DECLINE_KEYWORD,
        skip_keywords: Iterable[str] = msg.SKIP_KEYWORDS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._lover_name_pattern = lover_name_pattern
        self._accept = accept_keyword
        self._decline = decline_keyword
        self._skip = frozenset(word.lower() for word in skip_keywords)
        self._rng = rng or random.Random()

    def evaluate(self, user: UserRecord, raw_text: str) -> OnboardingOutcome:
        text = (raw_text or "").strip()
        if not user.consent:
            return self._pre_consent(user, text)
        if user.onboarding_step is OnboardingStep.AWAITING_NAME:
            return self._awaiting_name(user, raw_text or "")
        if user.onboarding_step is OnboardingStep.AWAITING_NICKNAME:
            return self._awaiting_nickname(user, text)
        return OnboardingOutcome(consumed=False, next_step=user.onboarding_step)

    def _pre_consent(self, user: UserRecord, text: str) -> OnboardingOutcome:
        if text == self._accept:
            user.consent = True
            if user.owner:
                user.advance_to(OnboardingStep.DONE)
                replies: list[OutboundMessage] = [TextMessage(msg.OWNER_WELCOME)]
            else:
                user.advance_to(OnboardingStep.AWAITING_NAME)
                replies = [TextMessage(msg.CONSENT_THANKS), TextMessage(msg.NAME_PROMPT)]
            info_domain(
                "onboarding",
                "Consent granted",
                user_id=user.user_id,
                owner=user.owner,
            )
            return OnboardingOutcome(True, replies, user.onboarding_step)

        if text == self._decline:
            return OnboardingOutcome(True, [TextMessage(msg.CONSENT_DECLINED)], user.onboarding_step)

        if user.turns_total == 0 and not user.consent_card_shown:
            user.consent_card_shown = True
            return OnboardingOutcome(True, [consent_card()], user.onboarding_step)
        return OnboardingOutcome(True, [TextMessage(msg.CONSENT_NUDGE)], user.onboarding_step)

    def _awaiting_name(self, user: UserRecord, raw_text: str) -> OnboardingOutcome:
        name = raw_text.strip()
        if not self._valid_name(name):
            return OnboardingOutcome(True, [TextMessage(msg.NAME_INVALID)], user.onboarding_step)

        user.chosen_name = name
        if matches_lover_pattern(self._lover_name_pattern, name):
            user.lover_mode = True
        user.advance_to(OnboardingStep.AWAITING_NICKNAME)
        suggestion = suggest_nickname(name, lover=user.lover_mode, rng=self._rng)
        LOGGER.debug("Chosen name stored", user_id=user.user_id, stage="onboarding")
        return OnboardingOutcome(
            True,
            [TextMessage(msg.NAME_ACCEPTED.format(name=name)), nickname_prompt(suggestion)],
            user.onboarding_step,
        )

    def _awaiting_nickname(self, user: UserRecord, text: str) -> OnboardingOutcome:
        if text.lower() in self._skip:
            user.advance_to(OnboardingStep.DONE)
        elif 1 <= len(text) <= NICKNAME_MAX_LENGTH and "\n" not in text:
            user.nickname = text
            user.advance_to(OnboardingStep.DONE)
        else:
            return OnboardingOutcome(True, [TextMessage(msg.NICKNAME_INVALID)], user.onboarding_step)

        info_domain("onboarding", "Onboarding complete", user_id=user.user_id)
        return OnboardingOutcome(
            True,
            [TextMessage(msg.ONBOARDING_DONE.format(call=user.call_name))],
            user.onboarding_step,
        )

    def _valid_name(self, name: str) -> bool:
        if not 1 <= len(name) <= NAME_MAX_LENGTH or "\n" in name:
            return False
        return name not in (self._accept, self._decline)
