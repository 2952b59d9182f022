"""Rule-based intent classification for inbound text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class Intent(str, Enum):
    CONSENT = "consent"
    DECLINE = "decline"
    SELF_RESET = "self_reset"
    MUTE = "mute"
    UNMUTE = "unmute"
    MORNING = "morning"
    NIGHT = "night"
    DISTRESS = "distress"
    NICKNAME = "nickname"
    GENDER = "gender"
    PLAN_INQUIRY = "plan_inquiry"
    SONG = "song"
    STICKER = "sticker"
    MEDIA = "media"
    DEFAULT = "default"


@dataclass(frozen=True, slots=True)
class IntentRule:
    """Maps a pattern to an intent.

    ``exact`` rules must match the whole trimmed text; the others match
    anywhere in it.
    """

    intent: Intent
    pattern: re.Pattern[str]
    exact: bool = False

    def matches(self, text: str) -> bool:
        if self.exact:
            return self.pattern.fullmatch(text) is not None
        return self.pattern.search(text) is not None


def _rule(intent: Intent, pattern: str, *, exact: bool = False) -> IntentRule:
    return IntentRule(intent, re.compile(pattern, re.IGNORECASE), exact)


# First match wins.
RULES: tuple[IntentRule, ...] = (
    _rule(Intent.CONSENT, r"同意", exact=True),
    _rule(Intent.DECLINE, r"やめておく", exact=True),
    _rule(Intent.SELF_RESET, r"リセット|記憶を消して", exact=True),
    _rule(Intent.MUTE, r"通知オフ|ミュート", exact=True),
    _rule(Intent.UNMUTE, r"通知オン|ミュート解除", exact=True),
    _rule(Intent.MORNING, r"おはよ"),
    _rule(Intent.NIGHT, r"おやすみ|寝る"),
    _rule(Intent.DISTRESS, r"寂しい|さびしい|つらい|しんど"),
    _rule(Intent.NICKNAME, r"あだ名つけて|ニックネーム"),
    _rule(Intent.GENDER, r"性別|男|女"),
    _rule(Intent.PLAN_INQUIRY, r"プラン|残り回数|あと何回"),
    _rule(Intent.SONG, r"イマドン|白い朝|Day by day|Mountain|I don'?t remember"),
    _rule(Intent.STICKER, r"スタンプ|stamp"),
)

FREE_INTENTS = frozenset(
    {
        Intent.CONSENT,
        Intent.DECLINE,
        Intent.SELF_RESET,
        Intent.MUTE,
        Intent.UNMUTE,
        Intent.NICKNAME,
        Intent.GENDER,
        Intent.PLAN_INQUIRY,
    }
)
METERED_INTENTS = frozenset(set(Intent) - FREE_INTENTS)

_FLAGGED = re.compile(
    r"セックス|えっちしよ|エッチしよ|裸の写真|おっぱい見せ|パンツ見せ|\bsex\b|\bnudes?\b",
    re.IGNORECASE,
)


def classify(text: str) -> Intent:
    normalized = (text or "").strip()
    for rule in RULES:
        if rule.matches(normalized):
            return rule.intent
    return Intent.DEFAULT


def is_metered(intent: Intent) -> bool:
    return intent in METERED_INTENTS


def is_flagged(text: str) -> bool:
    """Return True for explicit content the persona must decline."""

    return bool(text) and _FLAGGED.search(text) is not None
