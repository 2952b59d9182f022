"""Domain models used by the bot."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence


class Plan(str, Enum):
    """Subscription tier controlling the daily quota."""

    FREE = "free"
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"

    @classmethod
    def parse(cls, value: Any) -> "Plan":
        """Return the plan for a loose textual value (``"TIER2"``, ``"tier2"``)."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"plan must be a non-empty string, got {value!r}")
        normalized = value.strip().lower()
        for plan in cls:
            if plan.value == normalized:
                return plan
        raise ValueError(f"unknown plan: {value!r}")


class OnboardingStep(str, Enum):
    NONE = "none"
    AWAITING_NAME = "awaiting_name"
    AWAITING_NICKNAME = "awaiting_nickname"
    DONE = "done"

    @property
    def rank(self) -> int:
        return _STEP_ORDER.index(self)


_STEP_ORDER = [
    OnboardingStep.NONE,
    OnboardingStep.AWAITING_NAME,
    OnboardingStep.AWAITING_NICKNAME,
    OnboardingStep.DONE,
]


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str_to_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(slots=True)
class UserRecord:
    """Per-user state persisted in the key-value store."""

    user_id: str
    display_name: str = ""
    chosen_name: Optional[str] = None
    nickname: Optional[str] = None
    gender: Optional[str] = None
    consent: bool = False
    consent_card_shown: bool = False
    onboarding_step: OnboardingStep = OnboardingStep.NONE
    lover_mode: bool = False
    owner: bool = False
    muted: bool = False
    plan: Plan = Plan.FREE
    turns_total: int = 0
    last_seen_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    revision: int = 0

    def advance_to(self, step: OnboardingStep) -> None:
        """Move the onboarding step forward; regressions are ignored."""

        if step.rank > self.onboarding_step.rank:
            self.onboarding_step = step

    @property
    def call_name(self) -> str:
        """How the persona addresses the user. Only meaningful after consent."""

        return self.nickname or self.chosen_name or self.display_name or "きみ"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["onboarding_step"] = self.onboarding_step.value
        data["plan"] = self.plan.value
        data["last_seen_at"] = _dt_to_str(self.last_seen_at)
        data["created_at"] = _dt_to_str(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserRecord":
        try:
            step = OnboardingStep(data.get("onboarding_step") or OnboardingStep.NONE.value)
        except ValueError:
            step = OnboardingStep.NONE
        try:
            plan = Plan(data.get("plan") or Plan.FREE.value)
        except ValueError:
            plan = Plan.FREE
        return cls(
            user_id=str(data["user_id"]),
            display_name=data.get("display_name") or "",
            chosen_name=data.get("chosen_name"),
            nickname=data.get("nickname"),
            gender=data.get("gender"),
            consent=bool(data.get("consent", False)),
            consent_card_shown=bool(data.get("consent_card_shown", False)),
            onboarding_step=step,
            lover_mode=bool(data.get("lover_mode", False)),
            owner=bool(data.get("owner", False)),
            muted=bool(data.get("muted", False)),
            plan=plan,
            turns_total=max(int(data.get("turns_total") or 0), 0),
            last_seen_at=_str_to_dt(data.get("last_seen_at")),
            created_at=_str_to_dt(data.get("created_at")) or datetime.now(timezone.utc),
            revision=int(data.get("revision") or 0),
        )


class EventKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    STICKER = "sticker"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class InboundEvent:
    """A single message event normalised from the LINE webhook payload."""

    user_id: str
    kind: EventKind
    text: str = ""
    reply_token: Optional[str] = None
    timestamp_ms: Optional[int] = None

    @classmethod
    def from_line(cls, payload: dict[str, Any]) -> Optional["InboundEvent"]:
        """Return an event for ``message`` payloads from a user; None otherwise."""

        if payload.get("type") != "message":
            return None
        source = payload.get("source") or {}
        user_id = source.get("userId")
        if not user_id:
            return None
        message = payload.get("message") or {}
        raw_kind = message.get("type")
        try:
            kind = EventKind(raw_kind)
        except ValueError:
            kind = EventKind.OTHER
        text = (message.get("text") or "") if kind is EventKind.TEXT else ""
        return cls(
            user_id=str(user_id),
            kind=kind,
            text=text,
            reply_token=payload.get("replyToken"),
            timestamp_ms=payload.get("timestamp"),
        )


class OutboundMessage:
    """Base class for messages handed back to the transport layer."""

    def to_payload(self) -> dict[str, Any]:  # pragma: no cover - abstract
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class QuickReply:
    label: str
    text: str


@dataclass(frozen=True, slots=True)
class TextMessage(OutboundMessage):
    text: str
    quick_replies: tuple[QuickReply, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": "text", "text": self.text}
        if self.quick_replies:
            payload["quickReply"] = {
                "items": [
                    {
                        "type": "action",
                        "action": {"type": "message", "label": item.label[:20], "text": item.text},
                    }
                    for item in self.quick_replies[:13]
                ]
            }
        return payload


@dataclass(frozen=True, slots=True)
class StickerMessage(OutboundMessage):
    package_id: str
    sticker_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": "sticker", "packageId": self.package_id, "stickerId": self.sticker_id}


@dataclass(frozen=True, slots=True)
class FlexMessage(OutboundMessage):
    alt_text: str
    contents: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"type": "flex", "altText": self.alt_text, "contents": self.contents}


@dataclass(frozen=True, slots=True)
class LinkButton:
    label: str
    url: str


@dataclass(frozen=True, slots=True)
class LinkButtonsCard(OutboundMessage):
    alt_text: str
    text: str
    buttons: tuple[LinkButton, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "template",
            "altText": self.alt_text,
            "template": {
                "type": "buttons",
                "text": self.text[:160],
                "actions": [
                    {"type": "uri", "label": button.label[:20], "uri": button.url}
                    for button in self.buttons[:4]
                ],
            },
        }


def to_payloads(messages: Sequence[OutboundMessage]) -> list[dict[str, Any]]:
    return [message.to_payload() for message in messages]


__all__ = [
    "EventKind",
    "FlexMessage",
    "InboundEvent",
    "LinkButton",
    "LinkButtonsCard",
    "OnboardingStep",
    "OutboundMessage",
    "Plan",
    "QuickReply",
    "StickerMessage",
    "TextMessage",
    "UserRecord",
    "to_payloads",
]
