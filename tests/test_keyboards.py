"""Outbound message and rich card tests."""

from __future__ import annotations

from chinabot.keyboards import consent_card, nickname_prompt, upgrade_card
from chinabot.models import (
    EventKind,
    InboundEvent,
    LinkButton,
    LinkButtonsCard,
    Plan,
    StickerMessage,
    UserRecord,
    OnboardingStep,
)
from chinabot.texts import messages as msg


def test_consent_card_buttons_send_keywords() -> None:
    payload = consent_card().to_payload()
    assert payload["type"] == "flex"
    buttons = payload["contents"]["footer"]["contents"]
    assert [button["action"]["text"] for button in buttons] == [msg.CONSENT_KEYWORD, msg.DECLINE_KEYWORD]


def test_nickname_prompt_quick_replies() -> None:
    payload = nickname_prompt("あかりん").to_payload()
    items = payload["quickReply"]["items"]
    assert [item["action"]["text"] for item in items] == ["あかりん", msg.SKIP_BUTTON]


def test_upgrade_card() -> None:
    assert upgrade_card({}) is None
    card = upgrade_card({Plan.TIER1: "https://pay.example.com/1", Plan.TIER3: "https://pay.example.com/3"})
    payload = card.to_payload()
    assert payload["template"]["type"] == "buttons"
    assert [action["uri"] for action in payload["template"]["actions"]] == [
        "https://pay.example.com/1",
        "https://pay.example.com/3",
    ]


def test_buttons_card_is_capped_at_four_actions() -> None:
    card = LinkButtonsCard("alt", "text", tuple(LinkButton(f"b{i}", f"https://x/{i}") for i in range(6)))
    assert len(card.to_payload()["template"]["actions"]) == 4


def test_sticker_payload() -> None:
    assert StickerMessage("11537", "52002735").to_payload() == {
        "type": "sticker",
        "packageId": "11537",
        "stickerId": "52002735",
    }


def test_inbound_event_from_line() -> None:
    text = InboundEvent.from_line(
        {
            "type": "message",
            "replyToken": "r",
            "source": {"type": "user", "userId": "U1"},
            "message": {"type": "text", "text": "おはよ"},
        }
    )
    assert (text.user_id, text.kind, text.text, text.reply_token) == ("U1", EventKind.TEXT, "おはよ", "r")

    image = InboundEvent.from_line(
        {"type": "message", "source": {"userId": "U1"}, "message": {"type": "image", "id": "1"}}
    )
    assert (image.kind, image.text) == (EventKind.IMAGE, "")
    video = InboundEvent.from_line({"type": "message", "source": {"userId": "U1"}, "message": {"type": "video"}})
    assert video.kind is EventKind.OTHER

    assert InboundEvent.from_line({"type": "follow", "source": {"userId": "U1"}}) is None
    assert InboundEvent.from_line({"type": "message", "source": {}, "message": {"type": "text"}}) is None


def test_user_record_roundtrip_keeps_enums() -> None:
    record = UserRecord(user_id="U1", plan=Plan.TIER2, onboarding_step=OnboardingStep.DONE, nickname="ゆう")
    restored = UserRecord.from_dict(record.to_dict())
    assert restored == record
    assert restored.call_name == "ゆう"
    assert UserRecord.from_dict({"user_id": "U2", "plan": "platinum"}).plan is Plan.FREE
