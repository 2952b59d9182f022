"""End-to-end router scenarios on the in-memory store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from chinabot.config import QuotaConfig
from chinabot.models import (
    FlexMessage,
    LinkButtonsCard,
    OnboardingStep,
    Plan,
    StickerMessage,
    TextMessage,
)
from chinabot.texts import messages as msg


def test_first_message_gets_consent_card_once(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        first = await harness.send("hello")
        assert len(first) == 1
        assert isinstance(first[0], FlexMessage)
        user = await harness.repository.get_user("U1")
        assert user is not None
        assert user.consent_card_shown is True
        assert user.consent is False
        assert user.turns_total == 1

        second = await harness.send("hello again")
        assert second == [TextMessage(msg.CONSENT_NUDGE)]
        image = await harness.send_image()
        assert image == [TextMessage(msg.CONSENT_NUDGE)]
        assert harness.llm_calls == []
        assert await harness.used_today() == 0

    asyncio.run(scenario())


def test_accept_keyword_starts_name_capture(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.send("hello")
        replies = await harness.send("同意")
        assert TextMessage(msg.NAME_PROMPT) in replies
        user = await harness.repository.get_user("U1")
        assert user.consent is True
        assert user.onboarding_step is OnboardingStep.AWAITING_NAME

    asyncio.run(scenario())


def test_full_onboarding_stores_names(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.send("hello")
        await harness.send("同意")
        replies = await harness.send("あかり")
        assert replies[0] == TextMessage(msg.NAME_ACCEPTED.format(name="あかり"))
        assert replies[1].quick_replies
        done = await harness.send("あーちゃん")
        assert done == [TextMessage(msg.ONBOARDING_DONE.format(call="あーちゃん"))]
        user = await harness.repository.get_user("U1")
        assert user.chosen_name == "あかり"
        assert user.nickname == "あーちゃん"
        assert user.onboarding_step is OnboardingStep.DONE
        assert await harness.used_today() == 0

    asyncio.run(scenario())


def test_limit_reached_blocks_without_generation(make_harness) -> None:
    harness = make_harness(limits=QuotaConfig(free=3))

    async def scenario() -> None:
        await harness.onboard()
        for _ in range(3):
            await harness.send("ねえ聞いて")
        calls_before = len(harness.llm_calls)
        assert await harness.used_today() == 3

        greeting = await harness.send("おはよう")
        assert greeting[0] == TextMessage(msg.LIMIT_REACHED.format(limit=3))
        chat = await harness.send("ねえ聞いて")
        assert chat[0] == TextMessage(msg.LIMIT_REACHED.format(limit=3))
        assert len(harness.llm_calls) == calls_before
        assert await harness.used_today() == 3

    asyncio.run(scenario())


def test_limit_notice_includes_upgrade_buttons_when_configured(make_harness) -> None:
    harness = make_harness(
        limits=QuotaConfig(free=1),
        checkout_urls={Plan.TIER1: "https://pay.example.com/tier1"},
    )

    async def scenario() -> None:
        await harness.onboard()
        await harness.send("おはよう")
        replies = await harness.send("おはよう")
        assert isinstance(replies[-1], LinkButtonsCard)
        assert replies[-1].buttons[0].url == "https://pay.example.com/tier1?client_reference_id=U1"

    asyncio.run(scenario())


def test_distress_uses_gendered_comfort_and_meters_once(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        noted = await harness.send("女です")
        assert noted == [TextMessage(msg.GENDER_NOTED)]
        assert await harness.used_today() == 0

        replies = await harness.send("なんかつらい")
        assert replies == [TextMessage(msg.COMFORT_FEMALE)]
        assert await harness.used_today() == 1

        other = make_harness()
        await other.onboard()
        assert await other.send("さびしい") == [TextMessage(msg.COMFORT_DEFAULT)]

    asyncio.run(scenario())


def test_plan_change_applies_immediately(make_harness) -> None:
    harness = make_harness(limits=QuotaConfig(free=2, tier2=10))

    async def scenario() -> None:
        await harness.onboard()
        await harness.send("おはよう")
        await harness.send("おやすみ")
        blocked = await harness.send("おはよう")
        assert blocked[0] == TextMessage(msg.LIMIT_REACHED.format(limit=2))

        await harness.billing.set_plan("U1", Plan.TIER2)
        allowed = await harness.send("おはよう")
        assert allowed[0].text in msg.MORNING_POOL
        decision = await harness.quota.usage("U1", Plan.TIER2, now=harness.now)
        assert decision.limit == 10
        assert decision.used == 3

    asyncio.run(scenario())


def test_default_intent_uses_generation_and_history(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        replies = await harness.send("今日ね、カフェ行ったよ")
        assert replies == [TextMessage("うんうん、聞いてるよ")]
        await harness.send("ケーキがおいしかった")
        last_payload = harness.llm_calls[-1]
        contents = [item["content"] for item in last_payload["messages"]]
        assert "今日ね、カフェ行ったよ" in contents
        assert contents[-1] == "ケーキがおいしかった"

    asyncio.run(scenario())


def test_generation_failure_falls_back_to_ambient_pool(make_harness) -> None:
    harness = make_harness()
    harness.llm_status = 429

    async def scenario() -> None:
        await harness.onboard()
        replies = await harness.send("ねえねえ")
        expected = {line.format(call="あかり") for line in msg.AMBIENT_DAY_POOL}
        assert replies[0].text in expected
        calls = len(harness.llm_calls)

        again = await harness.send("ねえねえ")
        assert again[0].text in expected
        assert len(harness.llm_calls) == calls
        assert await harness.used_today() == 2

    asyncio.run(scenario())


def test_morning_fallback_before_noon_without_api_key(make_harness) -> None:
    harness = make_harness(api_key=None, now=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc))

    async def scenario() -> None:
        await harness.onboard(name="しょうた")
        replies = await harness.send("なにしてる？")
        expected = {
            line.format(call="しょうた") + msg.LOVER_AMBIENT_SUFFIX for line in msg.AMBIENT_MORNING_POOL
        }
        assert replies[0].text in expected
        assert harness.llm_calls == []

    asyncio.run(scenario())


def test_scripted_intents(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        sticker = await harness.send("スタンプちょうだい")
        assert isinstance(sticker[0], StickerMessage)
        assert sticker[0].sticker_id in msg.STICKER_POOL
        song = await harness.send("白い朝が好き")
        assert song[0].text in msg.SONG_POOL
        image = await harness.send_image()
        assert image[0] == TextMessage(msg.MEDIA_THANKS)
        assert await harness.used_today() == 3

    asyncio.run(scenario())


def test_safety_filter_redirects_without_quota(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        replies = await harness.send("セックスしよ")
        assert replies == [TextMessage(msg.SAFETY_REDIRECT)]
        assert await harness.used_today() == 0
        assert harness.llm_calls == []
        user = await harness.repository.get_user("U1")
        assert user.turns_total == 5

    asyncio.run(scenario())


def test_free_intents_do_not_touch_quota(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        assert await harness.send("ミュート") == [TextMessage(msg.MUTED)]
        assert (await harness.repository.get_user("U1")).muted is True
        assert await harness.send("通知オン") == [TextMessage(msg.UNMUTED)]
        assert (await harness.repository.get_user("U1")).muted is False

        nick = await harness.send("あだ名つけて")
        user = await harness.repository.get_user("U1")
        assert nick == [TextMessage(msg.NICKNAME_SUGGESTION.format(nick=user.nickname))]
        assert user.nickname.startswith("あかり")

        plan = await harness.send("プラン教えて")
        assert plan[0].text.startswith("いまはフリープラン")
        assert await harness.send("同意") == [TextMessage(msg.CONSENT_ALREADY)]
        assert await harness.used_today() == 0

    asyncio.run(scenario())


def test_status_line_every_tenth_turn(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        replies = []
        for _ in range(6):
            replies.append(await harness.send("おやすみ"))
        # turns 5..10; the tenth one carries the status line
        assert all(len(batch) == 1 for batch in replies[:-1])
        assert replies[-1][-1] == TextMessage(
            msg.STATUS_LINE.format(remaining=44, limit=50, plan="フリー")
        )

    asyncio.run(scenario())


def test_low_quota_warning_for_free_users(make_harness) -> None:
    harness = make_harness(limits=QuotaConfig(free=5))

    async def scenario() -> None:
        await harness.onboard()
        first = await harness.send("おやすみ")
        assert len(first) == 1
        second = await harness.send("おやすみ")
        assert second[-1] == TextMessage(msg.LOW_QUOTA_LINE.format(remaining=3))

    asyncio.run(scenario())


def test_self_reset_removes_everything(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        await harness.send("おはよう")
        replies = await harness.send("リセット")
        assert replies == [TextMessage(msg.RESET_DONE)]
        assert await harness.repository.get_user("U1") is None
        assert await harness.store.keys("quota:U1:") == []
        assert await harness.store.keys("last:U1:") == []
        assert await harness.repository.list_user_ids() == []

        fresh = await harness.send("hello")
        assert isinstance(fresh[0], FlexMessage)

    asyncio.run(scenario())


def test_owner_skips_name_capture(make_harness) -> None:
    harness = make_harness(owner_ids=("OWNER",))

    async def scenario() -> None:
        await harness.send("hi", "OWNER")
        replies = await harness.send("同意", "OWNER")
        assert replies == [TextMessage(msg.OWNER_WELCOME)]
        user = await harness.repository.get_user("OWNER")
        assert user.onboarding_step is OnboardingStep.DONE
        assert user.lover_mode is True

    asyncio.run(scenario())


def test_unexpected_error_returns_apology(make_harness, monkeypatch) -> None:
    harness = make_harness()

    async def boom(*args, **kwargs):
        raise RuntimeError("boom")

    async def scenario() -> None:
        await harness.onboard()
        monkeypatch.setattr(harness.quota, "check_and_consume", boom)
        replies = await harness.send("おはよう")
        assert replies == [TextMessage(msg.FALLBACK_APOLOGY)]
        user = await harness.repository.get_user("U1")
        assert user.turns_total == 5

    asyncio.run(scenario())


def test_same_user_events_are_serialized(make_harness) -> None:
    harness = make_harness()

    async def scenario() -> None:
        await harness.onboard()
        await asyncio.gather(*(harness.send("おやすみ") for _ in range(8)))
        user = await harness.repository.get_user("U1")
        assert user.turns_total == 12
        assert await harness.used_today() == 8

    asyncio.run(scenario())


def test_metering_follows_intent_table(make_harness, monkeypatch) -> None:
    harness = make_harness()
    monkeypatch.setattr("chinabot.router.is_metered", lambda intent: True)

    async def scenario() -> None:
        await harness.onboard()
        replies = await harness.send("プラン教えて")
        assert replies == [TextMessage("うんうん、聞いてるよ")]
        assert await harness.used_today() == 1

    asyncio.run(scenario())
