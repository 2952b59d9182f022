"""Intent classifier tests."""

from __future__ import annotations

import pytest

from chinabot.intents import (
    FREE_INTENTS,
    METERED_INTENTS,
    RULES,
    Intent,
    classify,
    is_flagged,
    is_metered,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("同意", Intent.CONSENT),
        ("  同意 ", Intent.CONSENT),
        ("やめておく", Intent.DECLINE),
        ("リセット", Intent.SELF_RESET),
        ("ミュート", Intent.MUTE),
        ("通知オフ", Intent.MUTE),
        ("ミュート解除", Intent.UNMUTE),
        ("通知オン", Intent.UNMUTE),
        ("おはよう！", Intent.MORNING),
        ("そろそろ寝るね", Intent.NIGHT),
        ("ちょっとしんどい", Intent.DISTRESS),
        ("ニックネームほしい", Intent.NICKNAME),
        ("性別は男だよ", Intent.GENDER),
        ("プラン教えて", Intent.PLAN_INQUIRY),
        ("I dont remember 聴いた", Intent.SONG),
        ("Day By Day", Intent.SONG),
        ("STAMP!", Intent.STICKER),
        ("今日は晴れてるね", Intent.DEFAULT),
        ("", Intent.DEFAULT),
    ],
)
def test_classify(text: str, expected: Intent) -> None:
    assert classify(text) is expected


def test_exact_control_words_need_whole_text() -> None:
    assert classify("同意します") is Intent.DEFAULT
    assert classify("リセットしたい") is Intent.DEFAULT


def test_first_matching_rule_wins() -> None:
    assert classify("おはよう、でも寂しい") is Intent.MORNING
    assert classify("寂しい女の子") is Intent.DISTRESS


def test_classify_is_deterministic() -> None:
    assert {classify("おやすみ") for _ in range(20)} == {Intent.NIGHT}


def test_free_and_metered_split_covers_every_intent() -> None:
    assert FREE_INTENTS.isdisjoint(METERED_INTENTS)
    assert FREE_INTENTS | METERED_INTENTS == set(Intent)
    assert is_metered(Intent.DEFAULT)
    assert is_metered(Intent.MEDIA)
    assert not is_metered(Intent.PLAN_INQUIRY)


def test_rules_are_immutable() -> None:
    assert isinstance(RULES, tuple)
    with pytest.raises(AttributeError):
        RULES[0].intent = Intent.DEFAULT  # type: ignore[misc]


def test_safety_filter() -> None:
    assert is_flagged("セックスしよう")
    assert is_flagged("send nudes")
    assert not is_flagged("Sussex に旅行した")
    assert not is_flagged("おはよう")
    assert not is_flagged("")
