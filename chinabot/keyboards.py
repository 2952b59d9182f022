"""Rich LINE messages (cards, buttons and quick replies) used by the bot."""

from __future__ import annotations

from typing import Mapping

from chinabot.models import (
    FlexMessage,
    LinkButton,
    LinkButtonsCard,
    Plan,
    QuickReply,
    TextMessage,
)
from chinabot.texts import messages as msg


def consent_card() -> FlexMessage:
    """Bubble asking the user to accept data retention."""

    return FlexMessage(
        alt_text=msg.CONSENT_ALT_TEXT,
        contents={
            "type": "bubble",
            "body": {
                "type": "box",
                "layout": "vertical",
                "spacing": "md",
                "contents": [
                    {"type": "text", "text": msg.CONSENT_TITLE, "weight": "bold", "size": "md"},
                    {"type": "text", "wrap": True, "text": msg.CONSENT_BODY},
                    {"type": "text", "text": msg.CONSENT_POLICY_TITLE, "weight": "bold"},
                    {
                        "type": "text",
                        "wrap": True,
                        "size": "sm",
                        "color": "#888888",
                        "text": msg.CONSENT_POLICY_BODY,
                    },
                ],
            },
            "footer": {
                "type": "box",
                "layout": "horizontal",
                "spacing": "md",
                "contents": [
                    {
                        "type": "button",
                        "style": "primary",
                        "color": "#6C8EF5",
                        "action": {
                            "type": "message",
                            "label": msg.CONSENT_ACCEPT_BUTTON,
                            "text": msg.CONSENT_KEYWORD,
                        },
                    },
                    {
                        "type": "button",
                        "style": "secondary",
                        "action": {
                            "type": "message",
                            "label": msg.CONSENT_DECLINE_BUTTON,
                            "text": msg.DECLINE_KEYWORD,
                        },
                    },
                ],
            },
        },
    )


def nickname_prompt(suggestion: str) -> TextMessage:
    """Nickname question with the suggestion and a skip button as quick replies."""

    return TextMessage(
        msg.NICKNAME_PROMPT.format(suggestion=suggestion),
        quick_replies=(
            QuickReply(label=suggestion, text=suggestion),
            QuickReply(label=msg.SKIP_BUTTON, text=msg.SKIP_BUTTON),
        ),
    )


def upgrade_card(links: Mapping[Plan, str]) -> LinkButtonsCard | None:
    """Buttons template pointing at checkout pages; None without links."""

    buttons = tuple(
        LinkButton(label=msg.UPGRADE_BUTTONS[plan.value], url=url)
        for plan, url in links.items()
        if plan is not Plan.FREE
    )
    if not buttons:
        return None
    return LinkButtonsCard(alt_text=msg.UPGRADE_ALT_TEXT, text=msg.UPGRADE_TEXT, buttons=buttons)
