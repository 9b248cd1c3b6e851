"""
Lark interactive card documents
"""

from typing import Any

from ...shared.constants import CARD_TITLE_RESPONSE, CARD_TITLE_STREAMING

# Lark markdown tokens for each emphasis kind
LARK_MARKDOWN_TOKENS = {
    "fence": "```",
    "code": "`",
    "bold": "**",
    "italic": "*",
}


def divider() -> dict[str, Any]:
    return {"tag": "hr"}


def text_block(content: str) -> dict[str, Any]:
    return {"tag": "div", "text": {"tag": "lark_md", "content": content}}


def heading_block(content: str) -> dict[str, Any]:
    bold = LARK_MARKDOWN_TOKENS["bold"]
    return text_block(f"{bold}{content}{bold}")


def build_card(elements: list[dict[str, Any]], title: str = CARD_TITLE_RESPONSE) -> dict[str, Any]:
    """Wrap card elements in a card document."""
    return {
        "config": {"wide_screen_mode": True},
        "header": {"title": {"tag": "plain_text", "content": title}},
        "elements": elements,
    }


def build_stream_card(content: str, title: str = CARD_TITLE_STREAMING) -> dict[str, Any]:
    card = build_card([text_block(content)], title)
    # Cards must opt in to being patched after they are sent
    card["config"]["update_multi"] = True
    return card
