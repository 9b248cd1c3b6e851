"""
Outbound value objects - model output rendered for Lark
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ...shared.constants import STREAM_CHUNK_THRESHOLD, STREAM_TIME_THRESHOLD


class RenderFormat(Enum):
    PLAIN = "text"
    RICH_TEXT = "markdown"
    CARD = "card"

    @classmethod
    def parse(cls, value: str) -> "RenderFormat":
        return cls(value.lower())


@dataclass(frozen=True)
class RenderedMessage:
    """
    Model output in platform form.

    For ``RenderFormat.CARD`` the content lives in ``card`` and ``text`` is
    empty.
    """

    text: str
    format: RenderFormat
    card: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class StreamUpdate:
    """
    One emission of a streaming reply.

    Attributes:
        conversation_id (str): Chat id
        content (str): Full text accumulated so far
        is_final (bool): True for the last emission
        reply_to (str, optional): Inbound message the reply belongs to
    """

    conversation_id: str
    content: str
    is_final: bool
    reply_to: Optional[str] = None


@dataclass(frozen=True)
class StreamPolicy:
    """Emission thresholds. ``time_threshold`` is in seconds."""

    chunk_threshold: int = STREAM_CHUNK_THRESHOLD
    time_threshold: float = STREAM_TIME_THRESHOLD
    enable_partials: bool = True
