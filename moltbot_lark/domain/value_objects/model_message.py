"""
Model-side value objects - what the bridge sends to and receives from Moltbot
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class AttachmentKind(Enum):
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class Attachment:
    """A platform resource referenced by a message."""

    kind: AttachmentKind
    key: str
    name: Optional[str] = None

    def describe(self) -> str:
        label = self.name or self.key
        return f"[{self.kind.value}: {label}]"


@dataclass(frozen=True)
class MessageContext:
    """Where a message came from."""

    conversation_id: str
    sender_id: str
    sender_kind: str
    timestamp: int
    message_id: str


@dataclass(frozen=True)
class ModelMessage:
    """
    An inbound message converted for the model.

    Attributes:
        text (str): Text with mention markers prefixed
        context (MessageContext): Origin of the message
        attachments (tuple[Attachment, ...]): Referenced resources
    """

    text: str
    context: MessageContext
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)

    def prompt_text(self, include_attachments: bool = True) -> str:
        """Text to send as the user turn, optionally listing attachments."""
        if not include_attachments or not self.attachments:
            return self.text
        markers = " ".join(a.describe() for a in self.attachments)
        return f"{self.text} {markers}" if self.text else markers


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["TokenUsage"]:
        if not data:
            return None
        return cls(
            prompt_tokens=int(data.get("prompt_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
        )


@dataclass(frozen=True)
class ModelResponse:
    """A complete, non-streamed model reply."""

    text: str
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None
