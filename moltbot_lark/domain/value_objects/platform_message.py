"""
Platform message value object - an inbound Lark message after event parsing
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class PlatformMessageType(Enum):
    """
    Lark message content types.
    """

    TEXT = "text"
    POST = "post"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    MEDIA = "media"
    STICKER = "sticker"
    INTERACTIVE = "interactive"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "PlatformMessageType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Mention:
    """
    An @mention inside a message.

    Attributes:
        key (str): Placeholder used inside the text, e.g. "@_user_1"
        id (str): Mentioned user's open id
        name (str): Display name
    """

    key: str = ""
    id: str = ""
    name: str = ""


@dataclass(frozen=True)
class PlatformMessage:
    """
    Inbound chat message in platform terms.

    Exactly one of the content fields is normally set, according to
    ``message_type``. ``post_content`` keeps the structured rich-text document
    as delivered by the platform; it is validated when transformed.

    Attributes:
        message_id (str): Platform message id
        conversation_id (str): Chat id, the conversation key
        sender_id (str): Sender open id
        sender_kind (str): "user", "bot", ...
        message_type (PlatformMessageType): Content type
        text_content (str, optional): Plain text body
        post_content (Any, optional): Rich-text document
        image_key (str, optional): Image reference
        file_key (str, optional): File/audio/media reference
        file_name (str, optional): File name when known
        mentions (tuple[Mention, ...]): Mentions in order of appearance
        timestamp (int): Creation time in epoch milliseconds
        chat_type (str): "p2p" or "group"
    """

    message_id: str
    conversation_id: str
    sender_id: str
    sender_kind: str
    message_type: PlatformMessageType
    text_content: Optional[str] = None
    post_content: Any = None
    image_key: Optional[str] = None
    file_key: Optional[str] = None
    file_name: Optional[str] = None
    mentions: tuple[Mention, ...] = field(default_factory=tuple)
    timestamp: int = 0
    chat_type: str = ""

    def has_content(self) -> bool:
        return bool(
            self.text_content or self.post_content or self.image_key or self.file_key
        )

    def is_from_bot(self) -> bool:
        return self.sender_kind == "bot"
