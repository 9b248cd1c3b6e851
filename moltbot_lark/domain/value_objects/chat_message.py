"""
Chat message value object - one turn of a conversation as the model sees it
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ChatMessage:
    """
    A single history entry.

    Attributes:
        role (MessageRole): Who produced the message
        content (str): Message text
    """

    role: MessageRole
    content: str

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.ASSISTANT, content)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.SYSTEM, content)

    def to_dict(self) -> dict[str, Any]:
        """Chat-completions wire shape."""
        return {"role": self.role.value, "content": self.content}
