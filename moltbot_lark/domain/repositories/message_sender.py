"""
Message Sender Interface - Platform-agnostic outbound abstraction
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..value_objects.rendered_message import RenderedMessage, StreamUpdate


class IMessageSender(ABC):
    """Outbound side of a chat platform."""

    @abstractmethod
    async def send_text(
        self,
        conversation_id: str,
        text: str,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """Send a text message, returning the platform message id"""
        pass

    @abstractmethod
    async def send_card(
        self,
        conversation_id: str,
        card: dict[str, Any],
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """Send an interactive card, returning the platform message id"""
        pass

    @abstractmethod
    async def send_rendered(
        self,
        conversation_id: str,
        rendered: RenderedMessage,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """Send a message produced by the transformer"""
        pass

    @abstractmethod
    async def send_stream_update(self, update: StreamUpdate) -> None:
        """Deliver one partial or final streaming emission"""
        pass

    @abstractmethod
    async def send_error_message(
        self,
        conversation_id: str,
        error: BaseException,
        reply_to: Optional[str] = None,
    ) -> None:
        """Report an error to the chat. Must not raise."""
        pass

    def discard_stream(self, conversation_id: str, reply_to: Optional[str] = None) -> None:
        """Forget any state kept for an aborted stream"""
        pass
