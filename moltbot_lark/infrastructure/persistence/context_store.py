"""
Conversation context store

In-memory, per-conversation message history with a length bound and an
inactivity expiry. Absence and expiry are reported as empty results; nothing
here raises. None of the methods awaits, so under asyncio each call is atomic.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ...domain.value_objects.chat_message import ChatMessage
from ...shared.constants import CONTEXT_MAX_AGE_HOURS, CONTEXT_MAX_HISTORY_LENGTH
from ...utils.logger import logger


@dataclass
class ConversationContext:
    """History of one chat."""

    conversation_id: str
    history: list[ChatMessage] = field(default_factory=list)
    last_activity: float = 0.0
    message_count: int = 0


@dataclass(frozen=True)
class ContextStoreStats:
    total_conversations: int
    total_messages: int
    oldest_conversation: Optional[tuple[str, float]] = None
    newest_conversation: Optional[tuple[str, float]] = None


class ConversationContextStore:
    """
    Bounded, expiring conversation histories keyed by conversation id.
    """

    def __init__(
        self,
        max_history_length: int = CONTEXT_MAX_HISTORY_LENGTH,
        max_age: float = CONTEXT_MAX_AGE_HOURS * 3600,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_history_length: Messages kept per conversation
            max_age: Seconds of inactivity after which a context expires
            clock: Time source returning seconds
        """
        if max_history_length < 1:
            raise ValueError("max_history_length must be at least 1")
        self.max_history_length = max_history_length
        self.max_age = max_age
        self._clock = clock
        self._contexts: dict[str, ConversationContext] = {}

        logger.info(
            f"Conversation context store initialized "
            f"(max_history_length={max_history_length}, max_age={max_age}s)"
        )

    def _is_expired(self, context: ConversationContext, now: float) -> bool:
        return now - context.last_activity > self.max_age

    def append(self, conversation_id: str, message: ChatMessage) -> None:
        """Add a message to the end of a conversation, creating it if needed."""
        context = self._contexts.get(conversation_id)
        if context is None:
            context = ConversationContext(conversation_id)
            self._contexts[conversation_id] = context
            logger.debug(f"Created conversation context {conversation_id}")

        context.history.append(message)
        context.last_activity = self._clock()
        context.message_count += 1

        overflow = len(context.history) - self.max_history_length
        if overflow > 0:
            del context.history[:overflow]
            logger.debug(
                f"Trimmed {overflow} message(s) from {conversation_id}, "
                f"{len(context.history)} remain"
            )

    def get_history(self, conversation_id: str) -> list[ChatMessage]:
        """
        Return the stored history, oldest first.

        An expired context is deleted and reported as empty.
        """
        context = self._contexts.get(conversation_id)
        if context is None:
            return []

        if self._is_expired(context, self._clock()):
            logger.debug(f"Conversation context {conversation_id} expired")
            del self._contexts[conversation_id]
            return []

        return list(context.history)

    def clear(self, conversation_id: str) -> None:
        """Remove a conversation. No-op if absent."""
        context = self._contexts.pop(conversation_id, None)
        if context is not None:
            logger.debug(
                f"Cleared conversation context {conversation_id} "
                f"({context.message_count} messages)"
            )

    def sweep_expired(self) -> int:
        """Remove every expired conversation and return how many were removed."""
        now = self._clock()
        expired = [
            conversation_id
            for conversation_id, context in self._contexts.items()
            if self._is_expired(context, now)
        ]
        for conversation_id in expired:
            del self._contexts[conversation_id]

        if expired:
            logger.info(f"Swept {len(expired)} expired conversation(s)")
        return len(expired)

    def list_active(self) -> list[str]:
        return list(self._contexts.keys())

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._contexts

    def get_stats(self) -> ContextStoreStats:
        """Totals plus the least and most recently active conversations."""
        contexts = list(self._contexts.values())
        if not contexts:
            return ContextStoreStats(total_conversations=0, total_messages=0)

        oldest = min(contexts, key=lambda c: c.last_activity)
        newest = max(contexts, key=lambda c: c.last_activity)
        return ContextStoreStats(
            total_conversations=len(contexts),
            total_messages=sum(c.message_count for c in contexts),
            oldest_conversation=(oldest.conversation_id, oldest.last_activity),
            newest_conversation=(newest.conversation_id, newest.last_activity),
        )
