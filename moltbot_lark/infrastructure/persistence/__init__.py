# Persistence
from .context_store import (
    ContextStoreStats,
    ConversationContext,
    ConversationContextStore,
)

__all__ = [
    "ConversationContext",
    "ConversationContextStore",
    "ContextStoreStats",
]
