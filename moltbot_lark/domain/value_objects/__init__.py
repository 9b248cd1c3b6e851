# Value Objects
from .chat_message import ChatMessage, MessageRole
from .model_message import (
    Attachment,
    AttachmentKind,
    MessageContext,
    ModelMessage,
    ModelResponse,
    TokenUsage,
)
from .platform_message import Mention, PlatformMessage, PlatformMessageType
from .rendered_message import RenderedMessage, RenderFormat, StreamPolicy, StreamUpdate

__all__ = [
    # Conversation
    "ChatMessage",
    "MessageRole",
    # Inbound
    "PlatformMessage",
    "PlatformMessageType",
    "Mention",
    # Model side
    "ModelMessage",
    "MessageContext",
    "Attachment",
    "AttachmentKind",
    "ModelResponse",
    "TokenUsage",
    # Outbound
    "RenderedMessage",
    "RenderFormat",
    "StreamUpdate",
    "StreamPolicy",
]
