# Application Layer - message conversion and streaming
from .message_transformer import MessageTransformer
from .stream_processor import StreamProcessor

__all__ = [
    "MessageTransformer",
    "StreamProcessor",
]
