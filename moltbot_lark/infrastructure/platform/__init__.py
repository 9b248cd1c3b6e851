# Lark platform adapter
from .lark_cards import build_card, build_stream_card
from .lark_client import LarkClient
from .lark_events import parse_message_event, should_process_message
from .lark_sender import LarkMessageSender
from .lark_server import LarkEventServer

__all__ = [
    "LarkClient",
    "LarkEventServer",
    "LarkMessageSender",
    "build_card",
    "build_stream_card",
    "parse_message_event",
    "should_process_message",
]
