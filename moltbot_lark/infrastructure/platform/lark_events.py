"""
Lark event parsing

Turns ``im.message.receive_v1`` event payloads into PlatformMessage objects.
"""

import json
import time
from typing import Any

from ...domain.exceptions import TransformationException
from ...domain.value_objects.platform_message import (
    Mention,
    PlatformMessage,
    PlatformMessageType,
)
from ...utils.logger import logger


def _require(data: Any, key: str, path: str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise TransformationException("missing field", f"{path}.{key}" if path else key)
    return data[key]


def _parse_mentions(raw_mentions: Any) -> tuple[Mention, ...]:
    if not raw_mentions:
        return ()
    mentions = []
    for item in raw_mentions:
        if not isinstance(item, dict):
            continue
        raw_id = item.get("id")
        open_id = raw_id.get("open_id", "") if isinstance(raw_id, dict) else str(raw_id or "")
        mentions.append(
            Mention(key=item.get("key", ""), id=open_id, name=item.get("name", ""))
        )
    return tuple(mentions)


def parse_message_event(payload: dict[str, Any]) -> PlatformMessage:
    """
    Parse a message receive event.

    Args:
        payload: Event body (schema 2.0: ``{"header": ..., "event": ...}``)

    Returns:
        PlatformMessage

    Raises:
        TransformationException: If required fields are missing or the
            message content is not valid JSON
    """
    event = _require(payload, "event", "")
    message = _require(event, "message", "event")
    sender = event.get("sender") or {}

    message_id = _require(message, "message_id", "event.message")
    chat_id = _require(message, "chat_id", "event.message")
    raw_type = message.get("message_type") or message.get("msg_type") or ""
    message_type = PlatformMessageType.parse(raw_type)

    try:
        content = json.loads(message.get("content") or "{}")
    except (TypeError, ValueError) as e:
        raise TransformationException(f"invalid JSON ({e})", "event.message.content", e) from e
    if not isinstance(content, dict):
        raise TransformationException("expected object", "event.message.content")

    text_content = None
    post_content = None
    image_key = None
    file_key = None
    file_name = None

    if message_type == PlatformMessageType.TEXT:
        text_content = content.get("text")
    elif message_type == PlatformMessageType.POST:
        post_content = content.get("post", content)
    elif message_type == PlatformMessageType.IMAGE:
        image_key = content.get("image_key")
    elif message_type in (
        PlatformMessageType.FILE,
        PlatformMessageType.AUDIO,
        PlatformMessageType.MEDIA,
    ):
        file_key = content.get("file_key")
        file_name = content.get("file_name")
    else:
        logger.warning(f"Unsupported message type {raw_type!r} in {message_id}")

    sender_id = sender.get("sender_id") or {}
    create_time = message.get("create_time")
    try:
        timestamp = int(create_time) if create_time else int(time.time() * 1000)
    except (TypeError, ValueError):
        timestamp = int(time.time() * 1000)

    parsed = PlatformMessage(
        message_id=message_id,
        conversation_id=chat_id,
        sender_id=sender_id.get("open_id", "") if isinstance(sender_id, dict) else "",
        sender_kind=sender.get("sender_type", ""),
        message_type=message_type,
        text_content=text_content,
        post_content=post_content,
        image_key=image_key,
        file_key=file_key,
        file_name=file_name,
        mentions=_parse_mentions(message.get("mentions")),
        timestamp=timestamp,
        chat_type=message.get("chat_type", ""),
    )

    logger.debug(
        f"Parsed Lark message {message_id} ({message_type.value}) "
        f"with {len(parsed.mentions)} mention(s)"
    )
    return parsed


def should_process_message(message: PlatformMessage) -> bool:
    """Skip messages from bots and messages without content."""
    if message.is_from_bot():
        logger.debug(f"Skipping message {message.message_id} from bot")
        return False

    if not message.has_content():
        logger.debug(f"Skipping message {message.message_id} without content")
        return False

    return True
