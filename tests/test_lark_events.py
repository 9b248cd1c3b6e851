import json
import unittest

from moltbot_lark.domain.exceptions import TransformationException
from moltbot_lark.domain.value_objects.platform_message import PlatformMessageType
from moltbot_lark.infrastructure.platform.lark_events import (
    parse_message_event,
    should_process_message,
)


def make_event(message_type="text", content=None, sender_type="user", **message_fields):
    message = {
        "message_id": "om_1",
        "chat_id": "oc_1",
        "chat_type": "group",
        "message_type": message_type,
        "content": json.dumps(content if content is not None else {"text": "hi"}),
        "create_time": "1700000000000",
    }
    message.update(message_fields)
    return {
        "schema": "2.0",
        "header": {"event_id": "ev_1", "event_type": "im.message.receive_v1"},
        "event": {
            "sender": {"sender_id": {"open_id": "ou_1"}, "sender_type": sender_type},
            "message": message,
        },
    }


class TestParseMessageEvent(unittest.TestCase):
    def test_text_message(self):
        message = parse_message_event(make_event())

        self.assertEqual(message.message_id, "om_1")
        self.assertEqual(message.conversation_id, "oc_1")
        self.assertEqual(message.sender_id, "ou_1")
        self.assertEqual(message.sender_kind, "user")
        self.assertEqual(message.message_type, PlatformMessageType.TEXT)
        self.assertEqual(message.text_content, "hi")
        self.assertEqual(message.timestamp, 1700000000000)
        self.assertEqual(message.chat_type, "group")

    def test_mentions(self):
        event = make_event(
            content={"text": "@_user_1 hello"},
            mentions=[{"key": "@_user_1", "id": {"open_id": "ou_bot"}, "name": "Moltbot"}],
        )
        message = parse_message_event(event)

        self.assertEqual(len(message.mentions), 1)
        self.assertEqual(message.mentions[0].key, "@_user_1")
        self.assertEqual(message.mentions[0].id, "ou_bot")
        self.assertEqual(message.mentions[0].name, "Moltbot")

    def test_post_message(self):
        post = {"title": "T", "content": [[{"tag": "text", "text": "body"}]]}
        message = parse_message_event(make_event("post", post))

        self.assertEqual(message.message_type, PlatformMessageType.POST)
        self.assertEqual(message.post_content, post)
        self.assertIsNone(message.text_content)

    def test_image_and_file(self):
        image = parse_message_event(make_event("image", {"image_key": "img_1"}))
        self.assertEqual(image.image_key, "img_1")

        media = parse_message_event(
            make_event("media", {"file_key": "f_1", "file_name": "clip.mp4", "image_key": "thumb"})
        )
        self.assertEqual(media.file_key, "f_1")
        self.assertEqual(media.file_name, "clip.mp4")
        self.assertIsNone(media.image_key)

    def test_unknown_type_has_no_content(self):
        message = parse_message_event(make_event("share_chat", {"chat_id": "oc_2"}))
        self.assertEqual(message.message_type, PlatformMessageType.UNKNOWN)
        self.assertFalse(message.has_content())

    def test_invalid_content_json(self):
        event = make_event()
        event["event"]["message"]["content"] = "{not json"

        with self.assertRaises(TransformationException) as ctx:
            parse_message_event(event)
        self.assertEqual(ctx.exception.field, "event.message.content")

    def test_missing_chat_id(self):
        event = make_event()
        del event["event"]["message"]["chat_id"]

        with self.assertRaises(TransformationException) as ctx:
            parse_message_event(event)
        self.assertEqual(ctx.exception.field, "event.message.chat_id")


class TestShouldProcessMessage(unittest.TestCase):
    def test_user_text_is_processed(self):
        self.assertTrue(should_process_message(parse_message_event(make_event())))

    def test_bot_messages_are_skipped(self):
        self.assertFalse(should_process_message(parse_message_event(make_event(sender_type="bot"))))

    def test_empty_text_is_skipped(self):
        self.assertFalse(should_process_message(parse_message_event(make_event(content={"text": ""}))))


if __name__ == "__main__":
    unittest.main()
