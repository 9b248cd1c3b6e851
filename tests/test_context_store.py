import unittest

from moltbot_lark.domain.value_objects.chat_message import ChatMessage, MessageRole
from moltbot_lark.infrastructure.persistence.context_store import ConversationContextStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestConversationContextStore(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = ConversationContextStore(max_history_length=3, max_age=60, clock=self.clock)

    def test_append_and_history_in_order(self):
        self.store.append("c1", ChatMessage.user("hi"))
        self.store.append("c1", ChatMessage.assistant("hello"))

        history = self.store.get_history("c1")
        self.assertEqual([m.content for m in history], ["hi", "hello"])
        self.assertEqual(history[0].role, MessageRole.USER)

    def test_history_is_trimmed_from_the_front(self):
        for i in range(5):
            self.store.append("c1", ChatMessage.user(f"m{i}"))

        self.assertEqual([m.content for m in self.store.get_history("c1")], ["m2", "m3", "m4"])
        # Trimming does not reduce the appended-message count
        self.assertEqual(self.store.get_stats().total_messages, 5)

    def test_returned_history_is_a_copy(self):
        self.store.append("c1", ChatMessage.user("hi"))
        self.store.get_history("c1").append(ChatMessage.user("intruder"))
        self.assertEqual(len(self.store.get_history("c1")), 1)

    def test_unknown_conversation_is_empty(self):
        self.assertEqual(self.store.get_history("missing"), [])
        self.assertFalse(self.store.has_conversation("missing"))

    def test_expired_context_is_dropped_on_read(self):
        self.store.append("c1", ChatMessage.user("hi"))
        self.clock.now += 61

        self.assertEqual(self.store.get_history("c1"), [])
        self.assertFalse(self.store.has_conversation("c1"))

    def test_context_at_exact_age_is_kept(self):
        self.store.append("c1", ChatMessage.user("hi"))
        self.clock.now += 60
        self.assertEqual(len(self.store.get_history("c1")), 1)

    def test_append_refreshes_activity(self):
        self.store.append("c1", ChatMessage.user("hi"))
        self.clock.now += 50
        self.store.append("c1", ChatMessage.user("again"))
        self.clock.now += 50
        self.assertEqual(len(self.store.get_history("c1")), 2)

    def test_clear(self):
        self.store.append("c1", ChatMessage.user("hi"))
        self.store.clear("c1")
        self.store.clear("never-existed")
        self.assertEqual(self.store.get_history("c1"), [])

    def test_sweep_expired_removes_only_stale(self):
        self.store.append("old", ChatMessage.user("hi"))
        self.clock.now += 40
        self.store.append("new", ChatMessage.user("hi"))
        self.clock.now += 30

        self.assertEqual(self.store.sweep_expired(), 1)
        self.assertEqual(self.store.list_active(), ["new"])
        self.assertEqual(self.store.sweep_expired(), 0)

    def test_stats(self):
        self.store.append("a", ChatMessage.user("1"))
        self.clock.now += 5
        self.store.append("b", ChatMessage.user("2"))
        self.store.append("b", ChatMessage.user("3"))

        stats = self.store.get_stats()
        self.assertEqual(stats.total_conversations, 2)
        self.assertEqual(stats.total_messages, 3)
        self.assertEqual(stats.oldest_conversation[0], "a")
        self.assertEqual(stats.newest_conversation[0], "b")

    def test_empty_stats(self):
        stats = self.store.get_stats()
        self.assertEqual(stats.total_conversations, 0)
        self.assertIsNone(stats.oldest_conversation)

    def test_invalid_history_length(self):
        with self.assertRaises(ValueError):
            ConversationContextStore(max_history_length=0)


if __name__ == "__main__":
    unittest.main()
