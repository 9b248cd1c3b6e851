import unittest
from unittest.mock import AsyncMock

from moltbot_lark.application.stream_processor import StreamProcessor
from moltbot_lark.domain.exceptions import LarkConnectionException, RetryExhaustedException
from moltbot_lark.domain.repositories.model_client import ModelStream
from moltbot_lark.domain.value_objects.model_message import TokenUsage
from moltbot_lark.domain.value_objects.rendered_message import StreamPolicy
from moltbot_lark.infrastructure.resilience.retry import RetryExecutor, RetryPolicy


async def fragments_of(*parts):
    for part in parts:
        yield part


class SteppingClock:
    """Advances by ``step`` seconds on every read."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class TestStreamProcessor(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.emit = AsyncMock()
        self.executor = RetryExecutor(
            RetryPolicy(max_attempts=3, jitter=False), sleep=AsyncMock()
        )

    def make(self, policy=None, clock=None):
        return StreamProcessor(
            "chat-1",
            self.emit,
            policy=policy or StreamPolicy(chunk_threshold=10, time_threshold=1.0),
            retry_executor=self.executor,
            clock=clock or SteppingClock(0.0),
        )

    def emissions(self):
        return [c.args for c in self.emit.await_args_list]

    async def test_final_emission_carries_full_text(self):
        processor = self.make()
        result = await processor.process(fragments_of("Hel", "lo"))

        self.assertEqual(result, "Hello")
        self.assertEqual(self.emissions()[-1], ("chat-1", "Hello", True))
        self.assertTrue(processor.is_complete)
        self.assertEqual(processor.buffer, "")

    async def test_first_fragment_emits_immediately(self):
        await self.make().process(fragments_of("Hi", " there"))
        self.assertEqual(self.emissions()[0], ("chat-1", "Hi", False))

    async def test_partials_are_cumulative_on_size(self):
        processor = self.make(policy=StreamPolicy(chunk_threshold=5, time_threshold=100.0))
        await processor.process(fragments_of("ab", "cde", "fg", "hijk"))

        self.assertEqual(
            self.emissions(),
            [
                ("chat-1", "ab", False),
                ("chat-1", "abcde", False),
                ("chat-1", "abcdefg", False),
                ("chat-1", "abcdefghijk", False),
                ("chat-1", "abcdefghijk", True),
            ],
        )

    async def test_time_threshold(self):
        # Clock moves 0.6s per fragment; threshold is 1s
        processor = self.make(
            policy=StreamPolicy(chunk_threshold=1000, time_threshold=1.0),
            clock=SteppingClock(0.6),
        )
        await processor.process(fragments_of("a", "b", "c", "d"))

        partials = [e[1] for e in self.emissions() if not e[2]]
        self.assertEqual(partials, ["a", "abc"])

    async def test_no_partials_when_disabled(self):
        processor = self.make(policy=StreamPolicy(chunk_threshold=1, enable_partials=False))
        await processor.process(fragments_of("a", "b"))
        self.assertEqual(self.emissions(), [("chat-1", "ab", True)])

    async def test_empty_stream_emits_one_final(self):
        processor = self.make()
        self.assertEqual(await processor.process(fragments_of()), "")
        self.assertEqual(self.emissions(), [("chat-1", "", True)])

    async def test_empty_leading_fragment_emits_nothing(self):
        processor = self.make(policy=StreamPolicy(chunk_threshold=1))
        await processor.process(fragments_of("", "a"))
        self.assertEqual(self.emissions(), [("chat-1", "a", False), ("chat-1", "a", True)])

    async def test_empty_fragment_still_checks_time_threshold(self):
        processor = self.make(
            policy=StreamPolicy(chunk_threshold=10, time_threshold=1.0),
            clock=SteppingClock(5.0),
        )
        await processor.process(fragments_of("a", ""))

        self.assertEqual(
            self.emissions(),
            [("chat-1", "a", False), ("chat-1", "a", False), ("chat-1", "a", True)],
        )

    async def test_transient_emit_failure_is_retried(self):
        self.emit.side_effect = [LarkConnectionException(), None]
        processor = self.make(policy=StreamPolicy(enable_partials=False))

        await processor.process(fragments_of("x"))
        self.assertEqual(self.emit.await_count, 2)

    async def test_exhausted_emit_aborts(self):
        self.emit.side_effect = LarkConnectionException()
        processor = self.make()

        with self.assertRaises(RetryExhaustedException):
            await processor.process(fragments_of("x", "y"))
        self.assertFalse(processor.is_complete)

    async def test_source_error_propagates(self):
        async def broken():
            yield "a"
            raise ValueError("boom")

        with self.assertRaises(ValueError):
            await self.make(policy=StreamPolicy(enable_partials=False)).process(broken())
        self.assertEqual(self.emissions(), [])

    async def test_reuse_requires_reset(self):
        processor = self.make()
        await processor.process(fragments_of("a"))
        with self.assertRaises(RuntimeError):
            await processor.process(fragments_of("b"))

        processor.reset()
        self.assertEqual(await processor.process(fragments_of("b")), "b")

    async def test_reads_finish_reason_from_model_stream(self):
        stream: ModelStream

        async def produce():
            yield "done"
            stream.finish("stop", TokenUsage(1, 2, 3))

        stream = ModelStream(produce())
        processor = self.make()
        await processor.process(stream)

        self.assertEqual(processor.finish_reason, "stop")
        self.assertEqual(processor.usage.total_tokens, 3)


if __name__ == "__main__":
    unittest.main()
