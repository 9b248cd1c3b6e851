"""
Stream processor - batches model output fragments into chat updates

Fragments are accumulated in a buffer. A partial update carrying the whole
buffer is emitted whenever the buffer reaches ``chunk_threshold`` characters or
``time_threshold`` seconds have passed since the previous emission. One final
update with the full text always closes the stream. Each emission is delivered
through RetryExecutor; a delivery that exhausts its retries aborts processing.
"""

import time
from functools import partial
from typing import AsyncIterable, Awaitable, Callable, Optional

from ..domain.repositories.model_client import ModelStream
from ..domain.value_objects.model_message import TokenUsage
from ..domain.value_objects.rendered_message import StreamPolicy
from ..infrastructure.resilience.retry import RetryExecutor
from ..utils.logger import logger

EmitCallback = Callable[[str, str, bool], Awaitable[None]]


class StreamProcessor:
    """
    Turns one streamed model reply into ordered partial/final emissions.

    One instance handles one response.
    """

    def __init__(
        self,
        conversation_id: str,
        emit: EmitCallback,
        policy: Optional[StreamPolicy] = None,
        retry_executor: Optional[RetryExecutor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            conversation_id: Conversation the reply belongs to
            emit: ``async emit(conversation_id, content, is_final)``
            policy: Emission thresholds
            retry_executor: Executor used for every emission
            clock: Monotonic time source in seconds
        """
        self.conversation_id = conversation_id
        self._emit = emit
        self.policy = policy or StreamPolicy()
        self.retry_executor = retry_executor or RetryExecutor()
        self._clock = clock

        self._buffer = ""
        self._last_emit_time: Optional[float] = None
        self._complete = False
        self.emission_count = 0
        self.finish_reason: Optional[str] = None
        self.usage: Optional[TokenUsage] = None

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def is_complete(self) -> bool:
        return self._complete

    def reset(self) -> None:
        """Return the processor to its initial state."""
        self._buffer = ""
        self._last_emit_time = None
        self._complete = False
        self.emission_count = 0
        self.finish_reason = None
        self.usage = None

    async def process(self, fragments: AsyncIterable[str]) -> str:
        """
        Consume a fragment stream and emit updates.

        Args:
            fragments: One-shot async sequence of text pieces

        Returns:
            The full response text

        Raises:
            RetryExhaustedException: If an emission could not be delivered
            Exception: Whatever the fragment source or a non-retryable
                delivery failure raised
        """
        if self._complete:
            raise RuntimeError(
                f"Stream for {self.conversation_id} already completed; call reset() first"
            )

        fragment_count = 0
        try:
            async for fragment in fragments:
                fragment_count += 1
                self._buffer += fragment

                now = self._clock()
                if self._should_emit(now):
                    await self._deliver(self._buffer, False)
                    self._last_emit_time = now

            full_text = self._buffer
            await self._deliver(full_text, True)
        except Exception as e:
            logger.error(
                f"Stream processing failed for {self.conversation_id} "
                f"after {fragment_count} fragment(s): {e}"
            )
            raise

        self._buffer = ""
        self._complete = True

        if isinstance(fragments, ModelStream) and fragments.is_finished:
            self.finish_reason = await fragments.finish_reason()
            self.usage = await fragments.usage()

        logger.info(
            f"Stream for {self.conversation_id} completed: {fragment_count} fragment(s), "
            f"{len(full_text)} chars, {self.emission_count} emission(s), "
            f"finish_reason={self.finish_reason}"
        )
        return full_text

    def _should_emit(self, now: float) -> bool:
        if not self.policy.enable_partials:
            return False

        length = len(self._buffer)
        if length >= self.policy.chunk_threshold:
            return True
        if length == 0:
            return False
        # Nothing emitted yet counts as overdue
        if self._last_emit_time is None:
            return True
        return now - self._last_emit_time >= self.policy.time_threshold

    async def _deliver(self, content: str, is_final: bool) -> None:
        await self.retry_executor.execute(
            partial(self._emit, self.conversation_id, content, is_final),
            context=f"stream emit ({'final' if is_final else 'partial'}) {self.conversation_id}",
        )
        self.emission_count += 1
