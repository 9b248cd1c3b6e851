"""
Model Client Interface - what the bridge needs from a language-model backend
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterable, AsyncIterator, Optional, Sequence

from ..value_objects.chat_message import ChatMessage
from ..value_objects.model_message import ModelResponse, TokenUsage


class ModelStream:
    """
    Incremental model output.

    Iterating yields text fragments in arrival order; the iteration is
    one-shot. ``finish_reason()`` and ``usage()`` resolve once the producer
    calls ``finish()``, which happens when the fragments are exhausted.
    """

    def __init__(self, fragments: AsyncIterable[str]):
        self._fragments = fragments
        self._finished = asyncio.Event()
        self._finish_reason: Optional[str] = None
        self._usage: Optional[TokenUsage] = None

    def __aiter__(self) -> AsyncIterator[str]:
        return self._fragments.__aiter__()

    def finish(
        self,
        finish_reason: Optional[str] = None,
        usage: Optional[TokenUsage] = None,
    ) -> None:
        if self._finished.is_set():
            return
        self._finish_reason = finish_reason
        self._usage = usage
        self._finished.set()

    @property
    def is_finished(self) -> bool:
        return self._finished.is_set()

    async def finish_reason(self) -> Optional[str]:
        await self._finished.wait()
        return self._finish_reason

    async def usage(self) -> Optional[TokenUsage]:
        await self._finished.wait()
        return self._usage


class IModelClient(ABC):
    """Language-model backend."""

    @abstractmethod
    async def send_request(self, messages: Sequence[ChatMessage]) -> ModelResponse:
        """Request a complete reply"""
        pass

    @abstractmethod
    async def send_stream_request(self, messages: Sequence[ChatMessage]) -> ModelStream:
        """Request a streamed reply"""
        pass

    @property
    @abstractmethod
    def streaming_enabled(self) -> bool:
        pass
