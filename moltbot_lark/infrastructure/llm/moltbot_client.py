"""
Moltbot client - OpenAI-compatible chat completions over aiohttp

Non-streaming requests return a ModelResponse. Streaming requests return a
ModelStream fed from the server-sent event body (``data: {...}`` lines closed
by ``data: [DONE]``).
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional, Sequence

import aiohttp

from ...domain.exceptions import (
    MoltbotConnectionException,
    MoltbotException,
    MoltbotRateLimitException,
    MoltbotStreamException,
)
from ...domain.repositories.model_client import IModelClient, ModelStream
from ...domain.value_objects.chat_message import ChatMessage
from ...domain.value_objects.model_message import ModelResponse, TokenUsage
from ...shared.constants import (
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_REQUEST_TIMEOUT,
    MODEL_TEMPERATURE,
)
from ...utils.logger import logger

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


def parse_sse_line(line: str) -> Optional[str]:
    """
    Extract the payload of an SSE ``data:`` line.

    Returns None for blank lines, comments and other fields.
    """
    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):].strip()


def parse_stream_chunk(data: str) -> dict[str, Any]:
    """Decode one streamed completion chunk."""
    try:
        chunk = json.loads(data)
    except ValueError as e:
        raise MoltbotStreamException(f"Malformed stream chunk: {data[:80]!r}", e) from e
    if not isinstance(chunk, dict):
        raise MoltbotStreamException(f"Unexpected stream chunk: {data[:80]!r}")
    return chunk


def _error_detail(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body[:200]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return body[:200]


def map_status_error(status: int, body: str) -> MoltbotException:
    """Map a non-2xx response onto the bridge error taxonomy."""
    detail = _error_detail(body)
    if status == 429:
        return MoltbotRateLimitException(f"Moltbot rate limit exceeded: {detail}")
    if status >= 500:
        return MoltbotException(f"Moltbot server error {status}: {detail}", True, status)
    if status in (401, 403):
        return MoltbotException(f"Moltbot rejected the credentials: {detail}", False, status)
    return MoltbotException(f"Moltbot request failed with {status}: {detail}", False, status)


class MoltbotClient(IModelClient):
    """
    Client for an OpenAI-compatible Moltbot endpoint.
    """

    def __init__(
        self,
        api_endpoint: str,
        api_key: str,
        model_name: str = MODEL_NAME,
        temperature: Optional[float] = MODEL_TEMPERATURE,
        max_tokens: Optional[int] = MODEL_MAX_TOKENS,
        streaming: bool = True,
        timeout: float = MODEL_REQUEST_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_endpoint = api_endpoint.rstrip("/")
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._streaming = streaming
        self._session = session
        self._owns_session = session is None

        logger.info(
            f"Moltbot client initialized (endpoint={self.api_endpoint}, "
            f"model={model_name}, streaming={streaming})"
        )

    @property
    def streaming_enabled(self) -> bool:
        return self._streaming

    @property
    def completions_url(self) -> str:
        return f"{self.api_endpoint}/chat/completions"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def request_timeout(self, stream: bool) -> aiohttp.ClientTimeout:
        """
        Timeout for one completion request.

        Streamed requests bound connecting and each read between chunks, not
        the whole body.
        """
        if stream:
            return aiohttp.ClientTimeout(
                total=None, sock_connect=self.timeout, sock_read=self.timeout
            )
        return aiohttp.ClientTimeout(total=self.timeout)

    def _build_payload(self, messages: Sequence[ChatMessage], stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model_name,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload

    async def _post(self, payload: dict[str, Any]) -> aiohttp.ClientResponse:
        """POST the payload and return a response with a 2xx status."""
        session = await self._get_session()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if payload.get("stream"):
            headers["Accept"] = "text/event-stream"

        try:
            resp = await session.post(
                self.completions_url,
                json=payload,
                headers=headers,
                timeout=self.request_timeout(bool(payload.get("stream"))),
            )
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise MoltbotConnectionException(f"Connection error: {e}", e) from e
        except aiohttp.ClientError as e:
            raise MoltbotException(f"Request to Moltbot failed: {e}", False, 500, e) from e

        if resp.status >= 400:
            try:
                body = await resp.text()
            except (aiohttp.ClientError, asyncio.TimeoutError):
                body = ""
            finally:
                resp.release()
            raise map_status_error(resp.status, body)
        return resp

    async def send_request(self, messages: Sequence[ChatMessage]) -> ModelResponse:
        logger.debug(f"Sending request to Moltbot ({len(messages)} messages)")
        resp = await self._post(self._build_payload(messages, stream=False))
        try:
            data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MoltbotConnectionException(f"Failed reading Moltbot response: {e}", e) from e
        except ValueError as e:
            raise MoltbotException("Moltbot returned a non-JSON response", False, 502, e) from e
        finally:
            resp.release()

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise MoltbotException("Moltbot response contained no choices", False, 502)

        choice = choices[0]
        text = (choice.get("message") or {}).get("content") or ""
        response = ModelResponse(
            text=text,
            finish_reason=choice.get("finish_reason"),
            usage=TokenUsage.from_dict(data.get("usage")),
        )
        logger.debug(
            f"Received response from Moltbot ({len(text)} chars, "
            f"finish_reason={response.finish_reason})"
        )
        return response

    async def send_stream_request(self, messages: Sequence[ChatMessage]) -> ModelStream:
        logger.debug(f"Sending streaming request to Moltbot ({len(messages)} messages)")
        resp = await self._post(self._build_payload(messages, stream=True))

        stream: ModelStream

        async def fragments() -> AsyncIterator[str]:
            finish_reason = None
            usage = None
            try:
                async for raw_line in resp.content:
                    data = parse_sse_line(raw_line.decode("utf-8", errors="replace"))
                    if data is None:
                        continue
                    if data == SSE_DONE:
                        break

                    chunk = parse_stream_chunk(data)
                    if chunk.get("usage"):
                        usage = TokenUsage.from_dict(chunk["usage"])
                    for choice in chunk.get("choices") or []:
                        if choice.get("finish_reason"):
                            finish_reason = choice["finish_reason"]
                        content = (choice.get("delta") or {}).get("content")
                        if content:
                            yield content
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise MoltbotStreamException(f"Moltbot stream interrupted: {e}", e) from e
            finally:
                resp.release()
                stream.finish(finish_reason, usage)

        stream = ModelStream(fragments())
        logger.debug("Stream response initiated from Moltbot")
        return stream
