import asyncio
import json
import unittest

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from moltbot_lark.domain.exceptions import (
    MoltbotConnectionException,
    MoltbotException,
    MoltbotRateLimitException,
    MoltbotStreamException,
)
from moltbot_lark.domain.value_objects.chat_message import ChatMessage
from moltbot_lark.infrastructure.llm.moltbot_client import (
    MoltbotClient,
    map_status_error,
    parse_sse_line,
)


def sse(*chunks) -> bytes:
    lines = []
    for chunk in chunks:
        data = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def delta(content=None, finish_reason=None):
    choice = {"index": 0, "delta": {}, "finish_reason": finish_reason}
    if content is not None:
        choice["delta"]["content"] = content
    return {"choices": [choice]}


class TestParsing(unittest.TestCase):
    def test_parse_sse_line(self):
        self.assertEqual(parse_sse_line('data: {"a": 1}\n'), '{"a": 1}')
        self.assertEqual(parse_sse_line("data:[DONE]"), "[DONE]")
        self.assertIsNone(parse_sse_line(": keep-alive"))
        self.assertIsNone(parse_sse_line(""))
        self.assertIsNone(parse_sse_line("event: message"))

    def test_map_status_error(self):
        rate = map_status_error(429, '{"error": {"message": "slow down"}}')
        self.assertIsInstance(rate, MoltbotRateLimitException)
        self.assertTrue(rate.is_transient)
        self.assertIn("slow down", rate.message)

        server = map_status_error(502, "bad gateway")
        self.assertTrue(server.is_transient)
        self.assertEqual(server.status_code, 502)

        for status in (400, 401, 403, 404):
            with self.subTest(status=status):
                error = map_status_error(status, "")
                self.assertFalse(error.is_transient)
                self.assertEqual(error.status_code, status)


class TestMoltbotClient(AioHTTPTestCase):
    async def get_application(self):
        self.requests = []
        self.reply_status = 200
        self.stream_body = sse(delta("Hel"), delta("lo"), delta(finish_reason="stop"), "[DONE]")
        self.stream_gap = None

        async def completions(request: web.Request) -> web.StreamResponse:
            body = await request.json()
            self.requests.append((request.headers.get("Authorization"), body))

            if self.reply_status != 200:
                return web.json_response(
                    {"error": {"message": "nope"}}, status=self.reply_status
                )

            if not body.get("stream"):
                return web.json_response(
                    {
                        "choices": [
                            {"message": {"role": "assistant", "content": "Hi!"}, "finish_reason": "stop"}
                        ],
                        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
                    }
                )

            response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
            await response.prepare(request)
            if self.stream_gap is None:
                await response.write(self.stream_body)
            else:
                for part in self.stream_body.split(b"\n\n"):
                    if part:
                        await asyncio.sleep(self.stream_gap)
                        await response.write(part + b"\n\n")
            await response.write_eof()
            return response

        app = web.Application()
        app.router.add_post("/v1/chat/completions", completions)
        return app

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.model = MoltbotClient(
            str(self.server.make_url("/v1")),
            "sk-test",
            model_name="moltbot-1",
            temperature=0.5,
            max_tokens=100,
        )

    async def asyncTearDown(self):
        await self.model.close()
        await super().asyncTearDown()

    async def test_send_request(self):
        messages = [ChatMessage.system("be nice"), ChatMessage.user("hello")]
        response = await self.model.send_request(messages)

        self.assertEqual(response.text, "Hi!")
        self.assertEqual(response.finish_reason, "stop")
        self.assertEqual(response.usage.total_tokens, 7)

        auth, body = self.requests[0]
        self.assertEqual(auth, "Bearer sk-test")
        self.assertEqual(body["model"], "moltbot-1")
        self.assertEqual(body["temperature"], 0.5)
        self.assertEqual(body["max_tokens"], 100)
        self.assertFalse(body["stream"])
        self.assertEqual(
            body["messages"],
            [{"role": "system", "content": "be nice"}, {"role": "user", "content": "hello"}],
        )

    async def test_stream_request(self):
        stream = await self.model.send_stream_request([ChatMessage.user("hello")])

        fragments = [fragment async for fragment in stream]

        self.assertEqual(fragments, ["Hel", "lo"])
        self.assertTrue(stream.is_finished)
        self.assertEqual(await stream.finish_reason(), "stop")
        self.assertTrue(self.requests[0][1]["stream"])

    async def test_slow_stream_outlives_request_timeout(self):
        # Four chunks 0.2s apart take longer than the 0.5s timeout in total
        self.stream_gap = 0.2
        model = MoltbotClient(str(self.server.make_url("/v1")), "sk-test", timeout=0.5)
        try:
            stream = await model.send_stream_request([ChatMessage.user("hello")])
            self.assertEqual([f async for f in stream], ["Hel", "lo"])
        finally:
            await model.close()

    def test_request_timeout(self):
        streamed = self.model.request_timeout(stream=True)
        self.assertIsNone(streamed.total)
        self.assertEqual(streamed.sock_read, self.model.timeout)

        complete = self.model.request_timeout(stream=False)
        self.assertEqual(complete.total, self.model.timeout)

    async def test_stream_usage_chunk(self):
        self.stream_body = sse(
            delta("ok", "length"),
            {"choices": [], "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2}},
            "[DONE]",
        )
        stream = await self.model.send_stream_request([ChatMessage.user("hello")])
        self.assertEqual([f async for f in stream], ["ok"])
        self.assertEqual(await stream.finish_reason(), "length")
        self.assertEqual((await stream.usage()).total_tokens, 2)

    async def test_malformed_stream_chunk(self):
        self.stream_body = sse(delta("a"), "{broken")
        stream = await self.model.send_stream_request([ChatMessage.user("hello")])

        received = []
        with self.assertRaises(MoltbotStreamException):
            async for fragment in stream:
                received.append(fragment)
        self.assertEqual(received, ["a"])
        self.assertTrue(stream.is_finished)

    async def test_rate_limit(self):
        self.reply_status = 429
        with self.assertRaises(MoltbotRateLimitException):
            await self.model.send_request([ChatMessage.user("hello")])

    async def test_unauthorized_is_permanent(self):
        self.reply_status = 401
        with self.assertRaises(MoltbotException) as ctx:
            await self.model.send_stream_request([ChatMessage.user("hello")])
        self.assertFalse(ctx.exception.is_transient)
        self.assertIn("nope", ctx.exception.message)

    async def test_connection_refused(self):
        client = MoltbotClient("http://127.0.0.1:1/v1", "sk-test", timeout=2)
        try:
            with self.assertRaises(MoltbotConnectionException) as ctx:
                await client.send_request([ChatMessage.user("hello")])
            self.assertTrue(ctx.exception.is_transient)
        finally:
            await client.close()


if __name__ == "__main__":
    unittest.main()
