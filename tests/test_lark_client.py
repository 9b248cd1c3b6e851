import json
import unittest

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from moltbot_lark.domain.exceptions import LarkAPIException, LarkConnectionException
from moltbot_lark.infrastructure.platform.lark_client import LarkClient


class TestLarkClient(AioHTTPTestCase):
    async def get_application(self):
        self.token_requests = 0
        self.message_requests = []
        self.next_message_reply = None

        async def token(request):
            self.token_requests += 1
            body = await request.json()
            if body["app_secret"] != "secret":
                return web.json_response({"code": 10014, "msg": "app secret invalid"})
            return web.json_response(
                {"code": 0, "tenant_access_token": f"t-{self.token_requests}", "expire": 7200}
            )

        async def record(request, kind):
            body = await request.json()
            self.message_requests.append(
                (kind, request.match_info.get("message_id"), dict(request.query), request.headers["Authorization"], body)
            )
            if self.next_message_reply is not None:
                status, payload = self.next_message_reply
                self.next_message_reply = None
                return web.json_response(payload, status=status)
            return web.json_response({"code": 0, "data": {"message_id": "om_new"}})

        async def create(request):
            return await record(request, "create")

        async def reply(request):
            return await record(request, "reply")

        async def patch(request):
            return await record(request, "patch")

        app = web.Application()
        app.router.add_post("/open-apis/auth/v3/tenant_access_token/internal", token)
        app.router.add_post("/open-apis/im/v1/messages", create)
        app.router.add_post("/open-apis/im/v1/messages/{message_id}/reply", reply)
        app.router.add_patch("/open-apis/im/v1/messages/{message_id}", patch)
        return app

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.lark = LarkClient("cli_1", "secret", domain=str(self.server.make_url("")))

    async def asyncTearDown(self):
        await self.lark.close()
        await super().asyncTearDown()

    async def test_send_text_to_chat(self):
        message_id = await self.lark.send_text_message("oc_1", "hello")

        self.assertEqual(message_id, "om_new")
        kind, _, query, auth, body = self.message_requests[0]
        self.assertEqual(kind, "create")
        self.assertEqual(query, {"receive_id_type": "chat_id"})
        self.assertEqual(auth, "Bearer t-1")
        self.assertEqual(body["receive_id"], "oc_1")
        self.assertEqual(body["msg_type"], "text")
        self.assertEqual(json.loads(body["content"]), {"text": "hello"})

    async def test_reply_and_patch_card(self):
        card = {"elements": []}
        await self.lark.send_card_message("oc_1", card, reply_to="om_in", uuid="stream-om_in")
        await self.lark.update_card("om_new", card)

        reply = self.message_requests[0]
        self.assertEqual(reply[:2], ("reply", "om_in"))
        self.assertEqual(reply[4]["msg_type"], "interactive")
        self.assertEqual(reply[4]["uuid"], "stream-om_in")

        patch = self.message_requests[1]
        self.assertEqual(patch[:2], ("patch", "om_new"))
        self.assertEqual(json.loads(patch[4]["content"]), card)

    async def test_token_is_cached(self):
        await self.lark.send_text_message("oc_1", "a")
        await self.lark.send_text_message("oc_1", "b")
        self.assertEqual(self.token_requests, 1)

    async def test_invalid_token_code_refreshes_token(self):
        self.next_message_reply = (200, {"code": 99991663, "msg": "token invalid"})

        with self.assertRaises(LarkAPIException) as ctx:
            await self.lark.send_text_message("oc_1", "a")
        self.assertTrue(ctx.exception.is_transient)

        await self.lark.send_text_message("oc_1", "b")
        self.assertEqual(self.token_requests, 2)
        self.assertEqual(self.message_requests[-1][3], "Bearer t-2")

    async def test_rate_limit_code_is_transient(self):
        self.next_message_reply = (400, {"code": 99991400, "msg": "too many requests"})
        with self.assertRaises(LarkAPIException) as ctx:
            await self.lark.send_text_message("oc_1", "a")
        self.assertTrue(ctx.exception.is_transient)
        self.assertEqual(ctx.exception.status_code, 429)

    async def test_other_api_error_is_permanent(self):
        self.next_message_reply = (400, {"code": 230002, "msg": "bot not in chat"})
        with self.assertRaises(LarkAPIException) as ctx:
            await self.lark.send_text_message("oc_1", "a")
        self.assertFalse(ctx.exception.is_transient)
        self.assertEqual(ctx.exception.lark_code, 230002)

    async def test_server_error_is_transient(self):
        self.next_message_reply = (503, {"msg": "unavailable"})
        with self.assertRaises(LarkAPIException) as ctx:
            await self.lark.send_text_message("oc_1", "a")
        self.assertTrue(ctx.exception.is_transient)

    async def test_bad_credentials(self):
        client = LarkClient("cli_1", "wrong", domain=str(self.server.make_url("")))
        try:
            with self.assertRaises(LarkAPIException) as ctx:
                await client.get_tenant_access_token()
            self.assertEqual(ctx.exception.lark_code, 10014)
        finally:
            await client.close()

    async def test_unreachable_host(self):
        client = LarkClient("cli_1", "secret", domain="http://127.0.0.1:1", timeout=2)
        try:
            with self.assertRaises(LarkConnectionException):
                await client.get_tenant_access_token()
        finally:
            await client.close()


if __name__ == "__main__":
    unittest.main()
