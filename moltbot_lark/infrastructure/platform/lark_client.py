"""
Lark Open API client

Thin aiohttp wrapper over the messaging endpoints the bridge uses. Failures
are mapped onto the bridge error taxonomy so RetryExecutor can decide what to
retry; retrying itself is left to the callers.
"""

import asyncio
import json
import time
from typing import Any, Optional

import aiohttp

from ...domain.exceptions import LarkAPIException, LarkConnectionException
from ...shared.constants import LARK_DOMAIN_FEISHU
from ...utils.logger import logger

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
MESSAGES_PATH = "/open-apis/im/v1/messages"

# Refresh the tenant token this many seconds before it expires
TOKEN_REFRESH_MARGIN = 300

RATE_LIMIT_CODES = {99991400, 230020}
INVALID_TOKEN_CODES = {99991661, 99991663, 99991668}


class LarkClient:
    """
    Client for the Lark messaging API.

    Holds one aiohttp session and a cached tenant access token.
    """

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        domain: str = LARK_DOMAIN_FEISHU,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = domain.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

        logger.info(f"Lark client initialized for app {app_id} ({self.base_url})")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ================================================================
    # Authentication
    # ================================================================

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    async def get_tenant_access_token(self) -> str:
        """Return a valid tenant access token, fetching one if needed."""
        async with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            body = await self._send(
                "POST",
                TOKEN_PATH,
                json_body={"app_id": self.app_id, "app_secret": self.app_secret},
                authorized=False,
            )
            token = body.get("tenant_access_token")
            if not token:
                raise LarkAPIException("Token response missing tenant_access_token")

            expire = int(body.get("expire") or 7200)
            self._token = token
            self._token_expires_at = time.time() + max(expire - TOKEN_REFRESH_MARGIN, 60)
            logger.debug(f"Fetched Lark tenant access token (expires in {expire}s)")
            return token

    # ================================================================
    # Transport
    # ================================================================

    async def _send(
        self,
        method: str,
        path: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        authorized: bool = True,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if authorized:
            headers["Authorization"] = f"Bearer {await self.get_tenant_access_token()}"

        session = await self._get_session()
        try:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                json=json_body,
                params=params,
                headers=headers,
            ) as resp:
                status = resp.status
                try:
                    body = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = None
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise LarkConnectionException(f"{method} {path} failed: {e}", e) from e

        if isinstance(body, dict) and body.get("code", 0) != 0:
            self._raise_api_error(body["code"], body.get("msg", ""), status, path)

        if status >= 400:
            raise LarkAPIException(
                f"{method} {path} returned HTTP {status}",
                is_transient=status == 429 or status >= 500,
                status_code=status,
            )

        if not isinstance(body, dict):
            raise LarkAPIException(f"{method} {path} returned a non-JSON body", status_code=status)

        return body

    def _raise_api_error(self, code: int, msg: str, status: int, path: str) -> None:
        if code in INVALID_TOKEN_CODES:
            self.invalidate_token()
            raise LarkAPIException(f"Tenant token rejected: {msg}", code, True, 401)
        if code in RATE_LIMIT_CODES:
            raise LarkAPIException(f"Rate limited on {path}: {msg}", code, True, 429)
        raise LarkAPIException(
            f"{path} failed: {msg}",
            code,
            is_transient=status >= 500,
            status_code=status if status >= 400 else 400,
        )

    # ================================================================
    # Messages
    # ================================================================

    async def create_message(
        self,
        chat_id: str,
        msg_type: str,
        content: dict[str, Any],
        uuid: Optional[str] = None,
    ) -> str:
        """Send a new message to a chat and return its message id."""
        payload = {
            "receive_id": chat_id,
            "msg_type": msg_type,
            "content": json.dumps(content, ensure_ascii=False),
        }
        if uuid:
            payload["uuid"] = uuid

        body = await self._send(
            "POST", MESSAGES_PATH, json_body=payload, params={"receive_id_type": "chat_id"}
        )
        return (body.get("data") or {}).get("message_id", "")

    async def reply_message(
        self,
        message_id: str,
        msg_type: str,
        content: dict[str, Any],
        uuid: Optional[str] = None,
    ) -> str:
        """Reply to a message and return the reply's message id."""
        payload = {
            "msg_type": msg_type,
            "content": json.dumps(content, ensure_ascii=False),
        }
        if uuid:
            payload["uuid"] = uuid

        body = await self._send("POST", f"{MESSAGES_PATH}/{message_id}/reply", json_body=payload)
        return (body.get("data") or {}).get("message_id", "")

    async def update_card(self, message_id: str, card: dict[str, Any]) -> None:
        """Replace the content of a previously sent card."""
        await self._send(
            "PATCH",
            f"{MESSAGES_PATH}/{message_id}",
            json_body={"content": json.dumps(card, ensure_ascii=False)},
        )

    async def send_text_message(
        self,
        chat_id: str,
        text: str,
        reply_to: Optional[str] = None,
        uuid: Optional[str] = None,
    ) -> str:
        content = {"text": text}
        if reply_to:
            return await self.reply_message(reply_to, "text", content, uuid)
        return await self.create_message(chat_id, "text", content, uuid)

    async def send_card_message(
        self,
        chat_id: str,
        card: dict[str, Any],
        reply_to: Optional[str] = None,
        uuid: Optional[str] = None,
    ) -> str:
        if reply_to:
            return await self.reply_message(reply_to, "interactive", card, uuid)
        return await self.create_message(chat_id, "interactive", card, uuid)
