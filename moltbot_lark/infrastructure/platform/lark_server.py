"""
Lark event subscription server

Receives event callbacks over HTTP. Lark expects an answer within a few
seconds and redelivers otherwise, so events are acknowledged immediately,
de-duplicated by event id, and handled in background tasks.
"""

import asyncio
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from ...shared.constants import (
    EVENT_MESSAGE_RECEIVE,
    EVENT_URL_VERIFICATION,
    SERVER_EVENT_PATH,
    SERVER_HOST,
    SERVER_PORT,
)
from ...utils.logger import logger

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

SEEN_EVENTS_LIMIT = 1024


class LarkEventServer:
    """
    aiohttp application serving the event callback and a health endpoint.
    """

    def __init__(
        self,
        handler: EventHandler,
        verification_token: Optional[str] = None,
        host: str = SERVER_HOST,
        port: int = SERVER_PORT,
        event_path: str = SERVER_EVENT_PATH,
        health_info: Optional[Callable[[], dict[str, Any]]] = None,
    ):
        self.handler = handler
        self.verification_token = verification_token
        self.host = host
        self.port = port
        self.event_path = event_path
        self.health_info = health_info

        self._seen_events: OrderedDict[str, None] = OrderedDict()
        self._tasks: set[asyncio.Task] = set()
        self._runner: Optional[web.AppRunner] = None
        self._stopping = False

        self.app = web.Application()
        self.app.router.add_post(event_path, self.handle_event)
        self.app.router.add_get("/health", self.handle_health)

    # ================================================================
    # Lifecycle
    # ================================================================

    async def start(self) -> None:
        if self._runner is not None:
            logger.warning("Event server is already running")
            return
        self._stopping = False
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Listening for Lark events on http://{self.host}:{self.port}{self.event_path}")

    async def stop(self, timeout: float = 10.0) -> None:
        # No new events are dispatched once stopping
        self._stopping = True
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight event(s)")
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            for task in pending:
                task.cancel()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Event server stopped")

    # ================================================================
    # Handlers
    # ================================================================

    def _is_duplicate(self, event_id: str) -> bool:
        if not event_id:
            return False
        if event_id in self._seen_events:
            return True
        self._seen_events[event_id] = None
        if len(self._seen_events) > SEEN_EVENTS_LIMIT:
            self._seen_events.popitem(last=False)
        return False

    def _token_matches(self, token: Optional[str]) -> bool:
        return not self.verification_token or token == self.verification_token

    async def handle_event(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"msg": "invalid json"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"msg": "invalid payload"}, status=400)

        if "encrypt" in body:
            logger.warning("Received an encrypted event; disable event encryption for this app")
            return web.json_response({"msg": "encrypted events are not supported"}, status=400)

        if body.get("type") == EVENT_URL_VERIFICATION:
            if not self._token_matches(body.get("token")):
                return web.json_response({"msg": "invalid token"}, status=403)
            return web.json_response({"challenge": body.get("challenge", "")})

        header = body.get("header") or {}
        if not self._token_matches(header.get("token")):
            logger.warning("Rejected event with invalid verification token")
            return web.json_response({"msg": "invalid token"}, status=403)

        event_type = header.get("event_type")
        event_id = header.get("event_id", "")
        if event_type != EVENT_MESSAGE_RECEIVE:
            logger.debug(f"Ignoring event type {event_type}")
            return web.json_response({"code": 0})

        if self._stopping:
            logger.debug(f"Refusing event {event_id} during shutdown")
            return web.json_response({"msg": "shutting down"}, status=503)

        if self._is_duplicate(event_id):
            logger.debug(f"Ignoring redelivered event {event_id}")
            return web.json_response({"code": 0})

        task = asyncio.create_task(self._dispatch(body, event_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return web.json_response({"code": 0})

    async def _dispatch(self, body: dict[str, Any], event_id: str) -> None:
        try:
            await self.handler(body)
        except Exception:
            # Keep one bad event from taking the server down
            logger.exception(f"Unhandled error while handling event {event_id}")

    async def handle_health(self, request: web.Request) -> web.Response:
        info = {"status": "ok"}
        if self.health_info is not None:
            info.update(self.health_info())
        return web.json_response(info)
