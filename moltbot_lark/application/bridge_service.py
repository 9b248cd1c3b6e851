"""
Bridge service - connects Lark conversations to the Moltbot model

Handles one inbound message end to end: filtering, reset commands, history,
the model call (streamed or not) and the reply. Failures are reported back to
the chat and never propagate to the event server.
"""

import re
import time
from typing import Any, Optional

from ..domain.exceptions import TransformationException
from ..domain.repositories.message_sender import IMessageSender
from ..domain.repositories.model_client import IModelClient
from ..domain.value_objects.chat_message import ChatMessage
from ..domain.value_objects.platform_message import PlatformMessage
from ..domain.value_objects.rendered_message import RenderFormat, StreamPolicy, StreamUpdate
from ..infrastructure.persistence.context_store import ConversationContextStore
from ..infrastructure.platform.lark_events import parse_message_event, should_process_message
from ..infrastructure.resilience.retry import RetryExecutor
from ..shared.constants import RESET_COMMANDS
from ..utils.logger import logger
from ..utils.trace_context import TraceContext
from .message_transformer import MessageTransformer
from .stream_processor import StreamProcessor

RESET_CONFIRMATION = "🔄 Conversation context has been cleared."


class BridgeService:
    """
    Bridge service

    Responsible for:
    1. Filtering inbound messages (bots, empty content)
    2. Reset commands that clear the conversation context
    3. Building the model request from history and the new user turn
    4. Delivering the reply, streamed through StreamProcessor or in one piece
    5. Reporting failures to the chat
    """

    def __init__(
        self,
        sender: IMessageSender,
        model_client: IModelClient,
        context_store: ConversationContextStore,
        retry_executor: Optional[RetryExecutor] = None,
        stream_policy: Optional[StreamPolicy] = None,
        response_format: RenderFormat = RenderFormat.PLAIN,
        system_prompt: Optional[str] = None,
        reset_commands: tuple[str, ...] = RESET_COMMANDS,
        include_attachments: bool = True,
        error_handling: bool = True,
    ):
        self.sender = sender
        self.model_client = model_client
        self.context_store = context_store
        self.retry_executor = retry_executor or RetryExecutor()
        self.stream_policy = stream_policy or StreamPolicy()
        self.response_format = response_format
        self.system_prompt = system_prompt
        self.reset_commands = tuple(c.lower() for c in reset_commands)
        self.include_attachments = include_attachments
        self.error_handling = error_handling

    # ================================================================
    # Entry points
    # ================================================================

    async def handle_event(self, payload: dict[str, Any]) -> None:
        """Parse a message receive event and handle the message."""
        try:
            message = parse_message_event(payload)
        except TransformationException as e:
            logger.warning(f"Discarding unparseable message event: {e}")
            chat_id = ((payload.get("event") or {}).get("message") or {}).get("chat_id")
            if chat_id and self.error_handling:
                await self.sender.send_error_message(chat_id, e)
            return

        await self.handle_message(message)

    async def handle_message(self, message: PlatformMessage) -> None:
        """
        Handle one inbound message.

        Never raises; failures are logged and, when error handling is on,
        reported to the chat as a reply to the message.
        """
        with TraceContext("msg"):
            if not should_process_message(message):
                return

            started = time.monotonic()
            conversation_id = message.conversation_id
            logger.info(
                f"Handling message {message.message_id} in {conversation_id} "
                f"({message.message_type.value})"
            )

            try:
                if self._is_reset_command(message):
                    await self._handle_reset(message)
                    return
                await self._handle_chat(message)
            except Exception as e:
                self.sender.discard_stream(conversation_id, message.message_id)
                logger.error(
                    f"Failed to handle message {message.message_id} in {conversation_id}: {e}",
                    exc_info=True,
                )
                if self.error_handling:
                    await self.sender.send_error_message(conversation_id, e, message.message_id)
                return

            logger.info(
                f"Message {message.message_id} handled in {time.monotonic() - started:.2f}s"
            )

    # ================================================================
    # Steps
    # ================================================================

    def _is_reset_command(self, message: PlatformMessage) -> bool:
        text = (message.text_content or "").strip().lower()
        if message.mentions:
            for mention in message.mentions:
                if mention.key:
                    text = re.sub(re.escape(mention.key.lower()) + r"(?!\d)", "", text)
            text = text.strip()
        return text in self.reset_commands

    async def _handle_reset(self, message: PlatformMessage) -> None:
        self.context_store.clear(message.conversation_id)
        logger.info(f"Conversation {message.conversation_id} reset by {message.sender_id}")
        await self.sender.send_text(
            message.conversation_id, RESET_CONFIRMATION, message.message_id
        )

    def build_messages(
        self, history: list[ChatMessage], user_turn: ChatMessage
    ) -> list[ChatMessage]:
        """``[system?] + history + [user]``"""
        messages = []
        if self.system_prompt:
            messages.append(ChatMessage.system(self.system_prompt))
        messages.extend(history)
        messages.append(user_turn)
        return messages

    async def _handle_chat(self, message: PlatformMessage) -> None:
        conversation_id = message.conversation_id
        model_message = MessageTransformer.to_model_message(message)
        prompt = model_message.prompt_text(self.include_attachments)
        if not prompt:
            logger.debug(f"Message {message.message_id} has nothing to send to the model")
            return

        user_turn = ChatMessage.user(prompt)
        history = self.context_store.get_history(conversation_id)
        messages = self.build_messages(history, user_turn)
        self.context_store.append(conversation_id, user_turn)

        if self.model_client.streaming_enabled:
            reply = await self._reply_streaming(message, messages)
        else:
            reply = await self._reply_complete(message, messages)

        if reply:
            self.context_store.append(conversation_id, ChatMessage.assistant(reply))

    async def _reply_streaming(
        self, message: PlatformMessage, messages: list[ChatMessage]
    ) -> str:
        stream = await self.retry_executor.execute(
            self.model_client.send_stream_request,
            messages,
            context=f"model stream request {message.conversation_id}",
        )

        async def emit(conversation_id: str, content: str, is_final: bool) -> None:
            await self.sender.send_stream_update(
                StreamUpdate(conversation_id, content, is_final, message.message_id)
            )

        processor = StreamProcessor(
            message.conversation_id,
            emit,
            policy=self.stream_policy,
            retry_executor=self.retry_executor,
        )
        reply = await processor.process(stream)
        if processor.usage is not None:
            logger.debug(f"Token usage for {message.message_id}: {processor.usage}")
        return reply

    async def _reply_complete(
        self, message: PlatformMessage, messages: list[ChatMessage]
    ) -> str:
        response = await self.retry_executor.execute(
            self.model_client.send_request,
            messages,
            context=f"model request {message.conversation_id}",
        )
        if not response.text:
            logger.warning(
                f"Model returned an empty reply for {message.message_id} "
                f"(finish_reason={response.finish_reason})"
            )
            return ""

        rendered = MessageTransformer.to_platform_message(response.text, self.response_format)
        await self.sender.send_rendered(message.conversation_id, rendered, message.message_id)
        if response.usage is not None:
            logger.debug(f"Token usage for {message.message_id}: {response.usage}")
        return response.text
