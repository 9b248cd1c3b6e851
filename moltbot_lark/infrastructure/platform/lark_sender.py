"""
Lark message sender

Implements IMessageSender on top of LarkClient. Plain sends are retried here;
``send_stream_update`` is not, because StreamProcessor already delivers every
emission through RetryExecutor.

Streaming replies are shown as one card: the first partial update creates it
(with an idempotency key derived from the inbound message, so a retried create
is not duplicated), later updates patch it with the full text so far.
"""

from typing import Any, Callable, Optional

from ...domain.exceptions import format_error_message
from ...domain.repositories.message_sender import IMessageSender
from ...domain.value_objects.rendered_message import (
    RenderedMessage,
    RenderFormat,
    StreamUpdate,
)
from ...utils.logger import logger
from ..resilience.retry import RetryExecutor
from .lark_cards import build_card, build_stream_card, text_block
from .lark_client import LarkClient

Renderer = Callable[[str], RenderedMessage]


def render_plain(text: str) -> RenderedMessage:
    return RenderedMessage(text, RenderFormat.PLAIN)


class LarkMessageSender(IMessageSender):
    """
    Lark message sender with retry logic.
    """

    def __init__(
        self,
        client: LarkClient,
        retry_executor: Optional[RetryExecutor] = None,
        message_cards: bool = True,
        renderer: Optional[Renderer] = None,
    ):
        """
        Args:
            client: Lark API client
            retry_executor: Executor for plain sends
            message_cards: Show streamed replies as a live card
            renderer: Renders a finished reply that has no live card
        """
        self.client = client
        self.retry_executor = retry_executor or RetryExecutor()
        self.message_cards = message_cards
        self.renderer = renderer or render_plain
        # stream key -> id of the card showing that stream
        self._stream_cards: dict[str, str] = {}

        logger.info(f"Lark message sender initialized (message_cards={message_cards})")

    async def send_text(
        self,
        conversation_id: str,
        text: str,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        message_id = await self.retry_executor.execute(
            self.client.send_text_message,
            conversation_id,
            text,
            reply_to,
            context=f"send text to {conversation_id}",
        )
        logger.info(f"Text message sent to {conversation_id} ({len(text)} chars)")
        return message_id

    async def send_card(
        self,
        conversation_id: str,
        card: dict[str, Any],
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        message_id = await self.retry_executor.execute(
            self.client.send_card_message,
            conversation_id,
            card,
            reply_to,
            context=f"send card to {conversation_id}",
        )
        logger.info(f"Card message sent to {conversation_id}")
        return message_id

    async def send_rendered(
        self,
        conversation_id: str,
        rendered: RenderedMessage,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        if rendered.format == RenderFormat.CARD and rendered.card is not None:
            return await self.send_card(conversation_id, rendered.card, reply_to)
        if rendered.format == RenderFormat.RICH_TEXT:
            # Lark renders markdown inside card text blocks, not in text messages
            return await self.send_card(
                conversation_id, build_card([text_block(rendered.text)]), reply_to
            )
        return await self.send_text(conversation_id, rendered.text, reply_to)

    async def send_stream_update(self, update: StreamUpdate) -> None:
        """
        Deliver one streaming emission.

        Idempotent for a given (update, state): repeating a patch with the same
        cumulative content leaves the card unchanged.
        """
        key = update.reply_to or update.conversation_id
        card_id = self._stream_cards.get(key)

        if not update.is_final:
            if not self.message_cards:
                return
            card = build_stream_card(update.content)
            if card_id:
                await self.client.update_card(card_id, card)
            else:
                self._stream_cards[key] = await self.client.send_card_message(
                    update.conversation_id,
                    card,
                    update.reply_to,
                    uuid=f"stream-{key}"[:50],
                )
            logger.debug(
                f"Partial update for {update.conversation_id} ({len(update.content)} chars)"
            )
            return

        if card_id:
            await self.client.update_card(card_id, build_stream_card(update.content))
        elif not update.content:
            logger.warning(f"Empty streamed reply for {update.conversation_id}, nothing sent")
        else:
            rendered = self.renderer(update.content)
            if rendered.format == RenderFormat.PLAIN:
                await self.client.send_text_message(
                    update.conversation_id, rendered.text, update.reply_to
                )
            else:
                card = rendered.card or build_card([text_block(rendered.text)])
                await self.client.send_card_message(
                    update.conversation_id, card, update.reply_to
                )
        self._stream_cards.pop(key, None)
        logger.debug(
            f"Final update for {update.conversation_id} ({len(update.content)} chars)"
        )

    def discard_stream(self, conversation_id: str, reply_to: Optional[str] = None) -> None:
        """Forget the card of an aborted stream."""
        self._stream_cards.pop(reply_to or conversation_id, None)

    async def send_error_message(
        self,
        conversation_id: str,
        error: BaseException,
        reply_to: Optional[str] = None,
    ) -> None:
        try:
            await self.send_text(conversation_id, format_error_message(error), reply_to)
        except Exception as e:
            # Reporting must not raise, or the failure would loop back here
            logger.error(f"Failed to send error message to {conversation_id}: {e}")
