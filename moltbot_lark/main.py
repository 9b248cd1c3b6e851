"""
Moltbot-Lark bridge
Receives Lark chat messages, forwards them with conversation history to a
Moltbot model and replies with the model output, streamed as a live card.
"""

import argparse
import asyncio
import signal
import sys
from functools import partial
from typing import Any, Optional

from .application.bridge_service import BridgeService
from .application.message_transformer import MessageTransformer
from .domain.exceptions import ConfigurationException
from .infrastructure.config.config_manager import ConfigManager, load_config
from .infrastructure.llm.moltbot_client import MoltbotClient
from .infrastructure.persistence.context_store import ConversationContextStore
from .infrastructure.platform.lark_client import LarkClient
from .infrastructure.platform.lark_sender import LarkMessageSender
from .infrastructure.platform.lark_server import LarkEventServer
from .infrastructure.resilience.retry import RetryExecutor
from .infrastructure.scheduler.context_sweeper import ContextSweeper
from .shared.constants import PROJECT_NAME, PROJECT_VERSION
from .utils.logger import logger, setup_logging


class BridgeApplication:
    """Composition root: builds every layer from the configuration"""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

        # 1. Infrastructure
        self.retry_executor = RetryExecutor(config_manager.get_retry_policy())
        self.context_store = ConversationContextStore(
            max_history_length=config_manager.get_max_history_length(),
            max_age=config_manager.get_context_max_age(),
        )
        self.lark_client = LarkClient(
            config_manager.get_lark_app_id(),
            config_manager.get_lark_app_secret(),
            domain=config_manager.get_lark_domain(),
        )
        self.sender = LarkMessageSender(
            self.lark_client,
            self.retry_executor,
            message_cards=config_manager.get_message_cards_enabled(),
            renderer=partial(
                MessageTransformer.to_platform_message,
                fmt=config_manager.get_response_format(),
            ),
        )
        self.model_client = MoltbotClient(
            config_manager.get_moltbot_api_endpoint(),
            config_manager.get_moltbot_api_key(),
            model_name=config_manager.get_moltbot_model_name(),
            temperature=config_manager.get_moltbot_temperature(),
            max_tokens=config_manager.get_moltbot_max_tokens(),
            streaming=config_manager.get_moltbot_streaming(),
            timeout=config_manager.get_moltbot_request_timeout(),
        )

        # 2. Application
        self.bridge = BridgeService(
            self.sender,
            self.model_client,
            self.context_store,
            retry_executor=self.retry_executor,
            stream_policy=config_manager.get_stream_policy(),
            response_format=config_manager.get_response_format(),
            system_prompt=config_manager.get_system_prompt(),
            reset_commands=config_manager.get_reset_commands(),
            include_attachments=config_manager.get_file_attachments_enabled(),
            error_handling=config_manager.get_error_handling_enabled(),
        )

        # 3. Entry points
        self.server = LarkEventServer(
            self.bridge.handle_event,
            verification_token=config_manager.get_lark_verification_token(),
            host=config_manager.get_server_host(),
            port=config_manager.get_server_port(),
            event_path=config_manager.get_event_path(),
            health_info=self.health_info,
        )
        self.sweeper = ContextSweeper(
            self.context_store, config_manager.get_cleanup_interval_minutes()
        )

    def health_info(self) -> dict[str, Any]:
        return {
            "version": PROJECT_VERSION,
            "active_conversations": len(self.context_store.list_active()),
        }

    async def start(self) -> None:
        logger.info(f"Starting {PROJECT_NAME} {PROJECT_VERSION}")
        if self.config_manager.get_lark_encrypt_key():
            logger.warning("LARK_ENCRYPT_KEY is set but encrypted events are not supported")
        self.sweeper.start()
        await self.server.start()

    async def terminate(self) -> None:
        """Stop accepting events, drain in-flight work and release clients"""
        logger.info(f"Shutting down {PROJECT_NAME}")
        try:
            await self.server.stop()
        finally:
            self.sweeper.shutdown()
            await self.model_client.close()
            await self.lark_client.close()
        logger.info("Shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROJECT_NAME,
        description="Bridge Lark chats to a Moltbot model",
    )
    parser.add_argument("--config", help="path to the JSON config file (default: config/config.json)")
    parser.add_argument(
        "--log-level",
        choices=["error", "warn", "info", "debug"],
        help="override logging.level",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="validate the configuration and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {PROJECT_VERSION}")
    return parser


async def run(config_manager: ConfigManager) -> None:
    app = BridgeApplication(config_manager)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    await app.start()
    try:
        await stop.wait()
    finally:
        await app.terminate()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config_manager = load_config(args.config)
        if args.log_level:
            config_manager.config["logging"]["level"] = args.log_level
        setup_logging(
            config_manager.get_log_level(),
            config_manager.get_log_format(),
            config_manager.get_log_file(),
        )
        config_manager.validate()
    except ConfigurationException as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.check_config:
        logger.info(f"Configuration OK: {config_manager.summary()}")
        return 0

    try:
        asyncio.run(run(config_manager))
    except KeyboardInterrupt:
        pass
    return 0
