"""
Configuration management - infrastructure layer
Loads defaults, the JSON config file and environment variables (including a
``.env`` file) into one grouped dict and exposes typed getters per group.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from ...domain.exceptions import (
    ConfigurationException,
    InvalidConfigurationException,
    MissingConfigurationException,
)
from ...domain.value_objects.rendered_message import RenderFormat, StreamPolicy
from ...shared.constants import (
    CONTEXT_CLEANUP_INTERVAL_MINUTES,
    CONTEXT_MAX_AGE_HOURS,
    CONTEXT_MAX_HISTORY_LENGTH,
    LARK_DOMAIN_FEISHU,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_REQUEST_TIMEOUT,
    MODEL_TEMPERATURE,
    RESET_COMMANDS,
    RESPONSE_FORMAT_TEXT,
    RESPONSE_FORMATS,
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY,
    SERVER_EVENT_PATH,
    SERVER_HOST,
    SERVER_PORT,
    STREAM_CHUNK_THRESHOLD,
    STREAM_TIME_THRESHOLD,
)
from ...utils.logger import LEVELS, logger
from ..resilience.retry import RetryPolicy

DEFAULT_CONFIG_PATH = Path("config") / "config.json"

DEFAULT_CONFIG: dict[str, dict[str, Any]] = {
    "lark": {
        "app_id": "",
        "app_secret": "",
        "encrypt_key": None,
        "verification_token": None,
        "domain": LARK_DOMAIN_FEISHU,
        "connection_mode": "webhook",
    },
    "moltbot": {
        "api_endpoint": "",
        "api_key": "",
        "model_name": MODEL_NAME,
        "temperature": MODEL_TEMPERATURE,
        "max_tokens": MODEL_MAX_TOKENS,
        "streaming": True,
        "system_prompt": None,
        "request_timeout": MODEL_REQUEST_TIMEOUT,
    },
    "server": {
        "host": SERVER_HOST,
        "port": SERVER_PORT,
        "event_path": SERVER_EVENT_PATH,
    },
    "features": {
        "message_cards": True,
        "file_attachments": True,
        "error_handling": True,
        "retry_logic": True,
        "response_format": RESPONSE_FORMAT_TEXT,
        "reset_commands": list(RESET_COMMANDS),
    },
    "stream": {
        "chunk_threshold": STREAM_CHUNK_THRESHOLD,
        "time_threshold_ms": int(STREAM_TIME_THRESHOLD * 1000),
        "send_partial_updates": True,
    },
    "context": {
        "max_history_length": CONTEXT_MAX_HISTORY_LENGTH,
        "max_age_hours": CONTEXT_MAX_AGE_HOURS,
        "cleanup_interval_minutes": CONTEXT_CLEANUP_INTERVAL_MINUTES,
    },
    "retry": {
        "max_attempts": RETRY_MAX_ATTEMPTS,
        "initial_delay_ms": int(RETRY_INITIAL_DELAY * 1000),
        "max_delay_ms": int(RETRY_MAX_DELAY * 1000),
        "backoff_multiplier": RETRY_BACKOFF_MULTIPLIER,
    },
    "logging": {
        "level": "info",
        "format": "json",
        "file": None,
    },
}

# env var -> (group, key, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "LARK_APP_ID": ("lark", "app_id", str),
    "LARK_APP_SECRET": ("lark", "app_secret", str),
    "LARK_ENCRYPT_KEY": ("lark", "encrypt_key", str),
    "LARK_VERIFICATION_TOKEN": ("lark", "verification_token", str),
    "LARK_DOMAIN": ("lark", "domain", str),
    "MOLTBOT_API_ENDPOINT": ("moltbot", "api_endpoint", str),
    "MOLTBOT_API_KEY": ("moltbot", "api_key", str),
    "MOLTBOT_MODEL": ("moltbot", "model_name", str),
    "PORT": ("server", "port", int),
    "HOST": ("server", "host", str),
    "LOG_LEVEL": ("logging", "level", str.lower),
}


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ConfigManager:
    """Configuration manager

    Groups:
    - lark: app credentials and Open API domain
    - moltbot: model endpoint and request parameters
    - server: event server bind address
    - features: feature switches and response format
    - stream: streaming emission thresholds
    - context: conversation history limits
    - retry: retry/backoff settings
    - logging: log level, format and file
    """

    def __init__(self, config: Optional[dict[str, Any]] = None):
        self.config = _merge(DEFAULT_CONFIG, config or {})

    def _get_group(self, group: str) -> dict:
        """Return a config group, or an empty dict when absent"""
        return self.config.get(group) or {}

    # ================================================================
    # lark
    # ================================================================

    def get_lark_app_id(self) -> str:
        return self._get_group("lark").get("app_id") or ""

    def get_lark_app_secret(self) -> str:
        return self._get_group("lark").get("app_secret") or ""

    def get_lark_encrypt_key(self) -> Optional[str]:
        return self._get_group("lark").get("encrypt_key") or None

    def get_lark_verification_token(self) -> Optional[str]:
        return self._get_group("lark").get("verification_token") or None

    def get_lark_domain(self) -> str:
        return self._get_group("lark").get("domain") or LARK_DOMAIN_FEISHU

    # ================================================================
    # moltbot
    # ================================================================

    def get_moltbot_api_endpoint(self) -> str:
        return self._get_group("moltbot").get("api_endpoint") or ""

    def get_moltbot_api_key(self) -> str:
        return self._get_group("moltbot").get("api_key") or ""

    def get_moltbot_model_name(self) -> str:
        return self._get_group("moltbot").get("model_name") or MODEL_NAME

    def get_moltbot_temperature(self) -> Optional[float]:
        value = self._get_group("moltbot").get("temperature", MODEL_TEMPERATURE)
        return None if value is None else float(value)

    def get_moltbot_max_tokens(self) -> Optional[int]:
        value = self._get_group("moltbot").get("max_tokens", MODEL_MAX_TOKENS)
        return None if value is None else int(value)

    def get_moltbot_streaming(self) -> bool:
        return bool(self._get_group("moltbot").get("streaming", True))

    def get_system_prompt(self) -> Optional[str]:
        return self._get_group("moltbot").get("system_prompt") or None

    def get_moltbot_request_timeout(self) -> float:
        """Request timeout in seconds"""
        return float(self._get_group("moltbot").get("request_timeout", MODEL_REQUEST_TIMEOUT))

    # ================================================================
    # server
    # ================================================================

    def get_server_host(self) -> str:
        return self._get_group("server").get("host") or SERVER_HOST

    def get_server_port(self) -> int:
        return int(self._get_group("server").get("port", SERVER_PORT))

    def get_event_path(self) -> str:
        return self._get_group("server").get("event_path") or SERVER_EVENT_PATH

    # ================================================================
    # features
    # ================================================================

    def get_message_cards_enabled(self) -> bool:
        return bool(self._get_group("features").get("message_cards", True))

    def get_file_attachments_enabled(self) -> bool:
        return bool(self._get_group("features").get("file_attachments", True))

    def get_error_handling_enabled(self) -> bool:
        return bool(self._get_group("features").get("error_handling", True))

    def get_retry_logic_enabled(self) -> bool:
        return bool(self._get_group("features").get("retry_logic", True))

    def get_response_format(self) -> RenderFormat:
        return RenderFormat.parse(
            self._get_group("features").get("response_format") or RESPONSE_FORMAT_TEXT
        )

    def get_reset_commands(self) -> tuple[str, ...]:
        commands = self._get_group("features").get("reset_commands", RESET_COMMANDS)
        return tuple(str(c).strip().lower() for c in commands or ())

    # ================================================================
    # stream / context / retry
    # ================================================================

    def get_stream_policy(self) -> StreamPolicy:
        group = self._get_group("stream")
        return StreamPolicy(
            chunk_threshold=int(group.get("chunk_threshold", STREAM_CHUNK_THRESHOLD)),
            time_threshold=float(group.get("time_threshold_ms", STREAM_TIME_THRESHOLD * 1000))
            / 1000,
            enable_partials=bool(group.get("send_partial_updates", True))
            and self.get_message_cards_enabled(),
        )

    def get_max_history_length(self) -> int:
        return int(self._get_group("context").get("max_history_length", CONTEXT_MAX_HISTORY_LENGTH))

    def get_context_max_age(self) -> float:
        """Inactivity expiry in seconds"""
        hours = float(self._get_group("context").get("max_age_hours", CONTEXT_MAX_AGE_HOURS))
        return hours * 3600

    def get_cleanup_interval_minutes(self) -> float:
        return float(
            self._get_group("context").get(
                "cleanup_interval_minutes", CONTEXT_CLEANUP_INTERVAL_MINUTES
            )
        )

    def get_retry_policy(self) -> RetryPolicy:
        """Retry policy; a single attempt when retry logic is switched off"""
        group = self._get_group("retry")
        max_attempts = int(group.get("max_attempts", RETRY_MAX_ATTEMPTS))
        if not self.get_retry_logic_enabled():
            max_attempts = 1
        return RetryPolicy(
            max_attempts=max_attempts,
            initial_delay=float(group.get("initial_delay_ms", RETRY_INITIAL_DELAY * 1000)) / 1000,
            max_delay=float(group.get("max_delay_ms", RETRY_MAX_DELAY * 1000)) / 1000,
            backoff_multiplier=float(group.get("backoff_multiplier", RETRY_BACKOFF_MULTIPLIER)),
        )

    # ================================================================
    # logging
    # ================================================================

    def get_log_level(self) -> str:
        return str(self._get_group("logging").get("level") or "info").lower()

    def get_log_format(self) -> str:
        return self._get_group("logging").get("format") or "json"

    def get_log_file(self) -> Optional[str]:
        return self._get_group("logging").get("file") or None

    # ================================================================
    # Validation
    # ================================================================

    def validate(self) -> None:
        """
        Check required settings and value ranges.

        Raises:
            MissingConfigurationException: A required credential is absent
            InvalidConfigurationException: A value is malformed or out of range
        """
        required = {
            "lark.app_id": self.get_lark_app_id(),
            "lark.app_secret": self.get_lark_app_secret(),
            "moltbot.api_endpoint": self.get_moltbot_api_endpoint(),
            "moltbot.api_key": self.get_moltbot_api_key(),
        }
        for key, value in required.items():
            if not value:
                raise MissingConfigurationException(key)

        if not _is_url(self.get_moltbot_api_endpoint()):
            raise InvalidConfigurationException("must be a valid URL", "moltbot.api_endpoint")
        if not _is_url(self.get_lark_domain()):
            raise InvalidConfigurationException("must be a valid URL", "lark.domain")

        try:
            temperature = self.get_moltbot_temperature()
            max_tokens = self.get_moltbot_max_tokens()
            port = self.get_server_port()
            stream = self.get_stream_policy()
            retry = self.get_retry_policy()
            history = self.get_max_history_length()
            max_age = self.get_context_max_age()
            interval = self.get_cleanup_interval_minutes()
            timeout = self.get_moltbot_request_timeout()
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationException(str(e)) from e

        if temperature is not None and not 0 <= temperature <= 2:
            raise InvalidConfigurationException("must be between 0 and 2", "moltbot.temperature")
        if max_tokens is not None and max_tokens <= 0:
            raise InvalidConfigurationException("must be positive", "moltbot.max_tokens")
        if timeout <= 0:
            raise InvalidConfigurationException("must be positive", "moltbot.request_timeout")
        if not 0 < port < 65536:
            raise InvalidConfigurationException("must be between 1 and 65535", "server.port")
        if not self.get_event_path().startswith("/"):
            raise InvalidConfigurationException("must start with '/'", "server.event_path")
        if stream.chunk_threshold <= 0:
            raise InvalidConfigurationException("must be positive", "stream.chunk_threshold")
        if stream.time_threshold < 0:
            raise InvalidConfigurationException("must not be negative", "stream.time_threshold_ms")
        if retry.initial_delay < 0 or retry.max_delay < retry.initial_delay:
            raise InvalidConfigurationException(
                "delays must satisfy 0 <= initial_delay_ms <= max_delay_ms", "retry"
            )
        if retry.backoff_multiplier < 1:
            raise InvalidConfigurationException("must be at least 1", "retry.backoff_multiplier")
        if history <= 0:
            raise InvalidConfigurationException("must be positive", "context.max_history_length")
        if max_age <= 0:
            raise InvalidConfigurationException("must be positive", "context.max_age_hours")
        if interval <= 0:
            raise InvalidConfigurationException(
                "must be positive", "context.cleanup_interval_minutes"
            )

        response_format = self._get_group("features").get("response_format")
        if response_format not in RESPONSE_FORMATS:
            raise InvalidConfigurationException(
                f"must be one of {', '.join(RESPONSE_FORMATS)}", "features.response_format"
            )
        if self.get_log_level() not in LEVELS:
            raise InvalidConfigurationException(
                "must be one of error, warn, info, debug", "logging.level"
            )
        if self.get_log_format() not in ("json", "text"):
            raise InvalidConfigurationException("must be json or text", "logging.format")

    def summary(self) -> dict[str, Any]:
        """Config with secrets masked, for logging"""
        masked = copy.deepcopy(self.config)
        for group, key in (
            ("lark", "app_secret"),
            ("lark", "encrypt_key"),
            ("lark", "verification_token"),
            ("moltbot", "api_key"),
        ):
            if masked.get(group, {}).get(key):
                masked[group][key] = "***"
        return masked


def _read_json_config(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found at {path}, using defaults")
        return {}
    except (OSError, ValueError) as e:
        raise ConfigurationException(f"Failed to load configuration file {path}: {e}", e) from e

    if not isinstance(data, dict):
        raise ConfigurationException(f"Configuration file {path} must contain a JSON object")
    return data


def _apply_env(config: dict[str, Any], env: Mapping[str, str]) -> None:
    for var, (group, key, convert) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise InvalidConfigurationException(f"invalid value {raw!r}", var) from e
        config.setdefault(group, {})[key] = value


def load_config(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> ConfigManager:
    """
    Build a ConfigManager from the JSON file and the environment.

    Args:
        config_path: JSON config file; defaults to ``config/config.json``
        env: Environment mapping; defaults to ``os.environ``
        dotenv: Load a ``.env`` file into the process environment first

    Returns:
        ConfigManager (not yet validated)

    Raises:
        ConfigurationException: The config file exists but cannot be read
        InvalidConfigurationException: An environment override is malformed
    """
    if dotenv:
        load_dotenv()

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    config = _merge(DEFAULT_CONFIG, _read_json_config(path))
    _apply_env(config, os.environ if env is None else env)

    logger.debug(f"Configuration loaded from {path}")
    return ConfigManager(config)
