"""
Domain Exceptions - Error taxonomy for the bridge

Every exception raised across a component boundary derives from
BridgeException and carries:

- kind: the ErrorKind tag used by retry and reporting decisions
- code: a machine readable error code
- is_transient: whether retrying the same call may succeed
- status_code: HTTP-like status used when reporting
- cause: the underlying error, if any (also chained via ``raise ... from``)
"""

import asyncio
import re
from enum import Enum
from typing import Optional

import aiohttp

from ..shared.constants import (
    ERROR_BRIDGE,
    ERROR_CONFIG,
    ERROR_LARK,
    ERROR_MOLTBOT,
    ERROR_RETRY_EXHAUSTED,
    ERROR_TRANSFORMATION,
    ERROR_VALIDATION,
)


class ErrorKind(Enum):
    """Failure classification."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONFIGURATION = "configuration"
    TRANSFORMATION = "transformation"
    RETRY_EXHAUSTED = "retry_exhausted"


class BridgeException(Exception):
    """Base exception for all bridge errors."""

    def __init__(
        self,
        message: str,
        code: str = ERROR_BRIDGE,
        kind: ErrorKind = ErrorKind.PERMANENT,
        status_code: int = 500,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.code = code
        self.kind = kind
        self.status_code = status_code
        self.cause = cause
        super().__init__(self.message)

    @property
    def is_transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT


def _kind(is_transient: bool) -> ErrorKind:
    return ErrorKind.TRANSIENT if is_transient else ErrorKind.PERMANENT


# ============================================================================
# Lark Exceptions
# ============================================================================


class LarkException(BridgeException):
    """Base exception for Lark platform errors."""

    def __init__(
        self,
        message: str,
        lark_code: Optional[int] = None,
        is_transient: bool = False,
        status_code: int = 500,
        cause: Optional[BaseException] = None,
    ):
        self.lark_code = lark_code
        super().__init__(message, ERROR_LARK, _kind(is_transient), status_code, cause)


class LarkConnectionException(LarkException):
    """Raised when the Lark Open API cannot be reached."""

    def __init__(self, message: str = "Failed to connect to Lark", cause: Optional[BaseException] = None):
        super().__init__(message, None, True, 503, cause)


class LarkMessageException(LarkException):
    """Raised when Lark rejects a message as malformed."""

    def __init__(self, message: str = "Invalid Lark message", cause: Optional[BaseException] = None):
        super().__init__(message, None, False, 400, cause)


class LarkAPIException(LarkException):
    """Raised when a Lark Open API call returns an error."""

    def __init__(
        self,
        message: str = "Lark API call failed",
        lark_code: Optional[int] = None,
        is_transient: bool = False,
        status_code: int = 500,
    ):
        if lark_code is not None:
            message = f"{message} (code: {lark_code})"
        super().__init__(message, lark_code, is_transient, status_code)


# ============================================================================
# Moltbot Exceptions
# ============================================================================


class MoltbotException(BridgeException):
    """Base exception for model backend errors."""

    def __init__(
        self,
        message: str = "Moltbot request failed",
        is_transient: bool = False,
        status_code: int = 500,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, ERROR_MOLTBOT, _kind(is_transient), status_code, cause)


class MoltbotConnectionException(MoltbotException):
    """Raised when the model backend cannot be reached."""

    def __init__(self, message: str = "Failed to connect to Moltbot", cause: Optional[BaseException] = None):
        super().__init__(message, True, 503, cause)


class MoltbotRateLimitException(MoltbotException):
    """Raised when the model backend rate limits the bridge."""

    def __init__(self, message: str = "Moltbot rate limit exceeded", cause: Optional[BaseException] = None):
        super().__init__(message, True, 429, cause)


class MoltbotStreamException(MoltbotException):
    """Raised when a streaming response breaks mid-way."""

    def __init__(self, message: str = "Moltbot stream interrupted", cause: Optional[BaseException] = None):
        super().__init__(message, True, 500, cause)


# ============================================================================
# Transformation Exceptions
# ============================================================================


class TransformationException(BridgeException):
    """Raised when message content does not have the expected shape."""

    def __init__(self, message: str, field: str = "", cause: Optional[BaseException] = None):
        self.field = field
        super().__init__(
            f"{field}: {message}" if field else message,
            ERROR_TRANSFORMATION,
            ErrorKind.TRANSFORMATION,
            422,
            cause,
        )


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationException(BridgeException):
    """Base exception for configuration-related errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, ERROR_CONFIG, ErrorKind.CONFIGURATION, 500, cause)


class InvalidConfigurationException(ConfigurationException):
    """Raised when configuration is invalid."""

    def __init__(self, message: str = "Invalid configuration", key: str = ""):
        self.key = key
        super().__init__(f"{message}: {key}" if key else message)


class MissingConfigurationException(ConfigurationException):
    """Raised when required configuration is missing."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing required configuration: {key}")


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationException(BridgeException):
    """Raised when caller input is invalid."""

    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(
            f"{field}: {message}" if field else message,
            ERROR_VALIDATION,
            ErrorKind.PERMANENT,
            400,
        )


# ============================================================================
# Retry Exceptions
# ============================================================================


class RetryExhaustedException(BridgeException):
    """Raised when a transient failure persists past the last attempt."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Operation failed after {attempts} attempts: {last_error}",
            ERROR_RETRY_EXHAUSTED,
            ErrorKind.RETRY_EXHAUSTED,
            503,
            last_error,
        )


# ============================================================================
# Classification
# ============================================================================

TRANSIENT_PATTERNS = re.compile(
    r"econnrefused|etimedout|enotfound|econnreset|epipe"
    r"|connection refused|connection reset|broken pipe|timed out"
    r"|timeout|network|temporary",
    re.IGNORECASE,
)


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether an error is worth retrying.

    Bridge exceptions answer for themselves; otherwise network and timeout
    errors, retryable HTTP statuses and well-known transient message
    patterns count as transient.
    """
    if isinstance(error, BridgeException):
        return error.is_transient

    if isinstance(error, aiohttp.ClientResponseError):
        return error.status == 429 or error.status >= 500

    if isinstance(
        error,
        (
            ConnectionError,
            TimeoutError,
            asyncio.TimeoutError,
            aiohttp.ClientConnectionError,
            aiohttp.ClientPayloadError,
        ),
    ):
        return True

    return bool(TRANSIENT_PATTERNS.search(str(error)))


def classify_error(error: BaseException) -> ErrorKind:
    """Map any error onto an ErrorKind."""
    if isinstance(error, BridgeException):
        return error.kind
    return ErrorKind.TRANSIENT if is_transient_error(error) else ErrorKind.PERMANENT


def get_user_error_message(error: BaseException) -> str:
    """Get a user-facing message for an error."""
    if isinstance(error, ValidationException):
        return f"Validation error: {error.message}"

    if isinstance(error, ConfigurationException):
        return "Configuration error. Please check your settings."

    if isinstance(error, TransformationException):
        return "Sorry, this message could not be understood."

    if isinstance(error, MoltbotRateLimitException):
        return "The assistant is busy right now. Please try again in a moment."

    if isinstance(error, (LarkConnectionException, MoltbotConnectionException)):
        return "Connection error. Please try again later."

    if isinstance(error, RetryExhaustedException):
        return "Service temporarily unavailable. Please try again later."

    return "An unexpected error occurred. Please try again."


def format_error_message(error: BaseException) -> str:
    """Format an error for display in the chat."""
    return f"❌ {get_user_error_message(error)}"
