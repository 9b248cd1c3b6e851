"""
Constants - Shared constants used across the bridge
"""

# Project metadata
PROJECT_NAME = "moltbot-lark-bridge"
PROJECT_VERSION = "1.0.0"

# Platform identifiers
PLATFORM_LARK = "lark"
PLATFORM_MOLTBOT = "moltbot"

# Lark Open API hosts
LARK_DOMAIN_FEISHU = "https://open.feishu.cn"
LARK_DOMAIN_LARKSUITE = "https://open.larksuite.com"

# Lark event types
EVENT_URL_VERIFICATION = "url_verification"
EVENT_MESSAGE_RECEIVE = "im.message.receive_v1"

# Response formats
RESPONSE_FORMAT_TEXT = "text"
RESPONSE_FORMAT_MARKDOWN = "markdown"
RESPONSE_FORMAT_CARD = "card"

RESPONSE_FORMATS = (
    RESPONSE_FORMAT_TEXT,
    RESPONSE_FORMAT_MARKDOWN,
    RESPONSE_FORMAT_CARD,
)

# Card defaults
CARD_TITLE_RESPONSE = "Response"
CARD_TITLE_STREAMING = "AI Response"

# Conversation context defaults
CONTEXT_MAX_HISTORY_LENGTH = 10
CONTEXT_MAX_AGE_HOURS = 24
CONTEXT_CLEANUP_INTERVAL_MINUTES = 60

# Stream processing defaults
STREAM_CHUNK_THRESHOLD = 100  # characters
STREAM_TIME_THRESHOLD = 1.0  # seconds

# Retry defaults
RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 1.0
RETRY_MAX_DELAY = 30.0
RETRY_BACKOFF_MULTIPLIER = 2.0
RETRY_JITTER_RATIO = 0.1

# Model defaults
MODEL_NAME = "gpt-4"
MODEL_TEMPERATURE = 0.7
MODEL_MAX_TOKENS = 2000
MODEL_REQUEST_TIMEOUT = 120.0

# Server defaults
SERVER_HOST = "0.0.0.0"
SERVER_PORT = 3000
SERVER_EVENT_PATH = "/webhook/event"

# Commands that clear the conversation history
RESET_COMMANDS = ("/reset", "/clear")

# Error codes
ERROR_BRIDGE = "BRIDGE_ERROR"
ERROR_LARK = "LARK_ERROR"
ERROR_MOLTBOT = "MOLTBOT_ERROR"
ERROR_TRANSFORMATION = "TRANSFORMATION_ERROR"
ERROR_CONFIG = "CONFIG_ERROR"
ERROR_VALIDATION = "VALIDATION_ERROR"
ERROR_RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
