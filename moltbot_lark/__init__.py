"""
Moltbot ⇄ Lark bridge

Relays chat messages between Lark (Feishu) and an OpenAI-compatible model
backend, keeping short-lived conversation history and streaming partial replies.
"""

from .shared.constants import PROJECT_NAME, PROJECT_VERSION

__version__ = PROJECT_VERSION

__all__ = ["PROJECT_NAME", "PROJECT_VERSION", "__version__"]
