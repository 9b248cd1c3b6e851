"""
Resilience Module - Retry utilities
"""

from .retry import RetryExecutor, RetryPolicy, calculate_delay, retry_async

__all__ = [
    "RetryExecutor",
    "RetryPolicy",
    "calculate_delay",
    "retry_async",
]
