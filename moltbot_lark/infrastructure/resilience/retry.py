"""
Retry - Retry utilities with exponential backoff

Every outbound call of the bridge goes through RetryExecutor. Errors are
classified with the policy's ``is_retryable`` predicate: non-retryable errors
are re-raised unchanged, retryable ones are retried until the attempt budget
is spent and then wrapped in RetryExhaustedException.
"""

import asyncio
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Awaitable, Callable, Optional

from ...domain.exceptions import RetryExhaustedException, is_transient_error
from ...shared.constants import (
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY,
    RETRY_JITTER_RATIO,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY,
)
from ...utils.logger import logger


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior. Delays are in seconds."""

    max_attempts: int = RETRY_MAX_ATTEMPTS
    initial_delay: float = RETRY_INITIAL_DELAY
    max_delay: float = RETRY_MAX_DELAY
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    jitter: bool = True
    is_retryable: Callable[[BaseException], bool] = field(default=is_transient_error)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


def calculate_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    backoff_multiplier: float,
    jitter: bool,
) -> float:
    """
    Calculate delay before the next attempt.

    Args:
        attempt: Attempt that just failed (1-based)
        initial_delay: Delay after the first failure
        max_delay: Ceiling for the exponential part
        backoff_multiplier: Growth factor per attempt
        jitter: Whether to add up to 10% random extra delay

    Returns:
        Delay in seconds
    """
    delay = min(initial_delay * (backoff_multiplier ** (attempt - 1)), max_delay)

    if jitter:
        delay += delay * RETRY_JITTER_RATIO * random.random()

    return delay


class RetryExecutor:
    """
    Executor for running async operations with retry logic.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the retry executor.

        Args:
            policy: Default retry policy
            sleep: Coroutine used to wait between attempts
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(
        self,
        func: Callable[..., Awaitable],
        *args,
        policy: Optional[RetryPolicy] = None,
        context: str = "",
        **kwargs,
    ):
        """
        Execute an async function with retry logic.

        Args:
            func: Async function to execute
            *args: Function arguments
            policy: Optional override policy
            context: Label used in log messages
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            RetryExhaustedException: If a retryable error outlived all attempts
            Exception: The original error if it is not retryable
        """
        cfg = policy or self.policy
        label = context or getattr(func, "__name__", "operation")

        for attempt in range(1, cfg.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not cfg.is_retryable(e):
                    logger.debug(f"{label} failed with non-retryable error: {e}")
                    raise

                if attempt >= cfg.max_attempts:
                    logger.warning(
                        f"All {cfg.max_attempts} attempts failed for {label}: {e}"
                    )
                    raise RetryExhaustedException(cfg.max_attempts, e) from e

                delay = calculate_delay(
                    attempt,
                    cfg.initial_delay,
                    cfg.max_delay,
                    cfg.backoff_multiplier,
                    cfg.jitter,
                )
                logger.warning(
                    f"Retry {attempt}/{cfg.max_attempts} for {label} "
                    f"after {delay:.2f}s: {e}"
                )
                await self._sleep(delay)


def retry_async(
    policy: Optional[RetryPolicy] = None,
    executor: Optional[RetryExecutor] = None,
):
    """
    Decorator for retrying async functions with exponential backoff.

    Args:
        policy: Retry policy (defaults to the executor's)
        executor: Executor to run through

    Returns:
        Decorated function
    """

    def decorator(func: Callable):
        runner = executor or RetryExecutor(policy)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await runner.execute(
                func, *args, policy=policy, context=func.__qualname__, **kwargs
            )

        return wrapper

    return decorator
