"""Bounded retry with exponential backoff."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

OnRetry = Callable[[int, BaseException], Any]
Sleeper = Callable[[float], Awaitable[Any]]


def calculate_backoff_delay(
    attempt: int,
    retry_delay: float,
    backoff_multiplier: float = 1.0
) -> float:
    """
    Calculate the wait before the next attempt.

    Formula: retry_delay * (backoff_multiplier ** attempt)

    Args:
        attempt: Failed attempt number (0-indexed)
        retry_delay: Base delay in seconds
        backoff_multiplier: Growth factor per attempt

    Returns:
        Delay in seconds
    """
    return retry_delay * (backoff_multiplier ** attempt)


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_retries: int,
    retry_delay: float,
    backoff_multiplier: float = 1.0,
    on_retry: Optional[OnRetry] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleeper: Sleeper = asyncio.sleep
) -> Any:
    """
    Run ``operation`` up to ``max_retries + 1`` times.

    ``on_retry`` is called with the 1-based number of the failed attempt
    and its error before waiting. Errors outside ``retry_on`` propagate
    immediately; when every attempt fails the last error is re-raised.
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            if on_retry is not None:
                on_retry(attempt + 1, e)
            await sleeper(calculate_backoff_delay(attempt, retry_delay, backoff_multiplier))


class RetryPolicy:
    """
    Reusable retry settings.

    Used by the lightweight fetcher for transient HTTP failures and by the
    Telegram notifier for every outgoing message.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleeper: Sleeper = asyncio.sleep
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got: {max_retries}")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_multiplier = backoff_multiplier
        self.retry_on = retry_on
        self.sleeper = sleeper

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        on_retry: Optional[OnRetry] = None
    ) -> Any:
        return await with_retry(
            operation,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            backoff_multiplier=self.backoff_multiplier,
            on_retry=on_retry,
            retry_on=self.retry_on,
            sleeper=self.sleeper,
        )
