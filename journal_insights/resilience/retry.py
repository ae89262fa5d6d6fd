"""Retry logic with exponential backoff and jitter

Only transient errors (timeouts, rate limits, 5xx responses) are retried.
Backoff doubles per attempt up to MAX_DELAY with ±10% jitter.
"""

import asyncio
import random
import logging
from typing import Callable, Any, TypeVar
from functools import wraps
import httpx

from journal_insights.resilience.metrics import record_retry

logger = logging.getLogger(__name__)

T = TypeVar('T')

MAX_RETRIES = 2
BASE_DELAY = 1.0  # seconds
MAX_DELAY = 30.0  # seconds
JITTER = 0.1

# OpenAI SDK errors, matched by class name
RETRYABLE_ERROR_NAMES = ('RateLimitError', 'APITimeoutError', 'APIConnectionError', 'InternalServerError')


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Retryable: network timeouts, HTTP 429, HTTP 500/502/503/504 and the
    OpenAI SDK's rate-limit/timeout/connection/server errors.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in (429, 500, 502, 503, 504)

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return True

    return exc.__class__.__name__ in RETRYABLE_ERROR_NAMES


def calculate_backoff(attempt: int) -> float:
    """
    Exponential backoff delay with jitter for a 0-indexed attempt.

    Attempt 0: ~1s, 1: ~2s, 2: ~4s, capped at MAX_DELAY.
    """
    delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)
    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    return max(delay + jitter_amount, 0.0)


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Raises:
        The last exception if retries are exhausted or the error is not transient
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if attempt == max_retries:
                logger.error(
                    f"[RETRY] All {max_retries} retries exhausted for {func.__name__}"
                )
                raise

            if not is_retryable_error(e):
                logger.warning(
                    f"[RETRY] Non-retryable error for {func.__name__}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            backoff = calculate_backoff(attempt)
            record_retry(func.__name__.lstrip("_"))

            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {func.__name__} "
                f"after {backoff:.2f}s (error: {type(e).__name__})"
            )
            await asyncio.sleep(backoff)

    raise RuntimeError("Retry loop exited without a result")


def with_retry(max_retries: int = MAX_RETRIES) -> Callable:
    """
    Decorator to add retry logic to async functions.

    Example:
        @with_retry(max_retries=2)
        async def call_api():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(func, *args, max_retries=max_retries, **kwargs)
        return wrapper
    return decorator
