"""
Tests for retry and fallback logic
"""
import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from journal_insights.resilience.fallback import FallbackStrategy, execute_with_fallbacks
from journal_insights.resilience.retry import (
    calculate_backoff,
    is_retryable_error,
    retry_with_backoff,
)


def _status_error(status_code):
    request = httpx.Request("POST", "https://api.example.com/v1/chat")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


class RateLimitError(Exception):
    """Stands in for the SDK error of the same name"""


# ============================================================================
# Retry
# ============================================================================

@pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
def test_retryable_status_codes(status_code):
    assert is_retryable_error(_status_error(status_code))


@pytest.mark.parametrize("status_code", [400, 401, 404])
def test_client_errors_not_retryable(status_code):
    assert not is_retryable_error(_status_error(status_code))


def test_timeouts_retryable():
    assert is_retryable_error(httpx.ReadTimeout("slow"))
    assert is_retryable_error(asyncio.TimeoutError())


def test_sdk_error_names_retryable():
    assert is_retryable_error(RateLimitError("slow down"))
    assert not is_retryable_error(ValueError("bad input"))


@pytest.mark.parametrize("attempt,expected", [(0, 1.0), (1, 2.0), (2, 4.0), (10, 30.0)])
def test_calculate_backoff(attempt, expected):
    for _ in range(20):
        delay = calculate_backoff(attempt)
        assert expected * 0.9 <= delay <= expected * 1.1


@patch("journal_insights.resilience.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_retry_then_success(mock_sleep):
    func = AsyncMock(side_effect=[_status_error(503), "ok"])
    func.__name__ = "_complete"

    assert await retry_with_backoff(func, "prompt") == "ok"
    assert func.await_count == 2
    mock_sleep.assert_awaited_once()


@patch("journal_insights.resilience.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_retries_exhausted(mock_sleep):
    func = AsyncMock(side_effect=_status_error(503))
    func.__name__ = "_complete"

    with pytest.raises(httpx.HTTPStatusError):
        await retry_with_backoff(func, max_retries=2)
    assert func.await_count == 3
    assert mock_sleep.await_count == 2


@patch("journal_insights.resilience.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_non_retryable_raises_immediately(mock_sleep):
    func = AsyncMock(side_effect=ValueError("bad request"))
    func.__name__ = "_complete"

    with pytest.raises(ValueError):
        await retry_with_backoff(func)
    assert func.await_count == 1
    mock_sleep.assert_not_awaited()


# ============================================================================
# Fallback
# ============================================================================

async def test_fallbacks_run_in_priority_order():
    calls = []

    async def failing():
        calls.append("primary")
        raise RuntimeError("down")

    async def backup():
        calls.append("backup")
        return "local"

    result = await execute_with_fallbacks([
        FallbackStrategy(name="backup", handler=backup, priority=2),
        FallbackStrategy(name="primary", handler=failing, priority=1),
    ])

    assert result == "local"
    assert calls == ["primary", "backup"]


async def test_primary_success_skips_fallback():
    backup = AsyncMock(return_value="local")
    result = await execute_with_fallbacks([
        FallbackStrategy(name="primary", handler=AsyncMock(return_value="remote"), priority=1),
        FallbackStrategy(name="backup", handler=backup, priority=2),
    ])

    assert result == "remote"
    backup.assert_not_awaited()


async def test_no_strategies():
    with pytest.raises(ValueError):
        await execute_with_fallbacks([])


async def test_all_strategies_fail():
    with pytest.raises(KeyError):
        await execute_with_fallbacks([
            FallbackStrategy(name="primary", handler=AsyncMock(side_effect=RuntimeError("a")), priority=1),
            FallbackStrategy(name="backup", handler=AsyncMock(side_effect=KeyError("b")), priority=2),
        ])
