"""Ordered fallback strategies

Tries strategies by priority until one succeeds. Used to substitute the
local rule-based insight when the synthesis collaborator is unavailable.
"""

import logging
from typing import Any, Callable, List, TypeVar
from dataclasses import dataclass

from journal_insights.resilience.metrics import record_fallback

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class FallbackStrategy:
    """
    A named async handler with a priority.

    Attributes:
        name: Human-readable name for logging and metrics
        handler: Async callable implementing the strategy
        priority: Lower runs first; 1 is the primary strategy
    """
    name: str
    handler: Callable[..., Any]
    priority: int


async def execute_with_fallbacks(
    strategies: List[FallbackStrategy],
    *args: Any,
    **kwargs: Any
) -> Any:
    """
    Execute strategies in priority order until one succeeds.

    Raises:
        The last exception if every strategy fails
        ValueError: If no strategies were given
    """
    if not strategies:
        raise ValueError("No fallback strategies given")

    ordered = sorted(strategies, key=lambda s: s.priority)
    primary = ordered[0].name
    last_exception: Exception | None = None

    for strategy in ordered:
        try:
            logger.debug(f"[FALLBACK] Trying strategy: {strategy.name}")
            result = await strategy.handler(*args, **kwargs)
        except Exception as e:
            logger.warning(
                f"[FALLBACK] Strategy '{strategy.name}' failed: "
                f"{type(e).__name__}: {e}"
            )
            last_exception = e
            if strategy.priority > 1:
                record_fallback(primary, strategy.name, success=False)
            continue

        if strategy.priority > 1:
            logger.info(f"[FALLBACK] Strategy '{strategy.name}' substituted for '{primary}'")
            record_fallback(primary, strategy.name, success=True)
        return result

    logger.error(f"[FALLBACK] All {len(ordered)} strategies exhausted")
    raise last_exception
