"""Resilience patterns for external model calls

Circuit breakers, retry with backoff, ordered fallbacks and the Prometheus
metrics they emit.
"""

from journal_insights.resilience.circuit_breaker import (
    SYNTHESIS_BREAKER,
    EMBEDDING_BREAKER,
    with_circuit_breaker,
)
from journal_insights.resilience.retry import retry_with_backoff, with_retry
from journal_insights.resilience.fallback import execute_with_fallbacks, FallbackStrategy
from journal_insights.resilience.metrics import (
    record_circuit_breaker_state,
    record_api_call,
    record_api_failure,
    record_retry,
    record_fallback,
    record_generation_run,
    record_producer_failure,
    record_insights_produced,
)

__all__ = [
    # Circuit Breakers
    "SYNTHESIS_BREAKER",
    "EMBEDDING_BREAKER",
    "with_circuit_breaker",
    # Retry
    "retry_with_backoff",
    "with_retry",
    # Fallback
    "execute_with_fallbacks",
    "FallbackStrategy",
    # Metrics
    "record_circuit_breaker_state",
    "record_api_call",
    "record_api_failure",
    "record_retry",
    "record_fallback",
    "record_generation_run",
    "record_producer_failure",
    "record_insights_produced",
]
