"""Prometheus metrics for external calls and the insight pipeline

Exposes circuit breaker, API call, retry and fallback metrics alongside
generation-run and producer-failure counters for the insight engine.
Metrics are served on /metrics by the API server.
"""

import logging
from prometheus_client import Counter, Histogram, Enum

logger = logging.getLogger(__name__)

# Values: closed, open, half_open
circuit_breaker_state = Enum(
    'circuit_breaker_state',
    'Current state of circuit breaker',
    ['api'],
    states=['closed', 'open', 'half_open']
)

# Labels: api (synthesis/embedding), status (success/failure)
api_calls_total = Counter(
    'api_calls_total',
    'Total number of API calls',
    ['api', 'status']
)

api_call_duration = Histogram(
    'api_call_duration_seconds',
    'Duration of API calls in seconds',
    ['api'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float('inf'))
)

# Labels: api, error_type (TimeoutException/RateLimitError/etc)
api_failures_total = Counter(
    'api_failures_total',
    'Total number of API failures',
    ['api', 'error_type']
)

api_retries_total = Counter(
    'api_retries_total',
    'Total number of retry attempts',
    ['api']
)

# Labels: primary_api, fallback_strategy, status (success/failure)
fallback_executions_total = Counter(
    'fallback_executions_total',
    'Total number of fallback strategy executions',
    ['primary_api', 'fallback_strategy', 'status']
)

# Labels: status (success/failure/skipped)
insight_generation_runs_total = Counter(
    'insight_generation_runs_total',
    'Total number of insight generation runs',
    ['status']
)

insight_generation_duration = Histogram(
    'insight_generation_duration_seconds',
    'Duration of a full insight generation run',
    buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float('inf'))
)

# Labels: producer (rules/sequences/recovery/synthesis/...)
producer_failures_total = Counter(
    'insight_producer_failures_total',
    'Insight producers that raised and were omitted from a run',
    ['producer']
)

# Labels: type (insight type)
insights_produced_total = Counter(
    'insights_produced_total',
    'Insights surviving deduplication per run',
    ['type']
)


def record_circuit_breaker_state(api: str, state: str) -> None:
    """
    Record circuit breaker state change.

    Args:
        api: Breaker name (synthesis_api, embedding_api)
        state: New state (closed, open, half_open)
    """
    try:
        circuit_breaker_state.labels(api=api).state(state)
        logger.debug(f"[METRICS] Circuit breaker {api} state: {state}")
    except Exception as e:
        logger.error(f"Failed to record circuit breaker state: {e}")


def record_api_call(api: str, success: bool, duration: float) -> None:
    try:
        status = 'success' if success else 'failure'
        api_calls_total.labels(api=api, status=status).inc()
        api_call_duration.labels(api=api).observe(duration)
        logger.debug(f"[METRICS] API call {api}: {status}, duration: {duration:.2f}s")
    except Exception as e:
        logger.error(f"Failed to record API call metrics: {e}")


def record_api_failure(api: str, error_type: str) -> None:
    try:
        api_failures_total.labels(api=api, error_type=error_type).inc()
        logger.debug(f"[METRICS] API failure {api}: {error_type}")
    except Exception as e:
        logger.error(f"Failed to record API failure: {e}")


def record_retry(api: str) -> None:
    try:
        api_retries_total.labels(api=api).inc()
        logger.debug(f"[METRICS] Retry attempt for {api}")
    except Exception as e:
        logger.error(f"Failed to record retry: {e}")


def record_fallback(primary_api: str, fallback_strategy: str, success: bool) -> None:
    """
    Record fallback strategy execution.

    Args:
        primary_api: Strategy that was tried first
        fallback_strategy: Strategy that ran in its place
        success: Whether the fallback succeeded
    """
    try:
        status = 'success' if success else 'failure'
        fallback_executions_total.labels(
            primary_api=primary_api,
            fallback_strategy=fallback_strategy,
            status=status
        ).inc()
        logger.debug(
            f"[METRICS] Fallback {primary_api} -> {fallback_strategy}: {status}"
        )
    except Exception as e:
        logger.error(f"Failed to record fallback: {e}")


def record_generation_run(status: str, duration: float) -> None:
    try:
        insight_generation_runs_total.labels(status=status).inc()
        insight_generation_duration.observe(duration)
    except Exception as e:
        logger.error(f"Failed to record generation run: {e}")


def record_producer_failure(producer: str) -> None:
    try:
        producer_failures_total.labels(producer=producer).inc()
    except Exception as e:
        logger.error(f"Failed to record producer failure: {e}")


def record_insights_produced(insight_types: list) -> None:
    try:
        for insight_type in insight_types:
            insights_produced_total.labels(type=insight_type).inc()
    except Exception as e:
        logger.error(f"Failed to record produced insights: {e}")
