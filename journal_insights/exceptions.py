"""
Standardized exception hierarchy for journal-insights
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class InsightEngineError(Exception):
    """
    Base exception for all journal-insights errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise InsightEngineError(
            message="Failed to persist insights",
            user_id="user-123",
            operation="save_insights",
            context={"insight_count": 4}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


def _merge_context(base: Dict[str, Any], kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Combine subclass context with any caller-supplied context"""
    merged = dict(base)
    merged.update(kwargs.pop("context", None) or {})
    return merged


# ==========================================
# Input Errors
# ==========================================

class InputError(InsightEngineError):
    """
    Raised at the API edge when a request is missing required input

    Engine functions never raise this for insufficient data; they return
    None or an empty result instead.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        self.field = field
        context = _merge_context({"field": field}, kwargs)
        kwargs.setdefault("user_message", f"Missing or invalid {field}" if field else message)
        super().__init__(message=message, context=context, **kwargs)


# ==========================================
# Computation Errors
# ==========================================

class ComputationError(InsightEngineError):
    """
    A single item could not be computed (malformed feature value, bad predicate)

    Callers catch this per item and skip the item.
    """

    def __init__(
        self,
        message: str,
        item: Optional[str] = None,
        **kwargs
    ):
        self.item = item
        context = _merge_context({"item": item}, kwargs)
        kwargs.setdefault("user_message", "Some of your data could not be analyzed.")
        super().__init__(message=message, context=context, **kwargs)


# ==========================================
# External Service Errors
# ==========================================

class ExternalServiceError(InsightEngineError):
    """
    Base class for external collaborator failures (synthesis, embeddings)
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        context = _merge_context({"service": service, "status_code": status_code}, kwargs)
        kwargs.setdefault(
            "user_message",
            f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
        )
        super().__init__(message=message, context=context, **kwargs)


class SynthesisError(ExternalServiceError):
    """Text synthesis timed out or returned a malformed response"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("service", "text synthesis")
        kwargs.setdefault("user_message", "Personalized insights are temporarily unavailable.")
        super().__init__(message=message, **kwargs)


class EmbeddingError(ExternalServiceError):
    """Embedding service failure"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("service", "embeddings")
        super().__init__(message=message, **kwargs)


# ==========================================
# Persistence Errors
# ==========================================

class PersistenceError(InsightEngineError):
    """
    Store write failed

    Raised after staged writes have been rolled back, so the last-known-good
    state is still in place.
    """

    def __init__(
        self,
        message: str,
        document: Optional[str] = None,
        **kwargs
    ):
        self.document = document
        context = _merge_context({"document": document}, kwargs)
        kwargs.setdefault("user_message", "We couldn't save your insights. Your previous insights are still available.")
        super().__init__(message=message, context=context, **kwargs)


class ValidationError(InsightEngineError):
    """
    Integrity check failed (staged insight batch, illegal thread transition)

    Example:
        raise ValidationError(
            message="Resolved threads cannot evolve",
            field="status",
            value="resolved",
            user_id="user-123"
        )
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        context = _merge_context({"field": field, "value": value}, kwargs)
        kwargs.setdefault("user_message", f"Invalid {field}: {message}" if field else message)
        super().__init__(message=message, context=context, **kwargs)


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(InsightEngineError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        context = _merge_context({"config_key": config_key}, kwargs)
        kwargs.setdefault("user_message", "The system is not properly configured. Please contact support.")
        super().__init__(message=message, context=context, **kwargs)


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> InsightEngineError:
    """
    Wrap external exceptions (psycopg, redis, httpx, openai) into our hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate InsightEngineError subclass

    Example:
        try:
            await store.merge(user_id, "insights", payload)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="save_insights", user_id=user_id)
    """
    import httpx
    import psycopg
    import redis

    if isinstance(error, InsightEngineError):
        return error

    if isinstance(error, (psycopg.Error, redis.RedisError)):
        return PersistenceError(
            message=f"Store operation failed: {error}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return ExternalServiceError(
            message=f"External request timed out: {error}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    if isinstance(error, httpx.HTTPStatusError):
        return ExternalServiceError(
            message=f"External service returned error: {error.response.status_code}",
            status_code=error.response.status_code,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    return InsightEngineError(
        message=f"{operation} failed: {error}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
