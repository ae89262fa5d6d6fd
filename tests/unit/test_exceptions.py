"""Tests for the exception hierarchy"""
import httpx
import psycopg

from journal_insights.exceptions import (
    ComputationError,
    ConfigurationError,
    ExternalServiceError,
    InsightEngineError,
    PersistenceError,
    SynthesisError,
    ValidationError,
    wrap_external_exception,
)


def test_to_dict():
    error = InsightEngineError(message="boom", user_id="user-1", operation="generate")
    data = error.to_dict()

    assert set(data) == {"error", "message", "user_message", "request_id", "timestamp"}
    assert data["error"] == "InsightEngineError"
    assert data["message"] == "boom"


def test_request_id_kept_when_given():
    assert InsightEngineError(message="boom", request_id="req-1").request_id == "req-1"


def test_subclass_context():
    computation = ComputationError(message="bad reading", item="predicate:sleep_hours")
    assert computation.item == "predicate:sleep_hours"
    assert computation.context["item"] == "predicate:sleep_hours"

    config = ConfigurationError(message="missing", config_key="DATABASE_URL")
    assert config.config_key == "DATABASE_URL"

    validation = ValidationError(message="duplicate ids", field="id", context={"count": 2})
    assert validation.context == {"field": "id", "value": None, "count": 2}


def test_synthesis_error_is_external():
    error = SynthesisError(message="timed out")
    assert isinstance(error, ExternalServiceError)
    assert error.service == "text synthesis"


def test_wrap_keeps_engine_errors():
    original = PersistenceError(message="write failed", document="insights")
    assert wrap_external_exception(original, operation="save") is original


def test_wrap_store_error():
    wrapped = wrap_external_exception(psycopg.OperationalError("connection lost"), operation="merge_document")
    assert isinstance(wrapped, PersistenceError)
    assert wrapped.operation == "merge_document"


def test_wrap_http_errors():
    request = httpx.Request("POST", "https://api.example.com")
    status_error = httpx.HTTPStatusError("503", request=request, response=httpx.Response(503, request=request))

    wrapped = wrap_external_exception(status_error, operation="synthesize")
    assert isinstance(wrapped, ExternalServiceError)
    assert wrapped.status_code == 503

    assert isinstance(wrap_external_exception(httpx.ReadTimeout("slow"), operation="embed"), ExternalServiceError)


def test_wrap_unknown_error():
    wrapped = wrap_external_exception(RuntimeError("odd"), operation="reassess")
    assert type(wrapped) is InsightEngineError
    assert wrapped.cause.args == ("odd",)
