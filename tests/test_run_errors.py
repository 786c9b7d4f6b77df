from __future__ import annotations

import httpx
import pytest

from agent_runtime.core.errors import AgentValidationError
from agent_runtime.core.run_errors import RunErrorKind, classify_run_exception
from agent_runtime.llm.errors import TransportError

_REQUEST = httpx.Request("POST", "https://models.example.test/v1/stream")


def _status_error(code: int, **kwargs) -> httpx.HTTPStatusError:  # type: ignore[no-untyped-def]
    response = httpx.Response(code, request=_REQUEST, **kwargs)
    return httpx.HTTPStatusError(f"status {code}", request=_REQUEST, response=response)


@pytest.mark.parametrize(
    "code,kind,retryable",
    [
        (401, RunErrorKind.AUTH_ERROR, False),
        (403, RunErrorKind.AUTH_ERROR, False),
        (503, RunErrorKind.SERVER_ERROR, True),
        (400, RunErrorKind.TRANSPORT_ERROR, False),
    ],
)
def test_http_status_classification(code: int, kind: RunErrorKind, retryable: bool) -> None:
    err = classify_run_exception(_status_error(code))
    assert err.error_kind == kind
    assert err.retryable is retryable
    assert err.details["status_code"] == code


def test_rate_limit_reads_retry_after_and_error_message() -> None:
    exc = _status_error(429, headers={"Retry-After": "3"}, json={"error": {"message": "slow down"}})
    err = classify_run_exception(exc)
    assert err.error_kind == RunErrorKind.RATE_LIMITED
    assert err.retry_after_ms == 3000
    assert err.message == "HTTP 429: slow down"
    payload = err.to_payload()
    assert payload["error_kind"] == "rate_limited"
    assert payload["retry_after_ms"] == 3000


def test_network_failures_are_transport_errors() -> None:
    assert classify_run_exception(httpx.ConnectError("refused", request=_REQUEST)).error_kind == RunErrorKind.TRANSPORT_ERROR
    timeout = classify_run_exception(httpx.ReadTimeout("slow", request=_REQUEST))
    assert timeout.error_kind == RunErrorKind.TRANSPORT_ERROR
    assert timeout.details["kind"] == "timeout"


@pytest.mark.parametrize(
    "status,kind",
    [
        (None, RunErrorKind.TRANSPORT_ERROR),
        (401, RunErrorKind.AUTH_ERROR),
        (429, RunErrorKind.RATE_LIMITED),
        (502, RunErrorKind.SERVER_ERROR),
    ],
)
def test_transport_error_status_mapping(status, kind) -> None:  # type: ignore[no-untyped-def]
    assert classify_run_exception(TransportError("stream broke", status_code=status)).error_kind == kind


def test_config_and_unknown_errors() -> None:
    framework = classify_run_exception(AgentValidationError("bad template"))
    assert framework.error_kind == RunErrorKind.CONFIG_ERROR
    assert framework.details["framework_code"] == "AGENT_VALIDATION_ERROR"

    assert classify_run_exception(ValueError("protocol mismatch")).error_kind == RunErrorKind.CONFIG_ERROR

    unknown = classify_run_exception(RuntimeError())
    assert unknown.error_kind == RunErrorKind.UNKNOWN
    assert unknown.message == "RuntimeError"
