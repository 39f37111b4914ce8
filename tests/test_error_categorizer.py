from __future__ import annotations

import httpx
import pytest

from ocrflow.errors import (
    CircuitOpenError,
    DocumentNotFound,
    PermanentFailure,
    TransientUpstreamFailure,
    ValidationFailure,
)
from ocrflow.services.error_categorizer import ErrorCategorizer, ErrorCategory


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://ocr.test/api/v1/ocr/process")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


@pytest.mark.parametrize(
    "error",
    [
        TransientUpstreamFailure("engine down"),
        CircuitOpenError("open"),
        httpx.ConnectTimeout("connect timed out"),
        TimeoutError(),
        ConnectionResetError(),
        _status_error(503),
        _status_error(429),
        _status_error(408),
        RuntimeError("Lock wait timeout exceeded"),
        RuntimeError("Service Unavailable"),
    ],
)
def test_transient_errors(error):
    categorizer = ErrorCategorizer()
    assert categorizer.categorize(error) is ErrorCategory.TRANSIENT
    assert categorizer.should_retry(error)


@pytest.mark.parametrize(
    "error",
    [
        PermanentFailure("Unsupported file format"),
        ValidationFailure("bad"),
        DocumentNotFound("D1"),
        _status_error(400),
        _status_error(404),
        RuntimeError("File is corrupted"),
        RuntimeError("Permission denied"),
        RuntimeError("something odd happened"),
    ],
)
def test_permanent_errors(error):
    categorizer = ErrorCategorizer()
    assert categorizer.categorize(error) is ErrorCategory.PERMANENT
    assert not categorizer.should_retry(error)


def test_describe_mentions_retry_decision():
    categorizer = ErrorCategorizer()
    assert "will be retried" in categorizer.describe(TransientUpstreamFailure("x"))
    assert "will not be retried" in categorizer.describe(PermanentFailure("x"))
