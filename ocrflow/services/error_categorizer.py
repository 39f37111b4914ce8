"""Classify dispatch failures as transient or permanent.

The categorizer is a pure function of the exception: typed failures from the
OCR client decide directly, transport exceptions are transient, and anything
else falls back to message heuristics. Unknown failures default to permanent
so a bad document cannot loop through the job queue forever.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Tuple

import httpx

from ocrflow.errors import (
    AuthenticationFailure,
    DocumentNotFound,
    PermanentFailure,
    TransientUpstreamFailure,
    ValidationFailure,
)

LOG = logging.getLogger("error_categorizer")


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @property
    def is_transient(self) -> bool:
        return self is ErrorCategory.TRANSIENT

    @property
    def is_permanent(self) -> bool:
        return self is ErrorCategory.PERMANENT


TRANSIENT_MESSAGE_PATTERNS: Tuple[str, ...] = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "service unavailable",
    "too many requests",
    "rate limit",
    "deadlock",
    "lock wait timeout",
)

PERMANENT_MESSAGE_PATTERNS: Tuple[str, ...] = (
    "not found",
    "invalid",
    "forbidden",
    "unauthorized",
    "authentication failed",
    "permission denied",
    "access denied",
    "bad request",
    "unsupported",
    "corrupt",
)

_TRANSIENT_TYPES = (
    TransientUpstreamFailure,
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)

_PERMANENT_TYPES = (
    PermanentFailure,
    ValidationFailure,
    AuthenticationFailure,
    DocumentNotFound,
)


class ErrorCategorizer:
    """Stateless mapping from a dispatch failure to a retry decision."""

    def categorize(self, error: BaseException) -> ErrorCategory:
        if isinstance(error, _TRANSIENT_TYPES):
            return ErrorCategory.TRANSIENT
        if isinstance(error, _PERMANENT_TYPES):
            return ErrorCategory.PERMANENT
        if isinstance(error, httpx.HTTPStatusError):
            return self._categorize_status(error.response.status_code)

        message = str(error).lower()
        if any(pattern in message for pattern in TRANSIENT_MESSAGE_PATTERNS):
            return ErrorCategory.TRANSIENT
        if any(pattern in message for pattern in PERMANENT_MESSAGE_PATTERNS):
            return ErrorCategory.PERMANENT

        LOG.debug("error_category_defaulted", extra={"error_type": type(error).__name__})
        return ErrorCategory.PERMANENT

    def should_retry(self, error: BaseException) -> bool:
        return self.categorize(error).is_transient

    def describe(self, error: BaseException) -> str:
        category = self.categorize(error)
        if category.is_transient:
            return f"Transient error ({type(error).__name__}): will be retried. {error}"
        return f"Permanent error ({type(error).__name__}): will not be retried. {error}"

    @staticmethod
    def _categorize_status(status_code: int) -> ErrorCategory:
        if status_code >= 500 or status_code in (408, 429):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.PERMANENT


__all__ = [
    "ErrorCategory",
    "ErrorCategorizer",
    "TRANSIENT_MESSAGE_PATTERNS",
    "PERMANENT_MESSAGE_PATTERNS",
]
