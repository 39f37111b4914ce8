"""Custom exception hierarchy for the OCR processing coordinator.

These errors provide typed failure modes across webhook intake, job dispatch
and queue monitoring so FastAPI exception handlers can map them to HTTP
status codes and the error categorizer can route retry decisions.
"""
from __future__ import annotations


class OcrFlowError(Exception):
    """Base class for all service level failures."""

    status_code: int = 500


class AuthenticationFailure(OcrFlowError):
    """Raised when a webhook signature or operator token is missing or wrong."""

    status_code = 401


class ValidationFailure(OcrFlowError):
    """Raised when a payload is malformed or misses required fields."""

    status_code = 400


class DocumentNotFound(OcrFlowError):
    """Raised when the referenced document does not exist."""

    status_code = 404

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class TransientUpstreamFailure(OcrFlowError):
    """Raised when the OCR engine is unreachable, slow or answers with 5xx."""

    status_code = 502


class CircuitOpenError(TransientUpstreamFailure):
    """Raised when the OCR circuit breaker refuses calls."""


class PermanentFailure(OcrFlowError):
    """Raised when a document can never be processed as submitted."""

    status_code = 422


class ServiceUnavailable(OcrFlowError):
    """Raised when monitoring queries cannot reach the OCR engine."""

    status_code = 503


__all__ = [
    "OcrFlowError",
    "AuthenticationFailure",
    "ValidationFailure",
    "DocumentNotFound",
    "TransientUpstreamFailure",
    "CircuitOpenError",
    "PermanentFailure",
    "ServiceUnavailable",
]
