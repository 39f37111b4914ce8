"""Helpers for emitting consistent structured logs."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

STRUCTURED_LOG_ALLOWED_FIELDS: frozenset[str] = frozenset(
    {
        "attempt",
        "component",
        "count",
        "current_status",
        "document_id",
        "dry_run",
        "error",
        "error_category",
        "error_type",
        "event",
        "expected_task_id",
        "failure_count",
        "from_status",
        "health",
        "issues",
        "latency_ms",
        "missing_field",
        "outcome",
        "previous_error",
        "processing_time_ms",
        "progress",
        "queue",
        "reason",
        "received_task_id",
        "request_id",
        "requested_by",
        "result",
        "should_retry",
        "signature_prefix",
        "status",
        "task_id",
        "threshold",
        "timeout_seconds",
        "to_status",
        "webhook_id",
    }
)


def _filter_structured_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in fields.items()
        if key in STRUCTURED_LOG_ALLOWED_FIELDS and value is not None
    }


def structured_log(
    logger: logging.Logger, level: int, event: str, **fields: Any
) -> None:
    """Emit a log record with an `event` attribute and structured extras."""
    payload: Dict[str, Any] = {"event": event, "_structured_log": True}
    payload.update(_filter_structured_fields(fields))
    logger.log(level, event, extra=payload)


def elapsed_ms(started: float) -> float:
    """Milliseconds since a `time.perf_counter()` reading, rounded to 0.01."""
    return round((time.perf_counter() - started) * 1000, 2)


def signature_prefix(signature: str | None) -> str | None:
    if not signature:
        return None
    return signature[:8] + "..."


__all__ = [
    "elapsed_ms",
    "signature_prefix",
    "structured_log",
    "STRUCTURED_LOG_ALLOWED_FIELDS",
]
