"""Processing state machine for document OCR lifecycle.

The state machine is the only writer of ``processing_status`` and the fields
that travel with it (``progress``, ``current_operation``, ``processing_error``,
``external_task_id``). Every write is a compare-and-set against the status and
task id the caller observed, so two duplicate callbacks racing on the same
document cannot both apply. Illegal transitions are logged and reported back
as a no-op instead of raising; out-of-order deliveries are expected traffic.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Mapping

from ocrflow.models.documents import DocumentRecord, ProcessingStatus, TransitionEntry
from ocrflow.utils.logging_utils import structured_log

from .document_store import DocumentStore
from .interfaces import MetricsClient
from .metrics import NullMetrics

LOG = logging.getLogger("state_machine")

S = ProcessingStatus

ALLOWED_TRANSITIONS: Dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    S.UPLOADED: frozenset({S.QUEUED, S.FAILED}),
    # queued -> queued records the task id of a dispatch that follows a retry reset
    S.QUEUED: frozenset({S.QUEUED, S.PROCESSING, S.FAILED}),
    S.PROCESSING: frozenset({S.PROCESSING, S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset({S.QUEUED}),
}

# Edges that are only legal as part of an explicit operator retry.
RETRY_ONLY_TRANSITIONS = frozenset({(S.FAILED, S.QUEUED)})

APPLIED = "applied"
ILLEGAL = "illegal"
CONFLICT = "conflict"

_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%m/%d/%Y")
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class TransitionResult:
    applied: bool
    document: DocumentRecord
    reason: str = APPLIED


def is_transition_allowed(
    current: ProcessingStatus, target: ProcessingStatus, *, retry: bool = False
) -> bool:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        return False
    if (current, target) in RETRY_ONLY_TRANSITIONS and not retry:
        return False
    return True


class ProcessingStateMachine:
    def __init__(
        self,
        store: DocumentStore,
        *,
        metrics: MetricsClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.metrics = metrics or NullMetrics()
        self._clock = clock

    def transition_to(
        self,
        document: DocumentRecord,
        new_status: ProcessingStatus,
        fields: Mapping[str, Any] | None = None,
        *,
        retry: bool = False,
        reason: str = "",
    ) -> TransitionResult:
        """Move ``document`` to ``new_status`` if legal and nobody got there first.

        ``document`` is the snapshot the caller acted on; its status and task
        id are the compare-and-set expectation. A stale snapshot produces a
        ``conflict`` result and the caller decides whether to reload.
        """

        current = document.processing_status
        if not is_transition_allowed(current, new_status, retry=retry):
            structured_log(
                LOG,
                logging.WARNING,
                "illegal_transition",
                document_id=document.id,
                from_status=current.value,
                to_status=new_status.value,
                reason=reason or None,
            )
            self.metrics.increment("transition", component="state_machine", outcome=ILLEGAL)
            return TransitionResult(False, document, ILLEGAL)

        now = self._clock()
        updates = self._entry_fields(document, new_status, dict(fields or {}), now)
        history_entry: TransitionEntry = {
            "from_status": current.value,
            "to_status": new_status.value,
            "task_id": updates.get("external_task_id", document.external_task_id),
            "reason": reason or new_status.value,
            "timestamp": now,
        }
        updated = self.store.compare_and_set(
            document.id,
            expected_status=current,
            expected_task_id=document.external_task_id,
            updates=updates,
            history_entry=history_entry,
        )
        if updated is None:
            structured_log(
                LOG,
                logging.INFO,
                "transition_conflict",
                document_id=document.id,
                from_status=current.value,
                to_status=new_status.value,
                expected_task_id=document.external_task_id,
            )
            self.metrics.increment("transition", component="state_machine", outcome=CONFLICT)
            return TransitionResult(False, document, CONFLICT)

        structured_log(
            LOG,
            logging.INFO,
            "status_transition",
            document_id=document.id,
            from_status=current.value,
            to_status=new_status.value,
            task_id=updated.external_task_id,
            progress=updated.progress,
        )
        self.metrics.increment("transition", component="state_machine", outcome=new_status.value)
        return TransitionResult(True, updated, APPLIED)

    # ------------------------------------------------------------ shortcuts
    def mark_queued(self, document: DocumentRecord, task_id: str) -> TransitionResult:
        return self.transition_to(
            document,
            S.QUEUED,
            {"external_task_id": task_id, "current_operation": "Queued for OCR processing"},
            reason="dispatched",
        )

    def mark_processing(
        self,
        document: DocumentRecord,
        *,
        progress: int | None = None,
        current_operation: str | None = None,
    ) -> TransitionResult:
        fields: Dict[str, Any] = {}
        if progress is not None:
            fields["progress"] = progress
        if current_operation is not None:
            fields["current_operation"] = current_operation
        return self.transition_to(document, S.PROCESSING, fields, reason="progress")

    def mark_completed(self, document: DocumentRecord, output: Mapping[str, Any]) -> TransitionResult:
        """Apply a successful OCR result.

        A document still ``queued`` (no progress callback arrived) is walked
        through ``processing`` first so only declared edges are ever taken.
        """

        if document.processing_status is S.QUEUED:
            step = self.transition_to(document, S.PROCESSING, reason="implicit_processing")
            if not step.applied:
                return step
            document = step.document
        return self.transition_to(document, S.COMPLETED, output, reason="completed")

    def mark_failed(self, document: DocumentRecord, error: str) -> TransitionResult:
        return self.transition_to(document, S.FAILED, {"processing_error": error}, reason="failed")

    def reset_for_retry(self, document: DocumentRecord, reason: str | None = None) -> TransitionResult:
        """Put a failed document back in the queue and invalidate its old task id."""

        superseded = list(document.superseded_task_ids)
        if document.external_task_id:
            superseded.append(document.external_task_id)
        fields = {
            "external_task_id": None,
            "superseded_task_ids": superseded,
            "retry_count": document.retry_count + 1,
            "last_retry_reason": reason or "manual retry",
        }
        return self.transition_to(document, S.QUEUED, fields, retry=True, reason="manual_retry")

    # ------------------------------------------------------------ internals
    def _entry_fields(
        self,
        document: DocumentRecord,
        new_status: ProcessingStatus,
        fields: Dict[str, Any],
        now: float,
    ) -> Dict[str, Any]:
        updates = dict(fields)
        updates["processing_status"] = new_status
        if new_status is S.QUEUED:
            updates["progress"] = 0
            updates.setdefault("current_operation", None)
            updates["processing_error"] = None
            updates["queued_at"] = now
        elif new_status is S.PROCESSING:
            updates.setdefault("progress", document.progress)
            updates.setdefault("current_operation", document.current_operation)
            updates["processing_error"] = None
        elif new_status is S.COMPLETED:
            updates["progress"] = 100
            updates["current_operation"] = None
            updates["processing_error"] = None
            updates["completed_at"] = now
        elif new_status is S.FAILED:
            updates.setdefault("processing_error", "OCR processing failed")
            updates["current_operation"] = None
            updates["failed_at"] = now
        return updates


# ---------------------------------------------------------------- completion
def parse_extracted_date(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _parse_amount(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = value.strip().replace("\u00a0", "").replace(" ", "").replace(",", ".")
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


def largest_amount(values: Iterable[Any]) -> str | None:
    parsed = [amount for amount in (_parse_amount(v) for v in values) if amount is not None]
    if not parsed:
        return None
    return str(max(parsed))


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def build_searchable_content(
    ocr_text: str | None, original_name: str | None, metadata: Mapping[str, Any]
) -> str:
    parts: list[str] = []
    if ocr_text:
        parts.append(ocr_text)
    if original_name:
        parts.append(original_name)
    for key in ("invoice_numbers", "names", "emails", "tax_ids"):
        values = [str(item) for item in _as_list(metadata.get(key)) if item not in (None, "")]
        if values:
            parts.append(" ".join(values))
    return _WHITESPACE.sub(" ", " ".join(parts)).strip()


def derive_completion_fields(
    document: DocumentRecord,
    *,
    text: str | None,
    confidence_score: float | None,
    metadata: Mapping[str, Any] | None,
    category: str | None = None,
    language: str | None = None,
) -> Dict[str, Any]:
    """Flatten an OCR result into the document fields written on completion."""

    flat = dict(metadata or {})
    fields: Dict[str, Any] = {
        "ocr_text": text,
        "confidence_score": confidence_score,
        "extracted_metadata": flat,
        "category": category,
        "searchable_content": build_searchable_content(text, document.original_name, flat),
    }
    dates = _as_list(flat.get("dates"))
    if dates:
        parsed = parse_extracted_date(dates[0])
        if parsed is None:
            structured_log(
                LOG,
                logging.WARNING,
                "extracted_date_unparsable",
                document_id=document.id,
            )
        fields["extracted_date"] = parsed
    amounts = _as_list(flat.get("amounts"))
    if amounts:
        fields["extracted_amount"] = largest_amount(amounts)
    if language:
        fields["language"] = language
    return fields


__all__ = [
    "ALLOWED_TRANSITIONS",
    "RETRY_ONLY_TRANSITIONS",
    "APPLIED",
    "ILLEGAL",
    "CONFLICT",
    "TransitionResult",
    "ProcessingStateMachine",
    "is_transition_allowed",
    "derive_completion_fields",
    "build_searchable_content",
    "largest_amount",
    "parse_extracted_date",
]
