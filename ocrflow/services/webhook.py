"""OCR engine webhook intake.

`WebhookCallbackHandler.handle` takes the raw request body and the signature
header and returns the HTTP outcome. Nothing is read from the document store
before the signature checks out, and nothing is written before the payload
variant validates. Writes go through the state machine's compare-and-set; when
a concurrent delivery wins the race the handler reloads and re-evaluates, so a
replayed terminal callback resolves to ``duplicate`` and only the winning
delivery enqueues the indexing job.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from ocrflow.errors import DocumentNotFound, ServiceUnavailable
from ocrflow.models.documents import DocumentRecord, ProcessingStatus
from ocrflow.models.messages import IndexDocumentMessage
from ocrflow.models.webhook import (
    REQUIRED_CALLBACK_FIELDS,
    CompletedCallback,
    FailedCallback,
    ProcessingCallback,
    callback_adapter,
)
from ocrflow.utils.logging_utils import elapsed_ms, signature_prefix, structured_log

from .document_store import DocumentStore
from .interfaces import MessageQueue, MetricsClient
from .message_queue import INDEXING_QUEUE
from .metrics import NullMetrics
from .state_machine import CONFLICT, ProcessingStateMachine, TransitionResult, derive_completion_fields

LOG = logging.getLogger("webhook")

SIGNATURE_HEADER = "X-Webhook-Signature"
CALLBACK_STATUSES = ("processing", "completed", "failed")

OUTCOME_APPLIED = "applied"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_STALE = "stale"
OUTCOME_IGNORED = "ignored"


@dataclass(slots=True)
class WebhookOutcome:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a hex HMAC-SHA256 over the exact raw body."""

    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    # Headers arrive latin-1 decoded; compare bytes so non-ASCII input is a mismatch.
    return hmac.compare_digest(
        compute_signature(secret, body).encode("ascii"),
        provided.lower().encode("utf-8", "surrogateescape"),
    )


class WebhookCallbackHandler:
    def __init__(
        self,
        store: DocumentStore,
        state_machine: ProcessingStateMachine,
        queue: MessageQueue,
        *,
        secret: str | None,
        metrics: MetricsClient | None = None,
        max_apply_attempts: int = 3,
    ) -> None:
        self.store = store
        self.state_machine = state_machine
        self.queue = queue
        self.secret = secret
        self.metrics = metrics or NullMetrics()
        self.max_apply_attempts = max_apply_attempts

    def handle(
        self,
        raw_body: bytes,
        signature: str | None,
        *,
        webhook_id: str | None = None,
    ) -> WebhookOutcome:
        webhook_id = webhook_id or uuid.uuid4().hex[:16]
        started = time.perf_counter()
        structured_log(
            LOG,
            logging.INFO,
            "webhook_received",
            webhook_id=webhook_id,
            signature_prefix=signature_prefix(signature),
        )

        if not signature:
            return self._reject(401, "Missing signature", webhook_id, started, reason="missing_signature")
        if not self.secret:
            LOG.error("webhook_secret_not_configured", extra={"webhook_id": webhook_id})
            return self._reject(401, "Invalid signature", webhook_id, started, reason="secret_not_configured")
        if not verify_signature(self.secret, raw_body, signature):
            return self._reject(401, "Invalid signature", webhook_id, started, reason="invalid_signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            return self._reject(400, "Invalid JSON payload", webhook_id, started, reason="invalid_json")
        if not isinstance(payload, dict):
            return self._reject(400, "Invalid JSON payload", webhook_id, started, reason="invalid_json")

        for name in REQUIRED_CALLBACK_FIELDS:
            if payload.get(name) in (None, ""):
                structured_log(
                    LOG,
                    logging.WARNING,
                    "webhook_missing_field",
                    webhook_id=webhook_id,
                    missing_field=name,
                )
                return self._reject(
                    400, f"Missing required field: {name}", webhook_id, started, reason="missing_field"
                )
        if payload.get("status") not in CALLBACK_STATUSES:
            return self._reject(
                400, f"Unknown status: {payload.get('status')}", webhook_id, started, reason="unknown_status"
            )

        try:
            callback = callback_adapter.validate_python(payload)
        except PydanticValidationError as exc:
            details = [
                ".".join(str(part) for part in error.get("loc", ())) + ": " + str(error.get("msg"))
                for error in exc.errors()
            ]
            return self._reject(
                400, "Invalid callback payload", webhook_id, started, reason="invalid_payload", details=details
            )

        document = self.store.get(callback.document_id)
        if document is None:
            structured_log(
                LOG,
                logging.WARNING,
                "webhook_document_not_found",
                webhook_id=webhook_id,
                document_id=callback.document_id,
                task_id=callback.task_id,
            )
            return self._reject(404, "Document not found", webhook_id, started, reason="document_not_found")

        outcome, document = self._apply(document, callback, webhook_id)
        latency = elapsed_ms(started)
        structured_log(
            LOG,
            logging.INFO,
            "webhook_processed",
            webhook_id=webhook_id,
            document_id=document.id,
            task_id=callback.task_id,
            status=callback.status,
            current_status=document.processing_status.value,
            outcome=outcome,
            latency_ms=latency,
        )
        self.metrics.increment("webhook", component="webhook", outcome=outcome)
        self.metrics.observe_latency("webhook", latency / 1000.0, component="webhook")
        return WebhookOutcome(
            200,
            {
                "message": "Webhook processed successfully",
                "document_id": document.id,
                "status": document.processing_status.value,
                "outcome": outcome,
            },
        )

    # ------------------------------------------------------------------ apply
    def _apply(self, document: DocumentRecord, callback, webhook_id: str) -> tuple[str, DocumentRecord]:
        for attempt in range(1, self.max_apply_attempts + 1):
            if document.external_task_id != callback.task_id:
                structured_log(
                    LOG,
                    logging.WARNING,
                    "webhook_stale_task",
                    webhook_id=webhook_id,
                    document_id=document.id,
                    received_task_id=callback.task_id,
                    expected_task_id=document.external_task_id,
                    current_status=document.processing_status.value,
                )
                return OUTCOME_STALE, document

            if isinstance(callback, ProcessingCallback):
                result = self._apply_progress(document, callback)
            elif isinstance(callback, CompletedCallback):
                result = self._apply_completed(document, callback)
            else:
                result = self._apply_failed(document, callback)

            if isinstance(result, str):
                structured_log(
                    LOG,
                    logging.INFO,
                    "webhook_not_applied",
                    webhook_id=webhook_id,
                    document_id=document.id,
                    task_id=callback.task_id,
                    status=callback.status,
                    current_status=document.processing_status.value,
                    outcome=result,
                )
                return result, document
            if result.applied:
                if isinstance(callback, CompletedCallback):
                    self._enqueue_indexing(result.document, webhook_id)
                return OUTCOME_APPLIED, result.document
            if result.reason != CONFLICT:
                return OUTCOME_IGNORED, result.document

            reloaded = self.store.get(document.id)
            if reloaded is None:
                raise DocumentNotFound(document.id)
            structured_log(
                LOG,
                logging.INFO,
                "webhook_reevaluating",
                webhook_id=webhook_id,
                document_id=document.id,
                attempt=attempt,
                current_status=reloaded.processing_status.value,
            )
            document = reloaded
        raise ServiceUnavailable(f"Document {document.id} is being updated concurrently; retry delivery")

    def _apply_progress(self, document: DocumentRecord, callback: ProcessingCallback) -> TransitionResult | str:
        if document.processing_status not in (ProcessingStatus.QUEUED, ProcessingStatus.PROCESSING):
            return OUTCOME_IGNORED
        return self.state_machine.mark_processing(
            document, progress=callback.progress, current_operation=callback.message
        )

    def _apply_completed(self, document: DocumentRecord, callback: CompletedCallback) -> TransitionResult | str:
        if document.processing_status is ProcessingStatus.COMPLETED:
            return OUTCOME_DUPLICATE
        if document.processing_status is ProcessingStatus.FAILED:
            return OUTCOME_IGNORED
        result = callback.result
        output = derive_completion_fields(
            document,
            text=result.text,
            confidence_score=result.confidence_score,
            metadata=callback.flat_metadata(),
            category=result.category.primary_category if result.category else None,
            language=result.language,
        )
        return self.state_machine.mark_completed(document, output)

    def _apply_failed(self, document: DocumentRecord, callback: FailedCallback) -> TransitionResult | str:
        if document.processing_status is ProcessingStatus.FAILED:
            return OUTCOME_DUPLICATE
        if document.processing_status is ProcessingStatus.COMPLETED:
            return OUTCOME_IGNORED
        return self.state_machine.mark_failed(document, callback.error)

    def _enqueue_indexing(self, document: DocumentRecord, webhook_id: str) -> None:
        message_id = self.queue.enqueue(INDEXING_QUEUE, IndexDocumentMessage(document_id=document.id))
        structured_log(
            LOG,
            logging.INFO,
            "indexing_enqueued",
            webhook_id=webhook_id,
            document_id=document.id,
            task_id=document.external_task_id,
            result=message_id,
        )

    def _reject(
        self,
        status_code: int,
        error: str,
        webhook_id: str,
        started: float,
        *,
        reason: str,
        details: list[str] | None = None,
    ) -> WebhookOutcome:
        structured_log(
            LOG,
            logging.WARNING,
            "webhook_rejected",
            webhook_id=webhook_id,
            status=status_code,
            reason=reason,
            latency_ms=elapsed_ms(started),
        )
        self.metrics.increment("webhook", component="webhook", outcome=reason)
        body: Dict[str, Any] = {"error": error}
        if details:
            body["details"] = details
        return WebhookOutcome(status_code, body)


__all__ = [
    "SIGNATURE_HEADER",
    "WebhookOutcome",
    "WebhookCallbackHandler",
    "compute_signature",
    "verify_signature",
    "OUTCOME_APPLIED",
    "OUTCOME_DUPLICATE",
    "OUTCOME_STALE",
    "OUTCOME_IGNORED",
]
