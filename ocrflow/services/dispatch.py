"""Async dispatch of documents to the OCR engine.

Consumes ``document.process`` jobs. Transient submission failures are
re-raised so the job queue redelivers the job; permanent ones fail the
document and complete the job.
"""
from __future__ import annotations

import logging

from ocrflow.models.documents import DocumentRecord, ProcessingStatus
from ocrflow.models.messages import ProcessDocumentMessage
from ocrflow.utils.logging_utils import structured_log

from .document_store import DocumentStore
from .error_categorizer import ErrorCategorizer
from .interfaces import MetricsClient
from .metrics import NullMetrics
from .ocr_client import OcrDispatchClient
from .state_machine import ProcessingStateMachine

LOG = logging.getLogger("dispatch")

DISPATCHABLE_STATUSES = (ProcessingStatus.UPLOADED, ProcessingStatus.QUEUED)


class DocumentDispatchHandler:
    def __init__(
        self,
        store: DocumentStore,
        state_machine: ProcessingStateMachine,
        client: OcrDispatchClient,
        *,
        categorizer: ErrorCategorizer | None = None,
        metrics: MetricsClient | None = None,
    ) -> None:
        self.store = store
        self.state_machine = state_machine
        self.client = client
        self.categorizer = categorizer or ErrorCategorizer()
        self.metrics = metrics or NullMetrics()

    def __call__(self, data: bytes) -> None:
        self.handle(ProcessDocumentMessage.from_pubsub(data))

    def handle(self, message: ProcessDocumentMessage) -> str:
        document = self.store.get(message.document_id)
        if document is None:
            structured_log(
                LOG,
                logging.ERROR,
                "dispatch_document_not_found",
                document_id=message.document_id,
            )
            return "not_found"
        outcome = self.dispatch(document)
        self.metrics.increment("dispatch", component="dispatch", outcome=outcome)
        return outcome

    def dispatch(self, document: DocumentRecord) -> str:
        """Submit ``document`` and record the engine task id.

        Returns the outcome label. Raises when the failure is transient so the
        caller's queue applies its redelivery policy.
        """

        if document.external_task_id:
            structured_log(
                LOG,
                logging.INFO,
                "dispatch_skipped",
                document_id=document.id,
                task_id=document.external_task_id,
                reason="live_task",
            )
            return "skipped"
        if document.processing_status not in DISPATCHABLE_STATUSES:
            structured_log(
                LOG,
                logging.WARNING,
                "dispatch_skipped",
                document_id=document.id,
                current_status=document.processing_status.value,
                reason="not_dispatchable",
            )
            return "skipped"

        try:
            task_id = self.client.submit(document)
        except Exception as exc:
            category = self.categorizer.categorize(exc)
            structured_log(
                LOG,
                logging.ERROR,
                "dispatch_failed",
                document_id=document.id,
                error=str(exc),
                error_type=type(exc).__name__,
                error_category=category.value,
                should_retry=category.is_transient,
            )
            if category.is_transient:
                self.metrics.increment("dispatch", component="dispatch", outcome="transient_error")
                raise
            failed = self.state_machine.mark_failed(document, str(exc) or type(exc).__name__)
            if not failed.applied:
                structured_log(
                    LOG,
                    logging.WARNING,
                    "dispatch_failure_not_recorded",
                    document_id=document.id,
                    reason=failed.reason,
                )
            return "failed"

        result = self.state_machine.mark_queued(document, task_id)
        if not result.applied:
            structured_log(
                LOG,
                logging.WARNING,
                "dispatch_task_not_recorded",
                document_id=document.id,
                task_id=task_id,
                reason=result.reason,
            )
            return "conflict"
        structured_log(
            LOG,
            logging.INFO,
            "document_dispatched",
            document_id=document.id,
            task_id=task_id,
        )
        return "queued"


__all__ = ["DocumentDispatchHandler", "DISPATCHABLE_STATUSES"]
