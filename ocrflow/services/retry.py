"""Operator-triggered retry of failed documents."""

from __future__ import annotations

import logging

from ocrflow.models.documents import DocumentRecord, ProcessingStatus
from ocrflow.models.messages import RetryFailedTaskMessage
from ocrflow.utils.logging_utils import structured_log

from .dispatch import DocumentDispatchHandler
from .document_store import DocumentStore
from .interfaces import MetricsClient
from .metrics import NullMetrics
from .state_machine import ProcessingStateMachine

LOG = logging.getLogger("retry")


def _interrupted_retry(document: DocumentRecord) -> bool:
    """A reset was applied but the follow-up dispatch never recorded a task."""
    return (
        document.processing_status is ProcessingStatus.QUEUED
        and document.external_task_id is None
        and document.last_retry_reason is not None
    )


class ManualRetryHandler:
    def __init__(
        self,
        store: DocumentStore,
        state_machine: ProcessingStateMachine,
        dispatcher: DocumentDispatchHandler,
        *,
        metrics: MetricsClient | None = None,
    ) -> None:
        self.store = store
        self.state_machine = state_machine
        self.dispatcher = dispatcher
        self.metrics = metrics or NullMetrics()

    def __call__(self, data: bytes) -> None:
        self.handle(RetryFailedTaskMessage.from_pubsub(data))

    def handle(self, message: RetryFailedTaskMessage) -> str:
        document = self.store.get(message.document_id)
        if document is None:
            structured_log(
                LOG,
                logging.ERROR,
                "retry_document_not_found",
                document_id=message.document_id,
                reason=message.reason,
            )
            return "not_found"

        if document.processing_status is ProcessingStatus.FAILED:
            structured_log(
                LOG,
                logging.INFO,
                "retry_started",
                document_id=document.id,
                reason=message.reason,
                requested_by=message.requested_by,
                previous_error=document.processing_error,
            )
            reset = self.state_machine.reset_for_retry(document, message.reason)
            if not reset.applied:
                structured_log(
                    LOG,
                    logging.WARNING,
                    "retry_reset_not_applied",
                    document_id=document.id,
                    outcome=reset.reason,
                )
                return "skipped"
            document = reset.document
        elif _interrupted_retry(document):
            structured_log(
                LOG,
                logging.INFO,
                "retry_resumed",
                document_id=document.id,
                reason=document.last_retry_reason,
            )
        else:
            structured_log(
                LOG,
                logging.WARNING,
                "retry_rejected_not_failed",
                document_id=document.id,
                current_status=document.processing_status.value,
                reason=message.reason,
            )
            return "skipped"

        try:
            outcome = self.dispatcher.dispatch(document)
        except Exception as exc:
            structured_log(
                LOG,
                logging.ERROR,
                "retry_dispatch_failed",
                document_id=document.id,
                reason=message.reason,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        self.metrics.increment("retry", component="retry", outcome=outcome)
        structured_log(LOG, logging.INFO, "retry_dispatched", document_id=document.id, outcome=outcome)
        return outcome


__all__ = ["ManualRetryHandler"]
