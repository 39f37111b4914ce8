"""Document processing routes: status, dispatch and manual retry."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ocrflow.models.documents import ProcessingStatus, document_status_view
from ocrflow.models.messages import ProcessDocumentMessage, RetryFailedTaskMessage
from ocrflow.services.document_store import DocumentStore
from ocrflow.services.interfaces import MessageQueue
from ocrflow.services.message_queue import PROCESSING_QUEUE, RETRY_QUEUE
from ocrflow.utils.logging_utils import structured_log

from .auth import require_operator_token

router = APIRouter(dependencies=[Depends(require_operator_token)])

_DOCUMENTS_LOG = logging.getLogger("documents_api")


class RetryRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)
    requested_by: str | None = Field(default=None, max_length=200)


def _load(request: Request, document_id: str):
    store: DocumentStore = request.app.state.document_store
    document = store.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.get("/{document_id}/processing-status")
async def processing_status(request: Request, document_id: str):
    return document_status_view(_load(request, document_id))


@router.post("/{document_id}/process")
async def process_document(request: Request, document_id: str):
    document = _load(request, document_id)
    dispatchable = document.processing_status is ProcessingStatus.UPLOADED or (
        document.processing_status is ProcessingStatus.QUEUED and not document.external_task_id
    )
    if not dispatchable:
        raise HTTPException(
            status_code=409,
            detail=f"Document cannot be dispatched from status {document.processing_status.value}",
        )
    queue: MessageQueue = request.app.state.message_queue
    message_id = queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id=document.id))
    structured_log(_DOCUMENTS_LOG, logging.INFO, "dispatch_requested", document_id=document.id)
    return JSONResponse(
        {"document_id": document.id, "message_id": message_id, "status": "accepted"},
        status_code=202,
    )


@router.post("/{document_id}/retry-processing")
async def retry_processing(
    request: Request,
    document_id: str,
    payload: RetryRequest | None = Body(default=None),
):
    document = _load(request, document_id)
    if document.processing_status is not ProcessingStatus.FAILED:
        raise HTTPException(
            status_code=400,
            detail=f"Only failed documents can be retried (current status: {document.processing_status.value})",
        )
    payload = payload or RetryRequest()
    message = RetryFailedTaskMessage(
        document_id=document.id,
        reason=payload.reason or "Manual retry requested",
        requested_by=payload.requested_by or "api",
    )
    queue: MessageQueue = request.app.state.message_queue
    message_id = queue.enqueue(RETRY_QUEUE, message)
    structured_log(
        _DOCUMENTS_LOG,
        logging.INFO,
        "retry_requested",
        document_id=document.id,
        reason=message.reason,
        requested_by=message.requested_by,
    )
    return JSONResponse(
        {
            "document_id": document.id,
            "message_id": message_id,
            "status": "accepted",
            "previous_error": document.processing_error,
        },
        status_code=202,
    )


__all__ = ["router"]
