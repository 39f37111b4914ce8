"""Document processing record persisted by the document store.

Only the subset of the document entity that the OCR lifecycle touches lives
here: status fields owned by the state machine, the live OCR task id used to
correlate webhook callbacks, and the OCR output populated on completion.
"""
from __future__ import annotations

import copy
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, TypedDict


class ProcessingStatus(str, Enum):
    """Stored processing states. ``stuck`` is derived, never stored."""

    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TransitionEntry(TypedDict, total=False):
    from_status: str
    to_status: str
    task_id: str | None
    reason: str
    timestamp: float


@dataclass(slots=True)
class DocumentRecord:
    id: str
    processing_status: ProcessingStatus = ProcessingStatus.UPLOADED
    progress: int = 0
    current_operation: str | None = None
    processing_error: str | None = None
    external_task_id: str | None = None
    superseded_task_ids: list[str] = field(default_factory=list)
    original_name: str | None = None
    file_path: str | None = None
    language: str | None = None
    ocr_text: str | None = None
    confidence_score: float | None = None
    extracted_metadata: Dict[str, Any] = field(default_factory=dict)
    extracted_date: str | None = None
    extracted_amount: str | None = None
    category: str | None = None
    searchable_content: str | None = None
    retry_count: int = 0
    last_retry_reason: str | None = None
    history: list[TransitionEntry] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    queued_at: float | None = None
    completed_at: float | None = None
    failed_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


def clone_document(document: DocumentRecord) -> DocumentRecord:
    return copy.deepcopy(document)


def document_to_dict(document: DocumentRecord) -> Dict[str, Any]:
    data = asdict(document)
    data["processing_status"] = document.processing_status.value
    return data


def document_from_dict(payload: Dict[str, Any]) -> DocumentRecord:
    data = dict(payload)
    data["processing_status"] = ProcessingStatus(
        data.get("processing_status", ProcessingStatus.UPLOADED.value)
    )
    data["superseded_task_ids"] = list(data.get("superseded_task_ids") or [])
    data["extracted_metadata"] = dict(data.get("extracted_metadata") or {})
    data["history"] = list(data.get("history") or [])
    known = set(DocumentRecord.__dataclass_fields__)
    return DocumentRecord(**{key: value for key, value in data.items() if key in known})


def document_status_view(document: DocumentRecord) -> Dict[str, Any]:
    """Shape processing fields for the status API."""

    return {
        "document_id": document.id,
        "status": document.processing_status.value,
        "progress": document.progress,
        "current_operation": document.current_operation,
        "error": document.processing_error,
        "task_id": document.external_task_id,
        "ocr_text": document.ocr_text,
        "confidence_score": document.confidence_score,
        "category": document.category,
        "extracted_date": document.extracted_date,
        "extracted_amount": document.extracted_amount,
        "retry_count": document.retry_count,
        "updated_at": document.updated_at,
    }


__all__ = [
    "ProcessingStatus",
    "TransitionEntry",
    "DocumentRecord",
    "clone_document",
    "document_to_dict",
    "document_from_dict",
    "document_status_view",
]
