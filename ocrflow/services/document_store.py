"""Document record persistence with compare-and-set updates.

All status mutations go through `compare_and_set`, which applies an update only
while the stored record still has the expected ``processing_status`` and
``external_task_id``. Duplicate webhook deliveries racing on the same document
therefore cannot both win a transition.

* `InMemoryDocumentStore`: thread-safe store for tests and local development.
* `GCSDocumentStore`: one JSON blob per document; writes use
  ``if_generation_match`` so the expected-field check and the write are atomic.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Protocol

from google.api_core import exceptions as gexc  # type: ignore
from google.cloud import storage  # type: ignore

from ocrflow.errors import DocumentNotFound
from ocrflow.models.documents import (
    DocumentRecord,
    ProcessingStatus,
    TransitionEntry,
    clone_document,
    document_from_dict,
    document_to_dict,
)

LOG = logging.getLogger("document_store")

_CAS_WRITE_ATTEMPTS = 5


class DocumentStore(Protocol):
    """Abstract persistence interface for document processing records."""

    def create(self, document: DocumentRecord) -> DocumentRecord:
        ...

    def get(self, document_id: str) -> DocumentRecord | None:
        ...

    def compare_and_set(
        self,
        document_id: str,
        *,
        expected_status: ProcessingStatus,
        expected_task_id: str | None,
        updates: Dict[str, Any],
        history_entry: TransitionEntry | None = None,
    ) -> DocumentRecord | None:
        ...

    def list_by_status(self, status: ProcessingStatus) -> list[DocumentRecord]:
        ...


def _matches(document: DocumentRecord, status: ProcessingStatus, task_id: str | None) -> bool:
    return document.processing_status == status and document.external_task_id == task_id


def _apply(document: DocumentRecord, updates: Dict[str, Any], history_entry: TransitionEntry | None) -> None:
    for key, value in updates.items():
        if not hasattr(document, key):
            raise AttributeError(f"DocumentRecord has no field {key!r}")
        setattr(document, key, value)
    document.updated_at = time.time()
    if history_entry:
        document.history.append(history_entry)


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory store used for tests and local development."""

    def __init__(self) -> None:
        self._documents: Dict[str, DocumentRecord] = {}
        self._lock = threading.RLock()

    def create(self, document: DocumentRecord) -> DocumentRecord:
        with self._lock:
            if document.id in self._documents:
                raise ValueError(f"Document already exists: {document.id}")
            self._documents[document.id] = clone_document(document)
            LOG.info("document_created", extra={"document_id": document.id})
            return clone_document(document)

    def get(self, document_id: str) -> DocumentRecord | None:
        with self._lock:
            document = self._documents.get(document_id)
            return None if document is None else clone_document(document)

    def compare_and_set(
        self,
        document_id: str,
        *,
        expected_status: ProcessingStatus,
        expected_task_id: str | None,
        updates: Dict[str, Any],
        history_entry: TransitionEntry | None = None,
    ) -> DocumentRecord | None:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            if not _matches(document, expected_status, expected_task_id):
                return None
            candidate = clone_document(document)
            _apply(candidate, updates, history_entry)
            self._documents[document_id] = candidate
            return clone_document(candidate)

    def list_by_status(self, status: ProcessingStatus) -> list[DocumentRecord]:
        with self._lock:
            return [
                clone_document(doc)
                for doc in self._documents.values()
                if doc.processing_status == status
            ]


class GCSDocumentStore(DocumentStore):  # pragma: no cover - exercised via integration
    """GCS-backed store; generation preconditions make each write a CAS."""

    def __init__(self, bucket: str, prefix: str = "documents", *, client: Any | None = None) -> None:
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket)
        self._prefix = prefix.rstrip("/")

    def create(self, document: DocumentRecord) -> DocumentRecord:
        try:
            self._write(document, if_generation_match=0)
        except gexc.PreconditionFailed as exc:
            raise ValueError(f"Document already exists: {document.id}") from exc
        LOG.info("document_created", extra={"document_id": document.id})
        return clone_document(document)

    def get(self, document_id: str) -> DocumentRecord | None:
        blob = self._blob(document_id)
        if not blob.exists():
            return None
        return document_from_dict(json.loads(blob.download_as_bytes().decode("utf-8")))

    def compare_and_set(
        self,
        document_id: str,
        *,
        expected_status: ProcessingStatus,
        expected_task_id: str | None,
        updates: Dict[str, Any],
        history_entry: TransitionEntry | None = None,
    ) -> DocumentRecord | None:
        for attempt in range(_CAS_WRITE_ATTEMPTS):
            blob = self._blob(document_id)
            try:
                blob.reload()
            except gexc.NotFound as exc:
                raise DocumentNotFound(document_id) from exc
            generation = blob.generation
            document = document_from_dict(json.loads(blob.download_as_bytes().decode("utf-8")))
            if not _matches(document, expected_status, expected_task_id):
                return None
            _apply(document, updates, history_entry)
            try:
                self._write(document, if_generation_match=generation)
                return document
            except gexc.PreconditionFailed:
                time.sleep(0.1 * (attempt + 1))
        raise RuntimeError(f"Failed to update document {document_id} after multiple attempts")

    def list_by_status(self, status: ProcessingStatus) -> list[DocumentRecord]:
        documents: list[DocumentRecord] = []
        for blob in self._client.list_blobs(self._bucket, prefix=f"{self._prefix}/"):
            document = document_from_dict(json.loads(blob.download_as_bytes().decode("utf-8")))
            if document.processing_status == status:
                documents.append(document)
        return documents

    def _blob(self, document_id: str):
        return self._bucket.blob(f"{self._prefix}/{document_id}.json")

    def _write(self, document: DocumentRecord, *, if_generation_match: int | None) -> None:
        payload = json.dumps(document_to_dict(document), separators=(",", ":"), sort_keys=True)
        kwargs: Dict[str, Any] = {"content_type": "application/json"}
        if if_generation_match is not None:
            kwargs["if_generation_match"] = if_generation_match
        self._blob(document.id).upload_from_string(payload, **kwargs)


def create_document_store(cfg) -> DocumentStore:
    """Instantiate the configured document store backend."""

    backend = (cfg.document_store_backend or "memory").lower()
    if backend == "gcs":
        if not cfg.document_store_bucket:
            raise RuntimeError("DOCUMENT_STORE_BUCKET required when DOCUMENT_STORE_BACKEND=gcs")
        return GCSDocumentStore(bucket=cfg.document_store_bucket, prefix=cfg.document_store_prefix)
    return InMemoryDocumentStore()


__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "GCSDocumentStore",
    "create_document_store",
]
