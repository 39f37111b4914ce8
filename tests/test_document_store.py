from __future__ import annotations

from types import SimpleNamespace

import pytest

from ocrflow.errors import DocumentNotFound
from ocrflow.models.documents import (
    DocumentRecord,
    ProcessingStatus,
    document_from_dict,
    document_status_view,
    document_to_dict,
)
from ocrflow.services.document_store import InMemoryDocumentStore, create_document_store


def test_create_rejects_duplicate_ids(store):
    store.create(DocumentRecord(id="D1"))
    with pytest.raises(ValueError):
        store.create(DocumentRecord(id="D1"))


def test_get_returns_isolated_copy(store):
    store.create(DocumentRecord(id="D1"))
    copy = store.get("D1")
    copy.progress = 99
    assert store.get("D1").progress == 0
    assert store.get("missing") is None


def test_compare_and_set_applies_on_match(store):
    store.create(DocumentRecord(id="D1", processing_status=ProcessingStatus.QUEUED, external_task_id="T1"))
    updated = store.compare_and_set(
        "D1",
        expected_status=ProcessingStatus.QUEUED,
        expected_task_id="T1",
        updates={"processing_status": ProcessingStatus.PROCESSING, "progress": 10},
        history_entry={"from_status": "queued", "to_status": "processing"},
    )
    assert updated is not None
    assert updated.progress == 10
    assert store.get("D1").history == [{"from_status": "queued", "to_status": "processing"}]


def test_compare_and_set_rejects_mismatch(store):
    store.create(DocumentRecord(id="D1", processing_status=ProcessingStatus.QUEUED, external_task_id="T2"))
    result = store.compare_and_set(
        "D1",
        expected_status=ProcessingStatus.QUEUED,
        expected_task_id="T1",
        updates={"progress": 10},
    )
    assert result is None
    assert store.get("D1").progress == 0


def test_compare_and_set_unknown_document(store):
    with pytest.raises(DocumentNotFound):
        store.compare_and_set(
            "ghost", expected_status=ProcessingStatus.UPLOADED, expected_task_id=None, updates={}
        )


def test_compare_and_set_rejects_unknown_fields(store):
    store.create(DocumentRecord(id="D1"))
    with pytest.raises(AttributeError):
        store.compare_and_set(
            "D1", expected_status=ProcessingStatus.UPLOADED, expected_task_id=None, updates={"bogus": 1}
        )


def test_list_by_status(store):
    store.create(DocumentRecord(id="D1", processing_status=ProcessingStatus.FAILED))
    store.create(DocumentRecord(id="D2"))
    assert [doc.id for doc in store.list_by_status(ProcessingStatus.FAILED)] == ["D1"]


def test_record_dict_round_trip_tolerates_unknown_keys():
    document = DocumentRecord(id="D1", processing_status=ProcessingStatus.COMPLETED, ocr_text="X")
    payload = document_to_dict(document)
    assert payload["processing_status"] == "completed"
    payload["legacy_field"] = True
    restored = document_from_dict(payload)
    assert restored == document


def test_status_view_exposes_processing_fields():
    view = document_status_view(
        DocumentRecord(id="D1", processing_status=ProcessingStatus.FAILED, processing_error="Timeout")
    )
    assert view["status"] == "failed"
    assert view["error"] == "Timeout"
    assert view["document_id"] == "D1"


def test_factory_requires_bucket_for_gcs():
    with pytest.raises(RuntimeError):
        create_document_store(SimpleNamespace(document_store_backend="gcs", document_store_bucket=None))
    memory = create_document_store(SimpleNamespace(document_store_backend="memory"))
    assert isinstance(memory, InMemoryDocumentStore)
