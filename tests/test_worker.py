from __future__ import annotations

import threading

from ocrflow.logging_setup import request_id_var
from ocrflow.models.messages import ProcessDocumentMessage, RetryFailedTaskMessage
from ocrflow.services.message_queue import PROCESSING_QUEUE, RETRY_QUEUE, InMemoryMessageQueue
from ocrflow.services.worker import QueueWorker


def test_poll_offers_one_job_per_queue():
    queue = InMemoryMessageQueue()
    queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D1"))
    queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D2"))
    queue.enqueue(RETRY_QUEUE, RetryFailedTaskMessage(document_id="D3", reason="fixed"))
    seen = []
    worker = QueueWorker(
        queue,
        {
            PROCESSING_QUEUE: lambda data: seen.append((PROCESSING_QUEUE, request_id_var.get())),
            RETRY_QUEUE: lambda data: seen.append((RETRY_QUEUE, request_id_var.get())),
        },
    )

    before = request_id_var.get()
    assert worker.poll() == 2
    assert seen == [(PROCESSING_QUEUE, "processing-1"), (RETRY_QUEUE, "retry-2")]
    assert len(queue.pending(PROCESSING_QUEUE)) == 1
    assert request_id_var.get() == before


def test_run_stops_after_max_messages():
    queue = InMemoryMessageQueue()
    for document_id in ("D1", "D2", "D3"):
        queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id=document_id))
    handled = []
    worker = QueueWorker(
        queue,
        {PROCESSING_QUEUE: lambda data: handled.append(ProcessDocumentMessage.from_pubsub(data).document_id)},
        idle_sleep=0,
    )

    assert worker.run(max_messages=2) == 2
    assert handled == ["D1", "D2"]


def test_background_thread_drains_and_stops():
    queue = InMemoryMessageQueue()
    done = threading.Event()
    worker = QueueWorker(queue, {PROCESSING_QUEUE: lambda data: done.set()}, idle_sleep=0.01)

    worker.start()
    try:
        queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D1"))
        assert done.wait(timeout=5.0)
    finally:
        worker.stop()

    assert worker.processed == 1
    assert queue.pending(PROCESSING_QUEUE) == []
