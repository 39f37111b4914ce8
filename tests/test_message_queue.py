from __future__ import annotations

from types import SimpleNamespace

from ocrflow.models.messages import ProcessDocumentMessage, RetryFailedTaskMessage
from ocrflow.services.message_queue import (
    PROCESSING_QUEUE,
    RETRY_QUEUE,
    InMemoryMessageQueue,
    create_message_queue,
)
from tests.stubs.ocr_stub import FakeClock


def test_consume_returns_false_when_empty(queue):
    assert queue.consume(PROCESSING_QUEUE, lambda data: None) is False


def test_successful_job_is_removed(queue):
    received = []
    queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D1"))
    assert queue.consume(PROCESSING_QUEUE, received.append)
    assert ProcessDocumentMessage.from_pubsub(received[0]).document_id == "D1"
    assert queue.pending(PROCESSING_QUEUE) == []


def test_queues_are_isolated(queue):
    queue.enqueue(RETRY_QUEUE, RetryFailedTaskMessage(document_id="D1", reason="r"))
    assert queue.consume(PROCESSING_QUEUE, lambda data: None) is False
    assert len(queue.pending(RETRY_QUEUE)) == 1


def test_backoff_doubles_and_caps():
    queue = InMemoryMessageQueue(initial_backoff=1.0, max_backoff=8.0, clock=FakeClock())
    assert [queue.backoff_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 8.0]


def test_failed_job_waits_for_backoff(queue, clock):
    attempts = []

    def _flaky(data):
        attempts.append(data)
        if len(attempts) == 1:
            raise RuntimeError("boom")

    queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D1"))
    assert queue.consume(PROCESSING_QUEUE, _flaky)
    pending = queue.pending(PROCESSING_QUEUE)
    assert pending[0].attempts == 1
    assert pending[0].last_error == "RuntimeError: boom"

    clock.advance(0.5)
    assert not queue.consume(PROCESSING_QUEUE, _flaky)
    clock.advance(0.5)
    assert queue.consume(PROCESSING_QUEUE, _flaky)
    assert len(attempts) == 2
    assert queue.pending(PROCESSING_QUEUE) == []


def test_factory_defaults_to_memory():
    cfg = SimpleNamespace(job_queue_backend="memory", job_max_attempts=7)
    queue = create_message_queue(cfg)
    assert isinstance(queue, InMemoryMessageQueue)
    assert queue.max_attempts == 7
