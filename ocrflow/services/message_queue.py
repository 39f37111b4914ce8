"""Internal job queue transports.

Handlers never talk to a transport directly; they receive the raw message
bytes and either return (job complete) or raise (job redelivered). The
in-memory transport mirrors the broker semantics closely enough for tests:
exponential redelivery backoff and a dead-letter list once the attempt budget
is exhausted.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict

from google.cloud import pubsub_v1  # type: ignore

from ocrflow.models.messages import JobMessage
from ocrflow.utils.logging_utils import structured_log

from .interfaces import JobHandler, MessageQueue

LOG = logging.getLogger("message_queue")

PROCESSING_QUEUE = "processing"
RETRY_QUEUE = "retry"
INDEXING_QUEUE = "indexing"


@dataclass(slots=True)
class QueuedJob:
    message_id: str
    data: bytes
    attributes: Dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    available_at: float = 0.0
    last_error: str | None = None


class InMemoryMessageQueue(MessageQueue):
    """Thread-safe queue with redelivery backoff and per-queue dead letters."""

    def __init__(
        self,
        *,
        max_attempts: int = 5,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._clock = clock
        self._queues: Dict[str, Deque[QueuedJob]] = {}
        self._dead_letters: Dict[str, list[QueuedJob]] = {}
        self._lock = threading.Lock()

    def enqueue(self, queue: str, message: JobMessage) -> str:
        data, attributes = message.to_pubsub()
        job = QueuedJob(message_id=message.message_id, data=data, attributes=attributes)
        with self._lock:
            self._queues.setdefault(queue, deque()).append(job)
        LOG.info(
            "job_enqueued",
            extra={"queue": queue, "message_id": job.message_id, "document_id": message.document_id},
        )
        return job.message_id

    def consume(self, queue: str, handler: JobHandler) -> bool:
        job = self._take(queue)
        if job is None:
            return False
        job.attempts += 1
        try:
            handler(job.data)
        except Exception as exc:  # noqa: BLE001 - redelivery is the queue's contract
            self._redeliver_or_dead_letter(queue, job, exc)
        return True

    def backoff_for(self, attempts: int) -> float:
        return min(self.max_backoff, self.initial_backoff * (2 ** max(0, attempts - 1)))

    def pending(self, queue: str) -> list[QueuedJob]:
        with self._lock:
            return list(self._queues.get(queue, ()))

    def dead_letters(self, queue: str) -> list[QueuedJob]:
        with self._lock:
            return list(self._dead_letters.get(queue, ()))

    def _take(self, queue: str) -> QueuedJob | None:
        now = self._clock()
        with self._lock:
            jobs = self._queues.get(queue)
            if not jobs:
                return None
            for job in list(jobs):
                if job.available_at <= now:
                    jobs.remove(job)
                    return job
        return None

    def _redeliver_or_dead_letter(self, queue: str, job: QueuedJob, exc: Exception) -> None:
        job.last_error = f"{type(exc).__name__}: {exc}"
        with self._lock:
            if job.attempts >= self.max_attempts:
                self._dead_letters.setdefault(queue, []).append(job)
                dead = True
            else:
                job.available_at = self._clock() + self.backoff_for(job.attempts)
                self._queues.setdefault(queue, deque()).append(job)
                dead = False
        structured_log(
            LOG,
            logging.ERROR if dead else logging.WARNING,
            "job_dead_lettered" if dead else "job_redelivery_scheduled",
            queue=queue,
            attempt=job.attempts,
            document_id=job.attributes.get("document_id"),
            error=job.last_error,
        )


class PubSubMessageQueue(MessageQueue):  # pragma: no cover - depends on GCP services
    """Pub/Sub transport: ack on success, nack so subscription policy retries."""

    def __init__(
        self,
        *,
        project_id: str,
        topics: Dict[str, str],
        subscriptions: Dict[str, str],
        publisher: pubsub_v1.PublisherClient | None = None,
        subscriber: pubsub_v1.SubscriberClient | None = None,
        publish_timeout: float = 30.0,
        pull_timeout: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self.topics = topics
        self.subscriptions = subscriptions
        self.publisher = publisher or pubsub_v1.PublisherClient()
        self.subscriber = subscriber or pubsub_v1.SubscriberClient()
        self.publish_timeout = publish_timeout
        self.pull_timeout = pull_timeout

    def enqueue(self, queue: str, message: JobMessage) -> str:
        topic_path = self.publisher.topic_path(self.project_id, self.topics[queue])
        data, attributes = message.to_pubsub()
        future = self.publisher.publish(topic_path, data, **attributes)
        return future.result(timeout=self.publish_timeout)

    def consume(self, queue: str, handler: JobHandler) -> bool:
        subscription = self.subscriber.subscription_path(self.project_id, self.subscriptions[queue])
        response = self.subscriber.pull(
            request={"subscription": subscription, "max_messages": 1},
            timeout=self.pull_timeout,
        )
        if not response.received_messages:
            return False
        received = response.received_messages[0]
        try:
            handler(received.message.data)
        except Exception as exc:  # noqa: BLE001 - nack hands the job back to Pub/Sub
            structured_log(
                LOG,
                logging.WARNING,
                "job_nacked",
                queue=queue,
                attempt=getattr(received, "delivery_attempt", None),
                error=f"{type(exc).__name__}: {exc}",
            )
            self.subscriber.modify_ack_deadline(
                request={
                    "subscription": subscription,
                    "ack_ids": [received.ack_id],
                    "ack_deadline_seconds": 0,
                }
            )
            return True
        self.subscriber.acknowledge(request={"subscription": subscription, "ack_ids": [received.ack_id]})
        return True


def create_message_queue(cfg) -> MessageQueue:
    """Instantiate the configured job queue transport."""

    backend = (cfg.job_queue_backend or "memory").lower()
    if backend == "pubsub":
        if not cfg.project_id:
            raise RuntimeError("PROJECT_ID required when JOB_QUEUE_BACKEND=pubsub")
        return PubSubMessageQueue(
            project_id=cfg.project_id,
            topics={
                PROCESSING_QUEUE: cfg.processing_topic,
                RETRY_QUEUE: cfg.retry_topic,
                INDEXING_QUEUE: cfg.indexing_topic,
            },
            subscriptions={
                PROCESSING_QUEUE: cfg.processing_subscription,
                RETRY_QUEUE: cfg.retry_subscription,
            },
        )
    return InMemoryMessageQueue(max_attempts=cfg.job_max_attempts)


__all__ = [
    "PROCESSING_QUEUE",
    "RETRY_QUEUE",
    "INDEXING_QUEUE",
    "QueuedJob",
    "InMemoryMessageQueue",
    "PubSubMessageQueue",
    "create_message_queue",
]
