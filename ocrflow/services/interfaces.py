"""Shared interfaces used across the OCR coordinator services."""

from __future__ import annotations

from typing import Callable, Protocol

from ocrflow.models.messages import JobMessage

JobHandler = Callable[[bytes], None]


class MessageQueue(Protocol):
    """Internal job queue; in-memory for tests, Pub/Sub in production."""

    def enqueue(self, queue: str, message: JobMessage) -> str: ...

    def consume(self, queue: str, handler: JobHandler) -> bool:
        """Deliver at most one job to ``handler``.

        Returns ``True`` when a job was delivered. A handler exception leaves
        the job unacknowledged so the transport redelivers it per its policy.
        """
        ...


class MetricsClient(Protocol):
    """Interface for emitting metrics to Prometheus."""

    def observe_latency(self, name: str, value: float, **labels: str) -> None: ...

    def increment(self, name: str, amount: int = 1, **labels: str) -> None: ...


__all__ = ["JobHandler", "MessageQueue", "MetricsClient"]
