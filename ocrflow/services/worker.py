"""Polling consumer that feeds queued jobs to the dispatch and retry handlers.

The CLI ``worker`` command runs it in the foreground against Pub/Sub. The API
process starts one on a daemon thread when the job queue is the in-memory
transport, because no other process can read that queue.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping

from ocrflow.logging_setup import request_context
from ocrflow.utils.logging_utils import structured_log

from .interfaces import JobHandler, MessageQueue

LOG = logging.getLogger("queue_worker")


class QueueWorker:
    def __init__(
        self,
        queue: MessageQueue,
        handlers: Mapping[str, JobHandler],
        *,
        idle_sleep: float = 1.0,
        name: str = "queue-worker",
    ) -> None:
        self.queue = queue
        self.handlers = dict(handlers)
        self.idle_sleep = idle_sleep
        self.name = name
        self.processed = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def poll(self) -> int:
        """Offer one job from each queue to its handler; return how many ran."""
        handled = 0
        for queue_name, handler in self.handlers.items():
            with request_context(f"{queue_name}-{self.processed + 1}"):
                consumed = self.queue.consume(queue_name, handler)
            if consumed:
                handled += 1
                self.processed += 1
        return handled

    def run(self, max_messages: int = 0) -> int:
        while not self._stop.is_set():
            if max_messages and self.processed >= max_messages:
                break
            if not self.poll():
                self._stop.wait(self.idle_sleep)
        return self.processed

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        structured_log(
            LOG,
            logging.INFO,
            "worker_started",
            component=self.name,
            queue=",".join(self.handlers),
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        structured_log(LOG, logging.INFO, "worker_stopped", component=self.name, count=self.processed)


__all__ = ["QueueWorker"]
