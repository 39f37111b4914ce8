"""Consecutive-failure circuit breaker guarding OCR engine submissions."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Tuple, Type, TypeVar

from ocrflow.errors import CircuitOpenError
from ocrflow.utils.logging_utils import structured_log

LOG = logging.getLogger("circuit_breaker")

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failures.

    While open every call fails fast with `CircuitOpenError`. Once
    ``reset_timeout`` seconds have passed a single trial call is let through
    (half-open) and concurrent callers keep failing fast until it returns.
    Only exceptions listed in ``trip_on`` count as failures; a trial that
    raises anything else still proves the engine answered and closes the
    circuit.
    """

    def __init__(
        self,
        name: str = "ocr_engine",
        *,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        trip_on: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.trip_on = trip_on
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    def _refresh(self) -> CircuitState:
        # caller holds the lock
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._refresh()

    @property
    def failure_count(self) -> int:
        return self._failures

    def _admit(self) -> bool:
        """Return True when the caller owns the half-open trial."""
        with self._lock:
            state = self._refresh()
            if state is CircuitState.CLOSED:
                return False
            if state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
        raise CircuitOpenError(f"Circuit {self.name} is open; OCR engine calls suspended")

    def call(self, func: Callable[[], T]) -> T:
        trial = self._admit()
        try:
            result = func()
        except self.trip_on:
            self.record_failure()
            raise
        except Exception:
            if trial:
                self.record_success()
            raise
        finally:
            if trial:
                with self._lock:
                    self._trial_in_flight = False
        self.record_success()
        return result

    def record_success(self) -> None:
        with self._lock:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._failures = 0
        if previous is not CircuitState.CLOSED:
            structured_log(LOG, logging.INFO, "circuit_closed", component=self.name)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            tripped = (
                self._state is CircuitState.HALF_OPEN
                or self._failures >= self.failure_threshold
            )
            if tripped:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
            failures = self._failures
        if tripped:
            structured_log(
                LOG,
                logging.WARNING,
                "circuit_opened",
                component=self.name,
                failure_count=failures,
                threshold=self.failure_threshold,
            )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._opened_at = 0.0
            self._trial_in_flight = False


__all__ = ["CircuitBreaker", "CircuitState"]
