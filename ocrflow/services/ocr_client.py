"""HTTP client for the external OCR engine.

Submissions go through a circuit breaker; read-only queue queries are retried
with exponential backoff. Every failure leaves this module as either
`TransientUpstreamFailure` (timeouts, transport errors, 5xx, 429) or
`PermanentFailure` (other 4xx, malformed responses) so callers can route
retry decisions without knowing about httpx.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ocrflow.errors import PermanentFailure, TransientUpstreamFailure
from ocrflow.models.documents import DocumentRecord
from ocrflow.utils.logging_utils import elapsed_ms, structured_log

from .circuit_breaker import CircuitBreaker

LOG = logging.getLogger("ocr_client")

PROCESS_PATH = "/api/v1/ocr/process"
STATISTICS_PATH = "/api/v1/queue/statistics"
STUCK_TASKS_PATH = "/api/v1/tasks/stuck"
RESET_TASK_PATH = "/api/v1/tasks/{task_id}/reset"

# ISO 639-1 codes used on documents -> engine language packs.
LANGUAGE_CODES: Dict[str, str] = {
    "en": "eng",
    "de": "deu",
    "fr": "fra",
    "es": "spa",
    "it": "ita",
    "pt": "por",
    "pl": "pol",
}

_TRANSIENT_STATUS = {408, 429}


def map_language(code: str | None, default: str = "pl") -> str:
    language = (code or default or "pl").strip().lower()
    return LANGUAGE_CODES.get(language, language)


class OcrDispatchClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        stats_timeout: float = 10.0,
        default_language: str = "pl",
        breaker: CircuitBreaker | None = None,
        read_attempts: int = 3,
        read_backoff: float = 0.5,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("OCR service base URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.stats_timeout = stats_timeout
        self.default_language = default_language
        self.breaker = breaker or CircuitBreaker(trip_on=(TransientUpstreamFailure,))
        self.read_attempts = max(1, read_attempts)
        self.read_backoff = read_backoff
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    @classmethod
    def from_config(cls, cfg, *, client: httpx.Client | None = None) -> "OcrDispatchClient":
        breaker = CircuitBreaker(
            trip_on=(TransientUpstreamFailure,),
            failure_threshold=cfg.circuit_breaker_failure_threshold,
            reset_timeout=cfg.circuit_breaker_reset_timeout,
        )
        return cls(
            cfg.ocr_service_url,
            timeout=cfg.ocr_request_timeout,
            stats_timeout=cfg.ocr_stats_timeout,
            default_language=cfg.ocr_default_language,
            breaker=breaker,
            client=client,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ submit
    def submit(self, document: DocumentRecord) -> str:
        """Send ``document`` to the engine and return the engine's task id."""

        if not document.file_path:
            raise PermanentFailure(f"Document {document.id} has no stored file path")
        payload = {
            "file_path": document.file_path,
            "language": map_language(document.language, self.default_language),
            "document_id": document.id,
        }
        data = self.breaker.call(
            lambda: self._request("POST", PROCESS_PATH, timeout=self.timeout, data=payload)
        )
        task_id = data.get("task_id")
        if not task_id:
            raise PermanentFailure("OCR engine response is missing task_id")
        return str(task_id)

    # ----------------------------------------------------------------- queries
    def get_queue_statistics(self) -> Dict[str, Any]:
        return self._read(STATISTICS_PATH)

    def find_stuck_tasks(self, timeout_seconds: int) -> List[str]:
        data = self._read(STUCK_TASKS_PATH, params={"timeout_seconds": int(timeout_seconds)})
        tasks = data.get("stuck_tasks")
        if not isinstance(tasks, list):
            structured_log(LOG, logging.WARNING, "stuck_tasks_field_missing", timeout_seconds=timeout_seconds)
            return []
        return [str(task) for task in tasks]

    def reset_stuck_task(self, task_id: str) -> bool:
        path = RESET_TASK_PATH.format(task_id=task_id)
        try:
            self._request("POST", path, timeout=self.stats_timeout)
        except (TransientUpstreamFailure, PermanentFailure) as exc:
            structured_log(LOG, logging.WARNING, "stuck_task_reset_failed", task_id=task_id, error=str(exc))
            return False
        structured_log(LOG, logging.INFO, "stuck_task_reset", task_id=task_id)
        return True

    # ---------------------------------------------------------------- internal
    def _read(self, path: str, *, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.read_attempts),
            wait=wait_exponential(multiplier=self.read_backoff, max=8),
            retry=retry_if_exception_type(TransientUpstreamFailure),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._request("GET", path, timeout=self.stats_timeout, params=params)
        raise AssertionError("unreachable")  # pragma: no cover

    def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        params: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            response = self._client.request(method, path, params=params, data=data, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise TransientUpstreamFailure(f"OCR engine request timed out: {method} {path}") from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamFailure(f"OCR engine unreachable: {exc}") from exc

        status = response.status_code
        structured_log(
            LOG,
            logging.DEBUG,
            "ocr_engine_response",
            status=status,
            latency_ms=elapsed_ms(started),
        )
        if status >= 500 or status in _TRANSIENT_STATUS:
            raise TransientUpstreamFailure(f"OCR engine returned status code: {status}")
        if status >= 400:
            raise PermanentFailure(f"OCR engine rejected request with status code: {status}")
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise PermanentFailure("OCR engine returned malformed JSON") from exc
        if not isinstance(body, dict):
            raise PermanentFailure("OCR engine returned an unexpected payload")
        return body


__all__ = ["OcrDispatchClient", "LANGUAGE_CODES", "map_language"]
