from __future__ import annotations

import pytest

from ocrflow.config import get_config
from ocrflow.services.dispatch import DocumentDispatchHandler
from ocrflow.services.document_store import InMemoryDocumentStore
from ocrflow.services.message_queue import InMemoryMessageQueue
from ocrflow.services.retry import ManualRetryHandler
from ocrflow.services.state_machine import ProcessingStateMachine
from ocrflow.services.webhook import WebhookCallbackHandler
from ocrflow.utils import secrets as secrets_mod
from tests.stubs.documents import OPERATOR_TOKEN, WEBHOOK_SECRET
from tests.stubs.ocr_stub import FakeClock, StubOcrClient


@pytest.fixture(autouse=True)
def _reset_cached_state():
    get_config.cache_clear()
    secrets_mod.clear_secret_cache()
    yield
    get_config.cache_clear()
    secrets_mod.clear_secret_cache()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock: FakeClock) -> InMemoryMessageQueue:
    return InMemoryMessageQueue(max_attempts=3, initial_backoff=1.0, max_backoff=8.0, clock=clock)


@pytest.fixture
def state_machine(store) -> ProcessingStateMachine:
    return ProcessingStateMachine(store)


@pytest.fixture
def ocr_client() -> StubOcrClient:
    return StubOcrClient()


@pytest.fixture
def dispatcher(store, state_machine, ocr_client) -> DocumentDispatchHandler:
    return DocumentDispatchHandler(store, state_machine, ocr_client)  # type: ignore[arg-type]


@pytest.fixture
def retry_handler(store, state_machine, dispatcher) -> ManualRetryHandler:
    return ManualRetryHandler(store, state_machine, dispatcher)


@pytest.fixture
def webhook_handler(store, state_machine, queue) -> WebhookCallbackHandler:
    return WebhookCallbackHandler(store, state_machine, queue, secret=WEBHOOK_SECRET)


@pytest.fixture
def app_env(monkeypatch):
    monkeypatch.setenv("OCR_SERVICE_URL", "http://ocr.test")
    monkeypatch.setenv("OCR_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("MONITORING_API_TOKEN", OPERATOR_TOKEN)
    monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "memory")
    monkeypatch.setenv("JOB_QUEUE_BACKEND", "memory")
    monkeypatch.setenv("ENABLE_METRICS", "false")
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
