"""FastAPI application entrypoint for the OCR processing coordinator."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ocrflow.api import build_api_router
from ocrflow.config import AppConfig, get_config, parse_bool
from ocrflow.errors import OcrFlowError
from ocrflow.logging_setup import configure_logging
from ocrflow.services.dispatch import DocumentDispatchHandler
from ocrflow.services.document_store import DocumentStore, create_document_store
from ocrflow.services.error_categorizer import ErrorCategorizer
from ocrflow.services.interfaces import MessageQueue, MetricsClient
from ocrflow.services.message_queue import (
    PROCESSING_QUEUE,
    RETRY_QUEUE,
    InMemoryMessageQueue,
    create_message_queue,
)
from ocrflow.services.metrics import NullMetrics, PrometheusMetrics
from ocrflow.services.monitoring import QueueMonitoringService
from ocrflow.services.ocr_client import OcrDispatchClient
from ocrflow.services.retry import ManualRetryHandler
from ocrflow.services.state_machine import ProcessingStateMachine
from ocrflow.services.webhook import WebhookCallbackHandler
from ocrflow.services.worker import QueueWorker
from ocrflow.utils.logging_utils import structured_log

DEBUG_ENABLED = any(arg == "--debug" for arg in sys.argv) or parse_bool(os.getenv("DEBUG", "false"))
LOG_LEVEL = logging.DEBUG if DEBUG_ENABLED else logging.INFO

_API_LOG = logging.getLogger("api")

IN_PROCESS_IDLE_SLEEP = 0.2


def _health_payload() -> dict[str, str]:
    return {"status": "ok"}


@dataclass
class ServiceComponents:
    document_store: DocumentStore
    message_queue: MessageQueue
    ocr_client: OcrDispatchClient
    state_machine: ProcessingStateMachine
    dispatch_handler: DocumentDispatchHandler
    retry_handler: ManualRetryHandler
    webhook_handler: WebhookCallbackHandler
    monitoring_service: QueueMonitoringService


def build_components(cfg: AppConfig, *, metrics: MetricsClient | None = None) -> ServiceComponents:
    """Build the processing object graph.

    The HTTP app and the CLI queue workers share this wiring so both sides
    agree on backends and collaborators.
    """

    metrics = metrics or NullMetrics()
    store = create_document_store(cfg)
    queue = create_message_queue(cfg)
    ocr_client = OcrDispatchClient.from_config(cfg)
    state_machine = ProcessingStateMachine(store, metrics=metrics)
    dispatcher = DocumentDispatchHandler(
        store,
        state_machine,
        ocr_client,
        categorizer=ErrorCategorizer(),
        metrics=metrics,
    )

    return ServiceComponents(
        document_store=store,
        message_queue=queue,
        ocr_client=ocr_client,
        state_machine=state_machine,
        dispatch_handler=dispatcher,
        retry_handler=ManualRetryHandler(store, state_machine, dispatcher, metrics=metrics),
        webhook_handler=WebhookCallbackHandler(
            store,
            state_machine,
            queue,
            secret=cfg.ocr_webhook_secret,
            metrics=metrics,
        ),
        monitoring_service=QueueMonitoringService.from_config(cfg, ocr_client, metrics=metrics),
    )


def _in_process_worker(app: FastAPI) -> QueueWorker:
    # Handlers are looked up per job so replacements on app.state take effect.
    return QueueWorker(
        app.state.message_queue,
        {
            PROCESSING_QUEUE: lambda data: app.state.dispatch_handler(data),
            RETRY_QUEUE: lambda data: app.state.retry_handler(data),
        },
        idle_sleep=IN_PROCESS_IDLE_SLEEP,
        name="in_process_worker",
    )


@asynccontextmanager
async def _lifespan(app: FastAPI):
    worker: QueueWorker | None = None
    if isinstance(app.state.message_queue, InMemoryMessageQueue):
        structured_log(
            _API_LOG,
            logging.WARNING,
            "in_process_worker_enabled",
            component="api",
            reason="JOB_QUEUE_BACKEND=memory; queued jobs are lost on restart",
        )
        worker = _in_process_worker(app)
        worker.start()
    try:
        yield
    finally:
        if worker is not None:
            worker.stop()
        app.state.ocr_client.close()


def create_app() -> FastAPI:
    configure_logging(level=LOG_LEVEL)
    get_config.cache_clear()
    cfg = get_config()
    cfg.validate_required()

    app = FastAPI(title="OCR Processing Coordinator", version="1.0.0", lifespan=_lifespan)
    app.state.config = cfg
    if cfg.enable_metrics:
        app.state.metrics = PrometheusMetrics.instrument_app(app)
    else:
        app.state.metrics = NullMetrics()
    components = build_components(cfg, metrics=app.state.metrics)
    for name, value in vars(components).items():
        setattr(app.state, name, value)
    app.state.monitoring_api_token = cfg.monitoring_api_token

    @app.exception_handler(OcrFlowError)
    async def _service_error_handler(_r: Request, exc: OcrFlowError):
        structured_log(
            _API_LOG,
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "request_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            status=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(HTTPException)
    async def _http_error_handler(_r: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.get("/healthz", summary="Healthz")
    async def healthz():
        return _health_payload()

    app.include_router(build_api_router())

    structured_log(
        _API_LOG,
        logging.INFO,
        "service_bootstrap",
        component="api",
        status="ready",
    )
    return app


__all__ = ["create_app", "build_components", "ServiceComponents"]
