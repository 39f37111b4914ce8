"""OCR engine callback route."""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ocrflow.logging_setup import set_request_id
from ocrflow.services.webhook import SIGNATURE_HEADER, WebhookCallbackHandler
from ocrflow.utils.logging_utils import structured_log

router = APIRouter()

_WEBHOOK_LOG = logging.getLogger("webhook_api")


async def _read_body(request: Request, timeout: float) -> bytes:
    return await asyncio.wait_for(request.body(), timeout=timeout)


@router.post("/ocr/callback")
async def ocr_callback(request: Request):
    handler: WebhookCallbackHandler = request.app.state.webhook_handler
    body_timeout = float(request.app.state.config.webhook_body_timeout)
    webhook_id = uuid.uuid4().hex[:16]
    set_request_id(webhook_id)

    try:
        raw_body = await _read_body(request, body_timeout)
    except asyncio.TimeoutError:
        structured_log(
            _WEBHOOK_LOG,
            logging.WARNING,
            "webhook_body_timeout",
            webhook_id=webhook_id,
            timeout_seconds=body_timeout,
        )
        return JSONResponse({"error": "Timed out reading request body"}, status_code=408)

    outcome = await run_in_threadpool(
        handler.handle,
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        webhook_id=webhook_id,
    )
    return JSONResponse(outcome.body, status_code=outcome.status_code)


__all__ = ["router"]
