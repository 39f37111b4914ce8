"""Operator routes for OCR queue statistics, health and stuck tasks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ocrflow.errors import ServiceUnavailable
from ocrflow.services.monitoring import QueueMonitoringService

from .auth import require_operator_token

router = APIRouter(dependencies=[Depends(require_operator_token)])


def _service(request: Request) -> QueueMonitoringService:
    return request.app.state.monitoring_service


@router.get("/queue/statistics")
async def queue_statistics(request: Request):
    return await run_in_threadpool(_service(request).get_statistics)


@router.get("/queue/health")
async def queue_health(request: Request):
    try:
        return await run_in_threadpool(_service(request).get_health)
    except ServiceUnavailable as exc:
        return JSONResponse({"status": "unavailable", "error": str(exc)}, status_code=503)


@router.get("/queue/stuck-tasks")
async def stuck_tasks(request: Request, timeout_seconds: int | None = Query(default=None)):
    service = _service(request)
    timeout = service.resolve_timeout(timeout_seconds)
    tasks = await run_in_threadpool(service.find_stuck_tasks, timeout)
    return {"stuck_tasks": tasks, "count": len(tasks), "timeout_seconds": timeout}


@router.post("/queue/stuck-tasks/cleanup")
async def cleanup_stuck_tasks(
    request: Request,
    timeout_seconds: int | None = Query(default=None),
    dry_run: bool = Query(default=False),
):
    service = _service(request)
    report = await run_in_threadpool(service.cleanup_stuck_tasks, timeout_seconds, dry_run=dry_run)
    return JSONResponse(report.to_dict(), status_code=200 if report.succeeded else 207)


__all__ = ["router"]
