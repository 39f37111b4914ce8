"""Routers for the OCR processing coordinator FastAPI application."""

from __future__ import annotations

from fastapi import APIRouter

from .documents import router as documents_router
from .monitoring import router as monitoring_router
from .webhooks import router as webhooks_router


def build_api_router() -> APIRouter:
    """Combine all API routers for inclusion in the FastAPI app."""
    router = APIRouter()
    router.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
    router.include_router(monitoring_router, prefix="/monitoring", tags=["monitoring"])
    router.include_router(documents_router, prefix="/documents", tags=["documents"])
    return router


__all__ = ["build_api_router"]
