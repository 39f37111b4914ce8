"""Bearer-token guard for operator endpoints."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request


def require_operator_token(request: Request) -> str:
    expected = getattr(request.app.state, "monitoring_api_token", None)
    header = request.headers.get("authorization", "")
    scheme, _, provided = header.partition(" ")
    provided = provided.strip()
    if (
        not expected
        or scheme.lower() != "bearer"
        or not provided
        or not secrets.compare_digest(provided.encode("utf-8", "surrogateescape"), expected.encode("utf-8"))
    ):
        raise HTTPException(status_code=401, detail="Missing or invalid operator token")
    return provided


__all__ = ["require_operator_token"]
