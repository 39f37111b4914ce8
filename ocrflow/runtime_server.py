"""Launch the coordinator API under uvicorn.

Worker count comes from ``UVICORN_WORKERS`` when set to a positive integer,
otherwise from the CPU count capped at ``MAX_UVICORN_WORKERS``. Webhook
handling is I/O bound, so a handful of workers is enough.
"""

from __future__ import annotations

import multiprocessing
import os

import uvicorn

MAX_UVICORN_WORKERS = 8
DEFAULT_APP = "ocrflow.main:create_app"


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def _worker_count() -> int:
    explicit = _env_int("UVICORN_WORKERS")
    if explicit:
        return explicit
    return max(1, min(MAX_UVICORN_WORKERS, multiprocessing.cpu_count() or 1))


def main() -> None:
    workers = _worker_count()
    uvicorn.run(
        os.getenv("FASTAPI_APP", DEFAULT_APP),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT") or 8080,
        factory=True,
        workers=workers,
        lifespan="on",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":  # pragma: no cover - exercised in runtime
    main()
