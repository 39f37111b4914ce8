"""JSON logging for the API process and queue workers.

Every line carries the active correlation id: the webhook id while a callback
is being handled, or the queue message id inside a worker. Bind it with
`set_request_id(id)` for the rest of the current context, or scope it with
`with request_context(id):` around a single unit of work.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        correlation = request_id_var.get()
        if correlation:
            payload["request_id"] = correlation
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _json_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if isinstance(h.formatter, JsonFormatter)]


def configure_logging(level: int | str = logging.INFO, force: bool = False) -> None:
    """Attach a stdout JSON handler to the root logger.

    Repeated calls only adjust the level unless ``force`` is set, which drops
    whatever handlers are installed first (uvicorn adds its own).
    """
    root = logging.getLogger()
    if force:
        for existing in list(root.handlers):
            root.removeHandler(existing)
    root.setLevel(level)
    installed = _json_handlers(root)
    if installed:
        for existing in installed:
            existing.setLevel(level)
        return
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(JsonFormatter())
    root.addHandler(stream)


def set_request_id(rid: str | None) -> None:
    request_id_var.set(rid)


@contextmanager
def request_context(rid: str | None) -> Iterator[None]:
    token = request_id_var.set(rid)
    try:
        yield
    finally:
        request_id_var.reset(token)


__all__ = [
    "JsonFormatter",
    "configure_logging",
    "request_context",
    "request_id_var",
    "set_request_id",
]
