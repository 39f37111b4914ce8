"""Typed job-queue messages exchanged between the API, workers and indexing."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Mapping, Type, TypeVar

ISO8601 = "%Y-%m-%dT%H:%M:%S.%fZ"

_M = TypeVar("_M", bound="JobMessage")


def _now_utc() -> str:
    return datetime.now(tz=timezone.utc).strftime(ISO8601)


def _encode(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")


def _decode(data: bytes | str) -> dict[str, Any]:
    raw = data.decode("utf-8") if isinstance(data, bytes) else data
    return json.loads(raw)


@dataclass(slots=True)
class JobMessage:
    """Base for queue payloads; subclasses set ``event_type``."""

    event_type: ClassVar[str] = "job"

    document_id: str
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=_now_utc)

    def to_pubsub(self) -> tuple[bytes, dict[str, str]]:
        payload = asdict(self)
        payload["event_type"] = self.event_type
        attributes = {"event_type": self.event_type, "document_id": self.document_id}
        return _encode(payload), attributes

    @classmethod
    def from_pubsub(cls: Type[_M], data: bytes | str) -> _M:
        payload = _decode(data)
        event_type = payload.pop("event_type", cls.event_type)
        if event_type != cls.event_type:
            raise ValueError(f"Expected {cls.event_type} message, got {event_type}")
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass(slots=True)
class ProcessDocumentMessage(JobMessage):
    """Request to dispatch a document to the OCR engine."""

    event_type: ClassVar[str] = "document.process"


@dataclass(slots=True)
class RetryFailedTaskMessage(JobMessage):
    """Operator-issued retry for a failed document, with an audit reason."""

    event_type: ClassVar[str] = "document.retry"

    reason: str | None = None
    requested_by: str | None = None


@dataclass(slots=True)
class IndexDocumentMessage(JobMessage):
    """Handed to the search-indexing collaborator after a successful OCR run."""

    event_type: ClassVar[str] = "document.index"


__all__ = [
    "JobMessage",
    "ProcessDocumentMessage",
    "RetryFailedTaskMessage",
    "IndexDocumentMessage",
]
