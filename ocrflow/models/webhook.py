"""Webhook callback payloads sent by the OCR engine.

The body is a tagged union keyed on ``status``; each variant validates its own
fields before any document state is touched so a malformed variant can never
produce a partial update.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)

REQUIRED_CALLBACK_FIELDS = ("task_id", "document_id", "status")


class _CallbackBase(BaseModel):
    document_id: str = Field(min_length=1)
    task_id: str = Field(min_length=1)

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)


class ProcessingCallback(_CallbackBase):
    status: Literal["processing"]
    progress: int | None = Field(default=None, ge=0, le=100)
    message: str | None = Field(
        default=None, validation_alias=AliasChoices("message", "current_operation")
    )


class CategoryResult(BaseModel):
    primary_category: str | None = None

    model_config = ConfigDict(extra="allow")


class OcrResult(BaseModel):
    text: str | None = None
    confidence_score: float | None = Field(
        default=None, validation_alias=AliasChoices("confidence_score", "confidence")
    )
    language: str | None = None
    category: CategoryResult | None = None
    metadata: dict[str, Any] | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("confidence_score")
    @classmethod
    def _normalise_confidence(cls, value: float | None) -> float | None:
        if value is None:
            return None
        if value < 0:
            raise ValueError("confidence_score must not be negative")
        if value > 1.0:
            value = value / 100.0
        if value > 1.0:
            raise ValueError("confidence_score must be a fraction or a percentage")
        return value


class CompletedCallback(_CallbackBase):
    status: Literal["completed"]
    result: OcrResult = Field(default_factory=OcrResult)
    metadata: dict[str, Any] | None = None

    def flat_metadata(self) -> dict[str, Any]:
        """Top-level and result-level metadata merged into one flat mapping."""
        merged: dict[str, Any] = {}
        if self.result.metadata:
            merged.update(self.result.metadata)
        if self.metadata:
            merged.update(self.metadata)
        return merged


class FailedCallback(_CallbackBase):
    status: Literal["failed"]
    error: str = "OCR processing failed"

    @field_validator("error", mode="before")
    @classmethod
    def _default_blank_error(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "OCR processing failed"
        return value


CallbackPayload = Annotated[
    Union[ProcessingCallback, CompletedCallback, FailedCallback],
    Field(discriminator="status"),
]

callback_adapter: TypeAdapter[CallbackPayload] = TypeAdapter(CallbackPayload)


__all__ = [
    "REQUIRED_CALLBACK_FIELDS",
    "ProcessingCallback",
    "CompletedCallback",
    "FailedCallback",
    "OcrResult",
    "CategoryResult",
    "CallbackPayload",
    "callback_adapter",
]
