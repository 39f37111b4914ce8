"""Runtime configuration for the OCR processing coordinator.

Environment variables (names in parentheses) cover the OCR engine contract,
the webhook shared secret, operator access, health thresholds and the
selected document store / job queue backends. Values prefixed with ``sm://``
are resolved through Secret Manager after model initialisation.
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ocrflow.utils.secrets import resolve_secret


def parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class AppConfig(BaseSettings):
    project_id: str = Field('', validation_alias=AliasChoices('PROJECT_ID', 'GOOGLE_CLOUD_PROJECT'))

    # OCR engine wire contract
    ocr_service_url: str = Field('', validation_alias='OCR_SERVICE_URL')
    ocr_request_timeout: float = Field(30.0, validation_alias='OCR_REQUEST_TIMEOUT')
    ocr_stats_timeout: float = Field(10.0, validation_alias='OCR_STATS_TIMEOUT')
    ocr_default_language: str = Field('pl', validation_alias='OCR_DEFAULT_LANGUAGE')

    # Webhook intake
    ocr_webhook_secret: str | None = Field(
        None,
        validation_alias=AliasChoices('OCR_WEBHOOK_SECRET', 'WEBHOOK_SECRET'),
    )
    webhook_body_timeout: float = Field(10.0, validation_alias='WEBHOOK_BODY_TIMEOUT')

    # Operator access to monitoring / retry endpoints
    monitoring_api_token: str | None = Field(None, validation_alias='MONITORING_API_TOKEN')

    # Queue health classification
    queue_stuck_warning_threshold: int = Field(3, validation_alias='QUEUE_STUCK_WARNING_THRESHOLD')
    queue_dlq_critical_threshold: int = Field(20, validation_alias='QUEUE_DLQ_CRITICAL_THRESHOLD')
    stuck_task_timeout_seconds: int = Field(30, validation_alias='STUCK_TASK_TIMEOUT_SECONDS')

    # Document record store
    document_store_backend: str = Field('memory', validation_alias='DOCUMENT_STORE_BACKEND')
    document_store_bucket: str | None = Field(None, validation_alias='DOCUMENT_STORE_BUCKET')
    document_store_prefix: str = Field('documents', validation_alias='DOCUMENT_STORE_PREFIX')

    # Internal job queue
    job_queue_backend: str = Field('memory', validation_alias='JOB_QUEUE_BACKEND')
    processing_topic: str = Field('ocr-processing', validation_alias='PROCESSING_TOPIC')
    processing_subscription: str = Field('ocr-processing-sub', validation_alias='PROCESSING_SUBSCRIPTION')
    retry_topic: str = Field('ocr-retry', validation_alias='RETRY_TOPIC')
    retry_subscription: str = Field('ocr-retry-sub', validation_alias='RETRY_SUBSCRIPTION')
    indexing_topic: str = Field('document-indexing', validation_alias='INDEXING_TOPIC')
    job_max_attempts: int = Field(5, validation_alias='JOB_MAX_ATTEMPTS')

    # OCR dispatch circuit breaker
    circuit_breaker_failure_threshold: int = Field(5, validation_alias='CIRCUIT_BREAKER_FAILURE_THRESHOLD')
    circuit_breaker_reset_timeout: float = Field(60.0, validation_alias='CIRCUIT_BREAKER_RESET_TIMEOUT')

    enable_metrics_raw: str | bool | None = Field(True, validation_alias='ENABLE_METRICS')

    model_config = SettingsConfigDict(env_file='.env', extra='ignore', case_sensitive=False)

    def model_post_init(self, __context: Any) -> None:  # pylint: disable=W0221
        """Resolve ``sm://`` secret references once the model is populated."""
        project_hint = self.project_id or os.getenv("PROJECT_ID")
        for field_name in ("ocr_webhook_secret", "monitoring_api_token"):
            value = getattr(self, field_name, None)
            resolved = resolve_secret(value, project_id=project_hint)
            if resolved is not None:
                setattr(self, field_name, resolved)

    @property
    def enable_metrics(self) -> bool:
        raw = self.enable_metrics_raw
        if isinstance(raw, bool):
            return raw
        return parse_bool(str(raw))

    def validate_required(self) -> None:
        required_pairs = [
            ("ocr_service_url", self.ocr_service_url),
            ("ocr_webhook_secret", self.ocr_webhook_secret),
        ]
        if self.document_store_backend.lower() == "gcs":
            required_pairs.append(("document_store_bucket", self.document_store_bucket))
        if self.job_queue_backend.lower() == "pubsub":
            required_pairs.append(("project_id", self.project_id))
        missing = [name for name, value in required_pairs if not value]
        if missing:
            raise RuntimeError("Missing required configuration values: " + ", ".join(sorted(missing)))

        positive = {
            "queue_stuck_warning_threshold": self.queue_stuck_warning_threshold,
            "queue_dlq_critical_threshold": self.queue_dlq_critical_threshold,
            "stuck_task_timeout_seconds": self.stuck_task_timeout_seconds,
            "ocr_request_timeout": self.ocr_request_timeout,
            "webhook_body_timeout": self.webhook_body_timeout,
            "job_max_attempts": self.job_max_attempts,
        }
        invalid = [name for name, value in positive.items() if value <= 0]
        if invalid:
            raise RuntimeError("Configuration values must be positive: " + ", ".join(sorted(invalid)))


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()  # type: ignore[call-arg]


__all__ = ["AppConfig", "get_config", "parse_bool"]
