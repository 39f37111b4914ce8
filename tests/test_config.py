from __future__ import annotations

from types import SimpleNamespace

import pytest

from ocrflow.config import AppConfig, get_config, parse_bool
from ocrflow.utils import secrets as secrets_mod


def _clear_env(monkeypatch):
    for name in (
        "OCR_SERVICE_URL",
        "OCR_WEBHOOK_SECRET",
        "WEBHOOK_SECRET",
        "MONITORING_API_TOKEN",
        "DOCUMENT_STORE_BACKEND",
        "DOCUMENT_STORE_BUCKET",
        "JOB_QUEUE_BACKEND",
        "PROJECT_ID",
        "GOOGLE_CLOUD_PROJECT",
        "ENABLE_METRICS",
        "STUCK_TASK_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear_env(monkeypatch)
    cfg = AppConfig(_env_file=None)
    assert cfg.ocr_default_language == "pl"
    assert cfg.queue_stuck_warning_threshold == 3
    assert cfg.queue_dlq_critical_threshold == 20
    assert cfg.stuck_task_timeout_seconds == 30
    assert cfg.document_store_backend == "memory"
    assert cfg.enable_metrics is True


def test_webhook_secret_alias(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("WEBHOOK_SECRET", "legacy-secret")
    assert AppConfig(_env_file=None).ocr_webhook_secret == "legacy-secret"


def test_validate_required_lists_missing_values(monkeypatch):
    _clear_env(monkeypatch)
    cfg = AppConfig(_env_file=None)
    with pytest.raises(RuntimeError) as excinfo:
        cfg.validate_required()
    assert "ocr_service_url" in str(excinfo.value)
    assert "ocr_webhook_secret" in str(excinfo.value)


def test_validate_required_backend_specific(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("OCR_SERVICE_URL", "http://ocr.test")
    monkeypatch.setenv("OCR_WEBHOOK_SECRET", "s")
    monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "gcs")
    with pytest.raises(RuntimeError, match="document_store_bucket"):
        AppConfig(_env_file=None).validate_required()


def test_validate_required_rejects_non_positive_timeout(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("OCR_SERVICE_URL", "http://ocr.test")
    monkeypatch.setenv("OCR_WEBHOOK_SECRET", "s")
    monkeypatch.setenv("STUCK_TASK_TIMEOUT_SECONDS", "0")
    with pytest.raises(RuntimeError, match="stuck_task_timeout_seconds"):
        AppConfig(_env_file=None).validate_required()


def test_secret_references_are_resolved(monkeypatch):
    _clear_env(monkeypatch)
    calls = []

    class _Client:
        def access_secret_version(self, name):
            calls.append(name)
            return SimpleNamespace(payload=SimpleNamespace(data=b"from-secret-manager"))

    monkeypatch.setattr(secrets_mod, "secretmanager", SimpleNamespace(SecretManagerServiceClient=_Client))
    monkeypatch.setenv("PROJECT_ID", "proj")
    monkeypatch.setenv("OCR_WEBHOOK_SECRET", "sm://ocr-webhook")
    cfg = AppConfig(_env_file=None)
    assert cfg.ocr_webhook_secret == "from-secret-manager"
    assert calls == ["projects/proj/secrets/ocr-webhook/versions/latest"]


def test_get_config_is_cached(monkeypatch):
    _clear_env(monkeypatch)
    assert get_config() is get_config()


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("ON", True), ("no", False), (None, False)])
def test_parse_bool(raw, expected):
    assert parse_bool(raw) is expected


def test_enable_metrics_flag(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("ENABLE_METRICS", "false")
    assert AppConfig(_env_file=None).enable_metrics is False
