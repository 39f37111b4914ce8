from __future__ import annotations

from types import SimpleNamespace

import ocrflow.runtime_server as runtime_server


def test_worker_count_prefers_env(monkeypatch):
    monkeypatch.setenv("UVICORN_WORKERS", "3")
    assert runtime_server._worker_count() == 3


def test_worker_count_falls_back_to_capped_cpu_count(monkeypatch):
    monkeypatch.setenv("UVICORN_WORKERS", "zero")
    monkeypatch.setattr(runtime_server.multiprocessing, "cpu_count", lambda: 64)
    assert runtime_server._worker_count() == runtime_server.MAX_UVICORN_WORKERS
    monkeypatch.setenv("UVICORN_WORKERS", "-1")
    monkeypatch.setattr(runtime_server.multiprocessing, "cpu_count", lambda: 2)
    assert runtime_server._worker_count() == 2


def test_main_runs_app_factory(monkeypatch):
    monkeypatch.setattr(runtime_server, "_worker_count", lambda: 2)
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("FASTAPI_APP", raising=False)
    monkeypatch.delenv("HOST", raising=False)
    recorded: dict[str, object] = {}

    def _fake_run(app, **kwargs):
        recorded["app"] = app
        recorded.update(kwargs)

    monkeypatch.setattr(runtime_server, "uvicorn", SimpleNamespace(run=_fake_run))
    runtime_server.main()
    assert recorded["app"] == "ocrflow.main:create_app"
    assert recorded["host"] == "0.0.0.0"
    assert recorded["port"] == 9090
    assert recorded["factory"] is True
    assert recorded["workers"] == 2
    assert recorded["log_level"] == "debug"
