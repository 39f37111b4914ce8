from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from ocrflow import cli
from ocrflow.errors import TransientUpstreamFailure
from ocrflow.models.messages import ProcessDocumentMessage, RetryFailedTaskMessage
from ocrflow.services.message_queue import PROCESSING_QUEUE, RETRY_QUEUE, InMemoryMessageQueue
from ocrflow.services.monitoring import QueueMonitoringService
from tests.stubs.documents import add_document
from tests.stubs.ocr_stub import StubOcrClient


def _cleanup(argv, stub, monkeypatch):
    monkeypatch.delenv("STUCK_TASK_TIMEOUT_SECONDS", raising=False)
    args = cli.build_parser().parse_args(["cleanup-stuck-tasks", *argv])
    return cli.run_cleanup(args, service=QueueMonitoringService(stub))  # type: ignore[arg-type]


def test_cleanup_resets_tasks_and_prints_summary(monkeypatch, capsys):
    stub = StubOcrClient()
    stub.stuck = ["T1", "T2"]

    assert _cleanup(["--timeout", "120", "--verbose"], stub, monkeypatch) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["found"] == 2
    assert summary["reset"] == 2
    assert summary["failed"] == 0
    assert summary["stuck_task_ids"] == ["T1", "T2"]
    assert stub.stuck_timeouts == [120]


def test_cleanup_uses_configured_default_timeout(monkeypatch, capsys):
    stub = StubOcrClient()
    assert _cleanup([], stub, monkeypatch) == 0
    assert stub.stuck_timeouts == [30]
    assert json.loads(capsys.readouterr().out)["timeout_seconds"] == 30


def test_cleanup_dry_run_does_not_reset(monkeypatch, capsys):
    stub = StubOcrClient()
    stub.stuck = ["T1"]
    assert _cleanup(["--dry-run"], stub, monkeypatch) == 0
    assert stub.reset_calls == []
    summary = json.loads(capsys.readouterr().out)
    assert summary["dry_run"] is True
    assert summary["reset"] == 0


def test_cleanup_partial_failure_exits_non_zero(monkeypatch, capsys):
    stub = StubOcrClient()
    stub.stuck = ["T1", "T2"]
    stub.reset_results = {"T2": False}
    assert _cleanup([], stub, monkeypatch) == 1
    assert json.loads(capsys.readouterr().out)["failed"] == 1


def test_cleanup_rejects_non_positive_timeout(monkeypatch, capsys):
    stub = StubOcrClient()
    assert _cleanup(["-t", "0"], stub, monkeypatch) == 1
    assert "positive" in capsys.readouterr().err
    assert stub.stuck_timeouts == []


def test_cleanup_reports_unreachable_engine(monkeypatch, capsys):
    stub = StubOcrClient()
    stub.stuck = TransientUpstreamFailure("connection refused")
    assert _cleanup([], stub, monkeypatch) == 1
    assert "Error communicating with OCR service" in capsys.readouterr().err


def test_retry_document_enqueues_message(monkeypatch, capsys):
    monkeypatch.setenv("JOB_QUEUE_BACKEND", "pubsub")
    queue = InMemoryMessageQueue()
    monkeypatch.setattr(cli, "create_message_queue", lambda cfg: queue)
    monkeypatch.setattr(cli, "configure_logging", lambda **_kwargs: None)

    exit_code = cli.run_cli(["retry-document", "D1", "--reason", "engine fixed", "--requested-by", "alice"])

    assert exit_code == 0
    message = RetryFailedTaskMessage.from_pubsub(queue.pending(RETRY_QUEUE)[0].data)
    assert message.document_id == "D1"
    assert message.reason == "engine fixed"
    assert message.requested_by == "alice"
    assert json.loads(capsys.readouterr().out)["queue"] == RETRY_QUEUE


def test_worker_drains_processing_queue(monkeypatch, store, queue, dispatcher, retry_handler, ocr_client):
    monkeypatch.setenv("JOB_QUEUE_BACKEND", "pubsub")
    add_document(store, "D1")
    add_document(store, "D2")
    queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D1"))
    queue.enqueue(PROCESSING_QUEUE, ProcessDocumentMessage(document_id="D2"))
    components = SimpleNamespace(
        message_queue=queue,
        dispatch_handler=dispatcher,
        retry_handler=retry_handler,
        ocr_client=ocr_client,
    )
    monkeypatch.setattr(cli, "build_components", lambda cfg: components)
    monkeypatch.setattr(cli, "configure_logging", lambda **_kwargs: None)

    assert cli.run_cli(["worker", "--queue", "processing", "--max-messages", "2", "--idle-sleep", "0"]) == 0

    assert ocr_client.submitted == ["D1", "D2"]
    assert store.get("D2").external_task_id == "T2"


def _fail_if_called(*_args, **_kwargs):
    raise AssertionError("no queue should be built for the memory backend")


@pytest.mark.parametrize(
    "argv",
    [
        ["retry-document", "D1", "--reason", "engine fixed"],
        ["worker", "--queue", "retry", "--max-messages", "1"],
    ],
)
def test_queue_commands_refuse_process_local_backend(argv, monkeypatch, capsys):
    monkeypatch.setenv("JOB_QUEUE_BACKEND", "memory")
    monkeypatch.setattr(cli, "create_message_queue", _fail_if_called)
    monkeypatch.setattr(cli, "build_components", _fail_if_called)
    monkeypatch.setattr(cli, "configure_logging", lambda **_kwargs: None)

    assert cli.run_cli(argv) == 1

    captured = capsys.readouterr()
    assert "JOB_QUEUE_BACKEND=pubsub" in captured.err
    assert captured.out == ""
