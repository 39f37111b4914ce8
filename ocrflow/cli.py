"""Operator CLI: queue workers, stuck-task cleanup and manual retries.

Usage::

    python -m ocrflow.cli worker --queue processing
    python -m ocrflow.cli cleanup-stuck-tasks --timeout 60 --dry-run
    python -m ocrflow.cli retry-document DOC-123 --reason "engine fixed"
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Iterable, Optional

from ocrflow.config import get_config
from ocrflow.errors import ServiceUnavailable, ValidationFailure
from ocrflow.logging_setup import configure_logging
from ocrflow.main import build_components
from ocrflow.models.messages import RetryFailedTaskMessage
from ocrflow.services.message_queue import PROCESSING_QUEUE, RETRY_QUEUE, create_message_queue
from ocrflow.services.monitoring import QueueMonitoringService
from ocrflow.services.ocr_client import OcrDispatchClient
from ocrflow.services.worker import QueueWorker
from ocrflow.utils.logging_utils import structured_log

_LOG = logging.getLogger("ocrflow.cli")

EXIT_OK = 0
EXIT_FAILURE = 1


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _require_shared_queue(cfg, command: str) -> bool:
    if (cfg.job_queue_backend or "memory").lower() != "memory":
        return True
    print(
        f"{command} needs a shared job queue; JOB_QUEUE_BACKEND=memory only lives inside the API process. "
        "Set JOB_QUEUE_BACKEND=pubsub or use the /documents endpoints.",
        file=sys.stderr,
    )
    return False


def run_worker(args: argparse.Namespace) -> int:
    cfg = get_config()
    if not _require_shared_queue(cfg, "worker"):
        return EXIT_FAILURE
    components = build_components(cfg)
    handler = components.dispatch_handler if args.queue == PROCESSING_QUEUE else components.retry_handler
    worker = QueueWorker(components.message_queue, {args.queue: handler}, idle_sleep=args.idle_sleep)
    structured_log(_LOG, logging.INFO, "worker_started", queue=args.queue)
    try:
        worker.run(max_messages=args.max_messages)
    except KeyboardInterrupt:  # pragma: no cover - interactive stop
        structured_log(_LOG, logging.INFO, "worker_interrupted", queue=args.queue, count=worker.processed)
    finally:
        components.ocr_client.close()
    structured_log(_LOG, logging.INFO, "worker_stopped", queue=args.queue, count=worker.processed)
    return EXIT_OK


def run_cleanup(args: argparse.Namespace, *, service: QueueMonitoringService | None = None) -> int:
    cfg = get_config()
    timeout = args.timeout if args.timeout is not None else cfg.stuck_task_timeout_seconds
    if timeout <= 0:
        print("Timeout must be a positive integer", file=sys.stderr)
        return EXIT_FAILURE

    owned_client: OcrDispatchClient | None = None
    if service is None:
        if not cfg.ocr_service_url:
            print("OCR_SERVICE_URL is not configured", file=sys.stderr)
            return EXIT_FAILURE
        owned_client = OcrDispatchClient.from_config(cfg)
        service = QueueMonitoringService.from_config(cfg, owned_client)
    try:
        report = service.cleanup_stuck_tasks(timeout, dry_run=args.dry_run)
    except (ServiceUnavailable, ValidationFailure) as exc:
        print(f"Error communicating with OCR service: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        if owned_client is not None:
            owned_client.close()

    summary = {
        "timeout_seconds": report.timeout_seconds,
        "dry_run": report.dry_run,
        "found": len(report.found),
        "reset": len(report.reset),
        "failed": len(report.failed),
    }
    if args.verbose:
        summary["stuck_task_ids"] = report.found
        summary["failed_task_ids"] = report.failed
    _emit(summary)
    return EXIT_OK if report.succeeded else EXIT_FAILURE


def run_retry(args: argparse.Namespace) -> int:
    cfg = get_config()
    if not _require_shared_queue(cfg, "retry-document"):
        return EXIT_FAILURE
    queue = create_message_queue(cfg)
    message = RetryFailedTaskMessage(
        document_id=args.document_id,
        reason=args.reason,
        requested_by=args.requested_by,
    )
    message_id = queue.enqueue(RETRY_QUEUE, message)
    structured_log(
        _LOG,
        logging.INFO,
        "retry_enqueued",
        document_id=args.document_id,
        reason=args.reason,
        requested_by=args.requested_by,
    )
    _emit({"document_id": args.document_id, "message_id": message_id, "queue": RETRY_QUEUE})
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OCR processing coordinator operator tools.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="Consume jobs from an internal queue.")
    worker.add_argument("--queue", choices=(PROCESSING_QUEUE, RETRY_QUEUE), default=PROCESSING_QUEUE)
    worker.add_argument("--max-messages", type=int, default=0, help="Stop after N jobs (0 runs forever).")
    worker.add_argument("--idle-sleep", type=float, default=1.0, help="Seconds to wait when the queue is empty.")
    worker.set_defaults(func=run_worker)

    cleanup = sub.add_parser("cleanup-stuck-tasks", help="Find and reset stuck OCR engine tasks.")
    cleanup.add_argument("--timeout", "-t", type=int, default=None, help="Stuck threshold in seconds.")
    cleanup.add_argument("--dry-run", action="store_true", help="List stuck tasks without resetting them.")
    cleanup.add_argument("--verbose", "-v", action="store_true", help="Include task ids in the output.")
    cleanup.set_defaults(func=run_cleanup)

    retry = sub.add_parser("retry-document", help="Enqueue a manual retry for a failed document.")
    retry.add_argument("document_id")
    retry.add_argument("--reason", required=True, help="Audit reason recorded on the document.")
    retry.add_argument("--requested-by", default="cli")
    retry.set_defaults(func=run_retry)
    return parser


def run_cli(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(level=logging.DEBUG if args.debug else logging.INFO)
    return args.func(args)


def main() -> None:  # pragma: no cover - console entrypoint
    sys.exit(run_cli())


if __name__ == "__main__":  # pragma: no cover
    main()


__all__ = ["run_cli", "build_parser", "main"]
