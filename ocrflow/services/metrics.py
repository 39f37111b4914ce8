"""Prometheus counters for webhook, dispatch, retry and monitoring outcomes.

Every service takes a ``MetricsClient`` and defaults to ``NullMetrics``;
``create_app`` swaps in the Prometheus client when ``ENABLE_METRICS`` is set.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response

from .interfaces import MetricsClient

LOG = logging.getLogger(__name__)

EVENTS = Counter(
    "ocrflow_events_total",
    "Outcomes recorded by the OCR coordinator",
    ["component", "name", "outcome"],
)
LATENCY = Histogram(
    "ocrflow_latency_seconds",
    "Time spent handling a webhook or queue message",
    ["component", "name"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


def _labels(name: str, labels: Dict[str, str], *, with_outcome: bool) -> Dict[str, str]:
    values = {"component": labels.get("component") or "unknown", "name": name}
    if with_outcome:
        values["outcome"] = labels.get("outcome") or "none"
    return values


async def _render_metrics(_request: Request) -> Response:  # pragma: no cover - passthrough
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMetrics(MetricsClient):
    _shared: ClassVar["PrometheusMetrics | None"] = None

    def increment(self, name: str, amount: int = 1, **labels: str) -> None:
        EVENTS.labels(**_labels(name, labels, with_outcome=True)).inc(amount)

    def observe_latency(self, name: str, value: float, **labels: str) -> None:
        LATENCY.labels(**_labels(name, labels, with_outcome=False)).observe(max(value, 0.0))

    @classmethod
    def default(cls) -> "PrometheusMetrics":
        if cls._shared is None:
            cls._shared = cls()
        return cls._shared

    @classmethod
    def instrument_app(cls, app: Any) -> "PrometheusMetrics":
        """Expose ``/metrics`` on ``app`` once and return the shared client."""
        if not getattr(app.state, "metrics_route_added", False):
            app.add_route("/metrics", _render_metrics, methods=["GET"], include_in_schema=False)
            app.state.metrics_route_added = True
        return cls.default()


class NullMetrics(MetricsClient):
    """Drops every sample; used when metrics are disabled and in tests."""

    def increment(self, name: str, amount: int = 1, **labels: str) -> None:
        LOG.debug("Counter ignored: %s+=%s labels=%s", name, amount, labels)

    def observe_latency(self, name: str, value: float, **labels: str) -> None:
        LOG.debug("Metric ignored: %s=%s labels=%s", name, value, labels)


__all__ = ["EVENTS", "LATENCY", "NullMetrics", "PrometheusMetrics"]
