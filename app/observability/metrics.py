"""Metrics for the backlink engine, logged as structured events and optionally sent to StatsD."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from statsd import StatsClient

from app.config import settings

logger = logging.getLogger("app.metrics")

METRIC_EVENT = "backlinks.metric"
ALERT_EVENT = "backlinks.alert"


class MetricsReporter:
    """Emits counters, gauges and timings under a single namespace.

    Every sample is logged as a ``backlinks.metric`` record carrying a
    ``metrics`` payload. With ``backend="statsd"`` the sample is also sent over
    UDP. Counters and timings honour ``sample_rate``; gauges are always sent.
    """

    def __init__(
        self,
        *,
        namespace: str | None = None,
        backend: str | None = None,
        disabled: bool | None = None,
        sample_rate: float | None = None,
        base_tags: dict[str, Any] | None = None,
    ) -> None:
        self._disabled = settings.metrics_disable if disabled is None else disabled
        self._namespace = (namespace or settings.metrics_namespace or "backlinks").strip(".")
        self._backend = (backend or settings.metrics_backend or "stdout").lower()
        rate = settings.metrics_sample_rate if sample_rate is None else sample_rate
        self._sample_rate = max(0.0, min(rate, 1.0))
        self._base_tags = (
            dict(base_tags) if base_tags is not None else {"env": settings.environment}
        )
        self._statsd: StatsClient | None = None
        if self._backend == "statsd" and not self._disabled:
            try:
                self._statsd = StatsClient(
                    host=settings.metrics_statsd_host,
                    port=settings.metrics_statsd_port,
                    prefix="",
                )
            except OSError as exc:  # pragma: no cover - socket setup failure
                self._backend_error("statsd.init", exc)

    @property
    def namespace(self) -> str:
        return self._namespace

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags)

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        """Log a threshold breach (batch error rate and similar) for log-based alerting."""
        if self._disabled:
            return
        payload = self._payload(metric, value, tags)
        payload.update(
            threshold=round(float(threshold), 4),
            severity=severity,
            schema_version=settings.metrics_schema_version,
        )
        logger.warning(ALERT_EVENT, extra={"metrics": payload})

    def qualified(self, metric: str) -> str:
        name = (metric or "").strip().strip(".")
        if not name:
            return self._namespace
        if name == self._namespace or name.startswith(f"{self._namespace}."):
            return name
        return f"{self._namespace}.{name}"

    def _emit(
        self, kind: str, metric: str, value: float | None, tags: dict[str, Any] | None
    ) -> None:
        if self._disabled or value is None:
            return
        rate = 1.0 if kind == "gauge" else self._sample_rate
        if rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > rate:
            return
        payload = self._payload(metric, value, tags)
        payload["type"] = kind
        if rate < 1.0:
            payload["sample_rate"] = round(rate, 4)
        logger.info(METRIC_EVENT, extra={"metrics": payload})
        if self._statsd is not None:
            self._send(kind, payload["metric"], value, rate)

    def _payload(self, metric: str, value: float, tags: dict[str, Any] | None) -> dict[str, Any]:
        return {
            "metric": self.qualified(metric),
            "value": round(float(value), 4),
            "tags": {**self._base_tags, **(tags or {})},
        }

    def _send(self, kind: str, name: str, value: float, rate: float) -> None:
        try:
            if kind == "timing":
                self._statsd.timing(name, value, rate=rate)
            elif kind == "gauge":
                self._statsd.gauge(name, value)
            else:
                self._statsd.incr(name, value, rate=rate)
        except OSError as exc:  # pragma: no cover - UDP send failure
            self._backend_error(name, exc)

    def _backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


metrics = MetricsReporter()
