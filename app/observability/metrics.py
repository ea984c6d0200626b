from __future__ import annotations

import logging
import secrets
from typing import Any

from app.config import Settings, settings

try:  # pragma: no cover - optional dependency
    from statsd import StatsClient
except Exception:  # pragma: no cover - optional dependency guard
    StatsClient = None  # type: ignore[assignment]

logger = logging.getLogger("app.metrics")

DEFAULT_NAMESPACE = "billing"


class MetricsReporter:
    """Billing metrics emitter writing structured log lines and, optionally, StatsD."""

    def __init__(self, config: Settings | None = None) -> None:
        config = config or settings
        self._disabled = config.metrics_disable
        self._namespace = config.metrics_namespace or DEFAULT_NAMESPACE
        self._backend = (config.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(config.metrics_sample_rate, 1.0))
        self._schema_version = config.metrics_schema_version
        self._statsd: StatsClient | None = None
        if self._backend == "statsd" and not self._disabled:
            self._statsd = self._connect_statsd(config)

    def _connect_statsd(self, config: Settings) -> StatsClient | None:
        if StatsClient is None:
            logger.warning("statsd backend requested but statsd package is not installed.")
            return None
        try:
            return StatsClient(
                host=config.metrics_statsd_host,
                port=config.metrics_statsd_port,
                prefix="",
            )
        except Exception as exc:  # pragma: no cover - socket setup failure
            self._log_backend_error("statsd.init", exc)
            return None

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags=tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags=tags)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags=tags)

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        """Log a structured alert when a billing threshold is crossed."""
        if self._disabled:
            return
        self._log_event(
            "billing.alert",
            {
                "metric": self._qualify(metric),
                "value": round(float(value), 4),
                "threshold": round(float(threshold), 4),
                "severity": severity,
                "schema_version": self._schema_version,
                "tags": tags or {},
            },
        )

    def _emit(
        self, metric_type: str, metric: str, value: float, *, tags: dict[str, Any] | None
    ) -> None:
        if self._disabled or value is None:
            return
        sample_rate = 1.0 if metric_type == "gauge" else self._sample_rate
        if sample_rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > sample_rate:
            return
        name = self._qualify(metric)
        payload: dict[str, Any] = {
            "metric": name,
            "value": round(float(value), 4),
            "type": metric_type,
            "tags": tags or {},
        }
        if sample_rate < 1.0:
            payload["sample_rate"] = round(sample_rate, 4)
        self._log_event("billing.metric", payload)
        if self._statsd is None:
            return
        try:
            if metric_type == "timing":
                self._statsd.timing(name, value, rate=sample_rate)
            elif metric_type == "gauge":
                self._statsd.gauge(name, value)
            else:
                self._statsd.incr(name, value, rate=sample_rate)
        except Exception as exc:  # pragma: no cover - UDP send failure
            self._log_backend_error(name, exc)

    def _qualify(self, metric: str) -> str:
        trimmed = (metric or "").strip()
        if not trimmed:
            return self._namespace
        if trimmed.startswith(f"{self._namespace}."):
            return trimmed
        return f"{self._namespace}.{trimmed}"

    def _log_event(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(event, extra={"metrics": payload})

    def _log_backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


metrics = MetricsReporter()
