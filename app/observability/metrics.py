"""Counters and timings for scans, syncs and review transitions."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from statsd import StatsClient

from app.config import settings

logger = logging.getLogger("app.metrics")

_STATSD_METHODS = {"counter": "incr", "timing": "timing", "gauge": "gauge"}


class MetricsReporter:
    """Emits metrics to the log stream, and to StatsD when that backend is selected.

    Every metric is prefixed with the namespace (``warm_signal`` by default).
    Counters and timings honour the sample rate; gauges are always sent.
    """

    def __init__(
        self,
        *,
        namespace: str | None = None,
        backend: str | None = None,
        sample_rate: float | None = None,
        disabled: bool | None = None,
        client: StatsClient | None = None,
    ) -> None:
        self._namespace = namespace or settings.metrics_namespace or "warm_signal"
        self._backend = (backend or settings.metrics_backend or "stdout").lower()
        rate = settings.metrics_sample_rate if sample_rate is None else sample_rate
        self._sample_rate = max(0.0, min(rate, 1.0))
        self._disabled = settings.metrics_disable if disabled is None else disabled
        self._statsd = client
        if self._statsd is None and self._backend == "statsd" and not self._disabled:
            try:
                self._statsd = StatsClient(
                    host=settings.metrics_statsd_host, port=settings.metrics_statsd_port, prefix=""
                )
            except OSError as exc:  # pragma: no cover - socket setup failure
                self._backend_error("statsd.init", exc)

    @property
    def namespace(self) -> str:
        return self._namespace

    def increment(self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("counter", metric, value, tags)

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags)

    @contextmanager
    def timed(self, metric: str, *, tags: dict[str, Any] | None = None) -> Iterator[None]:
        """Record the wall time of the ``with`` block in milliseconds, even when it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timing(metric, (time.perf_counter() - started) * 1000, tags=tags)

    def qualified(self, metric: str) -> str:
        name = (metric or "").strip()
        if not name:
            return self._namespace
        return name if name.startswith(f"{self._namespace}.") else f"{self._namespace}.{name}"

    def _emit(self, kind: str, metric: str, value: float | None, tags: dict[str, Any] | None) -> None:
        if self._disabled or value is None:
            return
        rate = 1.0 if kind == "gauge" else self._sample_rate
        if rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > rate:
            return
        name = self.qualified(metric)
        record = {"metric": name, "type": kind, "value": round(float(value), 4), "tags": tags or {}}
        if rate < 1.0:
            record["sample_rate"] = round(rate, 4)
        logger.debug("metrics.emit", extra={"metrics": record})
        if self._statsd is None:
            return
        send = getattr(self._statsd, _STATSD_METHODS[kind])
        try:
            if kind == "gauge":
                send(name, value)
            else:
                send(name, value, rate=rate)
        except OSError as exc:  # pragma: no cover - network send failure
            self._backend_error(name, exc)

    def _backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


metrics = MetricsReporter()
