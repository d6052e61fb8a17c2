from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricCall:
    kind: str
    metric: str
    value: float
    tags: dict[str, Any] = field(default_factory=dict)


class StubMetrics:
    """Stands in for ``MetricsReporter``; patch it over a module's ``metrics`` global."""

    def __init__(self) -> None:
        self.calls: list[MetricCall] = []

    def timing(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self.calls.append(MetricCall("timing", metric, value, dict(tags or {})))

    def increment(self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None) -> None:
        self.calls.append(MetricCall("counter", metric, value, dict(tags or {})))

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self.calls.append(MetricCall("gauge", metric, value, dict(tags or {})))

    def counted(self, metric: str, **tags: Any) -> float:
        """Sum of counter values for ``metric`` whose tags include every given tag."""
        return sum(
            call.value
            for call in self.calls
            if call.kind == "counter"
            and call.metric == metric
            and all(call.tags.get(key) == value for key, value in tags.items())
        )

    def timings(self, metric: str) -> list[float]:
        return [call.value for call in self.calls if call.kind == "timing" and call.metric == metric]
