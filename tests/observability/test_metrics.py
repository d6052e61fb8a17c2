from __future__ import annotations

import pytest

from app.observability.metrics import MetricsReporter


class _FakeStatsd:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    def incr(self, name, value, rate=1.0):
        self.sent.append(("incr", name, value, rate))

    def timing(self, name, value, rate=1.0):
        self.sent.append(("timing", name, value, rate))

    def gauge(self, name, value):
        self.sent.append(("gauge", name, value))


def _reporter(**kwargs) -> tuple[MetricsReporter, _FakeStatsd]:
    client = _FakeStatsd()
    options = {"namespace": "warm_signal", "sample_rate": 1.0, "disabled": False, "client": client}
    options.update(kwargs)
    return MetricsReporter(**options), client


def test_metrics_are_namespaced_once():
    reporter, client = _reporter()

    reporter.increment("discovery.created")
    reporter.increment("warm_signal.discovery.created")
    reporter.gauge("prospects.open", 4)

    assert client.sent == [
        ("incr", "warm_signal.discovery.created", 1.0, 1.0),
        ("incr", "warm_signal.discovery.created", 1.0, 1.0),
        ("gauge", "warm_signal.prospects.open", 4),
    ]


def test_blank_metric_falls_back_to_namespace():
    reporter, _ = _reporter()

    assert reporter.qualified("  ") == "warm_signal"


def test_disabled_reporter_sends_nothing():
    reporter, client = _reporter(disabled=True)

    reporter.increment("scan.errors")
    reporter.timing("scan.duration_ms", 12.5)

    assert client.sent == []


def test_zero_sample_rate_drops_counters_but_keeps_gauges():
    reporter, client = _reporter(sample_rate=0.0)

    reporter.increment("scan.errors")
    reporter.gauge("prospects.open", 2)

    assert client.sent == [("gauge", "warm_signal.prospects.open", 2)]


def test_timed_records_duration_even_on_error():
    reporter, client = _reporter()

    with pytest.raises(RuntimeError):
        with reporter.timed("scan.duration_ms", tags={"source": "fixture"}):
            raise RuntimeError("boom")

    assert len(client.sent) == 1
    kind, name, value, _ = client.sent[0]
    assert (kind, name) == ("timing", "warm_signal.scan.duration_ms")
    assert value >= 0
