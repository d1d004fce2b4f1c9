"""Tests for report cycles, the builder and the scheduler."""
import json
import threading

import httpx
import numpy as np
import pytest

from dogreporter.expansions import Expansion
from dogreporter.registry import Counter, MetricRegistry, RegistrySnapshot, TaggedGauge, name_prefix_filter
from dogreporter.reporter import DatadogReporter, ReporterBuilder
from dogreporter.series import CounterPoint, GaugePoint
from dogreporter.transport import HttpTransport, TransportError
from dogreporter.units import TimeUnit


class TaggedCounter(Counter):
    def __init__(self, tags, name=None):
        super().__init__()
        self._tags = tags
        self._name = name

    def tags(self):
        return self._tags

    def override_name(self):
        return self._name


def make_reporter(transport, clock, registry=None, **kwargs):
    return DatadogReporter(registry or MetricRegistry(), transport, clock=clock, **kwargs)


def test_cycle_timestamp_and_points(transport, clock):
    registry = MetricRegistry()
    registry.counter("requests").inc(3)
    registry.gauge("queue", lambda: 4.5)

    reporter = make_reporter(transport, clock, registry, host="web-1", tags=["env:prod"])
    result = reporter.report()

    assert result.success
    assert result.points == 2
    assert result.timestamp == 1_700_000_000
    assert transport.last_batch == [
        GaugePoint("queue", 4.5, 1_700_000_000, "web-1", ["env:prod"]),
        CounterPoint("requests", 3, 1_700_000_000, "web-1", ["env:prod"]),
    ]


def test_collections_traversed_in_kind_then_name_order(transport, clock):
    registry = MetricRegistry()
    registry.timer("t.a")
    registry.meter("m.b")
    registry.meter("m.a")
    registry.histogram("h.a")
    registry.counter("c.b")
    registry.counter("c.a")
    registry.gauge("g.z", lambda: 1)
    registry.gauge("g.a", lambda: 1)

    reporter = make_reporter(transport, clock, registry, expansions={Expansion.COUNT})
    reporter.report()

    assert [p.name for p in transport.last_batch] == [
        "g.a", "g.z", "c.a", "c.b", "h.a", "m.a", "m.b", "t.a",
    ]


def test_exactly_one_send_per_cycle(transport, clock):
    registry = MetricRegistry()
    for i in range(5):
        registry.counter(f"c{i}").inc()

    reporter = make_reporter(transport, clock, registry)
    reporter.report()
    reporter.report()

    assert transport.send_calls == 2
    assert len(transport.requests) == 2
    assert transport.requests[0] is not transport.requests[1]


def test_send_failure_is_contained_and_next_cycle_is_independent(transport, clock):
    registry = MetricRegistry()
    registry.counter("requests").inc()
    reporter = make_reporter(transport, clock, registry)

    transport.fail_on_send = True
    failed = reporter.report()
    assert not failed.success
    assert isinstance(failed.error, TransportError)
    assert failed.points == 1
    assert transport.batches == []

    transport.fail_on_send = False
    clock.advance(10)
    ok = reporter.report()
    assert ok.success
    assert transport.batches == [[CounterPoint("requests", 1, 1_700_000_010, None, [])]]
    assert reporter.cycle_count == 2
    assert reporter.last_result is ok


def test_prepare_failure_aborts_cycle(transport, clock):
    registry = MetricRegistry()
    registry.counter("requests").inc()
    transport.fail_on_prepare = True

    result = make_reporter(transport, clock, registry).report()

    assert not result.success
    assert result.points == 0
    assert transport.send_calls == 0


def test_staging_failure_abandons_batch(transport, clock):
    registry = MetricRegistry()
    registry.counter("requests").inc()
    transport.fail_on_add = True

    result = make_reporter(transport, clock, registry).report()

    assert not result.success
    assert transport.send_calls == 0


def test_metric_errors_are_logged_not_raised(transport, clock, caplog):
    registry = MetricRegistry()

    def broken():
        raise RuntimeError("boom")

    registry.gauge("broken", broken)
    result = make_reporter(transport, clock, registry).report()

    assert not result.success
    assert "boom" in caplog.text
    assert transport.send_calls == 0


def test_prefix_applies_before_suffix(transport, clock):
    registry = MetricRegistry()
    registry.histogram("latency").update(5)

    reporter = make_reporter(transport, clock, registry, prefix="myapp", expansions={Expansion.P99})
    reporter.report()

    assert [p.name for p in transport.last_batch] == ["myapp.latency.p99"]


def test_tagged_metric_overrides_name_and_appends_tags(transport, clock):
    registry = MetricRegistry()
    registry.register("gauge.key", TaggedGauge(lambda: 1, ["shard:3"], name="pool.size"))
    registry.register("counter.key", TaggedCounter(["kind:x"]))

    reporter = make_reporter(transport, clock, registry, prefix="app", tags=["env:prod"])
    reporter.report()

    assert [(p.name, p.tags) for p in transport.last_batch] == [
        ("app.pool.size", ["env:prod", "shard:3"]),
        ("app.counter.key", ["env:prod", "kind:x"]),
    ]


def test_dynamic_tags_fetched_once_per_cycle(transport, clock):
    registry = MetricRegistry()
    registry.counter("a").inc()
    registry.counter("b").inc()
    calls = []

    def dynamic_tags():
        calls.append(1)
        return [f"deploy:{len(calls)}"]

    reporter = make_reporter(transport, clock, registry, tags=["env:prod"], dynamic_tags=dynamic_tags)
    reporter.report()

    assert len(calls) == 1
    assert all(p.tags == ["env:prod", "deploy:1"] for p in transport.last_batch)

    reporter.report()
    assert all(p.tags == ["env:prod", "deploy:2"] for p in transport.last_batch)


def test_empty_dynamic_tags_keep_static_tags(transport, clock):
    registry = MetricRegistry()
    registry.counter("a").inc()
    reporter = make_reporter(transport, clock, registry, tags=["env:prod"], dynamic_tags=lambda: None)
    reporter.report()
    assert transport.last_batch[0].tags == ["env:prod"]


def test_duplicate_tag_keys_are_not_deduplicated(transport, clock):
    registry = MetricRegistry()
    registry.register("c", TaggedCounter(["env:canary"]))
    reporter = make_reporter(transport, clock, registry, tags=["env:prod"])
    reporter.report()
    assert transport.last_batch[0].tags == ["env:prod", "env:canary"]


def test_run_cycle_with_explicit_snapshot(transport, clock):
    counter = Counter()
    counter.inc(2)
    snapshot = RegistrySnapshot(counters={"x": counter})

    result = make_reporter(transport, clock).run_cycle(snapshot)

    assert result.success
    assert transport.last_batch == [CounterPoint("x", 2, 1_700_000_000, None, [])]


def test_metric_filter(transport, clock):
    registry = MetricRegistry()
    registry.counter("app.requests").inc()
    registry.counter("jvm.gc").inc()

    reporter = make_reporter(transport, clock, registry, metric_filter=name_prefix_filter("app."))
    reporter.report()

    assert [p.name for p in transport.last_batch] == ["app.requests"]


def test_builder_defaults_and_options(transport, clock):
    registry = MetricRegistry()
    reporter = (
        DatadogReporter.for_registry(registry)
        .with_transport(transport)
        .with_host("web-1")
        .with_clock(clock)
        .with_tags({"env": "prod"})
        .with_prefix("myapp")
        .with_expansions([Expansion.P99])
        .convert_rates_to(TimeUnit.MINUTES)
        .convert_durations_to("microseconds")
        .build()
    )

    assert isinstance(DatadogReporter.for_registry(registry), ReporterBuilder)
    assert reporter.host == "web-1"
    assert reporter.tags == ["env:prod"]
    assert reporter.prefix == "myapp"
    assert reporter.translator.expansions == {Expansion.P99}
    assert reporter.translator.rate_unit is TimeUnit.MINUTES
    assert reporter.translator.duration_unit is TimeUnit.MICROSECONDS
    assert reporter.self_metrics is None


def test_builder_requires_transport():
    with pytest.raises(ValueError, match="Transport"):
        DatadogReporter.for_registry(MetricRegistry()).build()


def test_constructor_requires_transport():
    with pytest.raises(ValueError):
        DatadogReporter(MetricRegistry(), None)


def test_self_metrics_record_cycles(transport, clock):
    registry = MetricRegistry()
    reporter = (
        DatadogReporter.for_registry(registry)
        .with_transport(transport)
        .with_clock(clock)
        .with_self_metrics()
        .build()
    )

    reporter.report()
    transport.fail_on_send = True
    reporter.report()

    assert registry.counter("dogreporter.cycles").count() == 2
    assert registry.counter("dogreporter.cycle_errors").count() == 1
    assert registry.timer("dogreporter.cycle_duration").count() == 2


def test_start_and_stop_scheduler(transport, clock):
    registry = MetricRegistry()
    registry.counter("ticks").inc()
    reporter = make_reporter(transport, clock, registry)

    reported = threading.Event()
    original_report = reporter.report

    def report():
        result = original_report()
        reported.set()
        return result

    reporter.report = report
    reporter.start(0.01)
    assert reporter.running
    assert reported.wait(2.0)

    reporter.stop()
    assert not reporter.running
    assert transport.closed
    assert transport.batches


def test_start_rejects_bad_period(transport, clock):
    with pytest.raises(ValueError):
        make_reporter(transport, clock).start(0)


def test_numpy_gauges_are_sent_over_http(clock):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = HttpTransport(api_key="secret", url="https://example.test/api/v1/series", client=client)

    registry = MetricRegistry()
    registry.counter("requests").inc(3)
    registry.gauge("queue", lambda: np.int64(5))
    registry.gauge("ratio", lambda: np.float32(0.5))

    result = make_reporter(transport, clock, registry).report()

    assert result.success
    assert result.points == 3
    series = {s["metric"]: s for s in bodies[0]["series"]}
    assert series["queue"]["points"] == [[1_700_000_000, 5]]
    assert series["ratio"]["points"] == [[1_700_000_000, 0.5]]
    assert series["requests"]["type"] == "count"


def test_failing_clock_fails_the_cycle(transport):
    def clock():
        raise RuntimeError("no time")

    registry = MetricRegistry()
    registry.counter("requests").inc()
    reporter = make_reporter(transport, clock, registry)

    result = reporter.report()

    assert not result.success
    assert result.timestamp is None
    assert isinstance(result.error, RuntimeError)
    assert transport.send_calls == 0
    assert reporter.last_result is result
