"""Tests for the OpenTelemetry transport."""
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from dogreporter.otel_transport import OTELTransport, instrument_name
from dogreporter.series import CounterPoint, GaugePoint


def collect(reader):
    """Flatten reader output to {(name, sorted attributes): value}."""
    values = {}
    data = reader.get_metrics_data()
    if data is None:
        return values
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                for point in metric.data.data_points:
                    key = (metric.name, tuple(sorted(point.attributes.items())))
                    values[key] = point.value
    return values


def make_transport(**kwargs):
    reader = InMemoryMetricReader()
    return OTELTransport(metric_readers=[reader], **kwargs), reader


def send(transport, *points):
    request = transport.prepare()
    for point in points:
        if isinstance(point, CounterPoint):
            request.add_counter(point)
        else:
            request.add_gauge(point)
    request.send()


def test_instrument_name():
    assert instrument_name("myapp.latency.p99") == "myapp.latency.p99"
    assert instrument_name("1MinuteRate") == "m_1MinuteRate"
    assert instrument_name("a b") == "a_b"


def test_gauges_observed_with_tags_as_attributes():
    transport, reader = make_transport(prefix="otel.")
    send(transport, GaugePoint("queue.depth", 4, 0, "web-1", ["env:prod"]))

    values = collect(reader)
    assert values[("otel.queue.depth", (("env", "prod"), ("host", "web-1")))] == 4.0

    send(transport, GaugePoint("queue.depth", 9, 0, "web-1", ["env:prod"]))
    assert collect(reader)[("otel.queue.depth", (("env", "prod"), ("host", "web-1")))] == 9.0
    transport.close()


def test_cumulative_counts_become_deltas():
    transport, reader = make_transport()
    send(transport, CounterPoint("requests", 5, 0))
    send(transport, CounterPoint("requests", 8, 0))
    assert collect(reader)[("requests", ())] == 8

    # Reset: the new count is added as a fresh delta
    send(transport, CounterPoint("requests", 2, 0))
    assert collect(reader)[("requests", ())] == 10
    assert transport.counter_state["requests:"] == 2
    transport.close()


def test_unsent_batch_not_recorded():
    transport, reader = make_transport()
    request = transport.prepare()
    request.add_counter(CounterPoint("requests", 5, 0))
    assert ("requests", ()) not in collect(reader)
    transport.close()
