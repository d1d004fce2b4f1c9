"""Tests for series name composition."""
from dogreporter.naming import DefaultMetricNameFormatter, prefixed


def test_default_formatter_joins_with_dot():
    formatter = DefaultMetricNameFormatter()
    assert formatter.format("latency", "p99") == "latency.p99"
    assert formatter.format("latency") == "latency"
    assert formatter.format("latency", None) == "latency"


def test_alternate_separator():
    assert DefaultMetricNameFormatter("_").format("latency", "p99") == "latency_p99"


def test_prefix_composes_before_suffix():
    formatter = DefaultMetricNameFormatter()
    assert formatter.format(prefixed("myapp", "latency"), "p99") == "myapp.latency.p99"


def test_no_prefix_keeps_name():
    assert prefixed(None, "latency") == "latency"
    assert prefixed("", "latency") == "latency"
