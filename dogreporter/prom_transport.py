"""Prometheus pull transport using prometheus_client.

Each sent batch replaces the series served on ``/metrics``. Points staged
in a batch that is never sent are not exposed.
"""
import logging
import re
import threading
from typing import Dict, Iterator, List, Optional

from prometheus_client import CollectorRegistry, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from dogreporter.series import CounterPoint, GaugePoint, SeriesPoint
from dogreporter.tags import tags_to_labels

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")
_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_metric_name(name: str) -> str:
    """Make a series name Prometheus-safe (``a.b-c`` -> ``a_b_c``)."""
    safe = _INVALID_NAME_CHARS.sub("_", name)
    if safe[:1].isdigit():
        safe = f"_{safe}"
    return safe


def sanitize_label_name(name: str) -> str:
    safe = _INVALID_LABEL_CHARS.sub("_", name)
    if not safe or safe[:1].isdigit():
        safe = f"_{safe}"
    return safe


class PrometheusRequest:
    """Batch that becomes visible to scrapes only once sent."""

    def __init__(self, transport: "PrometheusTransport"):
        self._transport = transport
        self._points: List[SeriesPoint] = []

    def add_gauge(self, gauge: GaugePoint) -> None:
        self._points.append(gauge)

    def add_counter(self, counter: CounterPoint) -> None:
        self._points.append(counter)

    def send(self) -> None:
        self._transport.publish(self._points)


class PrometheusTransport:
    """Serves the latest sent batch from its own collector registry."""

    def __init__(self, prefix: str = "", port: Optional[int] = None, bind_address: str = "0.0.0.0"):
        self.prefix = prefix
        self.port = port
        self.bind_address = bind_address
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()
        self._points: List[SeriesPoint] = []
        self.registry.register(self)

        if port is not None:
            self._start_server()

    def _start_server(self):
        """Start Prometheus HTTP server."""
        try:
            start_http_server(self.port, addr=self.bind_address, registry=self.registry)
            logger.info(
                f"Prometheus transport listening on {self.bind_address}:{self.port}/metrics"
            )
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise

    def prepare(self) -> PrometheusRequest:
        return PrometheusRequest(self)

    def publish(self, points: List[SeriesPoint]) -> None:
        with self._lock:
            self._points = list(points)
        logger.debug(f"Published {len(points)} points for scraping")

    def _labels(self, point: SeriesPoint) -> Dict[str, str]:
        labels = {sanitize_label_name(k): v for k, v in tags_to_labels(point.tags).items()}
        if point.host is not None:
            labels.setdefault("host", point.host)
        return labels

    def collect(self) -> Iterator:
        """Yield one metric family per series name in the latest batch."""
        with self._lock:
            points = list(self._points)

        families: Dict[str, object] = {}
        for point in points:
            name = sanitize_metric_name(f"{self.prefix}{point.name}")
            family = families.get(name)
            if family is None:
                if isinstance(point, CounterPoint):
                    family = CounterMetricFamily(name, f"Reported counter: {point.name}")
                else:
                    family = GaugeMetricFamily(name, f"Reported gauge: {point.name}")
                families[name] = family

            sample_name = family.name
            if isinstance(family, CounterMetricFamily):
                sample_name = f"{family.name}_total"
            family.add_sample(sample_name, self._labels(point), float(point.value))

        yield from families.values()

    def close(self) -> None:
        with self._lock:
            self._points = []
