"""OpenTelemetry push transport using OTLP."""
import logging
import re
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from dogreporter.series import CounterPoint, GaugePoint, SeriesPoint
from dogreporter.tags import tags_to_labels

logger = logging.getLogger(__name__)

_INVALID_INSTRUMENT_CHARS = re.compile(r"[^a-zA-Z0-9_./-]")


def instrument_name(name: str) -> str:
    """Make a series name valid as an OTEL instrument name."""
    safe = _INVALID_INSTRUMENT_CHARS.sub("_", name)
    if not safe[:1].isalpha():
        safe = f"m_{safe}"
    return safe[:255]


class OTELRequest:
    """Batch handed to the meter provider once sent."""

    def __init__(self, transport: "OTELTransport"):
        self._transport = transport
        self._points: List[SeriesPoint] = []

    def add_gauge(self, gauge: GaugePoint) -> None:
        self._points.append(gauge)

    def add_counter(self, counter: CounterPoint) -> None:
        self._points.append(counter)

    def send(self) -> None:
        self._transport.publish(self._points)


class OTELTransport:
    """Feeds sent batches into OpenTelemetry instruments.

    Handles the semantic differences between the series model and OTEL:
    - Counter points carry cumulative counts, OTEL counters need deltas
    - Gauge points carry absolute values, served through observable gauges
    """

    def __init__(
        self,
        endpoint: str = "localhost:4317",
        insecure: bool = True,
        prefix: str = "",
        export_interval_s: int = 10,
        headers: Optional[Dict[str, str]] = None,
        resource: Optional[Dict[str, str]] = None,
        metric_readers: Optional[Sequence[MetricReader]] = None,
    ):
        self.endpoint = endpoint
        self.prefix = prefix
        self._lock = threading.Lock()

        self.counters: Dict[str, metrics.Counter] = {}
        # Key format: "metric_name:label1=val1,label2=val2"
        self.counter_state: Dict[str, float] = {}

        self.gauges: Dict[str, metrics.ObservableGauge] = {}
        # metric_name -> {series_key -> (attributes, value)}
        self.gauge_values: Dict[str, Dict[str, Tuple[Dict[str, str], float]]] = {}

        resource_attrs = {"service.name": "dogreporter"}
        resource_attrs.update(resource or {})

        if metric_readers is None:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

            exporter = OTLPMetricExporter(
                endpoint=endpoint,
                insecure=insecure,
                headers=tuple(headers.items()) if headers else None,
            )
            metric_readers = [
                PeriodicExportingMetricReader(exporter, export_interval_millis=export_interval_s * 1000)
            ]
            logger.info(f"OTEL transport initialized, pushing to {endpoint}")

        self.meter_provider = MeterProvider(
            resource=Resource.create(resource_attrs),
            metric_readers=list(metric_readers),
        )
        self.meter = self.meter_provider.get_meter(__name__)

    def prepare(self) -> OTELRequest:
        return OTELRequest(self)

    def _series_key(self, metric_name: str, attributes: Dict[str, str]) -> str:
        """Generate unique key for a time series (metric + attributes)."""
        label_str = ",".join(f"{k}={v}" for k, v in sorted(attributes.items()))
        return f"{metric_name}:{label_str}"

    def _attributes(self, point: SeriesPoint) -> Dict[str, str]:
        attributes = tags_to_labels(point.tags)
        if point.host is not None:
            attributes.setdefault("host", point.host)
        return attributes

    def publish(self, points: List[SeriesPoint]) -> None:
        with self._lock:
            for point in points:
                name = instrument_name(f"{self.prefix}{point.name}")
                attributes = self._attributes(point)
                if isinstance(point, CounterPoint):
                    self._add_counter(name, attributes, point.value)
                else:
                    self._set_gauge(name, attributes, point.value)

    def _add_counter(self, name: str, attributes: Dict[str, str], value: float) -> None:
        counter = self.counters.get(name)
        if counter is None:
            counter = self.meter.create_counter(name=name, description=f"Reported counter: {name}", unit="1")
            self.counters[name] = counter

        series_key = self._series_key(name, attributes)
        prev_value = self.counter_state.get(series_key, 0.0)
        delta = value - prev_value

        if delta > 0:
            counter.add(delta, attributes=attributes)
        elif delta < 0:
            # Counter reset detected - treat current value as delta
            logger.debug(f"Counter reset detected for {series_key}, using full value")
            if value > 0:
                counter.add(value, attributes=attributes)
        self.counter_state[series_key] = value

    def _set_gauge(self, name: str, attributes: Dict[str, str], value: float) -> None:
        if name not in self.gauges:
            self.gauges[name] = self.meter.create_observable_gauge(
                name=name,
                callbacks=[self._gauge_callback(name)],
                description=f"Reported gauge: {name}",
                unit="1",
            )
        series_key = self._series_key(name, attributes)
        self.gauge_values.setdefault(name, {})[series_key] = (attributes, float(value))

    def _gauge_callback(self, name: str):
        def callback(options):
            with self._lock:
                values = list(self.gauge_values.get(name, {}).values())
            return [metrics.Observation(value, attributes=attributes) for attributes, value in values]
        return callback

    def force_flush(self, timeout_millis: int = 10_000) -> bool:
        return self.meter_provider.force_flush(timeout_millis)

    def close(self) -> None:
        """Shutdown OTEL meter provider."""
        self.meter_provider.shutdown()
        logger.info("OTEL transport shutdown complete")
