"""Report orchestration: drain the registry, translate, send one batch per cycle."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from dogreporter.expansions import Expansion
from dogreporter.naming import MetricNameFormatter, prefixed
from dogreporter.registry import MetricFilter, MetricRegistry, RegistrySnapshot
from dogreporter.series import CounterPoint, SeriesPoint
from dogreporter.tags import Tagged, merge_tags, normalize_tags
from dogreporter.translator import MetricTranslator
from dogreporter.transport import Request, Transport
from dogreporter.units import TimeUnit

logger = logging.getLogger(__name__)

DynamicTagsCallback = Callable[[], Optional[List[str]]]

# Traversal order of the registry collections within a cycle
_COLLECTIONS = (
    ("gauge", "gauges"),
    ("counter", "counters"),
    ("histogram", "histograms"),
    ("meter", "meters"),
    ("timer", "timers"),
)


@dataclass
class CycleResult:
    """Outcome of one report cycle."""
    timestamp: Optional[int]
    success: bool
    points: int = 0
    error: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "success": self.success,
            "points": self.points,
            "error": repr(self.error) if self.error is not None else None,
        }


class ReporterSelfMetrics:
    """Self-monitoring metrics for the reporter, kept in the reported registry."""

    def __init__(self, registry: MetricRegistry, prefix: str = "dogreporter"):
        self.cycles = registry.counter(f"{prefix}.cycles")
        self.cycle_errors = registry.counter(f"{prefix}.cycle_errors")
        self.points = registry.histogram(f"{prefix}.points")
        self.cycle_duration = registry.timer(f"{prefix}.cycle_duration")

    def record_cycle(self, result: CycleResult, duration_ns: int):
        """Record the outcome and duration of a cycle."""
        self.cycles.inc()
        if not result.success:
            self.cycle_errors.inc()
        self.points.update(result.points)
        self.cycle_duration.update(duration_ns)


class DatadogReporter:
    """Periodically reports a metric registry through a transport."""

    def __init__(
        self,
        registry: MetricRegistry,
        transport: Transport,
        metric_filter: Optional[MetricFilter] = None,
        clock: Callable[[], float] = time.time,
        host: Optional[str] = None,
        expansions: Optional[Iterable[Expansion]] = None,
        rate_unit: TimeUnit = TimeUnit.SECONDS,
        duration_unit: TimeUnit = TimeUnit.MILLISECONDS,
        name_formatter: Optional[MetricNameFormatter] = None,
        tags: Optional[Sequence[str]] = None,
        prefix: Optional[str] = None,
        dynamic_tags: Optional[DynamicTagsCallback] = None,
        self_metrics: Optional[ReporterSelfMetrics] = None,
    ):
        if transport is None:
            raise ValueError("Transport for the reporter is None. Please set a valid transport")
        self.registry = registry
        self.transport = transport
        self.metric_filter = metric_filter
        self.clock = clock
        self.tags = normalize_tags(tags)
        self.prefix = prefix
        self.dynamic_tags = dynamic_tags
        self.self_metrics = self_metrics
        self.translator = MetricTranslator(
            host=host,
            expansions=expansions,
            rate_unit=rate_unit,
            duration_unit=duration_unit,
            name_formatter=name_formatter,
        )

        self.cycle_count = 0
        self.last_result: Optional[CycleResult] = None
        self._report_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def for_registry(cls, registry: MetricRegistry) -> "ReporterBuilder":
        return ReporterBuilder(registry)

    @property
    def host(self) -> Optional[str]:
        return self.translator.host

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _now(self) -> Optional[int]:
        try:
            return int(self.clock())
        except Exception as e:
            logger.error(f"Clock failed: {e}", exc_info=True)
            return None

    def _cycle_tags(self) -> Sequence[str]:
        """Static tags plus the dynamic callback's tags, fetched once per cycle."""
        if self.dynamic_tags is None:
            return self.tags
        return merge_tags(self.tags, self.dynamic_tags())

    def _published_name(self, key: str, metric: Any) -> str:
        if isinstance(metric, Tagged):
            override = metric.override_name()
            if override:
                key = override
        return prefixed(self.prefix, key)

    @staticmethod
    def _stage(request: Request, point: SeriesPoint) -> None:
        if isinstance(point, CounterPoint):
            request.add_counter(point)
        else:
            request.add_gauge(point)

    def run_cycle(self, snapshot: RegistrySnapshot) -> CycleResult:
        """Translate every metric in ``snapshot`` into one batch and send it.

        Never raises: any failure abandons the batch, is logged, and is
        returned as a failed result.
        """
        timestamp = None
        staged = 0
        try:
            timestamp = int(self.clock())
            tags = self._cycle_tags()
            request = self.transport.prepare()

            for kind, attr in _COLLECTIONS:
                for key, metric in getattr(snapshot, attr).items():
                    name = self._published_name(key, metric)
                    for point in self.translator.translate(kind, name, metric, timestamp, tags):
                        self._stage(request, point)
                        staged += 1

            request.send()
        except Exception as e:
            logger.error(f"Error reporting metrics ({staged} points staged): {e}", exc_info=True)
            return CycleResult(timestamp, False, staged, e)

        logger.debug(f"Sent {staged} points at {timestamp}")
        return CycleResult(timestamp, True, staged)

    def report(self) -> CycleResult:
        """Run one cycle over a fresh registry snapshot."""
        with self._report_lock:
            start = time.perf_counter_ns()
            try:
                snapshot = self.registry.snapshot(self.metric_filter)
            except Exception as e:
                logger.error(f"Error reading metrics registry: {e}", exc_info=True)
                result = CycleResult(self._now(), False, 0, e)
            else:
                result = self.run_cycle(snapshot)
            duration_ns = time.perf_counter_ns() - start

            if self.self_metrics:
                self.self_metrics.record_cycle(result, duration_ns)

            self.cycle_count += 1
            self.last_result = result

        if self.cycle_count % 60 == 0:
            logger.info(
                f"Cycle {self.cycle_count}: sent {result.points} points "
                f"in {duration_ns / 1e9:.3f}s (success={result.success})"
            )
        return result

    def _run(self, period_s: float):
        logger.info(f"Reporting every {period_s}s")
        wait = period_s
        while not self._stop_event.wait(wait):
            tick_start = time.monotonic()
            try:
                self.report()
            except Exception as e:
                logger.error(f"Error in report cycle: {e}", exc_info=True)

            tick_duration = time.monotonic() - tick_start
            wait = max(0.0, period_s - tick_duration)
            if wait == 0:
                logger.warning(
                    f"Report took {tick_duration:.3f}s, longer than period {period_s}s"
                )

    def start(self, period_s: float):
        """Start reporting on a background thread."""
        if period_s <= 0:
            raise ValueError("Reporting period must be positive")
        if self.running:
            raise RuntimeError("Reporter is already running")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(period_s,),
            name="dogreporter",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout_s: Optional[float] = 5.0):
        """Stop the scheduler and release the transport."""
        logger.info("Stopping reporter")
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout_s)
            self._thread = None
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()


class ReporterBuilder:
    """Assembles a :class:`DatadogReporter` with defaults for every option."""

    def __init__(self, registry: MetricRegistry):
        self.registry = registry
        self.host: Optional[str] = None
        self.expansions: Optional[Iterable[Expansion]] = None
        self.clock: Callable[[], float] = time.time
        self.rate_unit = TimeUnit.SECONDS
        self.duration_unit = TimeUnit.MILLISECONDS
        self.metric_filter: Optional[MetricFilter] = None
        self.name_formatter: Optional[MetricNameFormatter] = None
        self.tags: List[str] = []
        self.transport: Optional[Transport] = None
        self.prefix: Optional[str] = None
        self.dynamic_tags: Optional[DynamicTagsCallback] = None
        self.self_metrics_prefix: Optional[str] = None

    def with_host(self, host: str) -> "ReporterBuilder":
        self.host = host
        return self

    def with_ec2_host(self) -> "ReporterBuilder":
        from dogreporter.aws import get_ec2_instance_id

        self.host = get_ec2_instance_id()
        return self

    def with_expansions(self, expansions: Iterable[Expansion]) -> "ReporterBuilder":
        self.expansions = frozenset(expansions)
        return self

    def with_dynamic_tags(self, callback: DynamicTagsCallback) -> "ReporterBuilder":
        self.dynamic_tags = callback
        return self

    def convert_rates_to(self, unit: TimeUnit) -> "ReporterBuilder":
        self.rate_unit = TimeUnit.parse(unit)
        return self

    def convert_durations_to(self, unit: TimeUnit) -> "ReporterBuilder":
        self.duration_unit = TimeUnit.parse(unit)
        return self

    def with_tags(self, tags) -> "ReporterBuilder":
        """Tags sent with every metric, e.g. ``["env:prod", "version:1.0.1"]``."""
        self.tags = normalize_tags(tags)
        return self

    def with_prefix(self, prefix: Optional[str]) -> "ReporterBuilder":
        self.prefix = prefix
        return self

    def with_clock(self, clock: Callable[[], float]) -> "ReporterBuilder":
        self.clock = clock
        return self

    def filter(self, metric_filter: MetricFilter) -> "ReporterBuilder":
        self.metric_filter = metric_filter
        return self

    def with_name_formatter(self, formatter: MetricNameFormatter) -> "ReporterBuilder":
        self.name_formatter = formatter
        return self

    def with_transport(self, transport: Transport) -> "ReporterBuilder":
        self.transport = transport
        return self

    def with_self_metrics(self, prefix: str = "dogreporter") -> "ReporterBuilder":
        self.self_metrics_prefix = prefix
        return self

    def build(self) -> DatadogReporter:
        if self.transport is None:
            raise ValueError("Transport for the reporter is None. Please set a valid transport")
        self_metrics = None
        if self.self_metrics_prefix:
            self_metrics = ReporterSelfMetrics(self.registry, self.self_metrics_prefix)
        return DatadogReporter(
            self.registry,
            self.transport,
            metric_filter=self.metric_filter,
            clock=self.clock,
            host=self.host,
            expansions=self.expansions,
            rate_unit=self.rate_unit,
            duration_unit=self.duration_unit,
            name_formatter=self.name_formatter,
            tags=self.tags,
            prefix=self.prefix,
            dynamic_tags=self.dynamic_tags,
            self_metrics=self_metrics,
        )
