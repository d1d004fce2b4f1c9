"""Thread-safe in-process metrics registry.

The reporter only reads from the registry; applications update metrics
from any thread.
"""
import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

import numpy as np

MetricFilter = Callable[[str, Any], bool]

DEFAULT_RESERVOIR_SIZE = 1028


def accept_all(name: str, metric: Any) -> bool:
    """Filter that keeps every metric."""
    return True


def name_prefix_filter(prefix: str) -> MetricFilter:
    """Filter keeping metrics whose registry name starts with ``prefix``."""
    def _filter(name: str, metric: Any) -> bool:
        return name.startswith(prefix)
    return _filter


@dataclass(frozen=True)
class Snapshot:
    """Pre-computed statistics over a set of samples."""
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    stddev: float = 0.0
    median: float = 0.0
    p75: float = 0.0
    p95: float = 0.0
    p98: float = 0.0
    p99: float = 0.0
    p999: float = 0.0
    size: int = 0

    @classmethod
    def from_values(cls, values) -> "Snapshot":
        samples = np.asarray(list(values), dtype=float)
        if samples.size == 0:
            return cls()
        median, p75, p95, p98, p99, p999 = np.percentile(
            samples, [50, 75, 95, 98, 99, 99.9]
        )
        stddev = samples.std(ddof=1) if samples.size > 1 else 0.0
        return cls(
            min=float(samples.min()),
            max=float(samples.max()),
            mean=float(samples.mean()),
            stddev=float(stddev),
            median=float(median),
            p75=float(p75),
            p95=float(p95),
            p98=float(p98),
            p99=float(p99),
            p999=float(p999),
            size=int(samples.size),
        )


class Counter:
    """Monotonic-ish event count that can also be decremented."""
    kind = "counter"

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self._count += n

    def dec(self, n: int = 1) -> None:
        with self._lock:
            self._count -= n

    def count(self) -> int:
        return self._count


class Gauge:
    """Reads its value from a callable at report time."""
    kind = "gauge"

    def __init__(self, fn: Callable[[], Any]):
        self._fn = fn

    def value(self) -> Any:
        return self._fn()


class TaggedGauge(Gauge):
    """Gauge carrying its own tags and an optional published name."""

    def __init__(self, fn: Callable[[], Any], tags: Optional[List[str]] = None, name: Optional[str] = None):
        super().__init__(fn)
        self._tags = list(tags or [])
        self._name = name

    def tags(self) -> List[str]:
        return list(self._tags)

    def override_name(self) -> Optional[str]:
        return self._name


class Histogram:
    """Distribution of values over a sliding window of recent samples."""
    kind = "histogram"

    def __init__(self, reservoir_size: int = DEFAULT_RESERVOIR_SIZE):
        self._lock = threading.Lock()
        self._samples: Deque[float] = deque(maxlen=reservoir_size)
        self._count = 0

    def update(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._samples.append(value)

    def count(self) -> int:
        return self._count

    def snapshot(self) -> Snapshot:
        with self._lock:
            values = list(self._samples)
        return Snapshot.from_values(values)


class EWMA:
    """Exponentially-weighted moving average of a per-second rate."""

    def __init__(self, alpha: float, interval_s: float):
        self._alpha = alpha
        self._interval_s = interval_s
        self._uncounted = 0
        self._rate = 0.0
        self._initialized = False

    @classmethod
    def for_minutes(cls, minutes: int, interval_s: float = 5.0) -> "EWMA":
        return cls(1 - math.exp(-interval_s / 60.0 / minutes), interval_s)

    def update(self, n: int) -> None:
        self._uncounted += n

    def tick(self) -> None:
        count, self._uncounted = self._uncounted, 0
        instant_rate = count / self._interval_s
        if self._initialized:
            self._rate += self._alpha * (instant_rate - self._rate)
        else:
            self._rate = instant_rate
            self._initialized = True

    def rate(self) -> float:
        return self._rate


class Meter:
    """Rate of events per second: mean and 1/5/15-minute moving averages."""
    kind = "meter"

    TICK_INTERVAL_S = 5.0

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._start = clock()
        self._last_tick = self._start
        self._m1 = EWMA.for_minutes(1, self.TICK_INTERVAL_S)
        self._m5 = EWMA.for_minutes(5, self.TICK_INTERVAL_S)
        self._m15 = EWMA.for_minutes(15, self.TICK_INTERVAL_S)

    def mark(self, n: int = 1) -> None:
        with self._lock:
            self._tick_if_necessary()
            self._count += n
            for ewma in (self._m1, self._m5, self._m15):
                ewma.update(n)

    def _tick_if_necessary(self) -> None:
        now = self._clock()
        age = now - self._last_tick
        if age > self.TICK_INTERVAL_S:
            self._last_tick = now - age % self.TICK_INTERVAL_S
            for _ in range(int(age // self.TICK_INTERVAL_S)):
                for ewma in (self._m1, self._m5, self._m15):
                    ewma.tick()

    def count(self) -> int:
        return self._count

    def _rate(self, ewma: EWMA) -> float:
        with self._lock:
            self._tick_if_necessary()
            return ewma.rate()

    def one_minute_rate(self) -> float:
        return self._rate(self._m1)

    def five_minute_rate(self) -> float:
        return self._rate(self._m5)

    def fifteen_minute_rate(self) -> float:
        return self._rate(self._m15)

    def mean_rate(self) -> float:
        if self._count == 0:
            return 0.0
        elapsed = self._clock() - self._start
        if elapsed <= 0:
            return 0.0
        return self._count / elapsed


class Timer:
    """Histogram of durations (nanoseconds) plus a meter of their rate."""
    kind = "timer"

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 reservoir_size: int = DEFAULT_RESERVOIR_SIZE):
        self._histogram = Histogram(reservoir_size)
        self._meter = Meter(clock)

    def update(self, duration_ns: int) -> None:
        if duration_ns < 0:
            return
        self._histogram.update(duration_ns)
        self._meter.mark()

    @contextmanager
    def time(self) -> Iterator[None]:
        """Time the body of a ``with`` block."""
        start = time.perf_counter_ns()
        try:
            yield
        finally:
            self.update(time.perf_counter_ns() - start)

    def snapshot(self) -> Snapshot:
        return self._histogram.snapshot()

    def count(self) -> int:
        return self._meter.count()

    def one_minute_rate(self) -> float:
        return self._meter.one_minute_rate()

    def five_minute_rate(self) -> float:
        return self._meter.five_minute_rate()

    def fifteen_minute_rate(self) -> float:
        return self._meter.fifteen_minute_rate()

    def mean_rate(self) -> float:
        return self._meter.mean_rate()


@dataclass
class RegistrySnapshot:
    """Point-in-time view of a registry, each mapping ordered by name."""
    gauges: Dict[str, Any] = field(default_factory=dict)
    counters: Dict[str, Any] = field(default_factory=dict)
    histograms: Dict[str, Any] = field(default_factory=dict)
    meters: Dict[str, Any] = field(default_factory=dict)
    timers: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return (len(self.gauges) + len(self.counters) + len(self.histograms)
                + len(self.meters) + len(self.timers))


_SNAPSHOT_FIELDS = {
    "gauge": "gauges",
    "counter": "counters",
    "histogram": "histograms",
    "meter": "meters",
    "timer": "timers",
}


class MetricRegistry:
    """Named collection of metrics."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._metrics: Dict[str, Any] = {}

    def register(self, name: str, metric: Any) -> Any:
        if not name:
            raise ValueError("Metric name must not be empty")
        if getattr(metric, "kind", None) not in _SNAPSHOT_FIELDS:
            raise ValueError(f"Unsupported metric type for '{name}': {type(metric).__name__}")
        with self._lock:
            if name in self._metrics:
                raise ValueError(f"A metric named '{name}' already exists")
            self._metrics[name] = metric
        return metric

    def _get_or_add(self, name: str, cls, factory: Callable[[], Any]) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = factory()
                self._metrics[name] = metric
            elif not isinstance(metric, cls):
                raise ValueError(f"'{name}' is already registered as a {metric.kind}")
            return metric

    def counter(self, name: str) -> Counter:
        return self._get_or_add(name, Counter, Counter)

    def histogram(self, name: str) -> Histogram:
        return self._get_or_add(name, Histogram, Histogram)

    def meter(self, name: str) -> Meter:
        return self._get_or_add(name, Meter, lambda: Meter(self._clock))

    def timer(self, name: str) -> Timer:
        return self._get_or_add(name, Timer, lambda: Timer(self._clock))

    def gauge(self, name: str, fn: Optional[Callable[[], Any]] = None) -> Gauge:
        if fn is None:
            with self._lock:
                metric = self._metrics.get(name)
            if not isinstance(metric, Gauge):
                raise KeyError(f"No gauge named '{name}'")
            return metric
        return self._get_or_add(name, Gauge, lambda: Gauge(fn))

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._metrics.pop(name, None) is not None

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._metrics)

    def snapshot(self, metric_filter: Optional[MetricFilter] = None) -> RegistrySnapshot:
        """Return the registered metrics grouped by kind, sorted by name."""
        metric_filter = metric_filter or accept_all
        with self._lock:
            items = sorted(self._metrics.items())

        snapshot = RegistrySnapshot()
        for name, metric in items:
            if metric_filter(name, metric):
                getattr(snapshot, _SNAPSHOT_FIELDS[metric.kind])[name] = metric
        return snapshot
