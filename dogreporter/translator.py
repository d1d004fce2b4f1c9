"""Translation of registry metrics into series points."""
import decimal
import logging
import numbers
from typing import Any, FrozenSet, Iterable, List, Optional, Sequence, Union

import numpy as np

from dogreporter.expansions import ALL, Expansion, expansions_for
from dogreporter.naming import DefaultMetricNameFormatter, MetricNameFormatter
from dogreporter.series import CounterPoint, GaugePoint, SeriesPoint
from dogreporter.tags import Tagged, merge_tags
from dogreporter.units import TimeUnit

logger = logging.getLogger(__name__)

# Snapshot attribute read for each stats expansion
_SNAPSHOT_FIELDS = {
    Expansion.MAX: "max",
    Expansion.MEAN: "mean",
    Expansion.MIN: "min",
    Expansion.STD_DEV: "stddev",
    Expansion.MEDIAN: "median",
    Expansion.P75: "p75",
    Expansion.P95: "p95",
    Expansion.P98: "p98",
    Expansion.P99: "p99",
    Expansion.P999: "p999",
}

# Metered accessor called for each rate expansion
_RATE_ACCESSORS = {
    Expansion.RATE_1_MINUTE: "one_minute_rate",
    Expansion.RATE_5_MINUTE: "five_minute_rate",
    Expansion.RATE_15_MINUTE: "fifteen_minute_rate",
    Expansion.RATE_MEAN: "mean_rate",
}


def to_number(value: Any) -> Optional[Union[int, float]]:
    """Return ``value`` as a plain ``int`` or ``float``, or ``None`` if unusable.

    Booleans and complex numbers are not numbers here; NaN and infinities are
    dropped. Numpy scalars, ``Decimal`` and ``Fraction`` come back as builtins
    so the batch stays JSON-serializable.
    """
    if isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    if not isinstance(value, (numbers.Real, decimal.Decimal)):
        return None
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return None
    if not np.isfinite(number):
        return None
    return number


def metric_tags(metric: Any, tags: Sequence[str]) -> Sequence[str]:
    """Fold a tagged metric's own tags into ``tags``."""
    if isinstance(metric, Tagged):
        return merge_tags(tags, metric.tags())
    return tags


class MetricTranslator:
    """Converts one metric's current values into series points.

    Translation never raises for unusable values: a facet whose value is not
    a finite number is simply left out.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        expansions: Optional[Iterable[Expansion]] = None,
        rate_unit: TimeUnit = TimeUnit.SECONDS,
        duration_unit: TimeUnit = TimeUnit.MILLISECONDS,
        name_formatter: Optional[MetricNameFormatter] = None,
    ):
        self.host = host
        self.expansions: FrozenSet[Expansion] = ALL if expansions is None else frozenset(expansions)
        self.rate_unit = rate_unit
        self.duration_unit = duration_unit
        self.name_formatter = name_formatter or DefaultMetricNameFormatter()
        self.rate_factor = rate_unit.seconds
        self.duration_factor = 1.0 / duration_unit.nanos

    def convert_rate(self, rate: float) -> float:
        return rate * self.rate_factor

    def convert_duration(self, duration: float) -> float:
        return duration * self.duration_factor

    def _gauge(self, name: str, value: Any, timestamp: int, tags: Sequence[str],
               expansion: Optional[Expansion] = None) -> Optional[GaugePoint]:
        number = to_number(value)
        if number is None:
            logger.debug(f"Dropping non-numeric value for {name} ({expansion}): {value!r}")
            return None
        if expansion is not None:
            name = self.name_formatter.format(name, expansion.suffix)
        return GaugePoint(name, number, timestamp, self.host, list(tags))

    def _counter(self, name: str, count: Any, timestamp: int, tags: Sequence[str]) -> Optional[CounterPoint]:
        number = to_number(count)
        if number is None:
            logger.debug(f"Dropping non-numeric count for {name}: {count!r}")
            return None
        return CounterPoint(name, number, timestamp, self.host, list(tags))

    def translate_gauge(self, name: str, gauge: Any, timestamp: int, tags: Sequence[str]) -> List[SeriesPoint]:
        point = self._gauge(name, gauge.value(), timestamp, metric_tags(gauge, tags))
        return [point] if point is not None else []

    def translate_counter(self, name: str, counter: Any, timestamp: int, tags: Sequence[str]) -> List[SeriesPoint]:
        point = self._counter(name, counter.count(), timestamp, metric_tags(counter, tags))
        return [point] if point is not None else []

    def translate_histogram(self, name: str, histogram: Any, timestamp: int, tags: Sequence[str]) -> List[SeriesPoint]:
        return self._expand("histogram", name, histogram, timestamp, metric_tags(histogram, tags))

    def translate_meter(self, name: str, meter: Any, timestamp: int, tags: Sequence[str]) -> List[SeriesPoint]:
        return self._expand("meter", name, meter, timestamp, metric_tags(meter, tags))

    def translate_timer(self, name: str, timer: Any, timestamp: int, tags: Sequence[str]) -> List[SeriesPoint]:
        # Rates reuse the merged tags so a tagged timer is only merged once
        return self._expand("timer", name, timer, timestamp, metric_tags(timer, tags))

    def _expand(self, kind: str, name: str, metric: Any, timestamp: int, merged: Sequence[str]) -> List[SeriesPoint]:
        """Emit one point per active expansion of ``kind``, in catalog order."""
        snapshot = None
        points: List[Optional[SeriesPoint]] = []
        for expansion in expansions_for(kind, self.expansions):
            if expansion is Expansion.COUNT:
                points.append(self._counter(name, metric.count(), timestamp, merged))
            elif expansion in _RATE_ACCESSORS:
                rate = to_number(getattr(metric, _RATE_ACCESSORS[expansion])())
                value = self.convert_rate(rate) if rate is not None else None
                points.append(self._gauge(name, value, timestamp, merged, expansion))
            else:
                if snapshot is None:
                    snapshot = metric.snapshot()
                value = getattr(snapshot, _SNAPSHOT_FIELDS[expansion])
                if kind == "timer":
                    duration = to_number(value)
                    value = self.convert_duration(duration) if duration is not None else None
                points.append(self._gauge(name, value, timestamp, merged, expansion))
        return [p for p in points if p is not None]

    def translate(self, kind: str, name: str, metric: Any, timestamp: int, tags: Sequence[str]) -> List[SeriesPoint]:
        """Dispatch on metric kind (``gauge``, ``counter``, ...)."""
        try:
            handler = getattr(self, f"translate_{kind}")
        except AttributeError:
            raise ValueError(f"Unknown metric kind: {kind!r}") from None
        return handler(name, metric, timestamp, tags)
