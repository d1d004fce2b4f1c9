"""Statistical facets that can be emitted for each metric kind."""
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple


class Expansion(Enum):
    """A named statistical facet.

    The value is the wire suffix appended to the metric name. Suffixes are
    part of the published series names and must not change.
    """
    COUNT = "count"
    RATE_MEAN = "meanRate"
    RATE_1_MINUTE = "1MinuteRate"
    RATE_5_MINUTE = "5MinuteRate"
    RATE_15_MINUTE = "15MinuteRate"
    MIN = "min"
    MEAN = "mean"
    MAX = "max"
    STD_DEV = "stddev"
    MEDIAN = "median"
    P75 = "p75"
    P95 = "p95"
    P98 = "p98"
    P99 = "p99"
    P999 = "p999"

    def __str__(self) -> str:
        return self.value

    @property
    def suffix(self) -> str:
        return self.value


ALL: FrozenSet[Expansion] = frozenset(Expansion)

STATS_EXPANSIONS: Tuple[Expansion, ...] = (
    Expansion.MAX,
    Expansion.MEAN,
    Expansion.MIN,
    Expansion.STD_DEV,
    Expansion.MEDIAN,
    Expansion.P75,
    Expansion.P95,
    Expansion.P98,
    Expansion.P99,
    Expansion.P999,
)

RATE_EXPANSIONS: Tuple[Expansion, ...] = (
    Expansion.RATE_1_MINUTE,
    Expansion.RATE_5_MINUTE,
    Expansion.RATE_15_MINUTE,
    Expansion.RATE_MEAN,
)

_KIND_EXPANSIONS = {
    "gauge": (),
    "counter": (),
    "histogram": (Expansion.COUNT,) + STATS_EXPANSIONS,
    "meter": (Expansion.COUNT,) + RATE_EXPANSIONS,
    "timer": STATS_EXPANSIONS + (Expansion.COUNT,) + RATE_EXPANSIONS,
}


def expansions_for(kind: str, active: Optional[Iterable[Expansion]] = None) -> Tuple[Expansion, ...]:
    """Return the expansions applicable to a metric kind in evaluation order.

    When ``active`` is given, only expansions present in it are returned.
    """
    try:
        applicable = _KIND_EXPANSIONS[kind]
    except KeyError:
        raise ValueError(f"Unknown metric kind: {kind!r}") from None
    if active is None:
        return applicable
    active = frozenset(active)
    return tuple(e for e in applicable if e in active)


def parse_expansion(value) -> Expansion:
    """Resolve an expansion from its enum name (``P99``) or wire suffix (``p99``)."""
    if isinstance(value, Expansion):
        return value
    text = str(value).strip()
    try:
        return Expansion[text.upper()]
    except KeyError:
        pass
    for expansion in Expansion:
        if expansion.value.lower() == text.lower():
            return expansion
    raise ValueError(f"Unknown expansion: {value!r}")


def parse_expansions(values: Optional[Iterable]) -> FrozenSet[Expansion]:
    """Build an active expansion set; ``None`` means every expansion."""
    if values is None:
        return ALL
    return frozenset(parse_expansion(v) for v in values)
