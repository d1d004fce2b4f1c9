"""Time units used for rate and duration conversion."""
from enum import Enum


class TimeUnit(Enum):
    """Time unit measured in nanoseconds."""
    NANOSECONDS = 1
    MICROSECONDS = 1_000
    MILLISECONDS = 1_000_000
    SECONDS = 1_000_000_000
    MINUTES = 60 * 1_000_000_000
    HOURS = 3_600 * 1_000_000_000
    DAYS = 86_400 * 1_000_000_000

    @property
    def nanos(self) -> int:
        return self.value

    @property
    def seconds(self) -> float:
        """Length of one unit in seconds (fractional below one second)."""
        return self.value / TimeUnit.SECONDS.value

    @property
    def label(self) -> str:
        """Singular lowercase name, e.g. ``second``."""
        return self.name.lower()[:-1]

    @classmethod
    def parse(cls, value) -> "TimeUnit":
        """Resolve a unit from its name, ``"ms"``-style alias or the enum itself."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "ns": "nanoseconds",
            "us": "microseconds",
            "ms": "milliseconds",
            "s": "seconds",
            "m": "minutes",
            "min": "minutes",
            "h": "hours",
            "d": "days",
        }
        key = aliases.get(key, key)
        if not key.endswith("s"):
            key += "s"
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"Unknown time unit: {value!r}") from None
