"""Series name composition."""
from typing import Optional, Protocol


class MetricNameFormatter(Protocol):
    """Joins a base metric name with an expansion suffix."""

    def format(self, name: str, suffix: Optional[str] = None) -> str:
        ...


class DefaultMetricNameFormatter:
    """Joins name and suffix with a separator (``.`` by default)."""

    def __init__(self, separator: str = "."):
        self.separator = separator

    def format(self, name: str, suffix: Optional[str] = None) -> str:
        if not suffix:
            return name
        return f"{name}{self.separator}{suffix}"

    def __repr__(self) -> str:
        return f"DefaultMetricNameFormatter(separator={self.separator!r})"


def prefixed(prefix: Optional[str], name: str) -> str:
    """Apply the global prefix ahead of any suffixing."""
    if not prefix:
        return name
    return f"{prefix}.{name}"
