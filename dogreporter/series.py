"""Data structures for outbound series points."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

Number = Union[int, float]


@dataclass
class SeriesPoint:
    """A single named, timestamped, tagged value destined for the backend."""
    name: str
    value: Number
    timestamp: int
    host: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    metric_type = "gauge"

    def __post_init__(self):
        if not self.name:
            raise ValueError("Series point name must not be empty")
        self.timestamp = int(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Render the point in the series API shape."""
        body: Dict[str, Any] = {
            "metric": self.name,
            "points": [[self.timestamp, self.value]],
            "type": self.metric_type,
            "tags": list(self.tags),
        }
        if self.host is not None:
            body["host"] = self.host
        return body


@dataclass
class GaugePoint(SeriesPoint):
    """Point-in-time value."""
    metric_type = "gauge"


@dataclass
class CounterPoint(SeriesPoint):
    """Running total of events."""
    metric_type = "count"
