"""Request body serialization for the series API.

A serializer is single use. The call order is::

    start_object() -> append_gauge()/append_counter() ... -> end_object() -> get_as_string()

Nothing may be appended once ``end_object()`` has been called.
"""
import json
from typing import Any, Dict, List, Protocol

from dogreporter.series import CounterPoint, GaugePoint


class SerializerStateError(RuntimeError):
    """A serializer method was called out of order."""


class Serializer(Protocol):
    def start_object(self) -> None:
        ...

    def append_gauge(self, gauge: GaugePoint) -> None:
        ...

    def append_counter(self, counter: CounterPoint) -> None:
        ...

    def end_object(self) -> None:
        ...

    def get_as_string(self) -> str:
        ...


class JsonSerializer:
    """Builds ``{"series": [...]}`` JSON bodies."""

    NEW = "new"
    STARTED = "started"
    ENDED = "ended"

    def __init__(self):
        self._state = self.NEW
        self._series: List[Dict[str, Any]] = []
        self._body = None

    def _expect(self, state: str, action: str) -> None:
        if self._state != state:
            raise SerializerStateError(f"Cannot {action} when serializer is {self._state}")

    def start_object(self) -> None:
        self._expect(self.NEW, "start object")
        self._state = self.STARTED

    def append_gauge(self, gauge: GaugePoint) -> None:
        self._expect(self.STARTED, "append gauge")
        self._series.append(gauge.to_dict())

    def append_counter(self, counter: CounterPoint) -> None:
        self._expect(self.STARTED, "append counter")
        self._series.append(counter.to_dict())

    def end_object(self) -> None:
        self._expect(self.STARTED, "end object")
        self._body = json.dumps({"series": self._series}, separators=(",", ":"))
        self._state = self.ENDED

    def get_as_string(self) -> str:
        self._expect(self.ENDED, "get body")
        return self._body

    def __len__(self) -> int:
        return len(self._series)
