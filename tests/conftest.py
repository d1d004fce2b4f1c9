"""Shared fixtures: an in-memory transport and a controllable clock."""
from typing import List

import pytest

from dogreporter.series import CounterPoint, GaugePoint, SeriesPoint
from dogreporter.transport import TransportError


class RecordingRequest:
    def __init__(self, transport):
        self.transport = transport
        self.points: List[SeriesPoint] = []
        self.sent = False

    def add_gauge(self, gauge: GaugePoint):
        if self.transport.fail_on_add:
            raise TransportError("add failed")
        self.points.append(gauge)

    def add_counter(self, counter: CounterPoint):
        if self.transport.fail_on_add:
            raise TransportError("add failed")
        self.points.append(counter)

    def send(self):
        self.transport.send_calls += 1
        if self.transport.fail_on_send:
            raise TransportError("send failed")
        self.sent = True
        self.transport.batches.append(list(self.points))


class RecordingTransport:
    """Keeps every sent batch; can be told to fail at each step."""

    def __init__(self):
        self.requests: List[RecordingRequest] = []
        self.batches: List[List[SeriesPoint]] = []
        self.send_calls = 0
        self.closed = False
        self.fail_on_prepare = False
        self.fail_on_add = False
        self.fail_on_send = False

    def prepare(self):
        if self.fail_on_prepare:
            raise TransportError("prepare failed")
        request = RecordingRequest(self)
        self.requests.append(request)
        return request

    def close(self):
        self.closed = True

    @property
    def last_batch(self) -> List[SeriesPoint]:
        return self.batches[-1]


class FakeClock:
    """Callable clock returning seconds; advanced by hand."""

    def __init__(self, now: float = 1_700_000_000.5):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def clock():
    return FakeClock()
