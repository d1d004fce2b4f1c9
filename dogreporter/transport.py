"""Transport boundary and the HTTP series transport."""
import logging
from typing import Callable, Optional, Protocol

import httpx

from dogreporter.serializer import JsonSerializer, Serializer
from dogreporter.series import CounterPoint, GaugePoint

logger = logging.getLogger(__name__)

DEFAULT_SERIES_URL = "https://api.datadoghq.com/api/v1/series"


class TransportError(IOError):
    """Staging or sending a batch failed."""


class Request(Protocol):
    """One outbound batch: stage points, then send once."""

    def add_gauge(self, gauge: GaugePoint) -> None:
        ...

    def add_counter(self, counter: CounterPoint) -> None:
        ...

    def send(self) -> None:
        ...


class Transport(Protocol):
    def prepare(self) -> Request:
        ...

    def close(self) -> None:
        ...


class HttpRequest:
    """Batch serialized into a single POST to the series endpoint."""

    def __init__(self, transport: "HttpTransport", serializer: Serializer):
        self._transport = transport
        self._serializer = serializer
        self._serializer.start_object()

    def add_gauge(self, gauge: GaugePoint) -> None:
        self._serializer.append_gauge(gauge)

    def add_counter(self, counter: CounterPoint) -> None:
        self._serializer.append_counter(counter)

    def send(self) -> None:
        self._serializer.end_object()
        self._transport.post(self._serializer.get_as_string())


class HttpTransport:
    """Posts series batches to the HTTP API with ``httpx``."""

    def __init__(
        self,
        api_key: str,
        url: str = DEFAULT_SERIES_URL,
        timeout_s: float = 5.0,
        client: Optional[httpx.Client] = None,
        serializer_factory: Callable[[], Serializer] = JsonSerializer,
    ):
        if not api_key:
            raise ValueError("An API key is required for the HTTP transport")
        self.url = url
        self.serializer_factory = serializer_factory
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout_s)
        self._headers = {"DD-API-KEY": api_key, "Content-Type": "application/json"}

    def prepare(self) -> HttpRequest:
        return HttpRequest(self, self.serializer_factory())

    def post(self, body: str) -> None:
        try:
            response = self.client.post(self.url, content=body, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Series endpoint returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to post series to {self.url}: {e}") from e
        logger.debug(f"Posted {len(body)} bytes to {self.url} ({response.status_code})")

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
