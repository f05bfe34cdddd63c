"""Adapter gateway contract shared by the bleak backend and the monitors.

Everything the monitoring code needs from the host Bluetooth stack goes
through :class:`BleGateway`. Streams handed out by the gateway are
queue-backed so a pending ``next()`` can be cancelled without losing items,
which lets callers race them against a stop signal.
"""
from __future__ import annotations

import asyncio
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"
USER_DESCRIPTION_UUID = "00002901-0000-1000-8000-00805f9b34fb"

BATTERY_FILTER_UUIDS = [BATTERY_SERVICE_UUID, BATTERY_LEVEL_UUID]

T = TypeVar("T")


def normalize_uuid(value: str) -> str:
    return str(value).strip().lower()


class BleError(Exception):
    """Base class for every failure surfaced by the gateway."""


class AdapterUnavailable(BleError):
    """No Bluetooth radio, or the radio is not ready."""


class DeviceNotFound(BleError):
    """The requested device id is not known to the adapter."""


class GattLookupError(BleError):
    """Service or characteristic enumeration failed."""


class NoNotifiableCharacteristic(BleError):
    """The device exposes no Battery Level characteristic with notify/indicate."""


class StreamError(BleError):
    """A notification or event stream broke."""


class ConnectionEvent(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Peripheral:
    """Device handle: a stable id plus the platform object behind it."""

    id: str
    name: Optional[str] = None
    handle: Any = field(default=None, compare=False, repr=False)


_END = object()


class Stream(Generic[T]):
    """Single-consumer async stream fed by adapter callbacks."""

    def __init__(self, on_close: Optional[Callable[[], None]] = None) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self._ended = False
        self._closed = False

    @property
    def ended(self) -> bool:
        return self._ended

    def feed(self, item: T) -> None:
        if self._ended:
            return
        self._queue.put_nowait(item)

    def end(self, error: Optional[BaseException] = None) -> None:
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(error if error is not None else _END)

    async def next(self) -> Optional[T]:
        """Return the next item, ``None`` once the stream ended cleanly.

        A stream that ended with an error raises it (wrapped in
        :class:`StreamError` unless it already is a :class:`BleError`).
        """

        item = await self._queue.get()
        if item is _END:
            self._queue.put_nowait(_END)
            return None
        if isinstance(item, BaseException):
            self._queue.put_nowait(item)
            if isinstance(item, BleError):
                raise item
            raise StreamError(str(item)) from item
        return item

    def __aiter__(self) -> "Stream[T]":
        return self

    async def __anext__(self) -> T:
        item = await self.next()
        if item is None:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.end()
        if self._on_close is not None:
            self._on_close()


class BleGateway(ABC):
    """Asynchronous, fallible view of the host Bluetooth stack."""

    @abstractmethod
    async def wait_available(self) -> None:
        """Raise :class:`AdapterUnavailable` unless a radio is ready."""

    @abstractmethod
    def discover(self, service_uuids: Iterable[str]) -> Stream[Peripheral]:
        """Start a filtered scan; closing the stream stops scanning."""

    @abstractmethod
    async def connected_devices(self, service_uuids: Iterable[str]) -> list[Peripheral]:
        ...

    @abstractmethod
    async def connect(self, device: Peripheral) -> None:
        """Connect the device; a no-op when it is already connected."""

    @abstractmethod
    async def disconnect(self, device: Peripheral) -> None:
        """Best-effort disconnect. Implementations log failures instead of raising."""

    @abstractmethod
    async def is_connected(self, device: Peripheral) -> bool:
        ...

    @abstractmethod
    def connection_events(self, device: Peripheral) -> Optional[Stream[ConnectionEvent]]:
        """Subscribe to link events, or ``None`` when the platform has none."""

    @abstractmethod
    async def services(self, device: Peripheral) -> list[Any]:
        ...

    @abstractmethod
    async def characteristics(self, device: Peripheral, service: Any) -> list[Any]:
        ...

    @abstractmethod
    async def descriptors(self, device: Peripheral, characteristic: Any) -> list[Any]:
        ...

    @abstractmethod
    async def read(self, device: Peripheral, attribute: Any) -> bytes:
        """Read a characteristic or descriptor value."""

    @abstractmethod
    async def notify(self, device: Peripheral, characteristic: Any) -> Stream[bytes]:
        """Subscribe to notify/indicate values of one characteristic."""

    @abstractmethod
    def properties(self, characteristic: Any) -> frozenset[str]:
        ...

    async def close(self) -> None:
        """Release adapter resources held by the gateway."""
