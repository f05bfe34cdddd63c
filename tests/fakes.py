from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from battery_agent.hardware.gateway import (
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    USER_DESCRIPTION_UUID,
    AdapterUnavailable,
    BleError,
    BleGateway,
    ConnectionEvent,
    Peripheral,
    Stream,
)

Value = Union[bytes, Exception]


@dataclass
class FakeDescriptor:
    value: Value
    uuid: str = USER_DESCRIPTION_UUID
    handle: int = 0


@dataclass
class FakeCharacteristic:
    handle: int
    value: Value = b"\x50"
    uuid: str = BATTERY_LEVEL_UUID
    properties: tuple[str, ...] = ("read", "notify")
    descriptors: list[FakeDescriptor] = field(default_factory=list)


@dataclass
class FakeService:
    characteristics: list[FakeCharacteristic]
    uuid: str = BATTERY_SERVICE_UUID


@dataclass
class FakeDevice:
    id: str
    name: Optional[str]
    services: list[FakeService]


def battery_char(
    handle: int,
    value: Value = b"\x50",
    label: Union[str, bytes, Exception, None] = None,
    **kwargs: Any,
) -> FakeCharacteristic:
    descriptors = []
    if label is not None:
        raw = label.encode("utf-8") if isinstance(label, str) else label
        descriptors.append(FakeDescriptor(value=raw))
    return FakeCharacteristic(handle=handle, value=value, descriptors=descriptors, **kwargs)


def battery_device(device_id: str, name: Optional[str] = "Keyboard", *chars: FakeCharacteristic) -> FakeDevice:
    if not chars:
        chars = (battery_char(1, label="Central"),)
    return FakeDevice(id=device_id, name=name, services=[FakeService(characteristics=list(chars))])


class FakeGateway(BleGateway):
    """Scripted adapter: every device, link and notification is driven by the test."""

    def __init__(self, *devices: FakeDevice) -> None:
        self.devices = {device.id: device for device in devices}
        self.system_connected: set[str] = set()
        self.advertising: list[str] = []
        self.connected: set[str] = set()
        self.available = True
        self.supports_events = True
        self.hang_disconnect = False
        # Connect returns before the link is up; complete_link brings it up.
        self.defer_link = False
        self.pending_links: set[str] = set()
        self.connect_errors: set[str] = set()
        self.notify_errors: set[str] = set()
        self.services_error: Optional[Exception] = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.discover_calls = 0
        self.reads: list[Any] = []
        self.closed = False
        self._listeners: dict[str, list[Stream[ConnectionEvent]]] = {}
        self._notify: dict[tuple[str, int], Stream[bytes]] = {}

    def peripheral(self, device_id: str) -> Peripheral:
        device = self.devices[device_id]
        return Peripheral(id=device.id, name=device.name)

    async def wait_available(self) -> None:
        if not self.available:
            raise AdapterUnavailable("Bluetooth adapter not available")

    def discover(self, service_uuids) -> Stream[Peripheral]:
        self.discover_calls += 1
        stream: Stream[Peripheral] = Stream()
        for device_id in self.advertising:
            stream.feed(self.peripheral(device_id))
        # Each scan window ends after the current advertisers were reported.
        stream.end()
        return stream

    async def connected_devices(self, service_uuids) -> list[Peripheral]:
        await self.wait_available()
        return [self.peripheral(device_id) for device_id in self.devices if device_id in self.system_connected]

    async def connect(self, device: Peripheral) -> None:
        self.connect_calls += 1
        await asyncio.sleep(0)
        if device.id in self.connect_errors:
            raise BleError(f"connect to {device.id} failed")
        if device.id in self.connected:
            return
        if self.defer_link:
            self.pending_links.add(device.id)
            return
        self.connected.add(device.id)
        self._broadcast(device.id, ConnectionEvent.CONNECTED)

    async def disconnect(self, device: Peripheral) -> None:
        self.disconnect_calls += 1
        if self.hang_disconnect:
            await asyncio.Event().wait()
        if device.id in self.connected:
            self.drop_connection(device.id)

    async def is_connected(self, device: Peripheral) -> bool:
        return device.id in self.connected

    def connection_events(self, device: Peripheral) -> Optional[Stream[ConnectionEvent]]:
        if not self.supports_events:
            return None
        listeners = self._listeners.setdefault(device.id, [])
        stream: Stream[ConnectionEvent] = Stream(on_close=lambda: listeners.remove(stream))
        listeners.append(stream)
        return stream

    async def services(self, device: Peripheral) -> list[Any]:
        if self.services_error is not None:
            raise self.services_error
        return list(self.devices[device.id].services)

    async def characteristics(self, device: Peripheral, service: Any) -> list[Any]:
        return list(service.characteristics)

    async def descriptors(self, device: Peripheral, characteristic: Any) -> list[Any]:
        return list(characteristic.descriptors)

    async def read(self, device: Peripheral, attribute: Any) -> bytes:
        self.reads.append(attribute)
        await asyncio.sleep(0)
        if isinstance(attribute.value, Exception):
            raise attribute.value
        return attribute.value

    async def notify(self, device: Peripheral, characteristic: Any) -> Stream[bytes]:
        if device.id in self.notify_errors:
            raise BleError(f"subscribe on {device.id} failed")
        key = (device.id, characteristic.handle)
        previous = self._notify.pop(key, None)
        if previous is not None:
            previous.end()

        def _on_close() -> None:
            if self._notify.get(key) is stream:
                del self._notify[key]

        stream: Stream[bytes] = Stream(on_close=_on_close)
        self._notify[key] = stream
        return stream

    def properties(self, characteristic: Any) -> frozenset[str]:
        return frozenset(characteristic.properties)

    async def close(self) -> None:
        self.closed = True

    # Test drivers.

    def subscriptions(self, device_id: str) -> list[int]:
        return sorted(handle for (owner, handle) in self._notify if owner == device_id)

    def push_value(self, device_id: str, handle: int, data: bytes) -> None:
        self._notify[(device_id, handle)].feed(data)

    def end_notifications(self, device_id: str, error: Optional[Exception] = None) -> None:
        for key, stream in list(self._notify.items()):
            if key[0] == device_id:
                stream.end(error)

    def listener_count(self, device_id: str) -> int:
        return len(self._listeners.get(device_id, ()))

    def complete_link(self, device_id: str) -> None:
        self.pending_links.discard(device_id)
        self.connected.add(device_id)
        self._broadcast(device_id, ConnectionEvent.CONNECTED)

    def signal_link(self, device_id: str, event: ConnectionEvent) -> None:
        """Deliver a link event without touching link state or notify streams."""

        self._broadcast(device_id, event)

    def drop_connection(self, device_id: str) -> None:
        self.connected.discard(device_id)
        self.end_notifications(device_id)
        self._broadcast(device_id, ConnectionEvent.DISCONNECTED)

    def _broadcast(self, device_id: str, event: ConnectionEvent) -> None:
        for stream in list(self._listeners.get(device_id, ())):
            stream.feed(event)


class RecordingEmitter:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append((name, payload))

    def statuses(self, device_id: Optional[str] = None) -> list[bool]:
        return [
            payload["connected"]
            for name, payload in self.events
            if name == "battery-monitor-status" and (device_id is None or payload["id"] == device_id)
        ]

    def infos(self, device_id: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            payload["battery_info"]
            for name, payload in self.events
            if name == "battery-info-notification" and (device_id is None or payload["id"] == device_id)
        ]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
