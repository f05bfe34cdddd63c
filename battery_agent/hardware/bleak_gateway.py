"""bleak backed implementation of the adapter gateway."""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Set, Tuple

from bleak import BleakClient, BleakScanner
from bleak.backends.descriptor import BleakGATTDescriptor
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from battery_agent.config import BluetoothConfig
from battery_agent.hardware.gateway import (
    AdapterUnavailable,
    BleError,
    BleGateway,
    ConnectionEvent,
    Peripheral,
    Stream,
)

logger = logging.getLogger(__name__)


@contextmanager
def _ble_errors(action: str) -> Iterator[None]:
    try:
        yield
    except BleError:
        raise
    except (BleakError, asyncio.TimeoutError, OSError) as exc:
        raise BleError(f"{action} failed: {exc}") from exc


def _peripheral(device: BLEDevice) -> Peripheral:
    return Peripheral(id=str(device.address), name=device.name, handle=device)


class BleakGateway(BleGateway):
    """Owns one BleakClient per device id and fans its callbacks out as streams."""

    def __init__(self, config: BluetoothConfig) -> None:
        self.config = config
        self._clients: Dict[str, BleakClient] = {}
        self._known: Dict[str, Peripheral] = {}
        self._connect_locks: Dict[str, asyncio.Lock] = {}
        self._listeners: Dict[str, Set[Stream[ConnectionEvent]]] = {}
        self._notify_streams: Dict[Tuple[str, int], Stream[bytes]] = {}
        self._background: Set[asyncio.Task] = set()

    def _adapter_kwargs(self) -> Dict[str, Any]:
        if self.config.adapter:
            return {"adapter": self.config.adapter}
        return {}

    async def wait_available(self) -> None:
        scanner = BleakScanner(**self._adapter_kwargs())
        try:
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as exc:
            raise AdapterUnavailable(f"Bluetooth adapter not available: {exc}") from exc

    def discover(self, service_uuids: Iterable[str]) -> Stream[Peripheral]:
        uuids = list(service_uuids)
        stop = asyncio.Event()

        def _on_close() -> None:
            stop.set()

        stream: Stream[Peripheral] = Stream(on_close=_on_close)

        def _on_detect(device: BLEDevice, _advertisement) -> None:
            peripheral = _peripheral(device)
            self._known[peripheral.id] = peripheral
            stream.feed(peripheral)

        async def _scan() -> None:
            scanner = BleakScanner(
                detection_callback=_on_detect,
                service_uuids=uuids,
                **self._adapter_kwargs(),
            )
            try:
                await scanner.start()
            except (BleakError, OSError) as exc:
                stream.end(BleError(f"BLE scan failed to start: {exc}"))
                return
            try:
                await stop.wait()
            finally:
                try:
                    await scanner.stop()
                except (BleakError, OSError) as exc:
                    logger.debug("BLE scan stop failed: %s", exc)
                stream.end()

        task = asyncio.get_running_loop().create_task(_scan(), name="ble-discovery")
        self._track(task)
        return stream

    async def connected_devices(self, service_uuids: Iterable[str]) -> list[Peripheral]:
        with _ble_errors("BLE device lookup"):
            devices = await BleakScanner.discover(
                timeout=self.config.scan_timeout_seconds,
                service_uuids=list(service_uuids),
                **self._adapter_kwargs(),
            )
        found: Dict[str, Peripheral] = {}
        for device in devices:
            peripheral = _peripheral(device)
            self._known[peripheral.id] = peripheral
            found[peripheral.id] = peripheral
        # Links we hold ourselves stop advertising, so the scan alone misses them.
        for device_id, client in self._clients.items():
            if client.is_connected and device_id not in found and device_id in self._known:
                found[device_id] = self._known[device_id]
        return list(found.values())

    async def connect(self, device: Peripheral) -> None:
        lock = self._connect_locks.setdefault(device.id, asyncio.Lock())
        async with lock:
            client = self._clients.get(device.id)
            if client is not None and client.is_connected:
                return
            client = BleakClient(
                device.handle if device.handle is not None else device.id,
                disconnected_callback=lambda _client, device_id=device.id: self._on_disconnected(device_id),
                timeout=self.config.connect_timeout_seconds,
                **self._adapter_kwargs(),
            )
            with _ble_errors(f"BLE connect to {device.id}"):
                await client.connect()
            if not client.is_connected:
                raise BleError(f"BLE connect to {device.id} failed")
            self._clients[device.id] = client
            self._known.setdefault(device.id, device)
            logger.info("BLE connected to %s", device.id)
        self._broadcast(device.id, ConnectionEvent.CONNECTED)

    async def disconnect(self, device: Peripheral) -> None:
        if not self.config.allow_disconnect:
            logger.debug("Skipping explicit disconnect of %s (platform policy)", device.id)
            return
        client = self._clients.get(device.id)
        if client is None or not client.is_connected:
            return
        try:
            await client.disconnect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:  # pragma: no cover - depends on bluez/dbus behavior
            logger.debug("BLE disconnect of %s failed: %s", device.id, exc)

    async def is_connected(self, device: Peripheral) -> bool:
        client = self._clients.get(device.id)
        return bool(client is not None and client.is_connected)

    def connection_events(self, device: Peripheral) -> Optional[Stream[ConnectionEvent]]:
        listeners = self._listeners.setdefault(device.id, set())
        stream: Stream[ConnectionEvent] = Stream(on_close=lambda: listeners.discard(stream))
        listeners.add(stream)
        return stream

    async def services(self, device: Peripheral) -> list[Any]:
        client = self._client(device)
        with _ble_errors(f"GATT service lookup on {device.id}"):
            return list(client.services)

    async def characteristics(self, device: Peripheral, service: Any) -> list[Any]:
        return list(service.characteristics)

    async def descriptors(self, device: Peripheral, characteristic: Any) -> list[Any]:
        return list(characteristic.descriptors)

    async def read(self, device: Peripheral, attribute: Any) -> bytes:
        client = self._client(device)
        with _ble_errors(f"GATT read on {device.id}"):
            if isinstance(attribute, BleakGATTDescriptor):
                value = await client.read_gatt_descriptor(attribute.handle)
            else:
                value = await client.read_gatt_char(attribute)
        return bytes(value)

    async def notify(self, device: Peripheral, characteristic: Any) -> Stream[bytes]:
        client = self._client(device)
        key = (device.id, int(characteristic.handle))
        previous = self._notify_streams.pop(key, None)
        if previous is not None:
            previous.end()

        def _on_close() -> None:
            if self._notify_streams.get(key) is stream:
                del self._notify_streams[key]
                if client.is_connected:
                    self._track(asyncio.get_running_loop().create_task(self._stop_notify(client, characteristic)))

        stream: Stream[bytes] = Stream(on_close=_on_close)

        def _on_value(_sender: Any, data: bytearray) -> None:
            stream.feed(bytes(data))

        with _ble_errors(f"GATT subscribe on {device.id}"):
            if previous is not None:
                await self._stop_notify(client, characteristic)
            await client.start_notify(characteristic, _on_value)
        self._notify_streams[key] = stream
        return stream

    def properties(self, characteristic: Any) -> frozenset[str]:
        return frozenset(str(prop).lower() for prop in characteristic.properties or [])

    async def close(self) -> None:
        for listeners in self._listeners.values():
            for stream in list(listeners):
                stream.end()
        self._listeners.clear()
        for stream in list(self._notify_streams.values()):
            stream.end()
        self._notify_streams.clear()
        for task in list(self._background):
            task.cancel()
        self._clients.clear()

    def _client(self, device: Peripheral) -> BleakClient:
        client = self._clients.get(device.id)
        if client is None or not client.is_connected:
            raise BleError(f"Device {device.id} is not connected")
        return client

    async def _stop_notify(self, client: BleakClient, characteristic: Any) -> None:
        try:
            await client.stop_notify(characteristic)
        except (BleakError, asyncio.TimeoutError, OSError) as exc:  # pragma: no cover - depends on bluez/dbus behavior
            logger.debug("BLE stop_notify failed: %s", exc)

    def _on_disconnected(self, device_id: str) -> None:
        logger.info("BLE link to %s dropped", device_id)
        for key, stream in list(self._notify_streams.items()):
            if key[0] == device_id:
                stream.end()
                del self._notify_streams[key]
        self._broadcast(device_id, ConnectionEvent.DISCONNECTED)

    def _broadcast(self, device_id: str, event: ConnectionEvent) -> None:
        for stream in list(self._listeners.get(device_id, ())):
            stream.feed(event)

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
