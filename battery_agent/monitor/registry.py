"""Registry of background battery monitors keyed by device id."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from battery_agent.config import MonitorConfig
from battery_agent.hardware.gateway import (
    BATTERY_FILTER_UUIDS,
    BleError,
    BleGateway,
    NoNotifiableCharacteristic,
)
from battery_agent.monitor.aggregator import ConnectionStateAggregator, Emitter
from battery_agent.monitor.resolver import (
    BatteryInfo,
    notifiable,
    read_best_effort,
    resolve_battery_characteristics,
)
from battery_agent.monitor.signals import StopSignal
from battery_agent.monitor.watcher import ConnectionWatcher
from battery_agent.monitor.worker import INFO_EVENT, NotificationWorker

logger = logging.getLogger(__name__)


@dataclass
class MonitorTask:
    """Stop signal plus the tasks one monitor owns."""

    stop: StopSignal
    tasks: list[asyncio.Task] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self.tasks)


@dataclass
class _DeviceLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MonitorRegistry:
    def __init__(self, gateway: BleGateway, emitter: Emitter, config: MonitorConfig) -> None:
        self.gateway = gateway
        self._emit = emitter
        self.config = config
        self._monitors: dict[str, MonitorTask] = {}
        self._map_lock = asyncio.Lock()
        self._device_locks: dict[str, _DeviceLock] = {}

    def device_ids(self) -> list[str]:
        return sorted(self._monitors)

    def get(self, device_id: str) -> MonitorTask | None:
        return self._monitors.get(device_id)

    async def start(self, device_id: str) -> list[BatteryInfo]:
        """Start monitoring ``device_id`` and return its initial snapshot.

        Any existing monitor for the id is fully stopped first. When the
        device is not currently connected the connection watcher takes over
        and the snapshot is empty. Raises :class:`NoNotifiableCharacteristic`
        when a connected device cannot push battery updates.
        """

        async with self._device_lock(device_id):
            await self._remove_and_stop(device_id)
            monitor = MonitorTask(stop=StopSignal())
            snapshot = await self._fast_path(device_id, monitor)
            if snapshot is None:
                logger.info("Device %s not connected; starting connection watcher", device_id)
                watcher = ConnectionWatcher(device_id, self.gateway, self._emit, self.config, monitor.stop)
                monitor.tasks.append(self._spawn(watcher.run(), f"battery-watcher-{device_id}"))
                snapshot = []
            async with self._map_lock:
                self._monitors[device_id] = monitor
            return snapshot

    async def stop(self, device_id: str) -> None:
        async with self._device_lock(device_id):
            await self._remove_and_stop(device_id)

    async def stop_all(self) -> None:
        async with self._map_lock:
            device_ids = list(self._monitors)
        await asyncio.gather(*(self.stop(device_id) for device_id in device_ids))

    async def _fast_path(self, device_id: str, monitor: MonitorTask) -> list[BatteryInfo] | None:
        try:
            devices = await self.gateway.connected_devices(BATTERY_FILTER_UUIDS)
            device = next((candidate for candidate in devices if candidate.id == device_id), None)
            if device is None:
                return None
            await self.gateway.connect(device)
            contexts = await resolve_battery_characteristics(self.gateway, device)
        except BleError as exc:
            logger.info("Fast path for %s unavailable: %s", device_id, exc)
            return None

        usable = notifiable(self.gateway, contexts)
        if not usable:
            raise NoNotifiableCharacteristic(f"Device {device_id} has no notifying battery level characteristic")

        snapshot = await read_best_effort(self.gateway, device, usable)
        for info in snapshot:
            self._emit(INFO_EVENT, {"id": device_id, "battery_info": info.as_payload()})

        if self.config.reconnect_strategy == "watcher":
            watcher = ConnectionWatcher(
                device_id,
                self.gateway,
                self._emit,
                self.config,
                monitor.stop,
                prepared=(device, usable),
            )
            monitor.tasks.append(self._spawn(watcher.run(), f"battery-watcher-{device_id}"))
        else:
            aggregator = ConnectionStateAggregator(device_id, self._emit)
            for index, ctx in enumerate(usable):
                worker = NotificationWorker(
                    f"{device_id}#{index}",
                    device,
                    ctx,
                    self.gateway,
                    self._emit,
                    aggregator,
                    monitor.stop,
                    retry_seconds=self.config.worker_retry_seconds,
                )
                monitor.tasks.append(self._spawn(worker.run(), f"battery-worker-{worker.worker_id}"))
        return snapshot

    async def _remove_and_stop(self, device_id: str) -> None:
        async with self._map_lock:
            monitor = self._monitors.pop(device_id, None)
        if monitor is not None:
            await self._shutdown(device_id, monitor)

    async def _shutdown(self, device_id: str, monitor: MonitorTask) -> None:
        monitor.stop.set()
        if not monitor.tasks:
            return
        grace = self.config.shutdown_grace_seconds
        _, pending = await asyncio.wait(monitor.tasks, timeout=grace)
        if pending:
            logger.warning(
                "Monitor %s did not stop within %.1fs; cancelling %d task(s)", device_id, grace, len(pending)
            )
            for task in pending:
                task.cancel()
            await asyncio.wait(pending, timeout=grace)
        logger.info("Monitor %s stopped", device_id)

    @asynccontextmanager
    async def _device_lock(self, device_id: str) -> AsyncIterator[None]:
        # Entries live only while a start/stop for the id holds or awaits them.
        entry = self._device_locks.get(device_id)
        if entry is None:
            entry = self._device_locks[device_id] = _DeviceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._device_locks[device_id]

    @staticmethod
    def _spawn(coro, name: str) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro, name=name)
