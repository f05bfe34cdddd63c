"""Connection watcher: discovery driven reconnection for one device."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from battery_agent.config import MonitorConfig
from battery_agent.hardware.gateway import (
    BATTERY_FILTER_UUIDS,
    BleError,
    BleGateway,
    ConnectionEvent,
    Peripheral,
    Stream,
)
from battery_agent.monitor.aggregator import ConnectionStateAggregator, Emitter
from battery_agent.monitor.resolver import (
    CharacteristicContext,
    notifiable,
    read_best_effort,
    resolve_battery_characteristics,
)
from battery_agent.monitor.signals import StopSignal, Stopped, sleep_or_stop, until_stopped
from battery_agent.monitor.worker import INFO_EVENT, NotificationWorker

logger = logging.getLogger(__name__)

Prepared = tuple[Peripheral, list[CharacteristicContext]]


class ConnectionWatcher:
    """Owns every (re)connection of one device until its stop signal fires.

    Each generation starts from a fresh filtered scan, because a platform
    handle from a previous link may be stale. ``prepared`` lets the first
    generation reuse a device that is already connected and resolved.
    """

    def __init__(
        self,
        device_id: str,
        gateway: BleGateway,
        emitter: Emitter,
        config: MonitorConfig,
        stop: StopSignal,
        prepared: Optional[Prepared] = None,
    ) -> None:
        self.device_id = device_id
        self.gateway = gateway
        self._emit = emitter
        self.config = config
        self.stop = stop
        self._prepared = prepared
        self.generation = 0
        self._device: Optional[Peripheral] = None

    async def run(self) -> None:
        try:
            while True:
                try:
                    await self._generation()
                except (Stopped, asyncio.CancelledError):
                    raise
                except Exception:
                    logger.exception("Connection watcher for %s crashed; restarting", self.device_id)
                await sleep_or_stop(self.stop, self.config.watcher_backoff_seconds)
        except Stopped:
            if self._device is not None:
                await self.gateway.disconnect(self._device)
            logger.info("Connection watcher for %s stopped", self.device_id)

    async def _generation(self) -> None:
        self.generation += 1
        prepared, self._prepared = self._prepared, None
        if prepared is not None:
            device, contexts = prepared
            self._device = device
            snapshot_taken = True
        else:
            device = await self._discover()
            if device is None:
                return
            self._device = device
            contexts = await self._connect_and_resolve(device)
            if not contexts:
                return
            snapshot_taken = False

        aggregator = ConnectionStateAggregator(self.device_id, self._emit)
        if not snapshot_taken:
            snapshot = await until_stopped(self.stop, read_best_effort(self.gateway, device, contexts))
            for info in snapshot:
                self._emit(INFO_EVENT, {"id": self.device_id, "battery_info": info.as_payload()})
        aggregator.announce(True)

        workers = [
            NotificationWorker(
                f"{self.device_id}#{index}",
                device,
                ctx,
                self.gateway,
                self._emit,
                aggregator,
                self.stop,
                retry_seconds=self.config.worker_retry_seconds,
                reconnect=False,
            )
            for index, ctx in enumerate(contexts)
        ]
        tasks = [
            asyncio.create_task(worker.run(), name=f"battery-worker-{worker.worker_id}") for worker in workers
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
        if self.stop.is_set():
            raise Stopped()
        aggregator.announce(False)
        logger.info("Device %s dropped; restarting discovery", self.device_id)

    async def _discover(self) -> Optional[Peripheral]:
        scan = self.gateway.discover(BATTERY_FILTER_UUIDS)
        try:
            while True:
                try:
                    found = await until_stopped(self.stop, scan.next())
                except BleError as exc:
                    logger.warning("Discovery for %s failed: %s", self.device_id, exc)
                    return None
                if found is None:
                    logger.debug("Discovery for %s ended without a match", self.device_id)
                    return None
                if found.id == self.device_id:
                    return found
        finally:
            scan.close()

    async def _connect_and_resolve(self, device: Peripheral) -> list[CharacteristicContext]:
        try:
            await until_stopped(self.stop, self.gateway.connect(device))
        except BleError as exc:
            logger.warning("Connect to %s failed: %s", self.device_id, exc)
            return []

        if not await self._wait_connected(device):
            return []

        try:
            contexts = await until_stopped(self.stop, resolve_battery_characteristics(self.gateway, device))
        except BleError as exc:
            logger.warning("Characteristic lookup on %s failed: %s", self.device_id, exc)
            return []
        usable = notifiable(self.gateway, contexts)
        if not usable:
            logger.warning("Device %s has no notifying battery characteristic; will retry", self.device_id)
        return usable

    async def _wait_connected(self, device: Peripheral) -> bool:
        # The link may have come up between discovery and subscribing, so
        # check the current state before waiting on events.
        events: Optional[Stream[ConnectionEvent]] = self.gateway.connection_events(device)
        try:
            try:
                if await until_stopped(self.stop, self.gateway.is_connected(device)):
                    return True
                if events is None:
                    return False
                event = await until_stopped(self.stop, events.next())
            except BleError as exc:
                logger.debug("Connection state of %s unavailable: %s", self.device_id, exc)
                return False
            return event == ConnectionEvent.CONNECTED
        finally:
            if events is not None:
                events.close()
