"""Per-characteristic notification worker."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from battery_agent.hardware.gateway import BleError, BleGateway, ConnectionEvent, Peripheral, Stream
from battery_agent.monitor.aggregator import ConnectionStateAggregator, Emitter
from battery_agent.monitor.resolver import BatteryInfo, CharacteristicContext, parse_level
from battery_agent.monitor.signals import StopSignal, Stopped, race, sleep_or_stop, until_stopped

logger = logging.getLogger(__name__)

INFO_EVENT = "battery-info-notification"


class NotificationWorker:
    """Streams one Battery Level characteristic into battery info events.

    With ``reconnect`` set the worker retries forever after a lost link.
    Without it the worker ends after a single connection cycle and leaves
    reconnection to its owner.
    """

    def __init__(
        self,
        worker_id: str,
        device: Peripheral,
        context: CharacteristicContext,
        gateway: BleGateway,
        emitter: Emitter,
        aggregator: ConnectionStateAggregator,
        stop: StopSignal,
        *,
        retry_seconds: float,
        reconnect: bool = True,
    ) -> None:
        self.worker_id = worker_id
        self.device = device
        self.context = context
        self.gateway = gateway
        self._emit = emitter
        self.aggregator = aggregator
        self.stop = stop
        self.retry_seconds = retry_seconds
        self.reconnect = reconnect
        self._up = False

    async def run(self) -> None:
        try:
            while True:
                try:
                    await self._cycle()
                except (Stopped, asyncio.CancelledError):
                    raise
                except Exception:
                    logger.exception("Notification worker %s crashed; retrying", self.worker_id)
                    self._report(False)
                if not self.reconnect:
                    return
                await sleep_or_stop(self.stop, self.retry_seconds)
        except Stopped:
            await self.gateway.disconnect(self.device)
        finally:
            self._report(False)

    async def _cycle(self) -> None:
        try:
            await until_stopped(self.stop, self.gateway.connect(self.device))
        except BleError as exc:
            logger.warning("Worker %s connect failed: %s", self.worker_id, exc)
            self._report(False)
            return

        events: Optional[Stream[ConnectionEvent]] = None
        values: Optional[Stream[bytes]] = None
        try:
            events = self.gateway.connection_events(self.device)
            try:
                values = await until_stopped(
                    self.stop, self.gateway.notify(self.device, self.context.characteristic)
                )
            except BleError as exc:
                logger.warning("Worker %s subscribe failed: %s", self.worker_id, exc)
                self._report(False)
                return
            self._report(True)
            await self._pump(values, events)
        finally:
            if values is not None:
                values.close()
            if events is not None:
                events.close()

    async def _pump(self, values: Stream[bytes], events: Optional[Stream[ConnectionEvent]]) -> None:
        while True:
            waits = {"value": values.next()}
            if events is not None:
                waits["event"] = events.next()
            # A value and a link event can land in the same step; handle both.
            link_lost = False
            for source, done in await race(self.stop, waits):
                try:
                    item = done.result()
                except BleError as exc:
                    logger.info("Worker %s stream failed: %s", self.worker_id, exc)
                    link_lost = True
                    continue
                if source == "event":
                    if item is None or item == ConnectionEvent.DISCONNECTED:
                        link_lost = True
                elif item is None:
                    link_lost = True
                else:
                    info = BatteryInfo(battery_level=parse_level(item), user_descriptor=self.context.label)
                    self._emit(INFO_EVENT, {"id": self.device.id, "battery_info": info.as_payload()})
            if link_lost:
                self._report(False)
                return

    def _report(self, connected: bool) -> None:
        if connected == self._up:
            return
        self._up = connected
        self.aggregator.update(self.worker_id, connected)
