from __future__ import annotations

import asyncio

from battery_agent.hardware.gateway import ConnectionEvent
from battery_agent.monitor.aggregator import ConnectionStateAggregator
from battery_agent.monitor.resolver import resolve_battery_characteristics
from battery_agent.monitor.signals import StopSignal
from battery_agent.monitor.worker import NotificationWorker
from tests.fakes import FakeGateway, RecordingEmitter, battery_char, battery_device, wait_until


def _worker(gateway, emitter, stop, *, reconnect=True):
    async def build():
        device = gateway.peripheral("kb")
        contexts = await resolve_battery_characteristics(gateway, device)
        aggregator = ConnectionStateAggregator("kb", emitter)
        return NotificationWorker(
            "kb#0",
            device,
            contexts[0],
            gateway,
            emitter,
            aggregator,
            stop,
            retry_seconds=0.05,
            reconnect=reconnect,
        )

    return build()


def test_worker_emits_values_and_reports_edges():
    gateway = FakeGateway(battery_device("kb", "Corne", battery_char(7, label="Right")))
    emitter = RecordingEmitter()

    async def run():
        stop = StopSignal()
        worker = await _worker(gateway, emitter, stop)
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: gateway.subscriptions("kb") == [7])
        gateway.push_value("kb", 7, bytes([55, 1]))
        gateway.push_value("kb", 7, bytes([54]))
        await wait_until(lambda: len(emitter.infos()) == 2)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert emitter.infos() == [
        {"battery_level": 55, "user_descriptor": "Right"},
        {"battery_level": 54, "user_descriptor": "Right"},
    ]
    assert emitter.statuses() == [True, False]
    assert gateway.disconnect_calls == 1


def test_worker_reconnects_after_link_drop():
    gateway = FakeGateway(battery_device("kb", "Corne", battery_char(7)))
    emitter = RecordingEmitter()

    async def run():
        stop = StopSignal()
        worker = await _worker(gateway, emitter, stop)
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: gateway.subscriptions("kb") == [7])
        gateway.drop_connection("kb")
        await wait_until(lambda: emitter.statuses() == [True, False, True])
        gateway.push_value("kb", 7, bytes([12]))
        await wait_until(lambda: len(emitter.infos()) == 1)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert gateway.connect_calls == 2
    assert emitter.infos() == [{"battery_level": 12, "user_descriptor": None}]


def test_worker_retries_failed_connect_until_stopped():
    gateway = FakeGateway(battery_device("kb"))
    gateway.connect_errors.add("kb")
    emitter = RecordingEmitter()

    async def run():
        stop = StopSignal()
        worker = await _worker(gateway, emitter, stop)
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: gateway.connect_calls >= 3)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert emitter.events == []


def test_worker_without_events_relies_on_notification_stream():
    gateway = FakeGateway(battery_device("kb", "Corne", battery_char(7)))
    gateway.supports_events = False
    emitter = RecordingEmitter()

    async def run():
        stop = StopSignal()
        worker = await _worker(gateway, emitter, stop, reconnect=False)
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: gateway.subscriptions("kb") == [7])
        gateway.end_notifications("kb")
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert emitter.statuses() == [True, False]


def test_supervised_worker_ends_after_one_cycle_on_stream_error():
    gateway = FakeGateway(battery_device("kb", "Corne", battery_char(7)))
    emitter = RecordingEmitter()

    async def run():
        stop = StopSignal()
        worker = await _worker(gateway, emitter, stop, reconnect=False)
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: gateway.subscriptions("kb") == [7])
        gateway.end_notifications("kb", RuntimeError("notify pipe broke"))
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert gateway.connect_calls == 1
    assert emitter.statuses() == [True, False]


def test_disconnect_arriving_with_last_value_is_not_lost():
    gateway = FakeGateway(battery_device("kb", "Corne", battery_char(7, label="Left")))
    emitter = RecordingEmitter()

    async def run():
        stop = StopSignal()
        worker = await _worker(gateway, emitter, stop)
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: gateway.subscriptions("kb") == [7])
        # The notify stream stays open: only the link event says the device is gone.
        gateway.push_value("kb", 7, b"\x28")
        gateway.signal_link("kb", ConnectionEvent.DISCONNECTED)
        await wait_until(lambda: emitter.statuses()[:2] == [True, False])
        await wait_until(lambda: gateway.connect_calls >= 2)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())
    assert emitter.infos()[0] == {"battery_level": 40, "user_descriptor": "Left"}
    assert emitter.statuses()[:2] == [True, False]
