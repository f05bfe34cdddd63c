"""FastAPI application exposing BLE battery readings and background monitors."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from battery_agent.config import Settings, get_settings
from battery_agent.hardware.gateway import BleGateway
from battery_agent.monitor.registry import MonitorRegistry
from battery_agent.observability import configure_observability
from battery_agent.routers import devices as devices_router
from battery_agent.routers import events as events_router
from battery_agent.routers import history as history_router
from battery_agent.routers import monitors as monitors_router
from battery_agent.routers import root as root_router
from battery_agent.services.events import EventBroadcaster
from battery_agent.services.history import BatteryHistoryStore

logger = logging.getLogger(__name__)


def _default_gateway(settings: Settings) -> BleGateway:
    from battery_agent.hardware.bleak_gateway import BleakGateway

    return BleakGateway(settings.bluetooth)


def create_app(gateway: Optional[BleGateway] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the app; tests pass a fake gateway and their own settings."""

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ble = gateway or _default_gateway(settings)
        hub = EventBroadcaster(settings.event_queue_size)
        registry = MonitorRegistry(ble, hub.emit, settings.monitor)
        app.state.settings = settings
        app.state.gateway = ble
        app.state.broadcaster = hub
        app.state.registry = registry
        app.state.history = BatteryHistoryStore(settings.history_dir)
        app.state.started_at = time.monotonic()
        logger.info(
            "Battery agent started (reconnect strategy: %s)", settings.monitor.reconnect_strategy
        )
        try:
            yield
        finally:
            await registry.stop_all()
            await ble.close()
            logger.info("Battery agent stopped")

    app = FastAPI(title="Battery Agent", version=settings.service_version, lifespan=lifespan)
    configure_observability(app, service_name=settings.service_name, log_level=settings.log_level)

    app.include_router(root_router.router)
    app.include_router(devices_router.router)
    app.include_router(monitors_router.router)
    app.include_router(events_router.router)
    app.include_router(history_router.router)
    return app


def run() -> None:  # pragma: no cover
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":  # pragma: no cover
    run()
