"""One-shot device commands: the first error reaches the caller."""
from __future__ import annotations

import logging

from battery_agent.hardware.gateway import BATTERY_FILTER_UUIDS, BleGateway, DeviceNotFound, Peripheral
from battery_agent.monitor.resolver import BatteryInfo, read_strict, resolve_battery_characteristics

logger = logging.getLogger(__name__)


async def list_devices(gateway: BleGateway) -> list[dict[str, str]]:
    """Return ``{"name", "id"}`` for connected devices exposing a battery service."""

    await gateway.wait_available()
    devices = await gateway.connected_devices(BATTERY_FILTER_UUIDS)
    listed = []
    for device in devices:
        if not device.name:
            logger.debug("Skipping unnamed device %s", device.id)
            continue
        listed.append({"name": device.name, "id": device.id})
    return listed


async def find_device(gateway: BleGateway, device_id: str) -> Peripheral:
    await gateway.wait_available()
    for device in await gateway.connected_devices(BATTERY_FILTER_UUIDS):
        if device.id == device_id:
            return device
    raise DeviceNotFound(f"Device {device_id} not found")


async def get_battery_info(gateway: BleGateway, device_id: str) -> list[BatteryInfo]:
    device = await find_device(gateway, device_id)
    await gateway.connect(device)
    try:
        contexts = await resolve_battery_characteristics(gateway, device)
        return await read_strict(gateway, device, contexts)
    finally:
        await gateway.disconnect(device)
