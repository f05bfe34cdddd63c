"""Battery Level characteristic lookup and reads."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from battery_agent.hardware.gateway import (
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    USER_DESCRIPTION_UUID,
    BleError,
    BleGateway,
    GattLookupError,
    Peripheral,
    normalize_uuid,
)

logger = logging.getLogger(__name__)

NOTIFY_PROPERTIES = frozenset({"notify", "indicate"})


@dataclass(frozen=True)
class CharacteristicContext:
    """A resolved Battery Level characteristic and its optional label."""

    characteristic: Any
    label: Optional[str] = None


@dataclass(frozen=True)
class BatteryInfo:
    battery_level: Optional[int]
    user_descriptor: Optional[str]

    def as_payload(self) -> dict[str, Any]:
        return {"battery_level": self.battery_level, "user_descriptor": self.user_descriptor}


def parse_level(value: bytes) -> Optional[int]:
    """Battery level is the first byte; an empty payload has no level."""

    if not value:
        return None
    return int(value[0])


async def _read_label(gateway: BleGateway, device: Peripheral, characteristic: Any) -> Optional[str]:
    try:
        descriptors = await gateway.descriptors(device, characteristic)
    except BleError as exc:
        logger.debug("Descriptor lookup on %s failed: %s", device.id, exc)
        return None
    for descriptor in descriptors:
        if normalize_uuid(descriptor.uuid) != USER_DESCRIPTION_UUID:
            continue
        try:
            raw = await gateway.read(device, descriptor)
            return raw.decode("utf-8")
        except (BleError, UnicodeDecodeError) as exc:
            logger.debug("User description read on %s failed: %s", device.id, exc)
            return None
    return None


async def resolve_battery_characteristics(
    gateway: BleGateway, device: Peripheral
) -> list[CharacteristicContext]:
    """Return every Battery Level characteristic under every Battery Service.

    Only service/characteristic enumeration failures raise; a label that
    cannot be read or decoded is left as ``None``.
    """

    try:
        services = await gateway.services(device)
    except BleError as exc:
        raise GattLookupError(f"Service lookup on {device.id} failed: {exc}") from exc

    contexts: list[CharacteristicContext] = []
    for service in services:
        if normalize_uuid(service.uuid) != BATTERY_SERVICE_UUID:
            continue
        try:
            characteristics = await gateway.characteristics(device, service)
        except BleError as exc:
            raise GattLookupError(f"Characteristic lookup on {device.id} failed: {exc}") from exc
        for characteristic in characteristics:
            if normalize_uuid(characteristic.uuid) != BATTERY_LEVEL_UUID:
                continue
            label = await _read_label(gateway, device, characteristic)
            contexts.append(CharacteristicContext(characteristic=characteristic, label=label))
    return contexts


def notifiable(gateway: BleGateway, contexts: list[CharacteristicContext]) -> list[CharacteristicContext]:
    return [ctx for ctx in contexts if gateway.properties(ctx.characteristic) & NOTIFY_PROPERTIES]


async def read_strict(
    gateway: BleGateway, device: Peripheral, contexts: list[CharacteristicContext]
) -> list[BatteryInfo]:
    """Read in order; the first failure propagates and stops further reads."""

    results: list[BatteryInfo] = []
    for ctx in contexts:
        value = await gateway.read(device, ctx.characteristic)
        results.append(BatteryInfo(battery_level=parse_level(value), user_descriptor=ctx.label))
    return results


async def read_best_effort(
    gateway: BleGateway, device: Peripheral, contexts: list[CharacteristicContext]
) -> list[BatteryInfo]:
    results: list[BatteryInfo] = []
    for ctx in contexts:
        try:
            level = parse_level(await gateway.read(device, ctx.characteristic))
        except BleError as exc:
            logger.debug("Battery read on %s failed: %s", device.id, exc)
            level = None
        results.append(BatteryInfo(battery_level=level, user_descriptor=ctx.label))
    return results
