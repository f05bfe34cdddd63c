"""Bluetooth adapter layer for the battery agent."""
from __future__ import annotations

from .gateway import (
    BATTERY_FILTER_UUIDS,
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    USER_DESCRIPTION_UUID,
    AdapterUnavailable,
    BleError,
    BleGateway,
    ConnectionEvent,
    DeviceNotFound,
    GattLookupError,
    NoNotifiableCharacteristic,
    Peripheral,
    Stream,
    StreamError,
)

__all__ = [
    "BATTERY_FILTER_UUIDS",
    "BATTERY_LEVEL_UUID",
    "BATTERY_SERVICE_UUID",
    "USER_DESCRIPTION_UUID",
    "AdapterUnavailable",
    "BleError",
    "BleGateway",
    "ConnectionEvent",
    "DeviceNotFound",
    "GattLookupError",
    "NoNotifiableCharacteristic",
    "Peripheral",
    "Stream",
    "StreamError",
]
