from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, status

from battery_agent.hardware.gateway import (
    AdapterUnavailable,
    BleError,
    BleGateway,
    DeviceNotFound,
    NoNotifiableCharacteristic,
)
from battery_agent.monitor.registry import MonitorRegistry
from battery_agent.schemas import ErrorDetail
from battery_agent.services.events import EventBroadcaster
from battery_agent.services.history import BatteryHistoryStore

logger = logging.getLogger(__name__)


def gateway(app: FastAPI) -> BleGateway:
    return _require(app, "gateway")


def registry(app: FastAPI) -> MonitorRegistry:
    return _require(app, "registry")


def broadcaster(app: FastAPI) -> EventBroadcaster:
    return _require(app, "broadcaster")


def history_store(app: FastAPI) -> BatteryHistoryStore:
    return _require(app, "history")


def _require(app: FastAPI, name: str):
    value = getattr(app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} unavailable",
        )
    return value


def _format_error(exc: BleError) -> tuple[int, ErrorDetail]:
    if isinstance(exc, AdapterUnavailable):
        return status.HTTP_503_SERVICE_UNAVAILABLE, ErrorDetail(type="adapter_unavailable", message=str(exc))
    if isinstance(exc, DeviceNotFound):
        return status.HTTP_404_NOT_FOUND, ErrorDetail(type="device_not_found", message=str(exc))
    if isinstance(exc, NoNotifiableCharacteristic):
        return status.HTTP_409_CONFLICT, ErrorDetail(type="no_notify_characteristic", message=str(exc))
    return status.HTTP_502_BAD_GATEWAY, ErrorDetail(type="ble_error", message=str(exc))


def raise_for_ble_error(exc: BleError) -> None:
    code, detail = _format_error(exc)
    logger.warning("BLE request failed (%s): %s", detail.type, detail.message)
    raise HTTPException(status_code=code, detail=detail.model_dump()) from exc
