from __future__ import annotations

from typing import List

from fastapi import APIRouter, Request

from battery_agent.hardware.gateway import BleError
from battery_agent.http_utils import gateway, raise_for_ble_error
from battery_agent.schemas import BatteryInfoModel, DeviceInfo
from battery_agent.services import commands

router = APIRouter(prefix="/v1")


@router.get("/devices", response_model=List[DeviceInfo])
async def list_devices(request: Request):
    try:
        return await commands.list_devices(gateway(request.app))
    except BleError as exc:
        raise_for_ble_error(exc)


@router.get("/devices/{device_id}/battery", response_model=List[BatteryInfoModel])
async def get_battery_info(device_id: str, request: Request):
    """Connect, read every Battery Level characteristic once, then disconnect."""

    try:
        infos = await commands.get_battery_info(gateway(request.app), device_id)
    except BleError as exc:
        raise_for_ble_error(exc)
    return [BatteryInfoModel.from_info(info) for info in infos]
