from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from battery_agent.hardware.gateway import BleError
from battery_agent.http_utils import raise_for_ble_error, registry
from battery_agent.schemas import BatteryInfoModel, MonitorList, MonitorStartResponse

router = APIRouter(prefix="/v1")


@router.get("/monitors", response_model=MonitorList)
async def list_monitors(request: Request):
    return MonitorList(monitors=registry(request.app).device_ids())


@router.post("/monitors/{device_id}", response_model=MonitorStartResponse)
async def start_monitor(device_id: str, request: Request):
    """Start (or restart) monitoring and return the initial snapshot.

    The snapshot is empty when the device is not connected yet; readings
    then arrive as events once the connection watcher finds it.
    """

    try:
        snapshot = await registry(request.app).start(device_id)
    except BleError as exc:
        raise_for_ble_error(exc)
    return MonitorStartResponse(
        id=device_id,
        battery_info=[BatteryInfoModel.from_info(info) for info in snapshot],
    )


@router.delete("/monitors/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def stop_monitor(device_id: str, request: Request):
    await registry(request.app).stop(device_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/monitors", status_code=status.HTTP_204_NO_CONTENT)
async def stop_all_monitors(request: Request):
    await registry(request.app).stop_all()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
