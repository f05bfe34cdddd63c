from __future__ import annotations

import asyncio
from typing import List

from fastapi import APIRouter, Query, Request, status

from battery_agent.http_utils import history_store
from battery_agent.schemas import HistoryAppendRequest, HistoryRecordModel
from battery_agent.services.history import HistoryRecord

router = APIRouter(prefix="/v1")


@router.post("/history", status_code=status.HTTP_201_CREATED)
async def append_history(payload: HistoryAppendRequest, request: Request):
    store = history_store(request.app)
    record = HistoryRecord(
        timestamp=payload.timestamp,
        user_description=payload.user_description,
        battery_level=payload.battery_level,
    )
    await asyncio.to_thread(store.append, payload.device_name, payload.ble_id, record)
    return {"status": "ok"}


@router.get("/history", response_model=List[HistoryRecordModel])
async def read_history(
    request: Request,
    device_name: str = Query(..., min_length=1),
    ble_id: str = Query(..., min_length=1),
):
    store = history_store(request.app)
    records = await asyncio.to_thread(store.read, device_name, ble_id)
    return [
        HistoryRecordModel(
            timestamp=record.timestamp,
            user_description=record.user_description,
            battery_level=record.battery_level,
        )
        for record in records
    ]
