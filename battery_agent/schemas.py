from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from battery_agent.monitor.resolver import BatteryInfo


class DeviceInfo(BaseModel):
    name: str
    id: str


class BatteryInfoModel(BaseModel):
    battery_level: Optional[int] = None
    user_descriptor: Optional[str] = None

    @classmethod
    def from_info(cls, info: BatteryInfo) -> "BatteryInfoModel":
        return cls(battery_level=info.battery_level, user_descriptor=info.user_descriptor)


class ErrorDetail(BaseModel):
    type: str
    message: str


class MonitorStartResponse(BaseModel):
    id: str
    battery_info: List[BatteryInfoModel]


class MonitorList(BaseModel):
    monitors: List[str]


class HistoryAppendRequest(BaseModel):
    device_name: str = Field(min_length=1)
    ble_id: str = Field(min_length=1)
    timestamp: str
    user_description: str = ""
    battery_level: int


class HistoryRecordModel(BaseModel):
    timestamp: str
    user_description: str
    battery_level: int
