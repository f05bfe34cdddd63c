from __future__ import annotations

import asyncio

import pytest

from battery_agent.hardware.gateway import AdapterUnavailable, BleError, DeviceNotFound
from battery_agent.monitor.resolver import BatteryInfo
from battery_agent.services.commands import get_battery_info, list_devices
from tests.fakes import FakeGateway, battery_char, battery_device


def test_list_devices_skips_unnamed_devices():
    gateway = FakeGateway(battery_device("a", "Corne"), battery_device("b", None), battery_device("c", ""))
    gateway.system_connected.update({"a", "b", "c"})

    assert asyncio.run(list_devices(gateway)) == [{"name": "Corne", "id": "a"}]


def test_list_devices_propagates_adapter_unavailable():
    gateway = FakeGateway()
    gateway.available = False

    with pytest.raises(AdapterUnavailable):
        asyncio.run(list_devices(gateway))


def test_get_battery_info_reads_then_disconnects():
    gateway = FakeGateway(
        battery_device("kb", "Corne", battery_char(1, value=bytes([88]), label="Left"), battery_char(2, value=b""))
    )
    gateway.system_connected.add("kb")

    infos = asyncio.run(get_battery_info(gateway, "kb"))

    assert infos == [
        BatteryInfo(battery_level=88, user_descriptor="Left"),
        BatteryInfo(battery_level=None, user_descriptor=None),
    ]
    assert gateway.connect_calls == 1
    assert gateway.disconnect_calls == 1
    assert "kb" not in gateway.connected


def test_get_battery_info_unknown_device():
    gateway = FakeGateway(battery_device("kb"))

    with pytest.raises(DeviceNotFound):
        asyncio.run(get_battery_info(gateway, "kb"))
    assert gateway.connect_calls == 0


def test_get_battery_info_surfaces_read_error_and_still_disconnects():
    error = BleError("read failed")
    gateway = FakeGateway(battery_device("kb", "Corne", battery_char(1, value=error), battery_char(2)))
    gateway.system_connected.add("kb")

    with pytest.raises(BleError) as excinfo:
        asyncio.run(get_battery_info(gateway, "kb"))
    assert excinfo.value is error
    assert gateway.disconnect_calls == 1
