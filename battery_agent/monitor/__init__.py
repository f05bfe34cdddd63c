"""Background battery monitoring: watchers, workers and the registry."""
from __future__ import annotations

from .aggregator import STATUS_EVENT, ConnectionStateAggregator
from .registry import MonitorRegistry, MonitorTask
from .resolver import BatteryInfo, CharacteristicContext, read_best_effort, read_strict, resolve_battery_characteristics
from .signals import StopSignal, Stopped
from .watcher import ConnectionWatcher
from .worker import INFO_EVENT, NotificationWorker

__all__ = [
    "INFO_EVENT",
    "STATUS_EVENT",
    "BatteryInfo",
    "CharacteristicContext",
    "ConnectionStateAggregator",
    "ConnectionWatcher",
    "MonitorRegistry",
    "MonitorTask",
    "NotificationWorker",
    "StopSignal",
    "Stopped",
    "read_best_effort",
    "read_strict",
    "resolve_battery_characteristics",
]
