"""Runtime configuration for the battery agent."""
from __future__ import annotations

import platform
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_DELAY_SECONDS = 300.0


def _positive_seconds(value: float, *, field: str) -> float:
    try:
        parsed = float(value)
    except Exception as exc:
        raise ValueError(f"{field} must be a number") from exc
    if parsed != parsed:  # NaN
        raise ValueError(f"{field} must be a real number")
    if parsed <= 0:
        raise ValueError(f"{field} must be greater than zero")
    return min(parsed, MAX_DELAY_SECONDS)


class BluetoothConfig(BaseModel):
    """Adapter level settings handed to the bleak gateway."""

    adapter: Optional[str] = Field(default=None, description="BlueZ adapter name (e.g. hci0)")
    scan_timeout_seconds: float = Field(
        default=5.0,
        description="How long a connected-device lookup scans before giving up",
    )
    connect_timeout_seconds: float = Field(default=10.0, description="BLE connect timeout")
    disconnect_policy: Literal["auto", "always", "never"] = Field(
        default="auto",
        description="Explicit disconnect behaviour; auto skips it on macOS where the OS owns HID links",
    )

    @field_validator("scan_timeout_seconds", "connect_timeout_seconds")
    @classmethod
    def _check_timeouts(cls, value: float, info) -> float:
        return _positive_seconds(value, field=info.field_name)

    @property
    def allow_disconnect(self) -> bool:
        if self.disconnect_policy == "always":
            return True
        if self.disconnect_policy == "never":
            return False
        return platform.system() != "Darwin"


class MonitorConfig(BaseModel):
    """Timing and strategy knobs for background battery monitors."""

    reconnect_strategy: Literal["watcher", "worker"] = Field(
        default="watcher",
        description=(
            "watcher: a connection watcher owns every reconnection with fresh discovery; "
            "worker: each notification worker reconnects on its own"
        ),
    )
    worker_retry_seconds: float = Field(default=3.0, description="Delay between worker reconnect attempts")
    watcher_backoff_seconds: float = Field(default=5.0, description="Delay between watcher discovery cycles")
    shutdown_grace_seconds: float = Field(
        default=3.0,
        description="How long a stopping monitor may take before its tasks are cancelled",
    )

    @field_validator("worker_retry_seconds", "watcher_backoff_seconds", "shutdown_grace_seconds")
    @classmethod
    def _check_delays(cls, value: float, info) -> float:
        return _positive_seconds(value, field=info.field_name)


class Settings(BaseSettings):
    """Environment driven settings for the battery agent."""

    service_name: str = "battery-agent"
    service_version: str = "0.1.0"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 9010
    event_queue_size: int = Field(default=256, ge=1, description="Per-subscriber event buffer")
    data_dir: str = Field(default="storage", description="Directory for battery history files")
    bluetooth: BluetoothConfig = Field(default_factory=BluetoothConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    model_config = SettingsConfigDict(
        env_prefix="BATTERY_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @property
    def history_dir(self) -> Path:
        """Directory holding one CSV file per monitored device."""

        return Path(self.data_dir) / "battery_history"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
