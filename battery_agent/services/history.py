"""Battery level history, one CSV file per device."""
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path

HEADER = ["timestamp", "user_description", "battery_level"]


def _sanitize(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in value)


def safe_filename(device_name: str, ble_id: str) -> str:
    return f"{_sanitize(device_name)}_{_sanitize(ble_id)}.csv"


@dataclass(frozen=True)
class HistoryRecord:
    timestamp: str
    user_description: str
    battery_level: int


class BatteryHistoryStore:
    """Appends readings and reads them back in file order."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def path_for(self, device_name: str, ble_id: str) -> Path:
        return self.base_dir / safe_filename(device_name, ble_id)

    def append(self, device_name: str, ble_id: str, record: HistoryRecord) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(device_name, ble_id)
        needs_header = not path.exists()
        with path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            if needs_header:
                writer.writerow(HEADER)
            writer.writerow([record.timestamp, record.user_description, record.battery_level])

    def read(self, device_name: str, ble_id: str) -> list[HistoryRecord]:
        """Read records in file order.

        Descriptions containing commas are written quoted. Files written
        without quoting split such a description across columns; those rows
        keep the first two fields and treat everything after them as the
        level, which then reads as -1.
        """

        path = self.path_for(device_name, ble_id)
        if not path.exists():
            return []
        records: list[HistoryRecord] = []
        with path.open(newline="", encoding="utf-8") as handle:
            reader = csv.reader(handle)
            next(reader, None)
            for row in reader:
                if len(row) < 3:
                    continue
                try:
                    level = int(",".join(row[2:]))
                except ValueError:
                    level = -1
                records.append(HistoryRecord(timestamp=row[0], user_description=row[1], battery_level=level))
        return records
