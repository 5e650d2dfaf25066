# backend/lib/uptime_core/memory.py
"""In-process store and clock implementations.

Used when DynamoDB is disabled (local development) and throughout the tests.
"""
import copy
import threading
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from .errors import ConflictError, RecordNotFoundError
from .models import DEVICE_FIELDS, DailyHistoryRecord, Device, HistoryPatch


class InMemoryDeviceStore:
    def __init__(self, devices: Optional[List[Device]] = None):
        self._lock = threading.Lock()
        self._devices: Dict[str, Device] = {}
        for device in devices or []:
            self.create(device)

    def get(self, device_id: str) -> Optional[Device]:
        with self._lock:
            device = self._devices.get(device_id)
            return copy.copy(device) if device else None

    def list(self, **criteria: Any) -> List[Device]:
        unknown = set(criteria) - set(DEVICE_FIELDS) - {"id"}
        if unknown:
            raise KeyError(f"Unknown device fields: {sorted(unknown)}")
        with self._lock:
            return [
                copy.copy(d)
                for d in self._devices.values()
                if all(getattr(d, name) == value for name, value in criteria.items())
            ]

    def put(
        self, device_id: str, fields: Mapping[str, Any], expected_revision: Optional[int] = None
    ) -> None:
        unknown = set(fields) - set(DEVICE_FIELDS)
        if unknown:
            raise KeyError(f"Unknown device fields: {sorted(unknown)}")
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise RecordNotFoundError(f"Device {device_id} not found")
            if expected_revision is not None and device.revision != expected_revision:
                raise ConflictError(
                    f"Device {device_id} changed (revision {device.revision}, expected {expected_revision})"
                )
            for name, value in fields.items():
                setattr(device, name, value)
            device.revision += 1

    def create(self, device: Device) -> str:
        device_id = device.id or uuid.uuid4().hex
        with self._lock:
            self._devices[device_id] = replace(device, id=device_id)
        return device_id

    def delete(self, device_id: str) -> None:
        with self._lock:
            if self._devices.pop(device_id, None) is None:
                raise RecordNotFoundError(f"Device {device_id} not found")


class InMemoryHistoryStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, date], DailyHistoryRecord] = {}

    def get(self, user_id: str, day: date) -> Optional[DailyHistoryRecord]:
        with self._lock:
            record = self._records.get((user_id, day))
            return copy.deepcopy(record) if record else None

    def merge(self, user_id: str, day: date, patch: HistoryPatch) -> DailyHistoryRecord:
        with self._lock:
            merged = patch.apply(self._records.get((user_id, day)), day)
            self._records[(user_id, day)] = merged
            return copy.deepcopy(merged)

    def query(self, user_id: str, start: date, end: date) -> List[DailyHistoryRecord]:
        with self._lock:
            found = [
                copy.deepcopy(record)
                for (owner, day), record in self._records.items()
                if owner == user_id and start <= day <= end
            ]
        return sorted(found, key=lambda r: r.date)


class InMemoryCheckpointStore:
    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class SystemClock:
    """Wall-clock time in the household's timezone."""

    def __init__(self, tz_name: str = "UTC"):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class ManualClock:
    """Clock that only moves when told to (simulations and tests)."""

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self._now.tzinfo)
        self._now = instant
