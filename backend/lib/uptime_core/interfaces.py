# backend/lib/uptime_core/interfaces.py
"""
Collaborator interfaces the engine depends on.

Concrete implementations live in ``memory.py`` (in-process, used locally and in
tests) and in ``backend/lib`` (DynamoDB, checkpoint file, timers).
"""
from datetime import date, datetime
from typing import Any, List, Mapping, Optional, Protocol

from .models import DailyHistoryRecord, Device, HistoryPatch


class DeviceStore(Protocol):
    def get(self, device_id: str) -> Optional[Device]: ...

    def list(self, **criteria: Any) -> List[Device]:
        """Devices whose attributes equal every ``criteria`` value."""
        ...

    def put(
        self, device_id: str, fields: Mapping[str, Any], expected_revision: Optional[int] = None
    ) -> None:
        """Partial update keyed by Device attribute names.

        Every write bumps ``revision``. With ``expected_revision`` the write
        only lands if the stored revision still matches, else ConflictError.
        """
        ...

    def create(self, device: Device) -> str: ...

    def delete(self, device_id: str) -> None: ...


class HistoryStore(Protocol):
    def get(self, user_id: str, day: date) -> Optional[DailyHistoryRecord]: ...

    def merge(self, user_id: str, day: date, patch: HistoryPatch) -> DailyHistoryRecord: ...

    def query(self, user_id: str, start: date, end: date) -> List[DailyHistoryRecord]:
        """Records with ``start <= date <= end``, oldest first."""
        ...


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class CheckpointStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class Scheduler(Protocol):
    def start_session(self, user_id: str) -> None: ...

    def end_session(self, user_id: str) -> None: ...
