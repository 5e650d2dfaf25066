# backend/lib/uptime_core/models.py
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

SCHEMA_VERSION = 1


def _as_float(value: Any) -> float:
    # Stores may hand back Decimal, int, str or nothing at all
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_hour_map(value: Any) -> Dict[int, float]:
    if not isinstance(value, Mapping):
        return {}
    hours = {}
    for key, kwh in value.items():
        try:
            hour = int(key)
        except (TypeError, ValueError):
            continue
        if 0 <= hour <= 23:
            hours[hour] = _as_float(kwh)
    return hours


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Device:
    id: str
    owner_id: Optional[str] = None
    category_id: int = 0
    manufacturer: str = ""
    model: str = ""
    power_rating_kw: float = 0.0
    is_user_added: bool = False
    daily_uptime_hours: float = 0.0
    total_uptime_hours: float = 0.0
    daily_consumption_kwh: float = 0.0
    last_reset_date: Optional[date] = None
    last_active: Optional[datetime] = None
    # Bumped by the store on every write; compared on conditional updates
    revision: int = 0

    @property
    def is_active(self) -> bool:
        return self.last_active is not None

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schema_version": SCHEMA_VERSION,
            "user_id": self.owner_id,
            "category_id": self.category_id,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "power_consumption": self.power_rating_kw,
            "is_user_added": self.is_user_added,
            "daily_uptime": self.daily_uptime_hours,
            "total_uptime": self.total_uptime_hours,
            "daily_consumption": self.daily_consumption_kwh,
            "last_reset": self.last_reset_date.isoformat() if self.last_reset_date else None,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "revision": self.revision,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "Device":
        try:
            category_id = int(item.get("category_id") or 0)
        except (TypeError, ValueError):
            category_id = 0
        try:
            revision = int(item.get("revision") or 0)
        except (TypeError, ValueError):
            revision = 0
        return cls(
            id=str(item.get("id", "")),
            owner_id=item.get("user_id"),
            category_id=category_id,
            manufacturer=item.get("manufacturer") or "",
            model=item.get("model") or "",
            power_rating_kw=_as_float(item.get("power_consumption")),
            # Older documents stored 0/1 instead of a boolean
            is_user_added=bool(item.get("is_user_added") or False),
            daily_uptime_hours=_as_float(item.get("daily_uptime")),
            total_uptime_hours=_as_float(item.get("total_uptime")),
            daily_consumption_kwh=_as_float(item.get("daily_consumption")),
            last_reset_date=_parse_date(item.get("last_reset")),
            last_active=_parse_instant(item.get("last_active")),
            revision=revision,
        )


# Device attribute name -> persisted document field name
DEVICE_FIELDS = {
    "owner_id": "user_id",
    "category_id": "category_id",
    "manufacturer": "manufacturer",
    "model": "model",
    "power_rating_kw": "power_consumption",
    "is_user_added": "is_user_added",
    "daily_uptime_hours": "daily_uptime",
    "total_uptime_hours": "total_uptime",
    "daily_consumption_kwh": "daily_consumption",
    "last_reset_date": "last_reset",
    "last_active": "last_active",
}


def device_fields_to_item(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate a partial Device update into persisted field names."""
    item = {}
    for name, value in fields.items():
        if name not in DEVICE_FIELDS:
            raise KeyError(f"Unknown device field: {name}")
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        item[DEVICE_FIELDS[name]] = value
    return item


@dataclass
class DeviceConsumption:
    manufacturer: str = ""
    model: str = ""
    daily_consumption_kwh: float = 0.0
    daily_uptime_hours: float = 0.0
    hourly_data: Dict[int, float] = field(default_factory=dict)

    def to_item(self) -> Dict[str, Any]:
        return {
            "manufacturer": self.manufacturer,
            "model": self.model,
            "daily_consumption": self.daily_consumption_kwh,
            "daily_uptime": self.daily_uptime_hours,
            "hourly_data": {str(h): kwh for h, kwh in sorted(self.hourly_data.items())},
        }

    @classmethod
    def from_item(cls, item: Any) -> "DeviceConsumption":
        if not isinstance(item, Mapping):
            return cls()
        return cls(
            manufacturer=item.get("manufacturer") or "",
            model=item.get("model") or "",
            daily_consumption_kwh=_as_float(item.get("daily_consumption")),
            daily_uptime_hours=_as_float(item.get("daily_uptime")),
            hourly_data=_as_hour_map(item.get("hourly_data")),
        )


@dataclass
class DailyHistoryRecord:
    date: date
    total_consumption_kwh: float = 0.0
    hourly_consumption: Dict[int, float] = field(default_factory=dict)
    devices_consumption: Dict[str, DeviceConsumption] = field(default_factory=dict)
    is_reconstructed: bool = False
    last_updated: Optional[datetime] = None

    def hourly_total(self) -> float:
        return sum(self.hourly_consumption.values())

    def to_item(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "schema_version": SCHEMA_VERSION,
            "total_consumption": self.total_consumption_kwh,
            "hourly_consumption": {
                str(h): kwh for h, kwh in sorted(self.hourly_consumption.items())
            },
            "devices_consumption": {
                device_id: entry.to_item()
                for device_id, entry in self.devices_consumption.items()
            },
            "is_reconstructed": self.is_reconstructed,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "DailyHistoryRecord":
        raw_devices = item.get("devices_consumption")
        devices = {}
        if isinstance(raw_devices, Mapping):
            devices = {
                str(device_id): DeviceConsumption.from_item(entry)
                for device_id, entry in raw_devices.items()
            }
        return cls(
            date=_parse_date(item.get("date")),
            total_consumption_kwh=_as_float(item.get("total_consumption")),
            hourly_consumption=_as_hour_map(item.get("hourly_consumption")),
            devices_consumption=devices,
            is_reconstructed=bool(item.get("is_reconstructed") or False),
            last_updated=_parse_instant(item.get("last_updated")),
        )


@dataclass
class DevicePatch:
    """Merge payload for one entry of ``devices_consumption``.

    ``None`` leaves the stored value alone; hour keys are merged one by one.
    """

    manufacturer: Optional[str] = None
    model: Optional[str] = None
    daily_consumption_kwh: Optional[float] = None
    daily_uptime_hours: Optional[float] = None
    hourly_data: Dict[int, float] = field(default_factory=dict)

    def apply(self, entry: Optional[DeviceConsumption]) -> DeviceConsumption:
        merged = replace(entry, hourly_data=dict(entry.hourly_data)) if entry else DeviceConsumption()
        if self.manufacturer is not None:
            merged.manufacturer = self.manufacturer
        if self.model is not None:
            merged.model = self.model
        if self.daily_consumption_kwh is not None:
            merged.daily_consumption_kwh = self.daily_consumption_kwh
        if self.daily_uptime_hours is not None:
            merged.daily_uptime_hours = self.daily_uptime_hours
        merged.hourly_data.update(self.hourly_data)
        return merged


@dataclass
class HistoryPatch:
    """Merge-write payload for a DailyHistoryRecord.

    Scalars are overwritten only when set. ``hourly_consumption`` and
    ``devices_consumption`` are merged key by key so that concurrent writers
    touching different hours or devices do not clobber each other.
    """

    total_consumption_kwh: Optional[float] = None
    hourly_consumption: Dict[int, float] = field(default_factory=dict)
    devices_consumption: Dict[str, DevicePatch] = field(default_factory=dict)
    is_reconstructed: Optional[bool] = None
    last_updated: Optional[datetime] = None

    def apply(self, record: Optional[DailyHistoryRecord], day: date) -> DailyHistoryRecord:
        if record is None:
            merged = DailyHistoryRecord(date=day)
        else:
            merged = replace(
                record,
                hourly_consumption=dict(record.hourly_consumption),
                devices_consumption=dict(record.devices_consumption),
            )
        if self.total_consumption_kwh is not None:
            merged.total_consumption_kwh = self.total_consumption_kwh
        merged.hourly_consumption.update(self.hourly_consumption)
        for device_id, device_patch in self.devices_consumption.items():
            merged.devices_consumption[device_id] = device_patch.apply(
                merged.devices_consumption.get(device_id)
            )
        if self.is_reconstructed is not None:
            merged.is_reconstructed = self.is_reconstructed
        if self.last_updated is not None:
            merged.last_updated = self.last_updated
        return merged
