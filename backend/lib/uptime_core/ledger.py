# backend/lib/uptime_core/ledger.py
import logging
import math
from typing import Iterable, List, Optional

from .errors import InvalidDeviceError, LedgerError
from .interfaces import Clock, DeviceStore
from .models import Device

logger = logging.getLogger(__name__)


class DeviceLedger:
    """Owns device registration and the per-device accumulator fields.

    These are user-initiated operations: failures are logged and re-raised so
    the caller can report them.
    """

    def __init__(self, devices: DeviceStore, clock: Clock):
        self.devices = devices
        self.clock = clock

    def add_device(
        self,
        user_id: str,
        category_id: int,
        manufacturer: str,
        model: str,
        power_rating_kw: float,
    ) -> str:
        zeroed = {
            "daily_uptime_hours": 0.0,
            "total_uptime_hours": 0.0,
            "daily_consumption_kwh": 0.0,
            "last_reset_date": self.clock.today(),
            "last_active": None,
        }
        try:
            _validate(manufacturer, model, power_rating_kw)
            presets = self.devices.list(
                is_user_added=False,
                manufacturer=manufacturer,
                model=model,
                power_rating_kw=float(power_rating_kw),
            )
            if presets:
                device_id = presets[0].id
                # Conditional, so two users cannot adopt the same preset
                self.devices.put(
                    device_id,
                    {"is_user_added": True, "owner_id": user_id, **zeroed},
                    expected_revision=presets[0].revision,
                )
                logger.info("Converted preset device %s for user %s", device_id, user_id)
                return device_id

            device_id = self.devices.create(
                Device(
                    id="",
                    owner_id=user_id,
                    category_id=int(category_id),
                    manufacturer=manufacturer,
                    model=model,
                    power_rating_kw=float(power_rating_kw),
                    is_user_added=True,
                    last_reset_date=zeroed["last_reset_date"],
                )
            )
            logger.info("Added device %s (%s %s) for user %s", device_id, manufacturer, model, user_id)
            return device_id
        except LedgerError as e:
            logger.error("Error adding device for user %s: %s", user_id, e)
            raise

    def update_device(
        self,
        device_id: str,
        user_id: str,
        category_id: int,
        manufacturer: str,
        model: str,
        power_rating_kw: float,
    ) -> None:
        # Only descriptive fields; accrued uptime/consumption must survive edits
        try:
            _validate(manufacturer, model, power_rating_kw)
            self.devices.put(
                device_id,
                {
                    "category_id": int(category_id),
                    "manufacturer": manufacturer,
                    "model": model,
                    "power_rating_kw": float(power_rating_kw),
                    "is_user_added": True,
                    "owner_id": user_id,
                },
            )
            logger.info("Updated device %s", device_id)
        except LedgerError as e:
            logger.error("Error updating device %s: %s", device_id, e)
            raise

    def delete_device(self, device_id: str) -> None:
        # History records keep their devices_consumption entries for this id
        try:
            self.devices.delete(device_id)
            logger.info("Deleted device %s", device_id)
        except LedgerError as e:
            logger.error("Error deleting device %s: %s", device_id, e)
            raise

    def list_devices(self, user_id: str) -> List[Device]:
        devices = self.devices.list(owner_id=user_id, is_user_added=True)
        return sorted(devices, key=lambda d: (d.manufacturer, d.model, d.id))

    def list_presets(self, category_id: Optional[int] = None) -> List[Device]:
        if category_id is None:
            presets = self.devices.list(is_user_added=False)
        else:
            presets = self.devices.list(is_user_added=False, category_id=int(category_id))
        return sorted(presets, key=lambda d: (d.category_id, d.manufacturer, d.model))

    def seed_presets(self, presets: Iterable[Device]) -> int:
        """Insert catalog presets that are not already present. Returns the number added."""
        added = 0
        try:
            for preset in presets:
                _validate(preset.manufacturer, preset.model, preset.power_rating_kw)
                existing = self.devices.list(
                    manufacturer=preset.manufacturer,
                    model=preset.model,
                    power_rating_kw=preset.power_rating_kw,
                )
                if existing:
                    continue
                self.devices.create(
                    Device(
                        id="",
                        category_id=preset.category_id,
                        manufacturer=preset.manufacturer,
                        model=preset.model,
                        power_rating_kw=preset.power_rating_kw,
                        is_user_added=False,
                    )
                )
                added += 1
        except LedgerError as e:
            logger.error("Error seeding preset devices: %s", e)
            raise
        logger.info("Seeded %d preset devices", added)
        return added


def _validate(manufacturer: str, model: str, power_rating_kw: float) -> None:
    if not manufacturer or not model:
        raise InvalidDeviceError("manufacturer and model are required")
    try:
        power = float(power_rating_kw)
    except (TypeError, ValueError):
        raise InvalidDeviceError(f"power rating must be a number, got {power_rating_kw!r}")
    if not math.isfinite(power) or power < 0:
        raise InvalidDeviceError("power rating must be a finite number >= 0")
