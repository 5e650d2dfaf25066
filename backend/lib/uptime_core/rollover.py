# backend/lib/uptime_core/rollover.py
import logging

from .errors import ConflictError
from .interfaces import Clock, DeviceStore, HistoryStore
from .models import DevicePatch, HistoryPatch

logger = logging.getLogger(__name__)

# Conditional device writes retried this many times before giving up
DEVICE_WRITE_ATTEMPTS = 3


class DailyRolloverManager:
    """Single place where the local day boundary is detected.

    Everything that reasons about "today" calls ``check_and_reset`` first.
    """

    def __init__(self, devices: DeviceStore, history: HistoryStore, clock: Clock):
        self.devices = devices
        self.history = history
        self.clock = clock

    def check_and_reset(self, user_id: str) -> int:
        """Roll every device of ``user_id`` over to today. Returns how many were rolled."""
        today = self.clock.today()
        rolled = 0
        for device in self.devices.list(owner_id=user_id, is_user_added=True):
            if self._roll_device(user_id, device, today):
                rolled += 1

        if self.history.get(user_id, today) is None:
            self.history.merge(user_id, today, HistoryPatch(last_updated=self.clock.now()))
        return rolled

    def _roll_device(self, user_id, device, today) -> bool:
        for attempt in range(1, DEVICE_WRITE_ATTEMPTS + 1):
            if device.last_reset_date == today:
                return False
            outgoing = device.last_reset_date
            try:
                self.devices.put(
                    device.id,
                    {
                        "daily_uptime_hours": 0.0,
                        "daily_consumption_kwh": 0.0,
                        "last_reset_date": today,
                    },
                    expected_revision=device.revision,
                )
            except ConflictError:
                logger.info(
                    "Device %s changed during rollover, retrying (%d/%d)",
                    device.id, attempt, DEVICE_WRITE_ATTEMPTS,
                )
                device = self.devices.get(device.id)
                if device is None:
                    return False
                continue

            # The counters just zeroed are exactly the ones in this snapshot
            if outgoing is not None and outgoing < today:
                self._finalize_day(user_id, device, outgoing)
            logger.info("Daily counters reset for device %s (%s -> %s)", device.id, outgoing, today)
            return True
        raise ConflictError(
            f"Gave up rolling device {device.id} over after {DEVICE_WRITE_ATTEMPTS} attempts"
        )

    def _finalize_day(self, user_id, device, day) -> None:
        record = self.history.get(user_id, day)
        if record is not None and device.id in record.devices_consumption:
            # Already written by the hourly aggregator or an earlier rollover
            return
        self.history.merge(
            user_id,
            day,
            HistoryPatch(
                devices_consumption={
                    device.id: DevicePatch(
                        manufacturer=device.manufacturer,
                        model=device.model,
                        daily_consumption_kwh=device.daily_consumption_kwh,
                        daily_uptime_hours=device.daily_uptime_hours,
                    )
                },
                last_updated=self.clock.now(),
            ),
        )
