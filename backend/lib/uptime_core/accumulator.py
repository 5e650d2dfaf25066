# backend/lib/uptime_core/accumulator.py
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from .errors import ConflictError, InvalidDeviceError, RecordNotFoundError
from .interfaces import CheckpointStore, Clock, DeviceStore
from .models import Device
from .rollover import DEVICE_WRITE_ATTEMPTS, DailyRolloverManager

logger = logging.getLogger(__name__)

MAX_RECOVERY_HOURS = 24.0
PRECISION = 6

_MS_PER_HOUR = 3_600_000


def checkpoint_key(device_id: str) -> str:
    return f"active_since:{device_id}"


def elapsed_hours(since: datetime, until: datetime) -> float:
    """Hours between two instants, measured in whole milliseconds."""
    millis = (until - since) // timedelta(milliseconds=1)
    return millis / _MS_PER_HOUR


class UptimeAccumulator:
    def __init__(
        self,
        devices: DeviceStore,
        checkpoints: CheckpointStore,
        clock: Clock,
        rollover: DailyRolloverManager,
    ):
        self.devices = devices
        self.checkpoints = checkpoints
        self.clock = clock
        self.rollover = rollover

    def record_transition(
        self, device_id: str, is_active: bool, explicit_hours: Optional[float] = None
    ) -> Device:
        """Fold an on/off observation for ``device_id`` into its counters.

        Cases, in priority order:

        * ``explicit_hours`` given: credit exactly that many hours.
        * on, with a previous ``last_active``: credit the time since then.
        * on, without one: credit the time since the local checkpoint, if the
          checkpoint is less than 24 hours old (process died while "on").
        * off, with a previous ``last_active``: credit the time since then.

        The day is rolled over first so elapsed time never lands on a day
        whose counters were already finalized. The write is conditional on
        the device revision that was read; a concurrent writer causes a
        reload and a fresh computation.
        """
        if explicit_hours is not None and not (
            math.isfinite(explicit_hours) and explicit_hours >= 0
        ):
            raise InvalidDeviceError("explicit hours must be a finite number >= 0")
        return self._update(device_id, is_active, explicit_hours)

    def refresh_active(self, device_id: str) -> Device:
        """Credit the time since ``last_active`` if the device is still on.

        Background ticks use this instead of ``record_transition(.., True)``:
        a device switched off after the tick listed it stays off.
        """
        return self._update(device_id, True, None, only_if_active=True)

    def _update(
        self,
        device_id: str,
        is_active: bool,
        explicit_hours: Optional[float],
        only_if_active: bool = False,
    ) -> Device:
        for attempt in range(1, DEVICE_WRITE_ATTEMPTS + 1):
            device = self._load(device_id)
            if device.owner_id:
                self.rollover.check_and_reset(device.owner_id)
                device = self._load(device_id)
            if only_if_active and not device.is_active:
                return device

            now = self.clock.now()
            credited = 0.0
            if explicit_hours is not None:
                credited = float(explicit_hours)
            elif device.last_active is not None:
                credited = max(elapsed_hours(device.last_active, now), 0.0)
            elif is_active:
                credited = self._recover(device_id, now)

            fields = {"last_active": now if is_active else None}
            if credited > 0:
                fields.update(self._credit(device, credited))
            try:
                self.devices.put(device_id, fields, expected_revision=device.revision)
            except ConflictError:
                logger.info(
                    "Device %s changed concurrently, retrying (%d/%d)",
                    device_id, attempt, DEVICE_WRITE_ATTEMPTS,
                )
                continue

            # Local trail for crash recovery, written independently of the ledger
            if is_active:
                self.checkpoints.set(checkpoint_key(device_id), now.isoformat())
            else:
                self.checkpoints.remove(checkpoint_key(device_id))

            if credited > 0:
                logger.debug("Credited %.6f h to device %s", credited, device_id)
            for name, value in fields.items():
                setattr(device, name, value)
            device.revision += 1
            return device
        raise ConflictError(
            f"Gave up updating device {device_id} after {DEVICE_WRITE_ATTEMPTS} attempts"
        )

    def _load(self, device_id: str) -> Device:
        device = self.devices.get(device_id)
        if device is None:
            raise RecordNotFoundError(f"Device {device_id} not found")
        return device

    def _recover(self, device_id: str, now: datetime) -> float:
        raw = self.checkpoints.get(checkpoint_key(device_id))
        if not raw:
            return 0.0
        try:
            since = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unreadable checkpoint for device %s: %r", device_id, raw)
            return 0.0
        if since.tzinfo is None:
            since = since.replace(tzinfo=now.tzinfo)
        hours = elapsed_hours(since, now)
        if 0 < hours < MAX_RECOVERY_HOURS:
            logger.info("Recovered %.4f h of uptime for device %s from checkpoint", hours, device_id)
            return hours
        logger.info("Discarding stale checkpoint for device %s (%.2f h)", device_id, hours)
        return 0.0

    @staticmethod
    def _credit(device: Device, hours: float) -> dict:
        return {
            "daily_uptime_hours": round(device.daily_uptime_hours + hours, PRECISION),
            "total_uptime_hours": round(device.total_uptime_hours + hours, PRECISION),
            "daily_consumption_kwh": round(
                device.daily_consumption_kwh + hours * device.power_rating_kw, PRECISION
            ),
        }
