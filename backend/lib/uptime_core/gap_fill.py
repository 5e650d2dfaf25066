# backend/lib/uptime_core/gap_fill.py
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Set

from .interfaces import CheckpointStore, Clock, DeviceStore, HistoryStore
from .models import Device, DevicePatch, HistoryPatch
from .rollover import DailyRolloverManager
from .usage_pattern import UsagePatternTable

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(hours=24)
ACTIVE_GRACE = timedelta(minutes=10)
ACTIVE_DAY_UPTIME_HOURS = 8.0
IDLE_DAY_UPTIME_HOURS = 2.0
ACTIVE_HOUR_MULTIPLIER = 3.0


def last_sync_key(user_id: str) -> str:
    return f"last_sync:{user_id}"


@dataclass
class GapFillReport:
    last_sync: datetime
    reconstructed_dates: List[date] = field(default_factory=list)
    filled_hours: List[int] = field(default_factory=list)


class GapFillEstimator:
    """Backfills history for the time the engine was not running.

    Runs once per launch/resume, before the regular pipeline. Days that
    already carry hourly data are never rewritten.
    """

    def __init__(
        self,
        devices: DeviceStore,
        history: HistoryStore,
        checkpoints: CheckpointStore,
        clock: Clock,
        rollover: DailyRolloverManager,
        pattern: UsagePatternTable,
    ):
        self.devices = devices
        self.history = history
        self.checkpoints = checkpoints
        self.clock = clock
        self.rollover = rollover
        self.pattern = pattern

    def fill_gaps(self, user_id: str) -> GapFillReport:
        now = self.clock.now()
        last_sync = self._last_sync(user_id, now)
        report = GapFillReport(last_sync=last_sync)

        devices = self.devices.list(owner_id=user_id, is_user_added=True)
        active_near_sync = {
            d.id for d in devices
            if d.last_active is not None and d.last_active >= last_sync - ACTIVE_GRACE
        }

        if devices:
            today = now.date()
            day = last_sync.astimezone(now.tzinfo).date() + timedelta(days=1)
            while day < today:
                if self._reconstruct_day(user_id, day, devices, active_near_sync, now):
                    report.reconstructed_dates.append(day)
                day += timedelta(days=1)
            report.filled_hours = self._fill_today(user_id, now, devices, active_near_sync)

        self.checkpoints.set(last_sync_key(user_id), now.isoformat())
        self.rollover.check_and_reset(user_id)

        if report.reconstructed_dates or report.filled_hours:
            logger.info(
                "Gap fill for user %s since %s: %d days reconstructed, %d hours filled",
                user_id, last_sync.isoformat(), len(report.reconstructed_dates), len(report.filled_hours),
            )
        return report

    def _last_sync(self, user_id: str, now: datetime) -> datetime:
        raw = self.checkpoints.get(last_sync_key(user_id))
        if raw:
            try:
                since = datetime.fromisoformat(raw)
                return since if since.tzinfo else since.replace(tzinfo=now.tzinfo)
            except ValueError:
                logger.warning("Unreadable last sync for user %s: %r", user_id, raw)
        return now - DEFAULT_LOOKBACK

    def _reconstruct_day(
        self, user_id: str, day: date, devices: List[Device], active_near_sync: Set[str], now: datetime
    ) -> bool:
        record = self.history.get(user_id, day)
        if record is not None and record.hourly_consumption:
            return False

        patch = HistoryPatch(is_reconstructed=True, last_updated=now)
        for device in devices:
            uptime = ACTIVE_DAY_UPTIME_HOURS if device.id in active_near_sync else IDLE_DAY_UPTIME_HOURS
            consumption = uptime * device.power_rating_kw
            # Raw weights, not normalized; the day total is the bucket sum below
            hourly = {
                h: consumption / 24 * self.pattern.weight(h, device.category_id) for h in range(24)
            }
            patch.devices_consumption[device.id] = DevicePatch(
                manufacturer=device.manufacturer,
                model=device.model,
                daily_consumption_kwh=consumption,
                daily_uptime_hours=uptime,
                hourly_data=hourly,
            )
            for h, kwh in hourly.items():
                patch.hourly_consumption[h] = patch.hourly_consumption.get(h, 0.0) + kwh

        patch.total_consumption_kwh = sum(patch.hourly_consumption.values())
        self.history.merge(user_id, day, patch)
        return True

    def _fill_today(
        self, user_id: str, now: datetime, devices: List[Device], active_near_sync: Set[str]
    ) -> List[int]:
        today = now.date()
        record = self.history.get(user_id, today)
        hourly = dict(record.hourly_consumption) if record else {}
        known_devices = record.devices_consumption if record else {}

        missing = [h for h in range(now.hour) if h not in hourly]
        if not missing:
            return []

        patch = HistoryPatch(last_updated=now)
        for device in devices:
            multiplier = ACTIVE_HOUR_MULTIPLIER if device.id in active_near_sync else 1.0
            share = {h: self.pattern.weight(h, device.category_id) / 24 * multiplier for h in missing}
            baseline = {h: device.power_rating_kw * s for h, s in share.items()}
            known = known_devices.get(device.id)
            patch.devices_consumption[device.id] = DevicePatch(
                manufacturer=device.manufacturer,
                model=device.model,
                daily_consumption_kwh=(known.daily_consumption_kwh if known else 0.0) + sum(baseline.values()),
                daily_uptime_hours=(known.daily_uptime_hours if known else 0.0) + sum(share.values()),
                hourly_data=baseline,
            )
            for h, kwh in baseline.items():
                patch.hourly_consumption[h] = patch.hourly_consumption.get(h, 0.0) + kwh

        hourly.update(patch.hourly_consumption)
        patch.total_consumption_kwh = sum(hourly.values())
        self.history.merge(user_id, today, patch)
        return missing
