# backend/lib/uptime_core/aggregator.py
import logging
from typing import Dict, List

from .interfaces import Clock, DeviceStore, HistoryStore
from .models import Device, DevicePatch, HistoryPatch
from .rollover import DailyRolloverManager
from .usage_pattern import UsagePatternTable

logger = logging.getLogger(__name__)


class HourlyAggregator:
    def __init__(
        self,
        devices: DeviceStore,
        history: HistoryStore,
        clock: Clock,
        rollover: DailyRolloverManager,
        pattern: UsagePatternTable,
    ):
        self.devices = devices
        self.history = history
        self.clock = clock
        self.rollover = rollover
        self.pattern = pattern

    def contribution(self, device: Device, hour: int) -> float:
        """Estimated kWh ``device`` draws during ``hour``.

        A device that is on counts at full rating; one that is off spreads the
        uptime it already accrued today over the hours by the usage pattern.
        """
        weight = self.pattern.weight(hour, device.category_id)
        if device.is_active:
            return device.power_rating_kw * weight
        return device.power_rating_kw * (device.daily_uptime_hours / 24) * weight

    def record_hour(self, user_id: str) -> float:
        """Write the current hour's bucket for ``user_id``. Returns its kWh.

        Re-running within the same hour replaces the bucket. Earlier hours of
        today that have no bucket yet are backfilled with the same estimate.
        """
        self.rollover.check_and_reset(user_id)
        devices: List[Device] = self.devices.list(owner_id=user_id, is_user_added=True)
        if not devices:
            return 0.0

        now = self.clock.now()
        today = now.date()
        current_hour = now.hour

        existing = self.history.get(user_id, today)
        hourly: Dict[int, float] = dict(existing.hourly_consumption) if existing else {}
        known_devices = existing.devices_consumption if existing else {}

        hours = [h for h in range(current_hour) if h not in hourly] + [current_hour]
        patch = HistoryPatch(last_updated=now)
        for hour in hours:
            patch.hourly_consumption[hour] = sum(self.contribution(d, hour) for d in devices)

        for device in devices:
            known = known_devices.get(device.id)
            device_hours = [
                h for h in range(current_hour) if known is None or h not in known.hourly_data
            ] + [current_hour]
            patch.devices_consumption[device.id] = DevicePatch(
                manufacturer=device.manufacturer,
                model=device.model,
                daily_consumption_kwh=device.daily_consumption_kwh,
                daily_uptime_hours=device.daily_uptime_hours,
                hourly_data={h: self.contribution(device, h) for h in device_hours},
            )

        # The bucket sum is authoritative for the document total, not the ledger
        hourly.update(patch.hourly_consumption)
        patch.total_consumption_kwh = sum(hourly.values())

        self.history.merge(user_id, today, patch)
        logger.info(
            "Recorded hour %d for user %s: %.4f kWh (%d hours backfilled)",
            current_hour,
            user_id,
            patch.hourly_consumption[current_hour],
            len(hours) - 1,
        )
        return patch.hourly_consumption[current_hour]
