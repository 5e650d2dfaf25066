# backend/lib/uptime_core/reconciler.py
import logging
from datetime import timedelta

from .interfaces import Clock, HistoryStore
from .models import HistoryPatch

logger = logging.getLogger(__name__)

RECENT_DAYS = 7


class HistoryReconciler:
    """Re-derives recent day totals from their own hourly buckets.

    Hourly data of past days is never touched here.
    """

    def __init__(self, history: HistoryStore, clock: Clock, days: int = RECENT_DAYS):
        self.history = history
        self.clock = clock
        self.days = days

    def refresh_recent_totals(self, user_id: str) -> int:
        today = self.clock.today()
        refreshed = 0
        for offset in range(1, self.days + 1):
            day = today - timedelta(days=offset)
            record = self.history.get(user_id, day)
            if record is None or not record.hourly_consumption:
                continue
            total = record.hourly_total()
            self.history.merge(
                user_id,
                day,
                HistoryPatch(total_consumption_kwh=total, last_updated=self.clock.now()),
            )
            if abs(total - record.total_consumption_kwh) > 1e-9:
                logger.info(
                    "Corrected total for %s on %s: %.4f -> %.4f kWh",
                    user_id, day, record.total_consumption_kwh, total,
                )
            refreshed += 1
        return refreshed
