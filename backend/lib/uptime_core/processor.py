import calendar
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List

from .models import DailyHistoryRecord


class HistoryAnalyzer:
    def __init__(self, records: List[DailyHistoryRecord]):
        # Ensure records are sorted by date
        self.records = sorted(records, key=lambda r: r.date)

    def daily_usage(self) -> Dict[str, float]:
        """
        Returns a dict keyed by 'YYYY-MM-DD' -> total_kwh.
        """
        return {r.date.isoformat(): r.total_consumption_kwh for r in self.records}

    def weekly_usage(self) -> List[Dict]:
        """
        Groups days into ISO weeks ('YYYY-Www'), Monday to Sunday.
        """
        weeks = {}
        for r in self.records:
            year, week, _ = r.date.isocalendar()
            key = f"{year}-W{week:02d}"
            if key not in weeks:
                start = r.date - timedelta(days=r.date.weekday())
                weeks[key] = {
                    "week": key,
                    "start_date": start.isoformat(),
                    "end_date": (start + timedelta(days=6)).isoformat(),
                    "total_consumption": 0.0,
                    "days_count": 0,
                }
            weeks[key]["total_consumption"] += r.total_consumption_kwh
            weeks[key]["days_count"] += 1
        return sorted(weeks.values(), key=lambda w: w["start_date"])

    def monthly_usage(self) -> List[Dict]:
        """
        Aggregates the days into monthly totals (YYYY-MM).
        """
        months = defaultdict(lambda: {"total_consumption": 0.0, "days_count": 0})
        for r in self.records:
            month = months[(r.date.year, r.date.month)]
            month["total_consumption"] += r.total_consumption_kwh
            month["days_count"] += 1
        return [
            {
                "month": f"{year}-{month:02d}",
                "month_name": calendar.month_name[month],
                "year": year,
                **totals,
            }
            for (year, month), totals in sorted(months.items())
        ]

    def hourly_profile(self, day: date) -> Dict[int, float]:
        for r in self.records:
            if r.date == day:
                return {h: r.hourly_consumption.get(h, 0.0) for h in range(24)}
        return {}

    def month_to_date(self, today: date) -> float:
        return sum(
            r.total_consumption_kwh
            for r in self.records
            if (r.date.year, r.date.month) == (today.year, today.month) and r.date <= today
        )
