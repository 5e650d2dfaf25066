import calendar
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict


def _round_money(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


class BillingEstimator:
    def __init__(self, tariff_rate_per_kwh: float = 1.2):
        """
        tariff_rate_per_kwh: flat rate in currency units per kWh
        """
        self.rate = float(tariff_rate_per_kwh)

    def estimate_cost(self, usage_by_period: Dict[str, float]) -> float:
        """
        usage_by_period: dict like {'2025-11-01': 3.4, ...}
        returns total cost rounded to 2 decimals
        """
        total_kwh = sum(float(v) for v in usage_by_period.values())
        # round half up, not banker's rounding
        return _round_money(total_kwh * self.rate)

    def project_monthly_bill(self, month_to_date_kwh: float, today: date) -> Dict[str, float]:
        """
        Extends the average daily consumption so far to the end of the month
        and prices the projected total.
        """
        days_in_month = calendar.monthrange(today.year, today.month)[1]
        days_passed = today.day
        average = month_to_date_kwh / days_passed if days_passed > 0 else 0.0
        projected = month_to_date_kwh + average * (days_in_month - days_passed)
        return {
            "month_to_date_kwh": round(month_to_date_kwh, 4),
            "average_daily_kwh": round(average, 4),
            "projected_kwh": round(projected, 4),
            "estimated_bill": _round_money(projected * self.rate),
        }
