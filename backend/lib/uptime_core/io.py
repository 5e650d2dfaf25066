# backend/lib/uptime_core/io.py
import csv
from typing import List
from .models import Device
from io import StringIO

REQUIRED_COLUMNS = ("category_id", "manufacturer", "model", "power_consumption")


def parse_preset_csv(csv_text: str) -> List[Device]:
    """
    Parse CSV text with header: category_id,manufacturer,model,power_consumption
    power_consumption is the rating in kW, e.g. 0.2 for a 200 W television
    """
    f = StringIO(csv_text.strip())
    reader = csv.DictReader(f)
    presets = []
    for row in reader:
        # Basic validation
        if any(not (row.get(col) or "").strip() for col in REQUIRED_COLUMNS):
            raise ValueError(f"Missing field in row: {row}")
        power = float(row['power_consumption'])
        if power < 0:
            raise ValueError("power_consumption must be >= 0")
        presets.append(Device(
            id="",
            category_id=int(row['category_id']),
            manufacturer=row['manufacturer'].strip(),
            model=row['model'].strip(),
            power_rating_kw=power,
            is_user_added=False,
        ))
    return presets
