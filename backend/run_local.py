# backend/run_local.py
"""
Replays a short day in memory: seeds presets from a CSV, registers two
devices, switches them on and off and prints the resulting history.

    python -m backend.run_local tests/sample_presets.csv
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

from backend.config import configure_logging
from backend.lib.uptime_core.engine import build_engine
from backend.lib.uptime_core.io import parse_preset_csv
from backend.lib.uptime_core.memory import (
    InMemoryCheckpointStore,
    InMemoryDeviceStore,
    InMemoryHistoryStore,
    ManualClock,
)

USER_ID = "local-user"


def main(csv_path):
    clock = ManualClock(datetime(2025, 11, 1, 6, 0, tzinfo=timezone.utc))
    engine = build_engine(
        devices=InMemoryDeviceStore(),
        history=InMemoryHistoryStore(),
        checkpoints=InMemoryCheckpointStore(),
        clock=clock,
    )

    presets = parse_preset_csv(Path(csv_path).read_text())
    print(f"Parsed {len(presets)} presets, seeded {engine.ledger.seed_presets(presets)}")
    if not presets:
        return

    first = presets[0]
    adopted = engine.ledger.add_device(
        USER_ID, first.category_id, first.manufacturer, first.model, first.power_rating_kw
    )
    kettle = engine.ledger.add_device(USER_ID, 5, "Philips", "HD9350 Kettle", 2.2)

    engine.pipeline.run_resume(USER_ID)
    for device_id, on_hours in ((adopted, 3), (kettle, 0.25)):
        engine.accumulator.record_transition(device_id, is_active=True)
        clock.advance(hours=on_hours)
        engine.accumulator.record_transition(device_id, is_active=False)
        engine.pipeline.run_tick(USER_ID)

    print("Devices:")
    for d in engine.ledger.list_devices(USER_ID):
        print(f" - {d.manufacturer} {d.model}: {d.daily_uptime_hours:.2f} h, "
              f"{d.daily_consumption_kwh:.3f} kWh today")

    record = engine.history.get(USER_ID, clock.today())
    print(f"History {record.date.isoformat()}: {record.total_consumption_kwh:.3f} kWh")
    for hour, kwh in sorted(record.hourly_consumption.items()):
        print(f"   {hour:02d}:00  {kwh:.3f} kWh")


if __name__ == "__main__":
    configure_logging("WARNING")
    csv = sys.argv[1] if len(sys.argv) > 1 else "tests/sample_presets.csv"
    main(csv)
