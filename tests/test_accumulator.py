# tests/test_accumulator.py
from datetime import date, datetime, timezone

import pytest

from backend.lib.uptime_core.accumulator import checkpoint_key, elapsed_hours
from backend.lib.uptime_core.engine import build_engine
from backend.lib.uptime_core.errors import ConflictError, InvalidDeviceError, RecordNotFoundError
from backend.lib.uptime_core.memory import InMemoryCheckpointStore, InMemoryDeviceStore, InMemoryHistoryStore

from conftest import USER, InterleavedDeviceStore, make_device


class AlwaysStaleDeviceStore(InMemoryDeviceStore):
    def put(self, device_id, fields, expected_revision=None):
        raise ConflictError(f"Device {device_id} changed")


def _engine_on(devices, clock):
    return build_engine(
        devices=devices,
        history=InMemoryHistoryStore(),
        checkpoints=InMemoryCheckpointStore(),
        clock=clock,
    )


def test_on_for_45_minutes(engine, clock):
    engine.devices.create(make_device(power=1.5, last_active=clock.now()))
    clock.advance(minutes=45)

    device = engine.accumulator.record_transition("dev-1", is_active=False)

    assert device.daily_uptime_hours == 0.75
    assert device.total_uptime_hours == 0.75
    assert device.daily_consumption_kwh == 1.125
    assert device.last_active is None
    stored = engine.devices.get("dev-1")
    assert stored.daily_consumption_kwh == 1.125
    assert stored.last_active is None


def test_explicit_hours(engine):
    engine.devices.create(make_device(power=1.5))
    device = engine.accumulator.record_transition("dev-1", is_active=False, explicit_hours=2.0)
    assert device.daily_uptime_hours == 2.0
    assert device.daily_consumption_kwh == 3.0


def test_negative_explicit_hours_rejected(engine):
    engine.devices.create(make_device())
    with pytest.raises(InvalidDeviceError):
        engine.accumulator.record_transition("dev-1", is_active=False, explicit_hours=-1)


@pytest.mark.parametrize("hours", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_explicit_hours_rejected(engine, hours):
    engine.devices.create(make_device())
    with pytest.raises(InvalidDeviceError):
        engine.accumulator.record_transition("dev-1", is_active=False, explicit_hours=hours)
    device = engine.devices.get("dev-1")
    assert device.daily_uptime_hours == 0.0
    assert device.total_uptime_hours == 0.0


def test_unknown_device(engine):
    with pytest.raises(RecordNotFoundError):
        engine.accumulator.record_transition("missing", is_active=True)


def test_checkpoint_follows_state(engine, clock):
    engine.devices.create(make_device())
    engine.accumulator.record_transition("dev-1", is_active=True)
    assert engine.checkpoints.get(checkpoint_key("dev-1")) == clock.now().isoformat()
    clock.advance(minutes=5)
    engine.accumulator.record_transition("dev-1", is_active=False)
    assert engine.checkpoints.get(checkpoint_key("dev-1")) is None


def test_recovers_uptime_from_checkpoint_once(engine, clock):
    # Process died while the device was on; the ledger never saw it go active
    engine.devices.create(make_device(power=1.5))
    crashed_at = clock.now()
    engine.checkpoints.set(checkpoint_key("dev-1"), crashed_at.isoformat())
    clock.advance(minutes=10)

    device = engine.accumulator.record_transition("dev-1", is_active=True)
    assert device.daily_uptime_hours == pytest.approx(0.166667)
    assert device.last_active == clock.now()

    again = engine.accumulator.record_transition("dev-1", is_active=True)
    assert again.daily_uptime_hours == pytest.approx(0.166667)


def test_stale_checkpoint_ignored(engine, clock):
    engine.devices.create(make_device(last_reset=None))
    engine.checkpoints.set(checkpoint_key("dev-1"), clock.now().isoformat())
    clock.advance(hours=30)
    device = engine.accumulator.record_transition("dev-1", is_active=True)
    assert device.daily_uptime_hours == 0.0
    assert device.total_uptime_hours == 0.0


def test_total_uptime_never_decreases(engine, clock):
    engine.devices.create(make_device())
    totals = []
    for minutes_on, minutes_off in [(30, 60), (90, 600), (45, 400), (120, 30)]:
        engine.accumulator.record_transition("dev-1", is_active=True)
        clock.advance(minutes=minutes_on)
        totals.append(engine.accumulator.record_transition("dev-1", is_active=False).total_uptime_hours)
        clock.advance(minutes=minutes_off)
    assert totals == sorted(totals)
    assert totals[-1] == pytest.approx((30 + 90 + 45 + 120) / 60)
    # Crossed midnight at least once
    assert clock.today() > date(2024, 1, 1)


def test_elapsed_hours_is_millisecond_based(clock):
    start = clock.now()
    assert elapsed_hours(start, clock.advance(minutes=90)) == 1.5


def test_transition_after_midnight_rolls_day_over_first(engine, clock):
    engine.devices.create(make_device(
        power=1.5,
        daily_uptime_hours=2.0,
        daily_consumption_kwh=3.0,
        total_uptime_hours=5.0,
        last_active=datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc),
    ))
    clock.set(datetime(2024, 1, 2, 0, 15, tzinfo=timezone.utc))

    device = engine.accumulator.record_transition("dev-1", is_active=False)

    # The outgoing day keeps what was credited before midnight
    entry = engine.history.get(USER, date(2024, 1, 1)).devices_consumption["dev-1"]
    assert entry.daily_uptime_hours == 2.0
    assert entry.daily_consumption_kwh == 3.0
    # The new day holds only the 45 minutes credited after the reset
    assert device.last_reset_date == date(2024, 1, 2)
    assert device.daily_uptime_hours == 0.75
    assert device.daily_consumption_kwh == 1.125
    assert device.total_uptime_hours == 5.75
    assert engine.devices.get("dev-1").daily_uptime_hours == 0.75


def test_concurrent_credit_is_reloaded_not_overwritten(clock):
    devices = InterleavedDeviceStore()
    engine = _engine_on(devices, clock)
    devices.create(make_device(power=1.5, last_active=clock.now()))
    clock.advance(minutes=30)
    # Another writer lands between this transition's read and its write
    devices.before_put = lambda: devices.put(
        "dev-1", {"daily_uptime_hours": 2.0, "daily_consumption_kwh": 3.0}
    )

    device = engine.accumulator.record_transition("dev-1", is_active=False)

    assert device.daily_uptime_hours == 2.5
    assert device.daily_consumption_kwh == 3.75
    stored = devices.get("dev-1")
    assert stored.daily_uptime_hours == 2.5
    assert stored.last_active is None
    assert stored.revision == device.revision == 2


def test_refresh_leaves_switched_off_device_alone(engine, clock):
    engine.devices.create(make_device(daily_uptime_hours=1.0))
    clock.advance(minutes=30)

    device = engine.accumulator.refresh_active("dev-1")

    assert not device.is_active
    assert device.daily_uptime_hours == 1.0
    assert engine.devices.get("dev-1").last_active is None
    assert engine.checkpoints.get(checkpoint_key("dev-1")) is None


def test_gives_up_after_repeated_conflicts(clock):
    devices = AlwaysStaleDeviceStore([make_device()])
    engine = _engine_on(devices, clock)
    with pytest.raises(ConflictError):
        engine.accumulator.record_transition("dev-1", is_active=True)
    assert engine.checkpoints.get(checkpoint_key("dev-1")) is None


def test_device_store_rejects_stale_revision():
    devices = InMemoryDeviceStore([make_device()])
    devices.put("dev-1", {"model": "X"}, expected_revision=0)
    assert devices.get("dev-1").revision == 1
    with pytest.raises(ConflictError):
        devices.put("dev-1", {"model": "Y"}, expected_revision=0)
    assert devices.get("dev-1").model == "X"
    # Unconditional writes still bump the revision
    devices.put("dev-1", {"model": "Z"})
    assert devices.get("dev-1").revision == 2
