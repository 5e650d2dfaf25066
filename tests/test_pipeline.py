# tests/test_pipeline.py
from datetime import date, timedelta

from backend.lib.uptime_core.engine import build_engine
from backend.lib.uptime_core.errors import ErrorKind, StoreUnavailableError
from backend.lib.uptime_core.memory import InMemoryCheckpointStore, InMemoryDeviceStore, InMemoryHistoryStore
from backend.lib.uptime_core.pipeline import Tick, TickKind

from conftest import USER, InterleavedDeviceStore, make_device


class UnreachableDeviceStore(InMemoryDeviceStore):
    def list(self, **criteria):
        raise StoreUnavailableError("devices table unreachable")


def test_tick_runs_every_step(engine, clock):
    engine.devices.create(make_device(power=2.0, last_active=clock.now() - timedelta(minutes=30)))

    report = engine.pipeline.run_tick(USER)

    assert report.ok
    assert [s.step for s in report.steps] == ["uptime", "rollover", "hourly", "reconcile"]
    device = engine.devices.get("dev-1")
    assert device.daily_uptime_hours == 0.5
    assert device.last_active == clock.now()
    assert 10 in engine.history.get(USER, date(2024, 1, 1)).hourly_consumption


def test_background_tick_keeps_a_concurrent_switch_off(clock):
    # Web app and scheduled Lambda share one device table
    devices = InterleavedDeviceStore()
    history = InMemoryHistoryStore()
    web = build_engine(devices, history, InMemoryCheckpointStore(), clock)
    background = build_engine(devices, history, InMemoryCheckpointStore(), clock)
    devices.create(make_device(power=2.0, last_active=clock.now()))
    clock.advance(minutes=30)
    # The user switches the device off after the tick has read it as active
    devices.before_put = lambda: web.accumulator.record_transition("dev-1", is_active=False)

    report = background.pipeline.run_tick(USER)

    assert report.ok
    device = devices.get("dev-1")
    assert device.last_active is None
    assert device.daily_uptime_hours == 0.5
    assert device.daily_consumption_kwh == 1.0
    assert device.total_uptime_hours == 0.5


def test_failing_steps_are_reported_not_raised(clock):
    engine = build_engine(
        devices=UnreachableDeviceStore(),
        history=InMemoryHistoryStore(),
        checkpoints=InMemoryCheckpointStore(),
        clock=clock,
    )

    report = engine.pipeline.run_tick(USER)

    assert not report.ok
    failed = {s.step: s for s in report.steps if not s.ok}
    assert set(failed) == {"uptime", "rollover", "hourly"}
    assert failed["hourly"].error_kind == ErrorKind.TRANSPORT
    assert "unreachable" in failed["hourly"].message
    assert report.to_dict()["steps"][0]["error_kind"] == "transport"


def test_midnight_only_rolls_over(engine):
    report = engine.pipeline.handle(Tick(USER, TickKind.MIDNIGHT))
    assert [s.step for s in report.steps] == ["rollover"]


def test_resume_fills_gaps_first(engine):
    engine.devices.create(make_device())
    report = engine.pipeline.handle(Tick(USER, TickKind.RESUME))
    assert report.steps[0].step == "gap_fill"
    data = report.to_dict()
    assert data["ok"]
    assert data["gap_fill"]["filled_hours"] == list(range(10))


def test_ticks_default_to_periodic_and_compare_by_value():
    assert Tick(USER).kind == TickKind.PERIODIC
    assert Tick(USER) == Tick(USER, TickKind.PERIODIC)
    assert TickKind("background") == TickKind.BACKGROUND
