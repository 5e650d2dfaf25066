# tests/conftest.py
from datetime import date, datetime, timezone

import pytest

from backend.lib.uptime_core.engine import build_engine
from backend.lib.uptime_core.memory import (
    InMemoryCheckpointStore,
    InMemoryDeviceStore,
    InMemoryHistoryStore,
    ManualClock,
)
from backend.lib.uptime_core.models import Device
from backend.lib.uptime_core.usage_pattern import UsagePatternTable

USER = "user-001"


@pytest.fixture
def clock():
    return ManualClock(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(clock):
    # Flat weights keep the arithmetic in assertions readable
    return build_engine(
        devices=InMemoryDeviceStore(),
        history=InMemoryHistoryStore(),
        checkpoints=InMemoryCheckpointStore(),
        clock=clock,
        pattern=UsagePatternTable.flat(),
    )


def make_device(device_id="dev-1", power=1.5, last_reset=date(2024, 1, 1), **fields):
    values = dict(
        id=device_id,
        owner_id=USER,
        category_id=3,
        manufacturer="Acme",
        model=f"Model {device_id}",
        power_rating_kw=power,
        is_user_added=True,
        last_reset_date=last_reset,
    )
    values.update(fields)
    return Device(**values)


class InterleavedDeviceStore(InMemoryDeviceStore):
    """Runs ``before_put`` once, between a writer's read and its write."""

    def __init__(self, devices=None):
        super().__init__(devices)
        self.before_put = None

    def put(self, device_id, fields, expected_revision=None):
        hook, self.before_put = self.before_put, None
        if hook is not None:
            hook()
        super().put(device_id, fields, expected_revision)
