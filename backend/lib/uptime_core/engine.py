# backend/lib/uptime_core/engine.py
from dataclasses import dataclass
from typing import Optional

from .accumulator import UptimeAccumulator
from .aggregator import HourlyAggregator
from .gap_fill import GapFillEstimator
from .interfaces import CheckpointStore, Clock, DeviceStore, HistoryStore
from .ledger import DeviceLedger
from .pipeline import ConsumptionPipeline
from .reconciler import HistoryReconciler
from .rollover import DailyRolloverManager
from .usage_pattern import UsagePatternTable


@dataclass
class ConsumptionEngine:
    """All engine components, wired to one set of collaborators."""

    devices: DeviceStore
    history: HistoryStore
    checkpoints: CheckpointStore
    clock: Clock
    pattern: UsagePatternTable
    ledger: DeviceLedger
    rollover: DailyRolloverManager
    accumulator: UptimeAccumulator
    aggregator: HourlyAggregator
    reconciler: HistoryReconciler
    gap_fill: GapFillEstimator
    pipeline: ConsumptionPipeline


def build_engine(
    devices: DeviceStore,
    history: HistoryStore,
    checkpoints: CheckpointStore,
    clock: Clock,
    pattern: Optional[UsagePatternTable] = None,
) -> ConsumptionEngine:
    pattern = pattern or UsagePatternTable()
    rollover = DailyRolloverManager(devices, history, clock)
    accumulator = UptimeAccumulator(devices, checkpoints, clock, rollover)
    aggregator = HourlyAggregator(devices, history, clock, rollover, pattern)
    reconciler = HistoryReconciler(history, clock)
    gap_fill = GapFillEstimator(devices, history, checkpoints, clock, rollover, pattern)
    return ConsumptionEngine(
        devices=devices,
        history=history,
        checkpoints=checkpoints,
        clock=clock,
        pattern=pattern,
        ledger=DeviceLedger(devices, clock),
        rollover=rollover,
        accumulator=accumulator,
        aggregator=aggregator,
        reconciler=reconciler,
        gap_fill=gap_fill,
        pipeline=ConsumptionPipeline(devices, accumulator, rollover, aggregator, reconciler, gap_fill),
    )
