# backend/lib/uptime_core/pipeline.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .accumulator import UptimeAccumulator
from .aggregator import HourlyAggregator
from .errors import LedgerError, StepResult
from .gap_fill import GapFillEstimator, GapFillReport
from .interfaces import DeviceStore
from .reconciler import HistoryReconciler
from .rollover import DailyRolloverManager

logger = logging.getLogger(__name__)


class TickKind(str, Enum):
    PERIODIC = "periodic"
    MIDNIGHT = "midnight"
    RESUME = "resume"
    BACKGROUND = "background"


@dataclass(frozen=True)
class Tick:
    user_id: str
    kind: TickKind = TickKind.PERIODIC


@dataclass
class PipelineReport:
    user_id: str
    steps: List[StepResult] = field(default_factory=list)
    gap_fill: Optional[GapFillReport] = None

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    def to_dict(self) -> dict:
        data = {
            "user_id": self.user_id,
            "ok": self.ok,
            "steps": [
                {
                    "step": s.step,
                    "ok": s.ok,
                    "error_kind": s.error_kind.value if s.error_kind else None,
                    "message": s.message,
                }
                for s in self.steps
            ],
        }
        if self.gap_fill is not None:
            data["gap_fill"] = {
                "last_sync": self.gap_fill.last_sync.isoformat(),
                "reconstructed_dates": [d.isoformat() for d in self.gap_fill.reconstructed_dates],
                "filled_hours": self.gap_fill.filled_hours,
            }
        return data


class ConsumptionPipeline:
    """Runs the accounting steps for one user, best effort.

    A failing step is logged and reported; the remaining steps still run and
    the next tick gets another chance to correct stale data.
    """

    def __init__(
        self,
        devices: DeviceStore,
        accumulator: UptimeAccumulator,
        rollover: DailyRolloverManager,
        aggregator: HourlyAggregator,
        reconciler: HistoryReconciler,
        gap_fill: GapFillEstimator,
    ):
        self.devices = devices
        self.accumulator = accumulator
        self.rollover = rollover
        self.aggregator = aggregator
        self.reconciler = reconciler
        self.gap_fill = gap_fill

    def handle(self, tick: Tick) -> PipelineReport:
        if tick.kind == TickKind.RESUME:
            return self.run_resume(tick.user_id)
        if tick.kind == TickKind.MIDNIGHT:
            return self.run_midnight(tick.user_id)
        return self.run_tick(tick.user_id)

    def run_tick(self, user_id: str) -> PipelineReport:
        report = PipelineReport(user_id=user_id)
        self._run_steps(report)
        return report

    def run_resume(self, user_id: str) -> PipelineReport:
        report = PipelineReport(user_id=user_id)

        def fill():
            report.gap_fill = self.gap_fill.fill_gaps(user_id)

        report.steps.append(self._step("gap_fill", user_id, fill))
        self._run_steps(report)
        return report

    def run_midnight(self, user_id: str) -> PipelineReport:
        report = PipelineReport(user_id=user_id)
        report.steps.append(
            self._step("rollover", user_id, lambda: self.rollover.check_and_reset(user_id))
        )
        return report

    def _run_steps(self, report: PipelineReport) -> None:
        user_id = report.user_id
        report.steps.append(self._step("uptime", user_id, lambda: self._update_active(user_id)))
        report.steps.append(
            self._step("rollover", user_id, lambda: self.rollover.check_and_reset(user_id))
        )
        report.steps.append(self._step("hourly", user_id, lambda: self.aggregator.record_hour(user_id)))
        report.steps.append(
            self._step("reconcile", user_id, lambda: self.reconciler.refresh_recent_totals(user_id))
        )
        if report.ok:
            logger.debug("Pipeline completed for user %s", user_id)

    def _update_active(self, user_id: str) -> int:
        updated = 0
        for device in self.devices.list(owner_id=user_id, is_user_added=True):
            if device.is_active and self.accumulator.refresh_active(device.id).is_active:
                updated += 1
        return updated

    @staticmethod
    def _step(name: str, user_id: str, action: Callable[[], object]) -> StepResult:
        try:
            action()
        except LedgerError as e:
            logger.warning("Step %s failed for user %s (%s): %s", name, user_id, e.kind.value, e)
            return StepResult.failed(name, e)
        return StepResult(step=name)
