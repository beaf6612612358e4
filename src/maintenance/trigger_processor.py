"""
Trigger Processor Module
Batch sweeps over active schedules (time, meter and condition paths) and the
meter-reading ingest path that evaluates meter schedules immediately.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from src.collaborators.interfaces import AssetDirectory, ReadingStore
from src.database.database_manager import DatabaseManager
from src.database.enums import TriggerKind, TriggerReason
from src.database.models import FAR_FUTURE_DATE, Schedule
from src.maintenance.sweep import SweepResult
from src.maintenance.trigger_evaluator import TriggerEvaluator
from src.maintenance.work_order_generator import GenerationResult, WorkOrderGenerator
from src.utils.exceptions import ConflictError
from src.utils.helpers import Clock, utc_now
from src.utils.logger import LogContext, log_execution_time

logger = logging.getLogger(__name__)

TIME_KINDS = [TriggerKind.TIME_BASED.value, TriggerKind.HYBRID.value]
METER_KINDS = [TriggerKind.METER_BASED.value, TriggerKind.HYBRID.value]
CONDITION_KINDS = [TriggerKind.CONDITION_BASED.value, TriggerKind.HYBRID.value]


class TriggerProcessor:
    """Evaluates candidate schedules and hands due ones to the generator"""

    def __init__(self, db: DatabaseManager, generator: WorkOrderGenerator,
                 readings: ReadingStore, assets: AssetDirectory,
                 evaluator: Optional[TriggerEvaluator] = None,
                 clock: Clock = utc_now):
        self.db = db
        self.generator = generator
        self.readings = readings
        self.assets = assets
        self.evaluator = evaluator or TriggerEvaluator()
        self.clock = clock

    def _candidates(self, kinds: List[str], organization_id: Optional[str] = None,
                    extra: Iterable = ()) -> List[Schedule]:
        with self.db.get_session() as session:
            query = session.query(Schedule).filter(
                Schedule.is_active.is_(True),
                Schedule.trigger_kind.in_(kinds),
                *extra
            )
            if organization_id:
                query = query.filter(Schedule.organization_id == organization_id)
            return query.all()

    def _run_sweep(self, name: str, now: datetime, schedules: List[Schedule],
                   fire_one: Callable[[Schedule, datetime], Optional[GenerationResult]]) -> SweepResult:
        """Per-item isolation: a failing schedule is logged and the batch continues"""
        result = SweepResult(name=name, started_at=now)

        for schedule in schedules:
            result.processed += 1
            with LogContext(schedule_id=schedule.id, organization_id=schedule.organization_id,
                            asset_id=schedule.asset_id):
                try:
                    if fire_one(schedule, now) is not None:
                        result.triggered += 1
                except ConflictError as e:
                    logger.info(f"Skipped schedule {schedule.name}: {e.message}")
                    result.skipped += 1
                except Exception as e:
                    message = f"Schedule {schedule.id} ({schedule.name}) failed: {e}"
                    logger.error(message)
                    result.add_error(message)

        result.finished_at = self.clock()
        logger.info(f"{name}: {result.processed} schedules, {result.triggered} work orders, "
                    f"{result.skipped} skipped, {len(result.errors)} errors")
        return result

    # ----------------------------------------------------------------- sweeps

    @log_execution_time
    def process_time_schedules(self, now: Optional[datetime] = None,
                               organization_id: Optional[str] = None) -> SweepResult:
        """Fire time and hybrid schedules whose lead window has opened"""
        now = now or self.clock()
        schedules = self._candidates(
            TIME_KINDS, organization_id,
            extra=(Schedule.next_due_date.isnot(None), Schedule.next_due_date < FAR_FUTURE_DATE)
        )
        return self._run_sweep('time_sweep', now, schedules, self._fire_time)

    @log_execution_time
    def process_meter_schedules(self, now: Optional[datetime] = None,
                                organization_id: Optional[str] = None) -> SweepResult:
        """Fire meter and hybrid schedules whose latest reading reached the threshold"""
        now = now or self.clock()
        schedules = self._candidates(METER_KINDS, organization_id, extra=(Schedule.meter_kind.isnot(None),))
        return self._run_sweep('meter_sweep', now, schedules, self._fire_meter)

    @log_execution_time
    def process_condition_schedules(self, now: Optional[datetime] = None,
                                    organization_id: Optional[str] = None) -> SweepResult:
        """Fire condition and hybrid schedules with at least one matching rule"""
        now = now or self.clock()
        schedules = self._candidates(CONDITION_KINDS, organization_id)
        return self._run_sweep('condition_sweep', now, schedules, self._fire_condition)

    def _fire_time(self, schedule: Schedule, now: datetime) -> Optional[GenerationResult]:
        decision = self.evaluator.evaluate(schedule, now, paths=[TriggerReason.TIME_DUE])
        firing = decision.firing(TriggerReason.TIME_DUE)
        if firing is None:
            return None
        return self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE, firing, now)

    def _fire_meter(self, schedule: Schedule, now: datetime,
                    latest: Optional[float] = None) -> Optional[GenerationResult]:
        if latest is None:
            latest = self.readings.latest_meter_value(schedule.organization_id, schedule.asset_id,
                                                      schedule.meter_kind)
        decision = self.evaluator.evaluate(schedule, now, latest_meter=latest,
                                           paths=[TriggerReason.METER_TRIGGER])
        firing = decision.firing(TriggerReason.METER_TRIGGER)
        if firing is None:
            return None
        return self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER, firing, now)

    def _fire_condition(self, schedule: Schedule, now: datetime) -> Optional[GenerationResult]:
        latest = {
            kind: self.readings.latest_value(schedule.organization_id, schedule.asset_id, kind)
            for kind in self.evaluator.condition_kinds(schedule)
        }
        decision = self.evaluator.evaluate(schedule, now, latest_conditions=latest,
                                           paths=[TriggerReason.CONDITION_TRIGGER])
        firing = decision.firing(TriggerReason.CONDITION_TRIGGER)
        if firing is None:
            return None
        return self.generator.generate_for_schedule(schedule.id, TriggerReason.CONDITION_TRIGGER, firing, now)

    # ------------------------------------------------------------ meter ingest

    def record_meter_reading(self, organization_id: str, asset_id: str, meter_kind: str,
                             value: float, recorded_at: Optional[datetime] = None,
                             recorded_by_id: Optional[str] = None,
                             source: str = 'manual',
                             notes: Optional[str] = None) -> Dict[str, Any]:
        """Store a meter reading, then evaluate that asset's meter schedules

        Returns:
            Dictionary with the stored reading, generated work orders and
            per-schedule errors

        Raises:
            NotFoundError: unknown asset
        """
        self.assets.get_asset(organization_id, asset_id)
        now = self.clock()
        reading = self.readings.record_meter(
            organization_id, asset_id, meter_kind, float(value), recorded_at or now,
            recorded_by_id=recorded_by_id, source=source, notes=notes
        )

        schedules = self._candidates(METER_KINDS, organization_id, extra=(
            Schedule.asset_id == asset_id,
            Schedule.meter_kind == meter_kind
        ))

        generated: List[GenerationResult] = []
        errors: List[str] = []
        for schedule in schedules:
            with LogContext(schedule_id=schedule.id, organization_id=organization_id, asset_id=asset_id):
                try:
                    outcome = self._fire_meter(schedule, now, latest=float(value))
                    if outcome is not None:
                        generated.append(outcome)
                except ConflictError as e:
                    logger.info(f"Meter reading {value} did not fire {schedule.name}: {e.message}")
                except Exception as e:
                    message = f"Schedule {schedule.id} ({schedule.name}) failed: {e}"
                    logger.error(message)
                    errors.append(message)

        return {
            'reading': reading,
            'work_orders': generated,
            'errors': errors
        }
