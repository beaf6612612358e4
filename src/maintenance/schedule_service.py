"""
Schedule Service Module
CRUD over preventive maintenance schedules plus the overdue, upcoming and
approaching-meter views.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from config.settings import TriggerConfig
from src.collaborators.interfaces import AssetDirectory, ReadingStore
from src.database.database_manager import DatabaseManager
from src.database.enums import TriggerKind, TriggerReason
from src.database.models import FAR_FUTURE_DATE, ExecutionRecord, Schedule
from src.maintenance.execution_tracker import ExecutionTracker
from src.maintenance.schedule_rules import (
    parse_frequency_unit, parse_trigger_kind, validate_schedule_definition
)
from src.maintenance.trigger_evaluator import (
    TriggerEvaluator, initial_next_due_date, initial_next_meter_due
)
from src.maintenance.work_order_generator import GenerationResult, WorkOrderGenerator
from src.utils.exceptions import InvalidConfigurationError, NotFoundError
from src.utils.helpers import Clock, parse_date, utc_now
from src.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'name', 'description', 'asset_id', 'trigger_kind',
    'frequency_unit', 'frequency_value', 'custom_days_interval', 'start_date',
    'lead_days', 'overdue_days_threshold',
    'meter_kind', 'meter_interval', 'last_meter_reading',
    'condition_rules', 'checklist', 'priority', 'estimated_hours', 'assigned_to_id'
)

TIME_RULE_FIELDS = {'trigger_kind', 'frequency_unit', 'frequency_value', 'custom_days_interval', 'start_date'}
METER_RULE_FIELDS = {'trigger_kind', 'meter_kind', 'meter_interval', 'last_meter_reading'}


class ScheduleService:
    """Schedule definitions and their read views"""

    def __init__(self, db: DatabaseManager, assets: AssetDirectory, readings: ReadingStore,
                 tracker: ExecutionTracker, generator: WorkOrderGenerator,
                 evaluator: Optional[TriggerEvaluator] = None,
                 config: Optional[TriggerConfig] = None,
                 clock: Clock = utc_now,
                 locks: Optional[KeyedLock] = None):
        self.db = db
        self.assets = assets
        self.readings = readings
        self.tracker = tracker
        self.generator = generator
        self.evaluator = evaluator or TriggerEvaluator()
        self.config = config or TriggerConfig()
        self.clock = clock
        self.locks = locks or generator.locks

    # ------------------------------------------------------------------- CRUD

    def create(self, organization_id: str, data: Dict[str, Any]) -> Schedule:
        """Validate a definition and store it with its first due state

        Raises:
            InvalidConfigurationError: definition incomplete for its kind
            NotFoundError: unknown asset
        """
        fields = self._clean(data)
        rules = validate_schedule_definition(fields)
        fields['condition_rules'] = [rule.to_dict() for rule in rules]
        self._normalize_enums(fields)
        fields['start_date'] = parse_date(fields.get('start_date'))

        asset = self.assets.get_asset(organization_id, fields['asset_id'])
        today = self.clock().date()

        fields['next_due_date'] = self._next_due(fields, today)
        fields['next_meter_due'] = self._next_meter_due(organization_id, fields, asset.current_meter_readings)

        with self.db.get_session() as session:
            schedule = Schedule(organization_id=organization_id, **fields)
            session.add(schedule)
            session.flush()

        logger.info(f"Created {schedule.trigger_kind} schedule {schedule.name} ({schedule.id})")
        return schedule

    def get(self, organization_id: str, schedule_id: str) -> Schedule:
        with self.db.get_session() as session:
            return self._get(session, organization_id, schedule_id)

    def list(self, organization_id: str, asset_id: Optional[str] = None,
             trigger_kind: Optional[str] = None,
             is_active: Optional[bool] = None) -> List[Schedule]:
        with self.db.get_session() as session:
            query = session.query(Schedule).filter(Schedule.organization_id == organization_id)
            if asset_id:
                query = query.filter(Schedule.asset_id == asset_id)
            if trigger_kind:
                query = query.filter(Schedule.trigger_kind == trigger_kind)
            if is_active is not None:
                query = query.filter(Schedule.is_active.is_(is_active))
            return query.order_by(Schedule.next_due_date.asc(), Schedule.name.asc()).all()

    def update(self, organization_id: str, schedule_id: str, changes: Dict[str, Any]) -> Schedule:
        """Apply changes; due state is recomputed when a rule field changes"""
        updates = self._clean(changes)
        if 'start_date' in updates:
            updates['start_date'] = parse_date(updates['start_date'])

        with self.locks.hold(('schedule', schedule_id)):
            current = self.get(organization_id, schedule_id)
            merged = {name: getattr(current, name) for name in EDITABLE_FIELDS}
            merged.update(updates)
            rules = validate_schedule_definition(merged)
            if 'condition_rules' in updates:
                updates['condition_rules'] = [rule.to_dict() for rule in rules]
            self._normalize_enums(updates)

            if TIME_RULE_FIELDS & set(updates):
                updates['next_due_date'] = self._next_due(merged, self.clock().date())
            if METER_RULE_FIELDS & set(updates):
                snapshot = {}
                if merged.get('last_meter_reading') is None and merged.get('meter_kind'):
                    snapshot = self.assets.get_asset(organization_id, merged['asset_id']).current_meter_readings
                updates['next_meter_due'] = self._next_meter_due(organization_id, merged, snapshot)

            with self.db.get_session() as session:
                schedule = self._get(session, organization_id, schedule_id)
                for name, value in updates.items():
                    setattr(schedule, name, value)
                schedule.updated_at = self.clock()

        logger.info(f"Updated schedule {schedule_id}: {sorted(updates)}")
        return schedule

    def deactivate(self, organization_id: str, schedule_id: str) -> Schedule:
        with self.locks.hold(('schedule', schedule_id)):
            with self.db.get_session() as session:
                schedule = self._get(session, organization_id, schedule_id)
                schedule.is_active = False
                schedule.updated_at = self.clock()
        logger.info(f"Deactivated schedule {schedule_id}")
        return schedule

    def delete(self, organization_id: str, schedule_id: str):
        """Hard delete; execution history keeps its records"""
        with self.locks.hold(('schedule', schedule_id)):
            with self.db.get_session() as session:
                schedule = self._get(session, organization_id, schedule_id)
                session.delete(schedule)
        logger.info(f"Deleted schedule {schedule_id}")

    # ------------------------------------------------------------------ views

    def list_overdue(self, organization_id: str, today: Optional[date] = None) -> List[Schedule]:
        """Active schedules whose time rule is due today or earlier"""
        today = today or self.clock().date()
        with self.db.get_session() as session:
            return session.query(Schedule).filter(
                Schedule.organization_id == organization_id,
                Schedule.is_active.is_(True),
                Schedule.next_due_date <= today,
                Schedule.next_due_date < FAR_FUTURE_DATE
            ).order_by(Schedule.next_due_date.asc()).all()

    def list_upcoming(self, organization_id: str, days: Optional[int] = None,
                      today: Optional[date] = None) -> List[Schedule]:
        """Active schedules due between today and today + days"""
        days = self.config.upcoming_days if days is None else days
        today = today or self.clock().date()
        with self.db.get_session() as session:
            return session.query(Schedule).filter(
                Schedule.organization_id == organization_id,
                Schedule.is_active.is_(True),
                Schedule.next_due_date >= today,
                Schedule.next_due_date <= today + timedelta(days=days)
            ).order_by(Schedule.next_due_date.asc()).all()

    def approaching_meter(self, organization_id: str,
                          threshold_percentage: Optional[float] = None) -> List[Dict[str, Any]]:
        """Meter schedules that consumed at least the given share of their interval"""
        threshold = self.config.approaching_threshold_percentage \
            if threshold_percentage is None else threshold_percentage

        with self.db.get_session() as session:
            schedules = session.query(Schedule).filter(
                Schedule.organization_id == organization_id,
                Schedule.is_active.is_(True),
                Schedule.trigger_kind.in_([TriggerKind.METER_BASED.value, TriggerKind.HYBRID.value]),
                Schedule.meter_kind.isnot(None)
            ).all()

        approaching = []
        for schedule in schedules:
            current = self.readings.latest_meter_value(organization_id, schedule.asset_id, schedule.meter_kind)
            if current is None:
                current = schedule.last_meter_reading
            if current is None:
                continue
            progress = self.evaluator.meter_progress(schedule, current)
            if progress is None or progress < threshold:
                continue
            approaching.append({
                'schedule': schedule.to_dict(),
                'current_reading': current,
                'next_meter_due': schedule.next_meter_due,
                'remaining': schedule.next_meter_due - current,
                'progress_percentage': round(progress, 2)
            })

        approaching.sort(key=lambda item: item['progress_percentage'], reverse=True)
        return approaching

    # -------------------------------------------------------------- execution

    def compliance(self, organization_id: str, schedule_id: Optional[str] = None) -> Dict[str, Any]:
        if schedule_id:
            self.get(organization_id, schedule_id)
        return self.tracker.compliance_metrics(organization_id, schedule_id)

    def history(self, organization_id: str, schedule_id: str,
                limit: Optional[int] = None) -> List[ExecutionRecord]:
        self.get(organization_id, schedule_id)
        limit = limit or self.config.execution_history_limit
        return self.tracker.history(schedule_id, limit, organization_id)

    def complete_execution(self, organization_id: str, execution_id: str,
                           completed_at: Optional[datetime] = None,
                           notes: Optional[str] = None) -> ExecutionRecord:
        return self.tracker.mark_completed(execution_id, completed_at, notes, organization_id)

    def generate_manual(self, organization_id: str, schedule_id: str,
                        actor_id: Optional[str] = None) -> GenerationResult:
        """Fire a schedule on request; one firing per due date still applies"""
        return self.generator.generate_for_schedule(
            schedule_id, TriggerReason.MANUAL, actor_id=actor_id, organization_id=organization_id
        )

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(data) - set(EDITABLE_FIELDS) - {'organization_id', 'id'}
        if unknown:
            raise InvalidConfigurationError(f"Unknown schedule fields: {sorted(unknown)}")
        return {k: v for k, v in data.items() if k in EDITABLE_FIELDS}

    @staticmethod
    def _normalize_enums(fields: Dict[str, Any]):
        if fields.get('trigger_kind') is not None:
            fields['trigger_kind'] = parse_trigger_kind(fields['trigger_kind']).value
        if fields.get('frequency_unit') is not None:
            fields['frequency_unit'] = parse_frequency_unit(fields['frequency_unit']).value

    def _next_due(self, fields: Dict[str, Any], today: date) -> date:
        return initial_next_due_date(
            fields.get('trigger_kind'),
            fields.get('frequency_unit'),
            fields.get('frequency_value'),
            fields.get('custom_days_interval') or self.config.default_custom_days_interval,
            fields.get('start_date'),
            today
        )

    def _next_meter_due(self, organization_id: str, fields: Dict[str, Any],
                        snapshot: Dict[str, float]) -> Optional[float]:
        kind = fields.get('meter_kind')
        if not kind or not TriggerKind(fields['trigger_kind']).uses_meter:
            return None
        current = None
        if fields.get('last_meter_reading') is None:
            current = self.readings.latest_meter_value(organization_id, fields['asset_id'], kind)
            if current is None:
                current = (snapshot or {}).get(kind)
        return initial_next_meter_due(fields.get('meter_interval'), fields.get('last_meter_reading'), current)

    @staticmethod
    def _get(session, organization_id: str, schedule_id: str) -> Schedule:
        schedule = session.query(Schedule).filter(
            Schedule.id == schedule_id,
            Schedule.organization_id == organization_id
        ).first()
        if schedule is None:
            raise NotFoundError('Schedule', schedule_id)
        return schedule
