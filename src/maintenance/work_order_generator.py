"""
Work-Order Generator Module
Turns a due decision, a prediction or a manual request into exactly one
work-order creation request plus one execution record, applying the
per-reason dedup windows.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from config.settings import TriggerConfig
from src.collaborators.interfaces import NotificationSink, WorkOrderRequest, WorkOrderService
from src.database.database_manager import DatabaseManager
from src.database.enums import (
    PredictionStatus, RiskLevel, TriggerKind, TriggerReason, WorkOrderPriority, WorkOrderType
)
from src.database.models import FAR_FUTURE_DATE, ExecutionRecord, Prediction, Schedule
from src.maintenance.execution_tracker import ExecutionTracker
from src.maintenance.schedule_rules import advance_due_date, parse_frequency_unit
from src.maintenance.trigger_evaluator import Firing
from src.predictive.lifecycle import check_transition
from src.utils.exceptions import ConflictError, InvalidConfigurationError, NotFoundError
from src.utils.helpers import Clock, start_of_day, utc_now
from src.utils.keyed_lock import KeyedLock
from src.utils.logger import LogContext

logger = logging.getLogger(__name__)

# Reasons that share one firing per due date
DUE_DATE_REASONS = (TriggerReason.TIME_DUE, TriggerReason.MANUAL)

RISK_TO_PRIORITY = {
    RiskLevel.CRITICAL: WorkOrderPriority.CRITICAL,
    RiskLevel.HIGH: WorkOrderPriority.HIGH,
    RiskLevel.MEDIUM: WorkOrderPriority.MEDIUM,
}

CONDITION_MIN_PRIORITY = WorkOrderPriority.HIGH


@dataclass
class GenerationResult:
    """The work order and execution produced by one firing"""
    work_order_id: str
    execution: ExecutionRecord
    reason: TriggerReason
    priority: WorkOrderPriority

    def to_dict(self) -> Dict[str, Any]:
        return {
            'work_order_id': self.work_order_id,
            'reason': self.reason.value,
            'priority': self.priority.value,
            'execution': self.execution.to_dict()
        }


def prediction_priority(risk_level: str) -> WorkOrderPriority:
    return RISK_TO_PRIORITY.get(RiskLevel(risk_level), WorkOrderPriority.LOW)


def condition_priority(schedule_priority: Optional[str]) -> WorkOrderPriority:
    """Schedule priority raised to at least HIGH"""
    base = WorkOrderPriority(schedule_priority) if schedule_priority else CONDITION_MIN_PRIORITY
    return base if base.rank >= CONDITION_MIN_PRIORITY.rank else CONDITION_MIN_PRIORITY


class WorkOrderGenerator:
    """Single writer per schedule for work generation"""

    def __init__(self, db: DatabaseManager, tracker: ExecutionTracker,
                 work_orders: WorkOrderService,
                 notifier: Optional[NotificationSink] = None,
                 config: Optional[TriggerConfig] = None,
                 clock: Clock = utc_now,
                 locks: Optional[KeyedLock] = None):
        self.db = db
        self.tracker = tracker
        self.work_orders = work_orders
        self.notifier = notifier
        self.config = config or TriggerConfig()
        self.clock = clock
        self.locks = locks or KeyedLock()

    def dedup_window(self, reason: TriggerReason) -> Optional[timedelta]:
        if reason is TriggerReason.METER_TRIGGER:
            return timedelta(hours=self.config.meter_dedup_hours)
        if reason is TriggerReason.CONDITION_TRIGGER:
            return timedelta(hours=self.config.condition_dedup_hours)
        return None

    # --------------------------------------------------------------- schedules

    def generate_for_schedule(self, schedule_id: str, reason: TriggerReason,
                              firing: Optional[Firing] = None,
                              now: Optional[datetime] = None,
                              actor_id: Optional[str] = None,
                              organization_id: Optional[str] = None) -> GenerationResult:
        """Fire a schedule once for the given reason

        The firing is claimed before the work order is requested: eligibility
        is re-read, the execution is recorded and the schedule advanced in one
        transaction that bumps ``firing_version`` with a conditional update.
        The in-process lock serializes callers of this engine; the version
        check stops a second process that read the same committed state.
        The work order is then created and attached to the execution. If the
        work-order service fails, the claim is rolled back.

        Args:
            schedule_id: Schedule to fire
            reason: time_due, meter_trigger, condition_trigger or manual
            firing: Evaluator output (required for meter and condition reasons)
            now: Firing instant (defaults to the clock)
            actor_id: User requesting a manual firing
            organization_id: Scope check for interactive callers

        Returns:
            GenerationResult

        Raises:
            NotFoundError, ConflictError, InvalidConfigurationError,
            TransientCollaboratorError
        """
        if reason is TriggerReason.PREDICTION:
            raise InvalidConfigurationError("Prediction-driven work uses generate_for_prediction")
        if reason in (TriggerReason.METER_TRIGGER, TriggerReason.CONDITION_TRIGGER) and firing is None:
            raise InvalidConfigurationError(f"{reason.value} firing requires the evaluated trigger")

        now = now or self.clock()

        with self.locks.hold(('schedule', schedule_id)), LogContext(schedule_id=schedule_id):
            with self.db.get_session() as session:
                schedule = session.get(Schedule, schedule_id)
                if schedule is None or (organization_id and schedule.organization_id != organization_id):
                    raise NotFoundError('Schedule', schedule_id)
                if not schedule.is_active:
                    raise ConflictError(
                        f"Cannot generate work order for inactive schedule {schedule.name}",
                        {'schedule_id': schedule_id}
                    )
                scheduled_at = self._check_eligibility(session, schedule, reason, firing, now)
                due_state = self._due_state(schedule)
                self._claim_schedule(session, schedule)

                details = firing.details() if firing else {'trigger_reason': reason.value}
                if actor_id:
                    details['requested_by'] = actor_id
                execution = self.tracker.record_firing(
                    session, schedule.organization_id, reason, scheduled_at, None,
                    schedule=schedule,
                    meter_value=firing.meter_value if firing else None,
                    details=details,
                    created_at=now
                )
                priority = self._schedule_priority(schedule, reason)
                request = self._schedule_request(schedule, reason, firing, scheduled_at, priority, actor_id)
                self._advance_schedule(schedule, reason, firing)

            try:
                work_order_id = self.work_orders.create(request)
            except Exception as e:
                logger.error(f"Work order for {reason.value} firing of schedule {schedule.name} "
                             f"failed, releasing execution {execution.id}: {e}")
                with self.db.get_session() as session:
                    self.tracker.discard_firing(session, execution.id)
                    session.query(Schedule).filter(Schedule.id == schedule_id).update(
                        due_state, synchronize_session=False
                    )
                raise

            execution = self._attach(execution, work_order_id)

        logger.info(f"Generated {reason.value} work order {work_order_id} for schedule {schedule.name}")
        if self.notifier:
            self.notifier.notify(
                'Maintenance work generated',
                f"{request.title} ({priority.value}) due {request.due_date:%Y-%m-%d}",
                'info',
                {'schedule_id': schedule_id, 'work_order_id': work_order_id, 'reason': reason.value}
            )
        return GenerationResult(work_order_id, execution, reason, priority)

    @staticmethod
    def _claim_schedule(session, schedule: Schedule):
        """Conditional version bump; zero rows means another writer fired first"""
        seen = schedule.firing_version or 0
        claimed = session.query(Schedule).filter(
            Schedule.id == schedule.id,
            Schedule.firing_version == seen
        ).update({Schedule.firing_version: seen + 1}, synchronize_session=False)
        if claimed != 1:
            raise ConflictError(
                f"Schedule {schedule.name} was fired concurrently",
                {'schedule_id': schedule.id}
            )
        schedule.firing_version = seen + 1

    @staticmethod
    def _due_state(schedule: Schedule) -> Dict[Any, Any]:
        return {
            Schedule.next_due_date: schedule.next_due_date,
            Schedule.next_meter_due: schedule.next_meter_due,
            Schedule.last_meter_reading: schedule.last_meter_reading
        }

    def _attach(self, execution: ExecutionRecord, work_order_id: str,
                link: Optional[Callable[[Any], None]] = None) -> ExecutionRecord:
        try:
            with self.db.get_session() as session:
                if link is not None:
                    link(session)
                return self.tracker.attach_work_order(session, execution.id, work_order_id)
        except Exception as e:
            logger.error(f"Work order {work_order_id} was created but could not be linked "
                         f"to execution {execution.id}: {e}")
            raise

    def _check_eligibility(self, session, schedule: Schedule, reason: TriggerReason,
                           firing: Optional[Firing], now: datetime) -> datetime:
        """Dedup and re-validation against committed state; returns scheduled time"""
        kind = TriggerKind(schedule.trigger_kind)

        window = self.dedup_window(reason)
        if window is not None:
            latest = self.tracker.latest_execution(session, schedule.id, [reason])
            if latest is not None and now - latest.created_at < window:
                raise ConflictError(
                    f"{reason.value} work for schedule {schedule.name} was generated at "
                    f"{latest.created_at:%Y-%m-%d %H:%M}, inside the {window} dedup window",
                    {'schedule_id': schedule.id, 'last_execution_id': latest.id}
                )

        if reason is TriggerReason.METER_TRIGGER:
            if schedule.next_meter_due is None or firing.meter_value < schedule.next_meter_due:
                raise ConflictError(
                    f"Meter reading {firing.meter_value} no longer reaches the next threshold "
                    f"{schedule.next_meter_due} of schedule {schedule.name}",
                    {'schedule_id': schedule.id}
                )
            return now

        if reason is TriggerReason.CONDITION_TRIGGER:
            return now

        # time_due and manual: one firing per due date
        if reason is TriggerReason.TIME_DUE:
            if not kind.uses_time or schedule.next_due_date is None or schedule.next_due_date >= FAR_FUTURE_DATE:
                raise InvalidConfigurationError(f"Schedule {schedule.name} has no live time rule")
            if firing is not None and firing.scheduled_at.date() != schedule.next_due_date:
                raise ConflictError(
                    f"Schedule {schedule.name} due date moved to {schedule.next_due_date}",
                    {'schedule_id': schedule.id}
                )
            window_opens = schedule.next_due_date - timedelta(days=schedule.lead_days or 0)
            if firing is None and now.date() < window_opens:
                raise ConflictError(
                    f"Schedule {schedule.name} is not due until {schedule.next_due_date}",
                    {'schedule_id': schedule.id}
                )
        scheduled_at = self._due_date_target(schedule, kind, now)

        existing = self.tracker.execution_for_date(session, schedule.id, scheduled_at, DUE_DATE_REASONS)
        if existing is not None:
            raise ConflictError(
                f"Schedule {schedule.name} already fired for {scheduled_at:%Y-%m-%d}",
                {'schedule_id': schedule.id, 'execution_id': existing.id}
            )
        return scheduled_at

    @staticmethod
    def _due_date_target(schedule: Schedule, kind: TriggerKind, now: datetime) -> datetime:
        if kind.uses_time and schedule.next_due_date and schedule.next_due_date < FAR_FUTURE_DATE:
            return start_of_day(schedule.next_due_date)
        return now

    @staticmethod
    def _schedule_priority(schedule: Schedule, reason: TriggerReason) -> WorkOrderPriority:
        if reason is TriggerReason.CONDITION_TRIGGER:
            return condition_priority(schedule.priority)
        return WorkOrderPriority(schedule.priority) if schedule.priority else WorkOrderPriority.MEDIUM

    def _schedule_request(self, schedule: Schedule, reason: TriggerReason,
                          firing: Optional[Firing], scheduled_at: datetime,
                          priority: WorkOrderPriority, actor_id: Optional[str]) -> WorkOrderRequest:
        threshold = schedule.overdue_days_threshold
        if threshold is None:
            threshold = self.config.default_overdue_days
        base_description = schedule.description or 'Preventive maintenance'

        if reason is TriggerReason.METER_TRIGGER:
            title = f"PM (Meter Triggered): {schedule.name}"
            description = (f"{base_description}\n\nTriggered by meter reading: "
                           f"{firing.meter_value:g} {schedule.meter_kind or ''}").rstrip()
            wo_type = WorkOrderType.PREVENTIVE
            due = scheduled_at + timedelta(days=threshold)
        elif reason is TriggerReason.CONDITION_TRIGGER:
            title = f"PM (Condition Triggered): {schedule.name}"
            conditions = '\n'.join(c.describe() for c in firing.conditions)
            description = f"{base_description}\n\nTriggered by conditions:\n{conditions}"
            wo_type = WorkOrderType.PREDICTIVE
            due = scheduled_at + timedelta(days=min(threshold, self.config.condition_due_days_cap))
        else:
            title = f"PM: {schedule.name}"
            description = base_description
            if reason is TriggerReason.MANUAL:
                description += "\n\nGenerated manually"
            wo_type = WorkOrderType.PREVENTIVE
            due = scheduled_at + timedelta(days=threshold)

        return WorkOrderRequest(
            organization_id=schedule.organization_id,
            title=title,
            description=description,
            wo_type=wo_type.value,
            priority=priority.value,
            asset_id=schedule.asset_id,
            assigned_to_id=schedule.assigned_to_id,
            scheduled_date=scheduled_at,
            due_date=due,
            checklist=list(schedule.checklist or []),
            estimated_hours=schedule.estimated_hours,
            source_kind='pm_schedule',
            source_id=schedule.id,
            created_by_id=actor_id
        )

    @staticmethod
    def _advance_schedule(schedule: Schedule, reason: TriggerReason, firing: Optional[Firing]):
        """Move the schedule's due state past the firing"""
        kind = TriggerKind(schedule.trigger_kind)

        if reason is TriggerReason.METER_TRIGGER:
            schedule.last_meter_reading = firing.meter_value
            schedule.next_meter_due = firing.meter_value + schedule.meter_interval
        elif reason in DUE_DATE_REASONS and kind.uses_time \
                and schedule.next_due_date and schedule.next_due_date < FAR_FUTURE_DATE:
            schedule.next_due_date = advance_due_date(
                schedule.next_due_date,
                parse_frequency_unit(schedule.frequency_unit),
                schedule.frequency_value,
                schedule.custom_days_interval
            )

    # ------------------------------------------------------------- predictions

    def generate_for_prediction(self, prediction_id: str, organization_id: str,
                                actor_id: Optional[str] = None,
                                title: Optional[str] = None,
                                description: Optional[str] = None,
                                assigned_to_id: Optional[str] = None,
                                scheduled_date: Optional[datetime] = None,
                                asset_name: Optional[str] = None) -> GenerationResult:
        """Open a predictive work order and link it to the prediction

        The prediction is moved to work_order_created with a conditional
        update on its previous status before the work order is requested.

        Raises:
            NotFoundError: unknown prediction
            ConflictError: prediction already linked or closed
        """
        now = self.clock()

        with self.locks.hold(('prediction', prediction_id)):
            with self.db.get_session() as session:
                prediction = self._get_prediction(session, prediction_id, organization_id)
                check_transition(prediction.id, prediction.status, PredictionStatus.WORK_ORDER_CREATED)
                if prediction.work_order_id:
                    raise ConflictError(f"Prediction {prediction_id} already has work order "
                                        f"{prediction.work_order_id}", {'prediction_id': prediction_id})
                previous_status = prediction.status
                claimed = session.query(Prediction).filter(
                    Prediction.id == prediction_id,
                    Prediction.status == previous_status,
                    Prediction.work_order_id.is_(None)
                ).update({
                    Prediction.status: PredictionStatus.WORK_ORDER_CREATED.value,
                    Prediction.updated_at: now
                }, synchronize_session=False)
                if claimed != 1:
                    raise ConflictError(f"Prediction {prediction_id} changed concurrently",
                                        {'prediction_id': prediction_id})

                priority = prediction_priority(prediction.risk_level)
                scheduled_at = scheduled_date or prediction.predicted_date or now
                execution = self.tracker.record_firing(
                    session, organization_id, TriggerReason.PREDICTION, scheduled_at, None,
                    prediction_id=prediction.id,
                    details={
                        'trigger_reason': TriggerReason.PREDICTION.value,
                        'prediction_kind': prediction.prediction_kind,
                        'risk_level': prediction.risk_level,
                        'probability': prediction.probability
                    },
                    created_at=now
                )

            request = WorkOrderRequest(
                organization_id=organization_id,
                title=title or f"Predictive Maintenance: {asset_name or prediction.asset_id}",
                description=description or (
                    f"{prediction.narrative}\n\nRecommended Action: {prediction.recommended_action}"
                    f"\n\nConfidence: {prediction.confidence:.0f}%"
                ),
                wo_type=WorkOrderType.PREDICTIVE.value,
                priority=priority.value,
                asset_id=prediction.asset_id,
                assigned_to_id=assigned_to_id,
                scheduled_date=scheduled_at,
                due_date=scheduled_at + timedelta(days=self.config.default_overdue_days),
                estimated_cost=prediction.estimated_cost,
                source_kind='prediction',
                source_id=prediction.id,
                created_by_id=actor_id
            )
            try:
                work_order_id = self.work_orders.create(request)
            except Exception as e:
                logger.error(f"Work order for prediction {prediction_id} failed, "
                             f"releasing execution {execution.id}: {e}")
                with self.db.get_session() as session:
                    self.tracker.discard_firing(session, execution.id)
                    session.query(Prediction).filter(
                        Prediction.id == prediction_id,
                        Prediction.work_order_id.is_(None)
                    ).update({Prediction.status: previous_status}, synchronize_session=False)
                raise

            def link(session):
                self._get_prediction(session, prediction_id, organization_id).work_order_id = work_order_id

            execution = self._attach(execution, work_order_id, link)

        logger.info(f"Generated predictive work order {work_order_id} from prediction {prediction_id}")
        if self.notifier:
            self.notifier.notify(
                'Predictive work generated',
                f"{request.title} ({priority.value})",
                'info',
                {'prediction_id': prediction_id, 'work_order_id': work_order_id}
            )
        return GenerationResult(work_order_id, execution, TriggerReason.PREDICTION, priority)

    @staticmethod
    def _get_prediction(session, prediction_id: str, organization_id: str) -> Prediction:
        prediction = session.query(Prediction).filter(
            Prediction.id == prediction_id,
            Prediction.organization_id == organization_id
        ).first()
        if prediction is None:
            raise NotFoundError('Prediction', prediction_id)
        return prediction
