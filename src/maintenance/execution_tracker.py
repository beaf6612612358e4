"""
Execution & Compliance Tracker
Records each firing, measures lateness on completion, flags missed work and
aggregates compliance metrics.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.collaborators.interfaces import NotificationSink
from src.database.database_manager import DatabaseManager
from src.database.enums import ExecutionStatus, TriggerReason
from src.database.models import ExecutionRecord, Schedule
from src.maintenance.sweep import SweepResult
from src.utils.exceptions import ConflictError, NotFoundError
from src.utils.helpers import Clock, days_between, utc_now
from src.utils.logger import LogContext, log_execution_time

logger = logging.getLogger(__name__)

DEFAULT_OVERDUE_DAYS = 7


def compliance_rate(completed: int, completed_late: int, missed: int) -> float:
    """Share of executions completed (on time or late); 100 with nothing recorded"""
    total = completed + completed_late + missed
    if total == 0:
        return 100.0
    return (completed + completed_late) / total * 100


def completion_status(scheduled_at: datetime, completed_at: datetime,
                      overdue_days_threshold: int) -> ExecutionStatus:
    """On time when completed no later than scheduled + threshold days"""
    if completed_at <= scheduled_at + timedelta(days=overdue_days_threshold):
        return ExecutionStatus.COMPLETED
    return ExecutionStatus.COMPLETED_LATE


class ExecutionTracker:
    """Owns execution records of schedules and prediction-driven work"""

    def __init__(self, db: DatabaseManager,
                 notifier: Optional[NotificationSink] = None,
                 clock: Clock = utc_now):
        self.db = db
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------------------------------ writes

    def record_firing(self, session: Session, organization_id: str,
                      reason: TriggerReason, scheduled_at: datetime,
                      work_order_id: Optional[str],
                      schedule: Optional[Schedule] = None,
                      prediction_id: Optional[str] = None,
                      meter_value: Optional[float] = None,
                      details: Optional[Dict[str, Any]] = None,
                      created_at: Optional[datetime] = None) -> ExecutionRecord:
        """Add a 'generated' execution to the caller's session"""
        threshold = DEFAULT_OVERDUE_DAYS
        if schedule is not None and schedule.overdue_days_threshold is not None:
            threshold = schedule.overdue_days_threshold

        record = ExecutionRecord(
            organization_id=organization_id,
            schedule_id=schedule.id if schedule is not None else None,
            prediction_id=prediction_id,
            work_order_id=work_order_id,
            trigger_reason=reason.value,
            scheduled_at=scheduled_at,
            status=ExecutionStatus.GENERATED.value,
            days_overdue=0,
            overdue_days_threshold=threshold,
            meter_reading_at_execution=meter_value,
            details=details or {},
            created_at=created_at or self.clock()
        )
        session.add(record)
        session.flush()
        return record

    def attach_work_order(self, session: Session, execution_id: str,
                          work_order_id: str) -> ExecutionRecord:
        """Link a claimed execution to the work order created for it"""
        record = self._get(session, execution_id, None)
        record.work_order_id = work_order_id
        return record

    def discard_firing(self, session: Session, execution_id: str):
        """Drop a claimed execution whose work order was never created"""
        session.query(ExecutionRecord).filter(
            ExecutionRecord.id == execution_id,
            ExecutionRecord.work_order_id.is_(None)
        ).delete(synchronize_session=False)

    def mark_completed(self, execution_id: str,
                       completed_at: Optional[datetime] = None,
                       notes: Optional[str] = None,
                       organization_id: Optional[str] = None) -> ExecutionRecord:
        """Complete an execution and classify its lateness

        Raises:
            NotFoundError: unknown execution
            ConflictError: execution already terminal
        """
        completed_at = completed_at or self.clock()

        with self.db.get_session() as session:
            record = self._get(session, execution_id, organization_id)
            if ExecutionStatus(record.status).is_terminal:
                raise ConflictError(
                    f"Execution {execution_id} is already {record.status}",
                    {'execution_id': execution_id, 'status': record.status}
                )

            threshold = record.overdue_days_threshold
            if threshold is None:
                threshold = DEFAULT_OVERDUE_DAYS
            status = completion_status(record.scheduled_at, completed_at, threshold)
            updated = session.query(ExecutionRecord).filter(
                ExecutionRecord.id == execution_id,
                ExecutionRecord.status == ExecutionStatus.GENERATED.value
            ).update({
                ExecutionRecord.status: status.value,
                ExecutionRecord.completed_at: completed_at,
                ExecutionRecord.days_overdue: max(0, days_between(completed_at, record.scheduled_at)),
                ExecutionRecord.notes: notes if notes is not None else record.notes
            }, synchronize_session=False)
            if updated == 0:
                raise ConflictError(f"Execution {execution_id} was completed concurrently",
                                    {'execution_id': execution_id})

            if record.schedule_id:
                session.query(Schedule).filter(Schedule.id == record.schedule_id).update({
                    Schedule.completed_count: func.coalesce(Schedule.completed_count, 0) + 1,
                    Schedule.last_completed_date: completed_at
                }, synchronize_session=False)

            session.flush()
            session.refresh(record)

        logger.info(f"Execution {execution_id} marked {record.status} "
                    f"({record.days_overdue} days after schedule)")
        return record

    @log_execution_time
    def sweep_overdue(self, now: Optional[datetime] = None) -> SweepResult:
        """Flag every 'generated' execution older than its threshold as missed

        Only non-terminal records are candidates, so a second run over the same
        data changes nothing.
        """
        now = now or self.clock()
        result = SweepResult(name='overdue_sweep', started_at=now)

        with self.db.get_session() as session:
            candidates = session.query(
                ExecutionRecord.id, ExecutionRecord.scheduled_at, ExecutionRecord.overdue_days_threshold
            ).filter(
                ExecutionRecord.status == ExecutionStatus.GENERATED.value,
                ExecutionRecord.scheduled_at < now
            ).all()

        for execution_id, scheduled_at, threshold in candidates:
            result.processed += 1
            threshold = DEFAULT_OVERDUE_DAYS if threshold is None else threshold
            days_overdue = days_between(now, scheduled_at)
            if days_overdue <= threshold:
                continue
            try:
                if self._mark_missed(execution_id, days_overdue):
                    result.triggered += 1
                else:
                    result.skipped += 1
            except Exception as e:
                message = f"Failed to flag execution {execution_id} as missed: {e}"
                logger.error(message)
                result.add_error(message)

        result.finished_at = self.clock()
        logger.info(f"Overdue sweep: {result.processed} open executions, {result.triggered} missed")
        return result

    def _mark_missed(self, execution_id: str, days_overdue: int) -> bool:
        with self.db.get_session() as session:
            updated = session.query(ExecutionRecord).filter(
                ExecutionRecord.id == execution_id,
                ExecutionRecord.status == ExecutionStatus.GENERATED.value
            ).update({
                ExecutionRecord.status: ExecutionStatus.MISSED.value,
                ExecutionRecord.days_overdue: days_overdue
            }, synchronize_session=False)
            if updated == 0:
                return False

            record = session.get(ExecutionRecord, execution_id)
            schedule = None
            if record.schedule_id:
                session.query(Schedule).filter(Schedule.id == record.schedule_id).update({
                    Schedule.missed_count: func.coalesce(Schedule.missed_count, 0) + 1
                }, synchronize_session=False)
                schedule = session.get(Schedule, record.schedule_id)

        with LogContext(schedule_id=record.schedule_id, organization_id=record.organization_id):
            name = schedule.name if schedule is not None else f"prediction {record.prediction_id}"
            logger.warning(f"Execution for {name} is {days_overdue} days overdue, marked missed")
            if self.notifier:
                self.notifier.notify(
                    'Maintenance missed',
                    f"{name} is {days_overdue} days overdue",
                    'warning',
                    {'execution_id': execution_id, 'schedule_id': record.schedule_id,
                     'days_overdue': days_overdue}
                )
        return True

    # ------------------------------------------------------------------- reads

    def latest_execution(self, session: Session, schedule_id: str,
                         reasons: Sequence[TriggerReason]) -> Optional[ExecutionRecord]:
        """Newest committed execution of a schedule for the given reason class"""
        return session.query(ExecutionRecord).filter(
            ExecutionRecord.schedule_id == schedule_id,
            ExecutionRecord.trigger_reason.in_([r.value for r in reasons])
        ).order_by(ExecutionRecord.created_at.desc()).first()

    def execution_for_date(self, session: Session, schedule_id: str,
                           scheduled_at: datetime,
                           reasons: Sequence[TriggerReason]) -> Optional[ExecutionRecord]:
        day_start = scheduled_at.replace(hour=0, minute=0, second=0, microsecond=0)
        return session.query(ExecutionRecord).filter(
            ExecutionRecord.schedule_id == schedule_id,
            ExecutionRecord.trigger_reason.in_([r.value for r in reasons]),
            ExecutionRecord.scheduled_at >= day_start,
            ExecutionRecord.scheduled_at < day_start + timedelta(days=1)
        ).first()

    def get_execution(self, execution_id: str, organization_id: Optional[str] = None) -> ExecutionRecord:
        with self.db.get_session() as session:
            return self._get(session, execution_id, organization_id)

    def history(self, schedule_id: str, limit: int = 50,
                organization_id: Optional[str] = None) -> List[ExecutionRecord]:
        """Executions of a schedule, newest first"""
        with self.db.get_session() as session:
            query = session.query(ExecutionRecord).filter(ExecutionRecord.schedule_id == schedule_id)
            if organization_id:
                query = query.filter(ExecutionRecord.organization_id == organization_id)
            return query.order_by(ExecutionRecord.created_at.desc()).limit(limit).all()

    def compliance_metrics(self, organization_id: Optional[str] = None,
                           schedule_id: Optional[str] = None) -> Dict[str, Any]:
        """Schedule counts plus completed / late / missed totals and the rate"""
        with self.db.get_session() as session:
            schedules = session.query(Schedule)
            executions = session.query(ExecutionRecord.status, func.count(ExecutionRecord.id)).filter(
                ExecutionRecord.schedule_id.isnot(None)
            )
            if organization_id:
                schedules = schedules.filter(Schedule.organization_id == organization_id)
                executions = executions.filter(ExecutionRecord.organization_id == organization_id)
            if schedule_id:
                schedules = schedules.filter(Schedule.id == schedule_id)
                executions = executions.filter(ExecutionRecord.schedule_id == schedule_id)

            total_schedules = schedules.count()
            active_schedules = schedules.filter(Schedule.is_active.is_(True)).count()
            counts = dict(executions.group_by(ExecutionRecord.status).all())

        completed = counts.get(ExecutionStatus.COMPLETED.value, 0)
        late = counts.get(ExecutionStatus.COMPLETED_LATE.value, 0)
        missed = counts.get(ExecutionStatus.MISSED.value, 0)

        return {
            'total_schedules': total_schedules,
            'active_schedules': active_schedules,
            'generated': counts.get(ExecutionStatus.GENERATED.value, 0),
            'completed_on_time': completed,
            'completed_late': late,
            'missed': missed,
            'compliance_rate': compliance_rate(completed, late, missed)
        }

    @staticmethod
    def _get(session: Session, execution_id: str, organization_id: Optional[str]) -> ExecutionRecord:
        query = session.query(ExecutionRecord).filter(ExecutionRecord.id == execution_id)
        if organization_id:
            query = query.filter(ExecutionRecord.organization_id == organization_id)
        record = query.first()
        if record is None:
            raise NotFoundError('Execution', execution_id)
        return record
