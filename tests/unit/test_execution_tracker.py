"""
Unit Tests for the Execution & Compliance Tracker
"""

import unittest
from datetime import datetime

from src.database.enums import ExecutionStatus, TriggerReason
from src.database.models import Schedule
from src.maintenance.execution_tracker import compliance_rate, completion_status
from src.utils.exceptions import ConflictError, NotFoundError
from tests.utils.harness import ORG, OTHER_ORG, EngineHarness


class TestCompliancePrimitives(unittest.TestCase):

    def test_rate(self):
        self.assertEqual(compliance_rate(0, 0, 0), 100.0)
        self.assertEqual(compliance_rate(3, 1, 1), 80.0)
        self.assertEqual(compliance_rate(0, 0, 4), 0.0)

    def test_lateness_boundary_is_inclusive(self):
        scheduled = datetime(2024, 1, 1)
        self.assertEqual(completion_status(scheduled, datetime(2024, 1, 8), 7), ExecutionStatus.COMPLETED)
        self.assertEqual(completion_status(scheduled, datetime(2024, 1, 8, 0, 0, 1), 7),
                         ExecutionStatus.COMPLETED_LATE)
        self.assertEqual(completion_status(scheduled, datetime(2023, 12, 30), 0), ExecutionStatus.COMPLETED)


class TestExecutionTracker(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.tracker = self.h.engine.tracker
        self.asset = self.h.add_asset()
        self.schedule = self.h.time_schedule(self.asset.id, overdue_days_threshold=7)

    def tearDown(self):
        self.h.close()

    def record(self, scheduled_at=datetime(2024, 1, 1), schedule=True):
        with self.h.db.get_session() as session:
            target = session.get(Schedule, self.schedule.id) if schedule else None
            return self.tracker.record_firing(
                session, ORG, TriggerReason.TIME_DUE, scheduled_at, 'wo-1', schedule=target
            )

    def test_record_firing(self):
        record = self.record()
        self.assertEqual(record.status, ExecutionStatus.GENERATED.value)
        self.assertEqual(record.overdue_days_threshold, 7)
        self.assertEqual(record.created_at, self.h.clock())
        self.assertEqual(record.schedule_id, self.schedule.id)

    def test_complete_on_time_updates_schedule(self):
        record = self.record()
        completed = self.tracker.mark_completed(record.id, datetime(2024, 1, 3), 'done', ORG)

        self.assertEqual(completed.status, ExecutionStatus.COMPLETED.value)
        self.assertEqual(completed.days_overdue, 2)
        self.assertEqual(completed.notes, 'done')

        schedule = self.h.engine.schedules.get(ORG, self.schedule.id)
        self.assertEqual(schedule.completed_count, 1)
        self.assertEqual(schedule.last_completed_date, datetime(2024, 1, 3))

    def test_complete_late(self):
        record = self.record()
        completed = self.tracker.mark_completed(record.id, datetime(2024, 1, 12))
        self.assertEqual(completed.status, ExecutionStatus.COMPLETED_LATE.value)
        self.assertEqual(completed.days_overdue, 11)

    def test_zero_threshold_completion_is_late_after_due_day(self):
        strict = self.h.time_schedule(self.asset.id, name='Same-day check', overdue_days_threshold=0)
        result = self.h.engine.generator.generate_for_schedule(strict.id, TriggerReason.TIME_DUE)
        self.assertEqual(result.execution.overdue_days_threshold, 0)

        completed = self.tracker.mark_completed(result.execution.id, datetime(2024, 1, 18))
        self.assertEqual(completed.status, ExecutionStatus.COMPLETED_LATE.value)
        self.assertEqual(completed.days_overdue, 3)

    def test_zero_threshold_completion_on_due_day(self):
        strict = self.h.time_schedule(self.asset.id, name='Same-day check', overdue_days_threshold=0)
        result = self.h.engine.generator.generate_for_schedule(strict.id, TriggerReason.TIME_DUE)

        completed = self.tracker.mark_completed(result.execution.id, datetime(2024, 1, 15))
        self.assertEqual(completed.status, ExecutionStatus.COMPLETED.value)

    def test_terminal_records_cannot_complete_again(self):
        record = self.record()
        self.tracker.mark_completed(record.id, datetime(2024, 1, 2))
        with self.assertRaises(ConflictError):
            self.tracker.mark_completed(record.id, datetime(2024, 1, 3))

    def test_unknown_or_foreign_execution(self):
        record = self.record()
        with self.assertRaises(NotFoundError):
            self.tracker.mark_completed('missing')
        with self.assertRaises(NotFoundError):
            self.tracker.mark_completed(record.id, organization_id=OTHER_ORG)

    def test_overdue_sweep_marks_missed_once(self):
        record = self.record(datetime(2024, 1, 1))

        result = self.tracker.sweep_overdue(datetime(2024, 1, 8, 12))
        self.assertEqual(result.processed, 1)
        self.assertEqual(result.triggered, 0)

        result = self.tracker.sweep_overdue(datetime(2024, 1, 9, 0, 0))
        self.assertEqual(result.triggered, 1)
        missed = self.tracker.get_execution(record.id)
        self.assertEqual(missed.status, ExecutionStatus.MISSED.value)
        self.assertEqual(missed.days_overdue, 8)
        self.assertIn('Maintenance missed', self.h.notifier.subjects())

        again = self.tracker.sweep_overdue(datetime(2024, 1, 20))
        self.assertEqual(again.processed, 0)
        self.assertEqual(again.triggered, 0)
        self.assertEqual(self.h.engine.schedules.get(ORG, self.schedule.id).missed_count, 1)

    def test_missed_records_cannot_complete(self):
        record = self.record(datetime(2024, 1, 1))
        self.tracker.sweep_overdue(datetime(2024, 2, 1))
        with self.assertRaises(ConflictError):
            self.tracker.mark_completed(record.id, datetime(2024, 2, 2))

    def test_prediction_executions_use_default_threshold(self):
        record = self.record(schedule=False)
        self.assertIsNone(record.schedule_id)
        self.assertEqual(record.overdue_days_threshold, 7)

    def test_history_newest_first(self):
        first = self.record(datetime(2024, 1, 1))
        self.h.clock.advance(hours=1)
        second = self.record(datetime(2024, 2, 1))

        history = self.tracker.history(self.schedule.id, 10, ORG)
        self.assertEqual([r.id for r in history], [second.id, first.id])
        self.assertEqual(len(self.tracker.history(self.schedule.id, 1)), 1)

    def test_compliance_metrics(self):
        on_time = self.record(datetime(2024, 1, 1))
        late = self.record(datetime(2024, 1, 2))
        self.record(datetime(2023, 11, 1))
        self.record(datetime(2024, 1, 14))

        self.tracker.mark_completed(on_time.id, datetime(2024, 1, 2))
        self.tracker.mark_completed(late.id, datetime(2024, 1, 14))
        self.tracker.sweep_overdue(datetime(2024, 1, 15))

        metrics = self.tracker.compliance_metrics(ORG)
        self.assertEqual(metrics['total_schedules'], 1)
        self.assertEqual(metrics['active_schedules'], 1)
        self.assertEqual(metrics['completed_on_time'], 1)
        self.assertEqual(metrics['completed_late'], 1)
        self.assertEqual(metrics['missed'], 1)
        self.assertEqual(metrics['generated'], 1)
        self.assertAlmostEqual(metrics['compliance_rate'], 200 / 3)

        self.assertEqual(self.tracker.compliance_metrics(OTHER_ORG)['compliance_rate'], 100.0)


if __name__ == '__main__':
    unittest.main()
