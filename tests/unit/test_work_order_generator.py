"""
Unit Tests for the Work-Order Generator
Dedup windows, re-validation, priorities and work-order content
"""

import unittest
from datetime import date, datetime, timedelta
from unittest.mock import patch

from src.database.enums import (
    ExecutionStatus, PredictionStatus, TriggerReason, WorkOrderPriority
)
from src.database.models import ExecutionRecord, Prediction
from src.maintenance.trigger_evaluator import Firing, MatchedCondition
from src.maintenance.work_order_generator import condition_priority, prediction_priority
from src.utils.exceptions import (
    ConflictError, InvalidConfigurationError, NotFoundError, TransientCollaboratorError
)
from tests.utils.harness import ORG, OTHER_ORG, EngineHarness


class TestPriorities(unittest.TestCase):

    def test_condition_priority_floor(self):
        self.assertEqual(condition_priority('low'), WorkOrderPriority.HIGH)
        self.assertEqual(condition_priority('medium'), WorkOrderPriority.HIGH)
        self.assertEqual(condition_priority('critical'), WorkOrderPriority.CRITICAL)
        self.assertEqual(condition_priority(None), WorkOrderPriority.HIGH)

    def test_prediction_priority(self):
        self.assertEqual(prediction_priority('critical'), WorkOrderPriority.CRITICAL)
        self.assertEqual(prediction_priority('high'), WorkOrderPriority.HIGH)
        self.assertEqual(prediction_priority('medium'), WorkOrderPriority.MEDIUM)
        self.assertEqual(prediction_priority('low'), WorkOrderPriority.LOW)


class GeneratorTestCase(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.generator = self.h.engine.generator
        self.work_orders = self.h.engine.work_orders
        self.asset = self.h.add_asset('Compressor 7')

    def tearDown(self):
        self.h.close()

    def meter_firing(self, value):
        return Firing(TriggerReason.METER_TRIGGER, self.h.clock(), meter_value=float(value))

    def condition_firing(self, value=85.0):
        return Firing(TriggerReason.CONDITION_TRIGGER, self.h.clock(), conditions=[
            MatchedCondition('temperature', value, '>', 80.0, 'C')
        ])


class TestScheduleGeneration(GeneratorTestCase):

    def test_dedup_windows(self):
        self.assertEqual(self.generator.dedup_window(TriggerReason.METER_TRIGGER), timedelta(hours=24))
        self.assertEqual(self.generator.dedup_window(TriggerReason.CONDITION_TRIGGER), timedelta(hours=4))
        self.assertIsNone(self.generator.dedup_window(TriggerReason.TIME_DUE))
        self.assertIsNone(self.generator.dedup_window(TriggerReason.MANUAL))

    def test_time_firing_advances_due_date(self):
        schedule = self.h.time_schedule(self.asset.id, checklist=[{'item': 'Check belts', 'mandatory': True}],
                                        estimated_hours=2.5)
        self.assertEqual(schedule.next_due_date, date(2024, 1, 15))

        result = self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)

        self.assertEqual(result.reason, TriggerReason.TIME_DUE)
        self.assertEqual(result.priority, WorkOrderPriority.MEDIUM)
        self.assertEqual(result.execution.scheduled_at, datetime(2024, 1, 15))
        self.assertEqual(result.execution.status, ExecutionStatus.GENERATED.value)

        work_order = self.work_orders.get(result.work_order_id)
        self.assertEqual(work_order.title, 'PM: Monthly inspection')
        self.assertEqual(work_order.wo_type, 'preventive')
        self.assertEqual(work_order.due_date, datetime(2024, 1, 22))
        self.assertEqual(work_order.checklist, [{'item': 'Check belts', 'mandatory': True}])
        self.assertEqual(work_order.estimated_hours, 2.5)
        self.assertEqual(work_order.source_kind, 'pm_schedule')

        self.assertEqual(self.h.engine.schedules.get(ORG, schedule.id).next_due_date, date(2024, 2, 15))
        self.assertIn('Maintenance work generated', self.h.notifier.subjects())

        with self.assertRaises(ConflictError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)

    def test_stale_time_firing_is_rejected(self):
        schedule = self.h.time_schedule(self.asset.id)
        firing = Firing(TriggerReason.TIME_DUE, datetime(2024, 1, 15))
        self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE, firing)

        with self.assertRaises(ConflictError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE, firing)

    def test_time_reason_needs_time_rule(self):
        schedule = self.h.meter_schedule(self.asset.id)
        with self.assertRaises(InvalidConfigurationError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)

    def test_manual_on_meter_schedule(self):
        schedule = self.h.meter_schedule(self.asset.id)
        result = self.generator.generate_for_schedule(schedule.id, TriggerReason.MANUAL, actor_id='u1')

        work_order = self.work_orders.get(result.work_order_id)
        self.assertIn('Generated manually', work_order.description)
        self.assertEqual(work_order.created_by_id, 'u1')
        self.assertEqual(result.execution.scheduled_at, self.h.clock())
        self.assertEqual(result.execution.details['requested_by'], 'u1')

    def test_meter_firing_and_dedup(self):
        schedule = self.h.meter_schedule(self.asset.id, interval=100)
        result = self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER,
                                                      self.meter_firing(120))

        self.assertEqual(result.execution.meter_reading_at_execution, 120.0)
        work_order = self.work_orders.get(result.work_order_id)
        self.assertEqual(work_order.title, 'PM (Meter Triggered): Oil change')
        self.assertIn('Triggered by meter reading: 120 runtime_hours', work_order.description)

        updated = self.h.engine.schedules.get(ORG, schedule.id)
        self.assertEqual(updated.last_meter_reading, 120.0)
        self.assertEqual(updated.next_meter_due, 220.0)

        self.h.clock.advance(hours=23)
        with self.assertRaises(ConflictError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER,
                                                 self.meter_firing(300))

        self.h.clock.advance(hours=1)
        again = self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER,
                                                     self.meter_firing(300))
        self.assertNotEqual(again.work_order_id, result.work_order_id)

    def test_meter_reading_rechecked_against_committed_threshold(self):
        schedule = self.h.meter_schedule(self.asset.id, interval=100)
        with self.assertRaises(ConflictError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER,
                                                 self.meter_firing(99))

    def test_condition_firing(self):
        schedule = self.h.condition_schedule(self.asset.id, priority='low', overdue_days_threshold=10)
        result = self.generator.generate_for_schedule(schedule.id, TriggerReason.CONDITION_TRIGGER,
                                                      self.condition_firing())

        self.assertEqual(result.priority, WorkOrderPriority.HIGH)
        work_order = self.work_orders.get(result.work_order_id)
        self.assertEqual(work_order.title, 'PM (Condition Triggered): Overheat check')
        self.assertEqual(work_order.wo_type, 'predictive')
        self.assertEqual(work_order.due_date, self.h.clock() + timedelta(days=3))
        self.assertIn('temperature: 85 C > 80 C', work_order.description)
        self.assertEqual(result.execution.details['triggered_conditions'][0]['sensor_kind'], 'temperature')

        self.h.clock.advance(hours=3, minutes=59)
        with self.assertRaises(ConflictError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.CONDITION_TRIGGER,
                                                 self.condition_firing())
        self.h.clock.advance(minutes=1)
        self.generator.generate_for_schedule(schedule.id, TriggerReason.CONDITION_TRIGGER,
                                             self.condition_firing())

    def test_rejections(self):
        schedule = self.h.meter_schedule(self.asset.id)

        with self.assertRaises(InvalidConfigurationError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.PREDICTION)
        with self.assertRaises(InvalidConfigurationError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER)
        with self.assertRaises(NotFoundError):
            self.generator.generate_for_schedule('missing', TriggerReason.MANUAL)
        with self.assertRaises(NotFoundError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.MANUAL,
                                                 organization_id=OTHER_ORG)

        self.h.engine.schedules.deactivate(ORG, schedule.id)
        with self.assertRaises(ConflictError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.MANUAL)


class TestPredictionGeneration(GeneratorTestCase):

    def add_prediction(self, **fields):
        values = dict(
            organization_id=ORG, asset_id=self.asset.id, prediction_kind='failure',
            narrative='Failure probability: 80.0%', probability=80.0, confidence=72.0,
            risk_level='critical', status='new', recommended_action='Replace bearing',
            estimated_cost=5000.0, created_at=self.h.clock()
        )
        values.update(fields)
        with self.h.db.get_session() as session:
            prediction = Prediction(**values)
            session.add(prediction)
            session.flush()
        return prediction

    def test_predictive_work_order(self):
        prediction = self.add_prediction()
        result = self.generator.generate_for_prediction(prediction.id, ORG, 'u1', asset_name='Compressor 7')

        self.assertEqual(result.priority, WorkOrderPriority.CRITICAL)
        self.assertIsNone(result.execution.schedule_id)
        self.assertEqual(result.execution.prediction_id, prediction.id)
        self.assertEqual(result.execution.trigger_reason, 'prediction')

        work_order = self.work_orders.get(result.work_order_id)
        self.assertEqual(work_order.title, 'Predictive Maintenance: Compressor 7')
        self.assertIn('Recommended Action: Replace bearing', work_order.description)
        self.assertIn('Confidence: 72%', work_order.description)
        self.assertEqual(work_order.due_date, self.h.clock() + timedelta(days=7))
        self.assertEqual(work_order.source_kind, 'prediction')

        linked = self.h.engine.predictions.get(ORG, prediction.id)
        self.assertEqual(linked.status, PredictionStatus.WORK_ORDER_CREATED.value)
        self.assertEqual(linked.work_order_id, result.work_order_id)

    def test_only_one_work_order_per_prediction(self):
        prediction = self.add_prediction()
        self.generator.generate_for_prediction(prediction.id, ORG)
        with self.assertRaises(ConflictError):
            self.generator.generate_for_prediction(prediction.id, ORG)

    def test_closed_prediction_rejected(self):
        prediction = self.add_prediction(status='dismissed')
        with self.assertRaises(ConflictError):
            self.generator.generate_for_prediction(prediction.id, ORG)

    def test_overrides(self):
        prediction = self.add_prediction(risk_level='low')
        result = self.generator.generate_for_prediction(
            prediction.id, ORG, title='Inspect now', description='Custom',
            assigned_to_id='tech-9', scheduled_date=datetime(2024, 2, 1)
        )
        work_order = self.work_orders.get(result.work_order_id)
        self.assertEqual(work_order.title, 'Inspect now')
        self.assertEqual(work_order.description, 'Custom')
        self.assertEqual(work_order.assigned_to_id, 'tech-9')
        self.assertEqual(work_order.priority, 'low')
        self.assertEqual(work_order.due_date, datetime(2024, 2, 8))

    def test_foreign_prediction(self):
        prediction = self.add_prediction()
        with self.assertRaises(NotFoundError):
            self.generator.generate_for_prediction(prediction.id, OTHER_ORG)

class TestWorkOrderServiceFailure(GeneratorTestCase):

    def unavailable(self):
        return patch.object(self.work_orders, 'create',
                            side_effect=TransientCollaboratorError('work order service', 'timed out'))

    def executions(self, **criteria):
        with self.h.db.get_session() as session:
            return session.query(ExecutionRecord).filter_by(**criteria).all()

    def test_each_firing_bumps_version(self):
        schedule = self.h.time_schedule(self.asset.id)
        self.assertEqual(schedule.firing_version, 0)

        self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)
        self.assertEqual(self.h.engine.schedules.get(ORG, schedule.id).firing_version, 1)

    def test_failed_creation_releases_time_firing(self):
        schedule = self.h.time_schedule(self.asset.id)

        with self.unavailable(), self.assertRaises(TransientCollaboratorError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)

        self.assertEqual(self.executions(schedule_id=schedule.id), [])
        self.assertEqual(self.h.engine.schedules.get(ORG, schedule.id).next_due_date, date(2024, 1, 15))
        self.assertNotIn('Maintenance work generated', self.h.notifier.subjects())

        result = self.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)
        self.assertEqual(result.execution.scheduled_at, datetime(2024, 1, 15))
        self.assertEqual(result.execution.work_order_id, result.work_order_id)

    def test_failed_creation_releases_meter_firing(self):
        schedule = self.h.meter_schedule(self.asset.id, interval=100)

        with self.unavailable(), self.assertRaises(TransientCollaboratorError):
            self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER,
                                                 self.meter_firing(120))

        updated = self.h.engine.schedules.get(ORG, schedule.id)
        self.assertEqual(updated.next_meter_due, 100.0)
        self.assertEqual(self.executions(schedule_id=schedule.id), [])

        # No dedup window is left behind by the failed attempt
        result = self.generator.generate_for_schedule(schedule.id, TriggerReason.METER_TRIGGER,
                                                      self.meter_firing(120))
        self.assertEqual(self.executions(schedule_id=schedule.id)[0].work_order_id, result.work_order_id)

    def test_failed_creation_releases_prediction(self):
        with self.h.db.get_session() as session:
            prediction = Prediction(
                organization_id=ORG, asset_id=self.asset.id, prediction_kind='failure',
                narrative='Failure probability: 80.0%', probability=80.0, confidence=72.0,
                risk_level='high', status='acknowledged', created_at=self.h.clock()
            )
            session.add(prediction)
            session.flush()

        with self.unavailable(), self.assertRaises(TransientCollaboratorError):
            self.generator.generate_for_prediction(prediction.id, ORG)

        restored = self.h.engine.predictions.get(ORG, prediction.id)
        self.assertEqual(restored.status, PredictionStatus.ACKNOWLEDGED.value)
        self.assertIsNone(restored.work_order_id)
        self.assertEqual(self.executions(prediction_id=prediction.id), [])

        result = self.generator.generate_for_prediction(prediction.id, ORG)
        linked = self.h.engine.predictions.get(ORG, prediction.id)
        self.assertEqual(linked.work_order_id, result.work_order_id)
        self.assertEqual(result.execution.work_order_id, result.work_order_id)


if __name__ == '__main__':
    unittest.main()
