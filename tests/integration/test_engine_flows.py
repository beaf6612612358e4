"""
Integration Tests for end-to-end maintenance flows
Meter ingest, time sweeps through compliance, concurrent firing and the
anomaly-to-work-order path, all against a real database.
"""

import os
import tempfile
import threading
import unittest
from datetime import date, datetime
from unittest.mock import patch

import pytest

from src.database.enums import TriggerReason
from src.utils.exceptions import ConflictError
from tests.utils.harness import ORG, EngineHarness, file_database


@pytest.mark.integration
class TestMeterFlow(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.asset = self.h.add_asset('Generator 1')

    def tearDown(self):
        self.h.close()

    def record(self, value):
        return self.h.engine.processor.record_meter_reading(ORG, self.asset.id, 'runtime_hours', value)

    def test_threshold_crossing_generates_one_work_order(self):
        schedule = self.h.meter_schedule(self.asset.id, interval=500)

        self.assertEqual(self.record(100)['work_orders'], [])
        self.assertEqual(self.record(300)['work_orders'], [])
        outcome = self.record(500)

        self.assertEqual(len(outcome['work_orders']), 1)
        self.assertEqual(len(self.h.engine.work_orders.list_for_asset(ORG, self.asset.id)), 1)
        stored = self.h.engine.schedules.get(ORG, schedule.id)
        self.assertEqual(stored.next_meter_due, 1000.0)
        self.assertEqual(stored.last_meter_reading, 500.0)

    def test_readings_inside_dedup_window_do_not_fire(self):
        schedule = self.h.meter_schedule(self.asset.id, interval=100)

        self.assertEqual(len(self.record(100)['work_orders']), 1)

        self.h.clock.advance(hours=2)
        outcome = self.record(250)
        self.assertEqual(outcome['work_orders'], [])
        self.assertEqual(outcome['errors'], [])
        self.assertEqual(self.h.engine.schedules.get(ORG, schedule.id).next_meter_due, 200.0)

        self.h.clock.advance(hours=23)
        self.assertEqual(len(self.record(260)['work_orders']), 1)
        self.assertEqual(self.h.engine.schedules.get(ORG, schedule.id).next_meter_due, 360.0)
        self.assertEqual(len(self.h.engine.work_orders.list_for_asset(ORG, self.asset.id)), 2)


@pytest.mark.integration
class TestTimeAndComplianceFlow(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.asset = self.h.add_asset()

    def tearDown(self):
        self.h.close()

    def test_missed_and_completed_executions(self):
        engine = self.h.engine
        kept = self.h.time_schedule(self.asset.id, name='Belt inspection')
        neglected = self.h.time_schedule(self.asset.id, name='Filter swap')

        self.assertEqual(engine.driver.run_time_sweep().triggered, 2)

        self.h.clock.set(datetime(2024, 1, 17, 14, 0))
        execution = engine.schedules.history(ORG, kept.id)[0]
        completed = engine.schedules.complete_execution(ORG, execution.id, notes='Belts fine')
        self.assertEqual(completed.status, 'completed')

        self.h.clock.set(datetime(2024, 1, 23, 9, 0))
        overdue = engine.driver.run_overdue_sweep()
        self.assertEqual(overdue.triggered, 1)
        self.assertEqual(engine.schedules.history(ORG, neglected.id)[0].status, 'missed')
        self.assertIn('Maintenance missed', self.h.notifier.subjects())

        metrics = engine.schedules.compliance(ORG)
        self.assertEqual(metrics['completed_on_time'], 1)
        self.assertEqual(metrics['missed'], 1)
        self.assertEqual(metrics['compliance_rate'], 50.0)
        self.assertEqual(engine.schedules.compliance(ORG, kept.id)['compliance_rate'], 100.0)

        self.assertEqual(engine.driver.run_overdue_sweep().triggered, 0)

    def test_next_period_fires_after_advance(self):
        schedule = self.h.time_schedule(self.asset.id)
        self.h.engine.driver.run_time_sweep()

        self.h.clock.set(datetime(2024, 2, 15, 6, 0))
        self.assertEqual(self.h.engine.driver.run_time_sweep().triggered, 1)
        history = self.h.engine.schedules.history(ORG, schedule.id)
        self.assertEqual([r.scheduled_at for r in history], [datetime(2024, 2, 15), datetime(2024, 1, 15)])


@pytest.mark.integration
class TestConcurrentFiring(unittest.TestCase):

    THREADS = 6

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.h = EngineHarness(db=file_database(os.path.join(self.tmp.name, 'engine.db')))
        self.asset = self.h.add_asset()

    def tearDown(self):
        self.h.close()
        self.tmp.cleanup()

    def test_only_one_caller_fires_a_due_schedule(self):
        schedule = self.h.time_schedule(self.asset.id)
        outcomes = []
        outcomes_lock = threading.Lock()
        barrier = threading.Barrier(self.THREADS)

        def fire():
            barrier.wait()
            try:
                self.h.engine.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)
                outcome = 'generated'
            except ConflictError:
                outcome = 'conflict'
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=fire) for _ in range(self.THREADS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count('generated'), 1)
        self.assertEqual(outcomes.count('conflict'), self.THREADS - 1)
        self.assertEqual(len(self.h.engine.work_orders.list_for_asset(ORG, self.asset.id)), 1)
        self.assertEqual(len(self.h.engine.schedules.history(ORG, schedule.id)), 1)


@pytest.mark.integration
class TestCrossProcessFiring(unittest.TestCase):
    """Two engines with separate in-process locks over one database file"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmp.name, 'engine.db')
        self.first = EngineHarness(db=file_database(path))
        self.second = EngineHarness(db=file_database(path))
        self.asset = self.first.add_asset()

    def tearDown(self):
        self.first.close()
        self.second.close()
        self.tmp.cleanup()

    def test_version_guard_rejects_stale_firing(self):
        schedule = self.first.time_schedule(self.asset.id)
        generator = self.first.engine.generator
        check_eligibility = generator._check_eligibility

        def rival_fires_after_check(*args):
            scheduled_at = check_eligibility(*args)
            self.second.engine.generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)
            return scheduled_at

        with patch.object(generator, '_check_eligibility', side_effect=rival_fires_after_check):
            with self.assertRaises(ConflictError):
                generator.generate_for_schedule(schedule.id, TriggerReason.TIME_DUE)

        stored = self.first.engine.schedules.get(ORG, schedule.id)
        self.assertEqual(stored.firing_version, 1)
        self.assertEqual(stored.next_due_date, date(2024, 2, 15))
        self.assertEqual(len(self.first.engine.work_orders.list_for_asset(ORG, self.asset.id)), 1)
        self.assertEqual(len(self.first.engine.schedules.history(ORG, schedule.id)), 1)


@pytest.mark.integration
class TestPredictiveFlow(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.asset = self.h.add_asset('Chiller', asset_type='chiller', criticality=4)

    def tearDown(self):
        self.h.close()

    def test_anomaly_to_resolved_work_order(self):
        engine = self.h.engine
        for index, value in enumerate([48.0, 52.0] * 15):
            self.h.clock.advance(minutes=1)
            result = engine.detector.ingest(ORG, {
                'asset_id': self.asset.id, 'sensor_kind': 'vibration', 'value': value
            })
            self.assertFalse(result.is_anomaly, index)

        self.h.clock.advance(minutes=1)
        spike = engine.detector.ingest(ORG, {
            'asset_id': self.asset.id, 'sensor_kind': 'vibration', 'value': 80.0
        })
        self.assertTrue(spike.is_anomaly)
        prediction = spike.prediction

        engine.predictions.acknowledge(ORG, prediction.id, 'supervisor')
        generated = engine.predictions.create_work_order(ORG, prediction.id, 'supervisor')
        self.assertEqual(generated.priority.value, 'critical')

        engine.predictions.resolve(ORG, prediction.id, 'tech', was_accurate=True)
        summary = engine.predictions.dashboard(ORG)
        self.assertEqual(summary['failures_prevented'], 1)
        self.assertEqual(summary['anomalies_last_24h'], 1)
        self.assertEqual(summary['assets_monitored'], 1)
        self.assertEqual(summary['active_predictions'], 0)

        batch = engine.driver.run_analytics()
        self.assertEqual(batch.triggered, 1)
        self.assertEqual(len(engine.predictions.list_predictions(ORG, asset_id=self.asset.id)), 3)


if __name__ == '__main__':
    unittest.main()
