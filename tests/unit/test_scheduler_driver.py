"""
Unit Tests for the periodic scheduler driver
"""

import unittest
from datetime import datetime

from config.settings import SchedulerConfig
from src.scheduling.scheduler_driver import PeriodicSchedulerDriver
from tests.utils.harness import EngineHarness


class ExplodingProcessor:
    """Processor whose sweeps always fail"""

    def process_time_schedules(self, now=None):
        raise RuntimeError("database went away")


class TestSchedulerDriver(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.driver = self.h.engine.driver

    def tearDown(self):
        self.h.close()

    def test_register_jobs_is_idempotent(self):
        self.driver.register_jobs()
        self.driver.register_jobs()

        names = sorted(job['job'] for job in self.driver.jobs())
        self.assertEqual(names, [
            'run_analytics', 'run_condition_sweep', 'run_meter_sweep',
            'run_overdue_sweep', 'run_time_sweep'
        ])

        self.driver.stop()
        self.assertEqual(self.driver.jobs(), [])

    def test_sweeps_are_recorded(self):
        asset = self.h.add_asset()
        self.h.time_schedule(asset.id)

        result = self.driver.run_time_sweep()
        self.assertEqual(result.triggered, 1)
        self.driver.run_overdue_sweep(datetime(2024, 1, 16))
        self.driver.run_meter_sweep()
        self.driver.run_condition_sweep()
        self.driver.run_analytics()

        recent = self.driver.recent_results()
        self.assertEqual([r['name'] for r in recent], [
            'time_sweep', 'overdue_sweep', 'meter_sweep', 'condition_sweep', 'analytics_batch'
        ])
        self.assertEqual(len(self.driver.recent_results(limit=2)), 2)
        self.assertEqual(recent[0]['started_at'], '2024-01-15T09:00:00')

    def test_failing_job_does_not_escape(self):
        driver = PeriodicSchedulerDriver(ExplodingProcessor(), self.h.engine.tracker,
                                         self.h.engine.predictions)
        job = driver._job(driver.run_time_sweep)

        job()

        self.assertEqual(job.__name__, 'run_time_sweep')
        self.assertEqual(driver.recent_results(), [])

    def test_start_and_stop(self):
        driver = PeriodicSchedulerDriver(self.h.engine.processor, self.h.engine.tracker,
                                         self.h.engine.predictions, SchedulerConfig(poll_seconds=0.01))
        driver.start()
        try:
            self.assertTrue(driver.is_running)
            self.assertEqual(len(driver.jobs()), 5)
        finally:
            driver.stop()
        self.assertFalse(driver.is_running)


if __name__ == '__main__':
    unittest.main()
