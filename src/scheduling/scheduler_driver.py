"""
Periodic Scheduler Driver
Runs the time, meter, condition, overdue and analytics sweeps on their own
cadences. Every sweep is also callable directly with an explicit clock value.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import schedule

from config.settings import SchedulerConfig
from src.maintenance.execution_tracker import ExecutionTracker
from src.maintenance.sweep import SweepResult
from src.maintenance.trigger_processor import TriggerProcessor
from src.predictive.prediction_manager import PredictionManager
from src.utils.helpers import Clock, utc_now

logger = logging.getLogger(__name__)


class PeriodicSchedulerDriver:
    """Only component that owns a clock loop"""

    def __init__(self, processor: TriggerProcessor, tracker: ExecutionTracker,
                 predictions: PredictionManager,
                 config: Optional[SchedulerConfig] = None,
                 clock: Clock = utc_now,
                 history_size: int = 200):
        """Initialize the driver

        Args:
            processor: Time/meter/condition sweeps
            tracker: Overdue sweep
            predictions: Daily analytics batch
            config: Cadences
            clock: Time source handed to every sweep
            history_size: Number of sweep results kept
        """
        self.processor = processor
        self.tracker = tracker
        self.predictions = predictions
        self.config = config or SchedulerConfig()
        self.clock = clock

        self.scheduler = schedule.Scheduler()
        self.results = deque(maxlen=history_size)
        self._results_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._registered = False

    # ------------------------------------------------------------------ sweeps

    def _record(self, result: SweepResult) -> SweepResult:
        with self._results_lock:
            self.results.append(result)
        if result.errors:
            logger.warning(f"{result.name} finished with {len(result.errors)} errors")
        return result

    def run_time_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self._record(self.processor.process_time_schedules(now or self.clock()))

    def run_meter_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self._record(self.processor.process_meter_schedules(now or self.clock()))

    def run_condition_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self._record(self.processor.process_condition_schedules(now or self.clock()))

    def run_overdue_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self._record(self.tracker.sweep_overdue(now or self.clock()))

    def run_analytics(self, now: Optional[datetime] = None) -> SweepResult:
        return self._record(self.predictions.run_daily_analytics(now or self.clock()))

    # ------------------------------------------------------------- scheduling

    def _job(self, sweep: Callable[[], SweepResult]) -> Callable[[], None]:
        def job():
            try:
                sweep()
            except Exception as e:
                logger.error(f"Sweep {sweep.__name__} aborted: {e}")
        job.__name__ = sweep.__name__
        return job

    def register_jobs(self):
        """Register every cadence on this driver's own scheduler"""
        if self._registered:
            return
        cfg = self.config
        self.scheduler.every().day.at(cfg.time_sweep_at).do(self._job(self.run_time_sweep))
        self.scheduler.every(cfg.meter_sweep_minutes).minutes.do(self._job(self.run_meter_sweep))
        self.scheduler.every(cfg.condition_sweep_minutes).minutes.do(self._job(self.run_condition_sweep))
        self.scheduler.every().day.at(cfg.overdue_sweep_at).do(self._job(self.run_overdue_sweep))
        self.scheduler.every().day.at(cfg.analytics_at).do(self._job(self.run_analytics))
        self._registered = True
        logger.info(f"Registered {len(self.scheduler.get_jobs())} maintenance sweeps")

    def jobs(self) -> List[Dict[str, Any]]:
        return [
            {'job': job.job_func.__name__, 'next_run': job.next_run.isoformat() if job.next_run else None}
            for job in self.scheduler.get_jobs()
        ]

    def start(self):
        """Start the background loop"""
        if self._thread and self._thread.is_alive():
            return
        self.register_jobs()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._schedule_loop, name='maintenance-scheduler')
        self._thread.daemon = True
        self._thread.start()
        logger.info("Maintenance scheduler started")

    def stop(self):
        """Stop the loop; a sweep in flight runs to completion"""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        self.scheduler.clear()
        self._registered = False
        logger.info("Maintenance scheduler stopped")

    def run_forever(self):
        """Run the loop in the calling thread until stop() is called"""
        self.register_jobs()
        self._stop_event.clear()
        self._schedule_loop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _schedule_loop(self):
        while not self._stop_event.is_set():
            try:
                self.scheduler.run_pending()
            except Exception as e:
                logger.error(f"Error in schedule loop: {str(e)}")
            self._stop_event.wait(self.config.poll_seconds)

    def recent_results(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._results_lock:
            return [r.to_dict() for r in list(self.results)[-limit:]]
