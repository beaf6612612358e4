"""
Maintenance Engine
Wires the collaborators, trackers, generators and sweeps into one object
sharing a database, a clock and a per-key lock table.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config.settings import Settings, settings as default_settings
from src.collaborators.interfaces import (
    AssetDirectory, NotificationSink, ReadingStore, WorkOrderService
)
from src.collaborators.notifications import NotificationSystem
from src.collaborators.sql_collaborators import SqlAssetDirectory, SqlWorkOrderService
from src.database.database_manager import DatabaseManager
from src.database.reading_store import SqlReadingStore
from src.maintenance.execution_tracker import ExecutionTracker
from src.maintenance.schedule_service import ScheduleService
from src.maintenance.trigger_evaluator import TriggerEvaluator
from src.maintenance.trigger_processor import TriggerProcessor
from src.maintenance.work_order_generator import WorkOrderGenerator
from src.predictive.anomaly_detector import AnomalyDetector
from src.predictive.model_registry import ModelRegistry
from src.predictive.prediction_manager import PredictionManager
from src.scheduling.scheduler_driver import PeriodicSchedulerDriver
from src.utils.helpers import Clock, utc_now
from src.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceEngine:
    """Every service of the engine, built against the same database"""
    db: DatabaseManager
    assets: AssetDirectory
    readings: ReadingStore
    work_orders: WorkOrderService
    notifier: NotificationSink
    tracker: ExecutionTracker
    generator: WorkOrderGenerator
    schedules: ScheduleService
    processor: TriggerProcessor
    models: ModelRegistry
    predictions: PredictionManager
    detector: AnomalyDetector
    driver: PeriodicSchedulerDriver

    def shutdown(self):
        if self.driver.is_running:
            self.driver.stop()
        self.db.close()


def build_engine(db: Optional[DatabaseManager] = None,
                 config: Optional[Settings] = None,
                 clock: Clock = utc_now,
                 assets: Optional[AssetDirectory] = None,
                 readings: Optional[ReadingStore] = None,
                 work_orders: Optional[WorkOrderService] = None,
                 notifier: Optional[NotificationSink] = None) -> MaintenanceEngine:
    """Assemble the engine

    Args:
        db: Database manager (default: from configuration)
        config: Settings object (default: module settings)
        clock: Time source shared by every component
        assets: Asset directory (default: SQL)
        readings: Reading store (default: SQL)
        work_orders: Work-order service (default: SQL)
        notifier: Notification sink (default: logging/email system)

    Returns:
        MaintenanceEngine
    """
    config = config or default_settings
    db = db or DatabaseManager(config.get_database_config())

    trigger_config = config.get_trigger_config()
    analytics_config = config.get_analytics_config()

    assets = assets or SqlAssetDirectory(db)
    readings = readings or SqlReadingStore(db)
    work_orders = work_orders or SqlWorkOrderService(db)
    notifier = notifier or NotificationSystem(config.get_notification_config())

    locks = KeyedLock()
    evaluator = TriggerEvaluator()

    tracker = ExecutionTracker(db, notifier, clock)
    generator = WorkOrderGenerator(db, tracker, work_orders, notifier, trigger_config, clock, locks)
    schedules = ScheduleService(db, assets, readings, tracker, generator, evaluator,
                                trigger_config, clock, locks)
    processor = TriggerProcessor(db, generator, readings, assets, evaluator, clock)
    models = ModelRegistry(db, assets, readings, analytics_config, clock)
    predictions = PredictionManager(db, assets, readings, work_orders, generator, models,
                                    notifier, analytics_config, clock, locks)
    detector = AnomalyDetector(assets, readings, predictions, models, analytics_config, clock)
    driver = PeriodicSchedulerDriver(processor, tracker, predictions,
                                     config.get_scheduler_config(), clock)

    logger.info("Maintenance engine assembled")
    return MaintenanceEngine(
        db=db,
        assets=assets,
        readings=readings,
        work_orders=work_orders,
        notifier=notifier,
        tracker=tracker,
        generator=generator,
        schedules=schedules,
        processor=processor,
        models=models,
        predictions=predictions,
        detector=detector,
        driver=driver
    )
