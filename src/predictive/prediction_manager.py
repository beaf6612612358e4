"""
Prediction Lifecycle Manager
Creates anomaly, failure and remaining-life predictions, owns their state
machine, runs the daily analytics batch and builds the dashboard summary.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func

from config.settings import AnalyticsConfig
from src.analytics.statistics import AnomalyResult, StatisticalSummary
from src.collaborators.interfaces import (
    AssetDirectory, AssetInfo, NotificationSink, ReadingStore, WorkOrderService
)
from src.database.database_manager import DatabaseManager
from src.database.enums import ModelType, PredictionKind, PredictionStatus, RiskLevel
from src.database.models import Prediction, SensorReading
from src.maintenance.sweep import SweepResult
from src.maintenance.work_order_generator import GenerationResult, WorkOrderGenerator
from src.predictive.failure_scoring import (
    Factor, assess_remaining_life, repair_cost, score_failure_probability,
    sensor_action, severity_to_risk
)
from src.predictive.lifecycle import OPEN_STATUSES, check_transition
from src.predictive.model_registry import ModelRegistry
from src.utils.exceptions import ConflictError, NotFoundError
from src.utils.helpers import Clock, utc_now
from src.utils.keyed_lock import KeyedLock
from src.utils.logger import LogContext, log_execution_time

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ACCURACY = 85.0
RECENT_PREDICTIONS = 10
RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def anomaly_probability(result: AnomalyResult) -> float:
    if result.constant_baseline:
        return 100.0
    return min(100.0, abs(result.z_score) * 20)


def anomaly_confidence(history_count: int) -> float:
    return 85.0 if history_count >= 30 else min(85.0, history_count * 2.8)


def rate(prediction: Prediction, was_accurate: bool):
    """Record the accuracy rating; an existing rating can only be repeated"""
    if prediction.was_accurate is not None and prediction.was_accurate != was_accurate:
        raise ConflictError(
            f"Prediction {prediction.id} is already rated "
            f"{'accurate' if prediction.was_accurate else 'inaccurate'}",
            {'prediction_id': prediction.id, 'was_accurate': prediction.was_accurate}
        )
    prediction.was_accurate = was_accurate


class PredictionManager:
    """Scoring plus explicit, actor-stamped transitions"""

    def __init__(self, db: DatabaseManager, assets: AssetDirectory, readings: ReadingStore,
                 work_orders: WorkOrderService, generator: WorkOrderGenerator,
                 registry: ModelRegistry,
                 notifier: Optional[NotificationSink] = None,
                 config: Optional[AnalyticsConfig] = None,
                 clock: Clock = utc_now,
                 locks: Optional[KeyedLock] = None):
        self.db = db
        self.assets = assets
        self.readings = readings
        self.work_orders = work_orders
        self.generator = generator
        self.registry = registry
        self.notifier = notifier
        self.config = config or AnalyticsConfig()
        self.clock = clock
        self.locks = locks or generator.locks

    # ---------------------------------------------------------------- creation

    def _save(self, prediction: Prediction) -> Prediction:
        with self.db.get_session() as session:
            session.add(prediction)
            session.flush()
        return prediction

    def create_anomaly_prediction(self, organization_id: str, asset: AssetInfo,
                                  reading: SensorReading, result: AnomalyResult,
                                  stats: StatisticalSummary,
                                  model_id: Optional[str] = None,
                                  now: Optional[datetime] = None) -> Prediction:
        """Persist an anomaly prediction for a flagged reading"""
        now = now or self.clock()
        risk = severity_to_risk(result.severity)
        factor = Factor(
            name='Sensor Reading',
            contribution=100,
            value=float(reading.value),
            threshold=stats.mean + 3 * stats.std_dev,
            unit=reading.unit or '',
            description=f"Current value deviates {abs(result.z_score):.2f} standard deviations from mean"
        )

        prediction = self._save(Prediction(
            organization_id=organization_id,
            asset_id=asset.id,
            model_id=model_id,
            sensor_reading_id=reading.id,
            prediction_kind=PredictionKind.ANOMALY.value,
            narrative=f"Anomaly detected in {reading.sensor_kind} readings: {result.message}",
            probability=anomaly_probability(result),
            confidence=anomaly_confidence(stats.count),
            risk_level=risk.value,
            status=PredictionStatus.NEW.value,
            factors=[factor.to_dict()],
            recommended_action=sensor_action(result.severity.value, reading.sensor_kind),
            estimated_cost=repair_cost(result.severity.value),
            created_at=now,
            updated_at=now
        ))

        logger.warning(f"Anomaly on asset {asset.name} ({reading.sensor_kind}={reading.value}): "
                       f"{result.message}")
        if self.notifier:
            self.notifier.notify(
                f"Anomaly detected: {asset.name}",
                prediction.narrative,
                'critical' if risk is RiskLevel.CRITICAL else 'warning',
                {'prediction_id': prediction.id, 'asset_id': asset.id, 'risk_level': risk.value}
            )
        return prediction

    def predict_failure(self, organization_id: str, asset_id: str,
                        now: Optional[datetime] = None) -> Prediction:
        """Score failure probability for an asset and store the prediction

        Raises:
            NotFoundError: unknown asset
        """
        now = now or self.clock()
        asset = self.assets.get_asset(organization_id, asset_id)
        model = self.registry.active_model(organization_id, asset.asset_type, ModelType.FAILURE_PREDICTION)
        params = model.parameters if model is not None else {}

        history = self.readings.sensor_history(
            organization_id, asset_id, since=now - timedelta(days=self.config.failure_history_days)
        )
        readings = [{'value': r.value, 'is_anomaly': r.is_anomaly} for r in history]
        work_order_dates = self.work_orders.recent_work_order_dates(organization_id, asset_id)

        assessment = score_failure_probability(
            now, readings, work_order_dates,
            last_maintenance_date=asset.last_maintenance_date,
            criticality=asset.criticality,
            alpha=float(params.get('alpha', self.config.smoothing_alpha)),
            beta=float(params.get('beta', self.config.smoothing_beta))
        )

        prediction = self._save(Prediction(
            organization_id=organization_id,
            asset_id=asset_id,
            model_id=model.id if model is not None else None,
            prediction_kind=PredictionKind.FAILURE.value,
            narrative=f"Failure probability: {assessment.probability:.1f}%",
            probability=assessment.probability,
            confidence=assessment.confidence,
            risk_level=assessment.risk_level.value,
            status=PredictionStatus.NEW.value,
            predicted_date=assessment.predicted_date,
            factors=[f.to_dict() for f in assessment.factors],
            recommended_action=assessment.recommended_action,
            estimated_cost=assessment.estimated_cost,
            potential_savings=assessment.potential_savings,
            created_at=now,
            updated_at=now
        ))
        logger.info(f"Failure prediction for {asset.name}: {assessment.probability:.1f}% "
                    f"({assessment.risk_level.value})")
        return prediction

    def remaining_life(self, organization_id: str, asset_id: str,
                       now: Optional[datetime] = None) -> Prediction:
        """Weibull remaining-life estimate for an asset, stored as a prediction"""
        now = now or self.clock()
        asset = self.assets.get_asset(organization_id, asset_id)
        model = self.registry.active_model(organization_id, asset.asset_type, ModelType.REMAINING_LIFE)

        assessment = assess_remaining_life(
            now,
            installed_date=asset.installed_date,
            created_at=asset.created_at or now,
            useful_life_years=asset.useful_life_years,
            maintenance_count=asset.total_maintenance_count,
            replacement_cost=asset.replacement_cost,
            model_parameters=model.parameters if model is not None else None,
            default_shape=self.config.weibull_shape,
            default_useful_life_years=self.config.useful_life_years
        )

        prediction = self._save(Prediction(
            organization_id=organization_id,
            asset_id=asset_id,
            model_id=model.id if model is not None else None,
            prediction_kind=PredictionKind.REMAINING_LIFE.value,
            narrative=f"Estimated remaining useful life: {assessment.remaining_days} days",
            probability=assessment.probability,
            confidence=assessment.confidence,
            risk_level=assessment.risk_level.value,
            status=PredictionStatus.NEW.value,
            predicted_date=assessment.predicted_date,
            remaining_life_days=assessment.remaining_days,
            factors=[f.to_dict() for f in assessment.factors],
            recommended_action=assessment.recommended_action,
            estimated_cost=assessment.estimated_cost,
            created_at=now,
            updated_at=now
        ))
        logger.info(f"Remaining life for {asset.name}: {assessment.remaining_days} days")
        return prediction

    @log_execution_time
    def run_daily_analytics(self, now: Optional[datetime] = None) -> SweepResult:
        """Re-score every asset with sensor data in the last day"""
        now = now or self.clock()
        result = SweepResult(name='analytics_batch', started_at=now)

        for organization_id, asset_id in self.readings.assets_with_sensor_data(now - timedelta(days=1)):
            result.processed += 1
            with LogContext(organization_id=organization_id, asset_id=asset_id):
                try:
                    self.predict_failure(organization_id, asset_id, now)
                    self.remaining_life(organization_id, asset_id, now)
                    result.triggered += 1
                except Exception as e:
                    message = f"Analytics failed for asset {asset_id}: {e}"
                    logger.error(message)
                    result.add_error(message)

        result.finished_at = self.clock()
        logger.info(f"Analytics batch scored {result.triggered}/{result.processed} assets")
        return result

    # ------------------------------------------------------------- transitions

    def _transition(self, organization_id: str, prediction_id: str, target: PredictionStatus,
                    stamp: Callable[[Prediction, datetime], None]) -> Prediction:
        now = self.clock()
        with self.locks.hold(('prediction', prediction_id)):
            with self.db.get_session() as session:
                prediction = self._get(session, organization_id, prediction_id)
                check_transition(prediction_id, prediction.status, target)
                prediction.status = target.value
                prediction.updated_at = now
                stamp(prediction, now)
                if target is PredictionStatus.RESOLVED and prediction.model_id \
                        and prediction.was_accurate is not None:
                    self.registry.record_outcome(session, prediction.model_id, prediction.was_accurate)

        logger.info(f"Prediction {prediction_id} -> {target.value}")
        return prediction

    def acknowledge(self, organization_id: str, prediction_id: str, actor_id: Optional[str],
                    notes: Optional[str] = None) -> Prediction:
        def stamp(prediction, now):
            prediction.acknowledged_at = now
            prediction.acknowledged_by = actor_id
            if notes:
                prediction.resolution_notes = notes
        return self._transition(organization_id, prediction_id, PredictionStatus.ACKNOWLEDGED, stamp)

    def dismiss(self, organization_id: str, prediction_id: str, actor_id: Optional[str],
                false_positive: bool = False, notes: Optional[str] = None) -> Prediction:
        target = PredictionStatus.FALSE_POSITIVE if false_positive else PredictionStatus.DISMISSED

        def stamp(prediction, now):
            prediction.acknowledged_at = now
            prediction.acknowledged_by = actor_id
            if false_positive:
                rate(prediction, False)
            if notes:
                prediction.resolution_notes = notes
        return self._transition(organization_id, prediction_id, target, stamp)

    def resolve(self, organization_id: str, prediction_id: str, actor_id: Optional[str],
                was_accurate: Optional[bool] = None,
                actual_failure_date: Optional[datetime] = None,
                notes: Optional[str] = None) -> Prediction:
        def stamp(prediction, now):
            prediction.resolved_at = now
            prediction.resolved_by = actor_id
            if was_accurate is not None:
                rate(prediction, was_accurate)
            if actual_failure_date is not None:
                prediction.actual_failure_date = actual_failure_date
            if notes:
                prediction.resolution_notes = notes
        return self._transition(organization_id, prediction_id, PredictionStatus.RESOLVED, stamp)

    def link_work_order(self, organization_id: str, prediction_id: str, work_order_id: str,
                        actor_id: Optional[str] = None) -> Prediction:
        """Attach a work order created elsewhere"""
        def stamp(prediction, now):
            prediction.work_order_id = work_order_id
        return self._transition(organization_id, prediction_id, PredictionStatus.WORK_ORDER_CREATED, stamp)

    def create_work_order(self, organization_id: str, prediction_id: str,
                          actor_id: Optional[str] = None, **overrides) -> GenerationResult:
        """Generate a predictive work order from a prediction"""
        prediction = self.get(organization_id, prediction_id)
        try:
            asset_name = self.assets.get_asset(organization_id, prediction.asset_id).name
        except NotFoundError:
            asset_name = None
        return self.generator.generate_for_prediction(
            prediction_id, organization_id, actor_id, asset_name=asset_name, **overrides
        )

    # ------------------------------------------------------------------ reads

    def get(self, organization_id: str, prediction_id: str) -> Prediction:
        with self.db.get_session() as session:
            return self._get(session, organization_id, prediction_id)

    def list_predictions(self, organization_id: str, asset_id: Optional[str] = None,
                         status: Optional[str] = None, kind: Optional[str] = None,
                         risk_level: Optional[str] = None,
                         limit: Optional[int] = None) -> List[Prediction]:
        with self.db.get_session() as session:
            query = session.query(Prediction).filter(Prediction.organization_id == organization_id)
            if asset_id:
                query = query.filter(Prediction.asset_id == asset_id)
            if status:
                query = query.filter(Prediction.status == status)
            if kind:
                query = query.filter(Prediction.prediction_kind == kind)
            if risk_level:
                query = query.filter(Prediction.risk_level == risk_level)
            query = query.order_by(Prediction.created_at.desc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def list_anomalies(self, organization_id: str, start: Optional[datetime] = None,
                       end: Optional[datetime] = None, asset_id: Optional[str] = None,
                       risk_level: Optional[str] = None,
                       limit: Optional[int] = None) -> List[Prediction]:
        with self.db.get_session() as session:
            query = session.query(Prediction).filter(
                Prediction.organization_id == organization_id,
                Prediction.prediction_kind == PredictionKind.ANOMALY.value
            )
            if start:
                query = query.filter(Prediction.created_at >= start)
            if end:
                query = query.filter(Prediction.created_at <= end)
            if asset_id:
                query = query.filter(Prediction.asset_id == asset_id)
            if risk_level:
                query = query.filter(Prediction.risk_level == risk_level)
            query = query.order_by(Prediction.created_at.desc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def recent_open_anomaly(self, organization_id: str, asset_id: str, since: datetime) -> bool:
        with self.db.get_session() as session:
            return session.query(Prediction.id).filter(
                Prediction.organization_id == organization_id,
                Prediction.asset_id == asset_id,
                Prediction.prediction_kind == PredictionKind.ANOMALY.value,
                Prediction.status == PredictionStatus.NEW.value,
                Prediction.created_at >= since
            ).first() is not None

    def dashboard(self, organization_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Organization-wide predictive maintenance summary"""
        now = now or self.clock()
        yesterday = now - timedelta(days=1)
        new = PredictionStatus.NEW.value

        with self.db.get_session() as session:
            base = session.query(Prediction).filter(Prediction.organization_id == organization_id)
            new_by_risk = dict(
                session.query(Prediction.risk_level, func.count(Prediction.id)).filter(
                    Prediction.organization_id == organization_id,
                    Prediction.status == new
                ).group_by(Prediction.risk_level).all()
            )
            anomalies_24h = base.filter(
                Prediction.prediction_kind == PredictionKind.ANOMALY.value,
                Prediction.created_at >= yesterday
            ).count()
            failures_prevented = base.filter(
                Prediction.status == PredictionStatus.RESOLVED.value,
                Prediction.was_accurate.is_(True)
            ).count()
            savings = session.query(func.sum(Prediction.potential_savings)).filter(
                Prediction.organization_id == organization_id,
                Prediction.status.in_([PredictionStatus.WORK_ORDER_CREATED.value,
                                       PredictionStatus.RESOLVED.value])
            ).scalar()
            by_kind = dict(
                session.query(Prediction.prediction_kind, func.count(Prediction.id)).filter(
                    Prediction.organization_id == organization_id
                ).group_by(Prediction.prediction_kind).all()
            )
            recent = base.order_by(Prediction.created_at.desc()).limit(RECENT_PREDICTIONS).all()
            open_rows = session.query(
                Prediction.asset_id, Prediction.probability, Prediction.risk_level
            ).filter(
                Prediction.organization_id == organization_id,
                Prediction.status.in_([s.value for s in OPEN_STATUSES])
            ).all()

        accuracies = self.registry.active_accuracies(organization_id)
        monitored = {asset for org, asset in self.readings.assets_with_sensor_data(yesterday, organization_id)}

        return {
            'active_predictions': sum(new_by_risk.values()),
            'critical_alerts': new_by_risk.get(RiskLevel.CRITICAL.value, 0),
            'high_risk_alerts': new_by_risk.get(RiskLevel.HIGH.value, 0),
            'medium_risk_alerts': new_by_risk.get(RiskLevel.MEDIUM.value, 0),
            'low_risk_alerts': new_by_risk.get(RiskLevel.LOW.value, 0),
            'anomalies_last_24h': anomalies_24h,
            'failures_prevented': failures_prevented,
            'potential_savings': float(savings or 0.0),
            'model_accuracy': sum(accuracies) / len(accuracies) if accuracies else DEFAULT_MODEL_ACCURACY,
            'assets_monitored': len(monitored),
            'predictions_by_kind': by_kind,
            'recent_predictions': [p.to_dict() for p in recent],
            'asset_health_scores': self._health_scores(organization_id, open_rows)
        }

    def _health_scores(self, organization_id: str, rows) -> List[Dict[str, Any]]:
        """100 minus the highest open-prediction probability per asset"""
        per_asset: Dict[str, Dict[str, Any]] = defaultdict(lambda: {'max_probability': 0.0,
                                                                   'risk': RiskLevel.LOW})
        for asset_id, probability, risk_level in rows:
            entry = per_asset[asset_id]
            entry['max_probability'] = max(entry['max_probability'], probability or 0.0)
            risk = RiskLevel(risk_level)
            if RISK_ORDER.index(risk) > RISK_ORDER.index(entry['risk']):
                entry['risk'] = risk

        scores = []
        for asset_id, entry in per_asset.items():
            try:
                name = self.assets.get_asset(organization_id, asset_id).name
            except NotFoundError:
                name = 'Unknown'
            scores.append({
                'asset_id': asset_id,
                'asset_name': name,
                'health_score': max(0.0, 100 - entry['max_probability']),
                'risk_level': entry['risk'].value
            })
        scores.sort(key=lambda s: s['health_score'])
        return scores

    @staticmethod
    def _get(session, organization_id: str, prediction_id: str) -> Prediction:
        prediction = session.query(Prediction).filter(
            Prediction.id == prediction_id,
            Prediction.organization_id == organization_id
        ).first()
        if prediction is None:
            raise NotFoundError('Prediction', prediction_id)
        return prediction
