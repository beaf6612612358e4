"""
Sensor Ingest & Anomaly Detector
Scores each incoming reading against the asset's recent history of the same
sensor kind, stores it with its verdict and raises anomaly predictions.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from config.settings import AnalyticsConfig
from src.analytics.statistics import (
    AnomalyResult, Severity, StatisticalSummary, calculate_statistics, classify_trend,
    detect_anomaly_iqr, detect_anomaly_zscore, double_exponential_smoothing
)
from src.collaborators.interfaces import AssetDirectory, ReadingStore
from src.database.enums import ModelType
from src.database.models import Prediction, SensorReading
from src.maintenance.work_order_generator import GenerationResult
from src.predictive.model_registry import ModelRegistry
from src.predictive.prediction_manager import PredictionManager
from src.utils.exceptions import InvalidConfigurationError, MaintenanceEngineError
from src.utils.helpers import Clock, parse_datetime, utc_now
from src.utils.logger import LogContext

logger = logging.getLogger(__name__)

NO_BASELINE = AnomalyResult(False, 0.0, Severity.NORMAL, "No history to compare against")
RECENT_WINDOW = timedelta(hours=24)


@dataclass
class IngestResult:
    """A stored reading and its verdict"""
    reading: SensorReading
    verdict: AnomalyResult
    iqr_verdict: AnomalyResult
    statistics: Optional[StatisticalSummary] = None
    prediction: Optional[Prediction] = None
    work_order: Optional[GenerationResult] = None

    @property
    def is_anomaly(self) -> bool:
        return self.verdict.is_anomaly

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reading': self.reading.to_dict(),
            'anomaly_result': self.verdict.to_dict(),
            'iqr_result': self.iqr_verdict.to_dict(),
            'statistics': self.statistics.to_dict() if self.statistics else None,
            'prediction_id': self.prediction.id if self.prediction else None,
            'work_order_id': self.work_order.work_order_id if self.work_order else None
        }


class AnomalyDetector:
    """Ingest path and ad-hoc analysis for sensor readings"""

    def __init__(self, assets: AssetDirectory, readings: ReadingStore,
                 manager: PredictionManager, registry: ModelRegistry,
                 config: Optional[AnalyticsConfig] = None,
                 clock: Clock = utc_now):
        self.assets = assets
        self.readings = readings
        self.manager = manager
        self.registry = registry
        self.config = config or AnalyticsConfig()
        self.clock = clock

    def _thresholds(self, organization_id: str, asset_type: Optional[str]):
        model = self.registry.active_model(organization_id, asset_type, ModelType.ANOMALY_DETECTION)
        params = model.parameters if model is not None else {}
        return (
            float(params.get('zscore_threshold') or self.config.zscore_threshold),
            float(params.get('iqr_multiplier') or self.config.iqr_multiplier),
            model.id if model is not None else None
        )

    @staticmethod
    def _validate(payload: Dict[str, Any]) -> Dict[str, Any]:
        asset_id = payload.get('asset_id')
        sensor_kind = payload.get('sensor_kind') or payload.get('sensor_type')
        if not asset_id or not sensor_kind:
            raise InvalidConfigurationError("Sensor reading requires asset_id and sensor_kind")
        try:
            value = float(payload['value'])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"Sensor reading value is not numeric: {payload.get('value')!r}") from e

        cleaned = {
            'asset_id': asset_id,
            'sensor_kind': str(sensor_kind),
            'value': value,
            'sensor_id': payload.get('sensor_id'),
            'sensor_name': payload.get('sensor_name'),
            'unit': payload.get('unit'),
            'min_expected': payload.get('min_expected'),
            'max_expected': payload.get('max_expected'),
            'timestamp': payload.get('timestamp'),
            'details': payload.get('metadata') or {}
        }
        return cleaned

    def ingest(self, organization_id: str, payload: Dict[str, Any]) -> IngestResult:
        """Store one reading with its anomaly verdict

        The baseline is the previous 30 days of the same asset and sensor
        kind, read before the new value is written.

        Raises:
            InvalidConfigurationError: malformed reading
            NotFoundError: unknown asset
        """
        data = self._validate(payload)
        asset = self.assets.get_asset(organization_id, data['asset_id'])
        timestamp = parse_datetime(data['timestamp'], default=self.clock())

        history = self.readings.sensor_history(
            organization_id, asset.id, data['sensor_kind'],
            since=timestamp - timedelta(days=self.config.sensor_history_days),
            until=timestamp
        )
        values = [r.value for r in history]
        threshold, multiplier, model_id = self._thresholds(organization_id, asset.asset_type)

        stats = calculate_statistics(values) if values else None
        if stats is None:
            verdict, iqr_verdict = NO_BASELINE, AnomalyResult(False, 0.0, Severity.NORMAL,
                                                              "No history to compare against", method="iqr")
        else:
            verdict = detect_anomaly_zscore(data['value'], stats, threshold)
            iqr_verdict = detect_anomaly_iqr(data['value'], stats, multiplier)

        out_of_range = False
        if data['min_expected'] is not None and data['max_expected'] is not None:
            out_of_range = not (float(data['min_expected']) <= data['value'] <= float(data['max_expected']))

        details = dict(data['details'])
        details.update({'zscore_threshold': threshold, 'iqr': iqr_verdict.to_dict()})
        reading = self.readings.record_sensor(organization_id, {
            'asset_id': asset.id,
            'sensor_kind': data['sensor_kind'],
            'sensor_id': data['sensor_id'],
            'sensor_name': data['sensor_name'],
            'value': data['value'],
            'unit': data['unit'],
            'timestamp': timestamp,
            'min_expected': data['min_expected'],
            'max_expected': data['max_expected'],
            'is_anomaly': verdict.is_anomaly,
            'is_out_of_range': out_of_range,
            'z_score': verdict.z_score,
            'details': details
        })

        result = IngestResult(reading, verdict, iqr_verdict, stats)
        if verdict.is_anomaly:
            with LogContext(organization_id=organization_id, asset_id=asset.id):
                result.prediction = self.manager.create_anomaly_prediction(
                    organization_id, asset, reading, verdict, stats, model_id
                )
                result.work_order = self._auto_work_order(organization_id, result.prediction)
        return result

    def _auto_work_order(self, organization_id: str, prediction: Prediction) -> Optional[GenerationResult]:
        if prediction.risk_level not in (self.config.auto_work_order_risk_tiers or []):
            return None
        try:
            return self.manager.create_work_order(organization_id, prediction.id)
        except MaintenanceEngineError as e:
            logger.error(f"Automatic work order for prediction {prediction.id} failed: {e.message}")
            return None

    def bulk_ingest(self, organization_id: str, payloads: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Ingest readings in submission order; a bad reading does not stop the rest"""
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        anomalies = 0

        for index, payload in enumerate(payloads):
            try:
                outcome = self.ingest(organization_id, payload)
            except MaintenanceEngineError as e:
                logger.error(f"Bulk reading {index} rejected: {e.message}")
                errors.append({'index': index, 'error': e.to_dict()})
                continue
            anomalies += 1 if outcome.is_anomaly else 0
            results.append(outcome.to_dict())

        return {
            'processed': len(results),
            'anomalies': anomalies,
            'results': results,
            'errors': errors
        }

    def analyze_asset(self, organization_id: str, asset_id: str,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
        """Per sensor kind statistics and trend, plus predictions for recent anomalies

        Recent anomalous readings only produce a prediction when no 'new'
        anomaly prediction exists for the asset in the last 24 hours.
        """
        now = now or self.clock()
        asset = self.assets.get_asset(organization_id, asset_id)
        history = self.readings.sensor_history(
            organization_id, asset_id, since=now - timedelta(days=self.config.sensor_history_days)
        )

        grouped: Dict[str, List[SensorReading]] = OrderedDict()
        for reading in history:
            grouped.setdefault(reading.sensor_kind, []).append(reading)

        statistics, trends, created = {}, {}, []
        threshold, _, model_id = self._thresholds(organization_id, asset.asset_type)

        for kind, points in grouped.items():
            values = [p.value for p in points]
            stats = calculate_statistics(values)
            statistics[kind] = stats.to_dict()

            smoothed = double_exponential_smoothing(values, self.config.smoothing_alpha,
                                                    self.config.smoothing_beta, self.config.forecast_periods)
            trends[kind] = {
                'trend': classify_trend(smoothed.trend, self.config.trend_stable_band).value,
                'rate': smoothed.trend
            }

            for i, point in enumerate(points):
                if not point.is_anomaly or point.timestamp <= now - RECENT_WINDOW:
                    continue
                if self.manager.recent_open_anomaly(organization_id, asset_id, now - RECENT_WINDOW):
                    continue
                rest = values[:i] + values[i + 1:]
                baseline = calculate_statistics(rest) if rest else stats
                verdict = detect_anomaly_zscore(point.value, baseline, threshold)
                created.append(self.manager.create_anomaly_prediction(
                    organization_id, asset, point, verdict, baseline, model_id, now
                ))

        return {
            'asset_id': asset_id,
            'statistics': statistics,
            'trends': trends,
            'anomalies': created
        }

    def sensor_history(self, organization_id: str, asset_id: str,
                       sensor_kind: Optional[str] = None,
                       start: Optional[datetime] = None,
                       end: Optional[datetime] = None,
                       limit: Optional[int] = None) -> List[SensorReading]:
        """Stored readings of an asset, newest first"""
        self.assets.get_asset(organization_id, asset_id)
        return self.readings.sensor_history(organization_id, asset_id, sensor_kind,
                                            since=start, until=end, limit=limit, newest_first=True)
