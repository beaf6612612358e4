"""
Prediction Model Registry
Named parameter bags per asset type. Training fits closed-form statistics
over recent sensor history; it never touches existing predictions.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from config.settings import AnalyticsConfig
from src.analytics.statistics import adaptive_zscore_threshold, calculate_statistics
from src.collaborators.interfaces import AssetDirectory, ReadingStore
from src.database.database_manager import DatabaseManager
from src.database.enums import ModelStatus, ModelType, PredictionStatus
from src.database.models import Prediction, PredictionModel
from src.utils.exceptions import InsufficientDataError, InvalidConfigurationError, NotFoundError
from src.utils.helpers import Clock, utc_now
from src.utils.logger import log_execution_time

logger = logging.getLogger(__name__)

DEFAULT_MIN_DATA_POINTS = 30

DEFAULT_PARAMETERS: Dict[ModelType, Dict[str, Any]] = {
    ModelType.ANOMALY_DETECTION: {
        'zscore_threshold': 3.0,
        'iqr_multiplier': 1.5,
        'window_size': 100,
        'min_data_points': 30,
    },
    ModelType.FAILURE_PREDICTION: {
        'alpha': 0.3,
        'beta': 0.1,
        'window_size': 30,
        'min_data_points': 50,
    },
    ModelType.REMAINING_LIFE: {
        'shape': 2.5,
        'scale': 3650.0,  # 10 years in days
        'min_data_points': 10,
    },
}


def default_parameters(model_type: ModelType) -> Dict[str, Any]:
    return dict(DEFAULT_PARAMETERS.get(model_type, {}))


def parse_model_type(value: Any) -> ModelType:
    try:
        return value if isinstance(value, ModelType) else ModelType(value)
    except ValueError as e:
        raise InvalidConfigurationError(f"Unknown model type: {value!r}") from e


class ModelRegistry:
    """Create, train and look up prediction models"""

    def __init__(self, db: DatabaseManager, assets: AssetDirectory, readings: ReadingStore,
                 config: Optional[AnalyticsConfig] = None,
                 clock: Clock = utc_now):
        self.db = db
        self.assets = assets
        self.readings = readings
        self.config = config or AnalyticsConfig()
        self.clock = clock

    def create(self, organization_id: str, name: str, model_type: Any,
               asset_type: Optional[str] = None,
               description: Optional[str] = None,
               parameters: Optional[Dict[str, Any]] = None) -> PredictionModel:
        """Register a model; given parameters override the type defaults"""
        kind = parse_model_type(model_type)
        merged = default_parameters(kind)
        merged.update(parameters or {})

        with self.db.get_session() as session:
            model = PredictionModel(
                organization_id=organization_id,
                name=name,
                description=description,
                asset_type=asset_type,
                model_type=kind.value,
                status=ModelStatus.INACTIVE.value,
                parameters=merged,
                created_at=self.clock()
            )
            session.add(model)
            session.flush()

        logger.info(f"Created {kind.value} model {name} for asset type {asset_type}")
        return model

    def get(self, organization_id: str, model_id: str) -> PredictionModel:
        with self.db.get_session() as session:
            return self._get(session, organization_id, model_id)

    def list(self, organization_id: str, asset_type: Optional[str] = None) -> List[PredictionModel]:
        with self.db.get_session() as session:
            query = session.query(PredictionModel).filter(PredictionModel.organization_id == organization_id)
            if asset_type:
                query = query.filter(PredictionModel.asset_type == asset_type)
            return query.order_by(PredictionModel.created_at.desc()).all()

    def active_model(self, organization_id: str, asset_type: Optional[str],
                     model_type: ModelType) -> Optional[PredictionModel]:
        """Most recently trained active model of a type for an asset type"""
        if not asset_type:
            return None
        with self.db.get_session() as session:
            return session.query(PredictionModel).filter(
                PredictionModel.organization_id == organization_id,
                PredictionModel.asset_type == asset_type,
                PredictionModel.model_type == model_type.value,
                PredictionModel.status == ModelStatus.ACTIVE.value
            ).order_by(PredictionModel.last_trained_at.desc()).first()

    def active_accuracies(self, organization_id: str) -> List[float]:
        with self.db.get_session() as session:
            rows = session.query(PredictionModel.accuracy).filter(
                PredictionModel.organization_id == organization_id,
                PredictionModel.status == ModelStatus.ACTIVE.value
            ).all()
            return [row[0] for row in rows if row[0] is not None]

    @log_execution_time
    def train(self, organization_id: str, model_id: str,
              historical_days: Optional[int] = None) -> PredictionModel:
        """Fit the model against recent sensor data of its asset type

        Args:
            organization_id: Scope
            model_id: Model to train
            historical_days: History window (default 90)

        Returns:
            The trained model

        Raises:
            NotFoundError: unknown model
            InvalidConfigurationError: no assets of the model's type
            InsufficientDataError: fewer points than min_data_points; the
                model is left untouched
        """
        days = historical_days or self.config.training_history_days
        now = self.clock()

        model = self.get(organization_id, model_id)
        assets = self.assets.list_assets_by_type(organization_id, model.asset_type)
        if not assets:
            raise InvalidConfigurationError(f"No assets found for type: {model.asset_type}",
                                            {'asset_type': model.asset_type})

        values = self.readings.sensor_values_for_assets(
            organization_id, [a.id for a in assets], now - timedelta(days=days)
        )
        minimum = int((model.parameters or {}).get('min_data_points') or DEFAULT_MIN_DATA_POINTS)
        if len(values) < minimum:
            raise InsufficientDataError(
                f"Insufficient training data. Found {len(values)} points, need at least {minimum}",
                minimum_required=minimum, found=len(values)
            )

        self._set_status(model_id, ModelStatus.TRAINING)
        try:
            stats = calculate_statistics(values)
            parameters = dict(model.parameters or {})
            if ModelType(model.model_type) is ModelType.ANOMALY_DETECTION:
                parameters['zscore_threshold'] = adaptive_zscore_threshold(stats)

            with self.db.get_session() as session:
                accuracy = self._resolved_accuracy(session, organization_id)
                model = self._get(session, organization_id, model_id)
                model.training_stats = {
                    key: value for key, value in stats.to_dict().items() if key not in ('iqr', 'count')
                }
                model.training_data_points = len(values)
                model.last_trained_at = now
                model.parameters = parameters
                if accuracy is not None:
                    model.accuracy, model.correct_predictions, model.total_predictions = accuracy
                model.status = ModelStatus.ACTIVE.value
        except Exception:
            logger.exception(f"Training of model {model_id} failed")
            self._set_status(model_id, ModelStatus.FAILED)
            raise

        logger.info(f"Trained model {model.name} on {len(values)} points")
        return model

    def record_outcome(self, session, model_id: str, was_accurate: bool):
        """Accuracy bookkeeping when a linked prediction is resolved"""
        model = session.get(PredictionModel, model_id)
        if model is None:
            return
        model.total_predictions = (model.total_predictions or 0) + 1
        model.correct_predictions = (model.correct_predictions or 0) + (1 if was_accurate else 0)
        model.accuracy = model.correct_predictions / model.total_predictions * 100

    @staticmethod
    def _resolved_accuracy(session, organization_id: str) -> Optional[tuple]:
        """(accuracy %, accurate, resolved) over rated resolved predictions"""
        rated = session.query(Prediction.was_accurate).filter(
            Prediction.organization_id == organization_id,
            Prediction.status == PredictionStatus.RESOLVED.value,
            Prediction.was_accurate.isnot(None)
        ).all()
        if not rated:
            return None
        accurate = sum(1 for row in rated if row[0])
        return accurate / len(rated) * 100, accurate, len(rated)

    def _set_status(self, model_id: str, status: ModelStatus):
        with self.db.get_session() as session:
            model = session.get(PredictionModel, model_id)
            if model is not None:
                model.status = status.value

    @staticmethod
    def _get(session, organization_id: str, model_id: str) -> PredictionModel:
        model = session.query(PredictionModel).filter(
            PredictionModel.id == model_id,
            PredictionModel.organization_id == organization_id
        ).first()
        if model is None:
            raise NotFoundError('Model', model_id)
        return model
