"""
Maintenance Engine REST API
Flask blueprint over schedules, executions, readings, predictions and models
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from src.utils.exceptions import InvalidConfigurationError, MaintenanceEngineError
from src.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

maintenance_api = Blueprint('maintenance_api', __name__)

ENGINE_KEY = 'maintenance_engine'


# =============================================================================
# Helpers
# =============================================================================

def _engine():
    return current_app.extensions[ENGINE_KEY]


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _org() -> str:
    organization_id = (request.headers.get('X-Organization-Id')
                       or request.args.get('organization_id')
                       or _body().get('organization_id'))
    if not organization_id:
        raise InvalidConfigurationError("Organization scope is required (X-Organization-Id header)")
    return organization_id


def _actor() -> Optional[str]:
    return request.headers.get('X-User-Id')


def _datetime(value: Any) -> Optional[datetime]:
    try:
        return parse_datetime(value)
    except ValueError as e:
        raise InvalidConfigurationError(str(e)) from e


def _int_arg(name: str, default: Optional[int] = None) -> Optional[int]:
    value = request.args.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError as e:
        raise InvalidConfigurationError(f"Query parameter {name} must be an integer") from e


def _bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes')


def _payload(value: Any) -> Any:
    """JSON-ready form of records, results and containers"""
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_payload(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _ok(data: Any, status: int = 200):
    return jsonify({'success': True, 'data': _payload(data)}), status


# =============================================================================
# Schedules
# =============================================================================

@maintenance_api.route('/schedules', methods=['POST'])
def create_schedule():
    return _ok(_engine().schedules.create(_org(), _body()), 201)


@maintenance_api.route('/schedules', methods=['GET'])
def list_schedules():
    schedules = _engine().schedules.list(
        _org(),
        asset_id=request.args.get('asset_id'),
        trigger_kind=request.args.get('trigger_kind'),
        is_active=_bool(request.args.get('is_active'))
    )
    return _ok(schedules)


@maintenance_api.route('/schedules/overdue', methods=['GET'])
def overdue_schedules():
    return _ok(_engine().schedules.list_overdue(_org()))


@maintenance_api.route('/schedules/upcoming', methods=['GET'])
def upcoming_schedules():
    return _ok(_engine().schedules.list_upcoming(_org(), _int_arg('days')))


@maintenance_api.route('/schedules/compliance', methods=['GET'])
def schedule_compliance():
    return _ok(_engine().schedules.compliance(_org(), request.args.get('schedule_id')))


@maintenance_api.route('/schedules/meter/approaching', methods=['GET'])
def approaching_meter_schedules():
    percentage = request.args.get('percentage', type=float)
    return _ok(_engine().schedules.approaching_meter(_org(), percentage))


@maintenance_api.route('/schedules/process/time', methods=['POST'])
def process_time_schedules():
    return _ok(_engine().processor.process_time_schedules(organization_id=_org()))


@maintenance_api.route('/schedules/process/meter', methods=['POST'])
def process_meter_schedules():
    return _ok(_engine().processor.process_meter_schedules(organization_id=_org()))


@maintenance_api.route('/schedules/process/condition', methods=['POST'])
def process_condition_schedules():
    return _ok(_engine().processor.process_condition_schedules(organization_id=_org()))


@maintenance_api.route('/schedules/<schedule_id>', methods=['GET'])
def get_schedule(schedule_id: str):
    return _ok(_engine().schedules.get(_org(), schedule_id))


@maintenance_api.route('/schedules/<schedule_id>', methods=['PUT', 'PATCH'])
def update_schedule(schedule_id: str):
    return _ok(_engine().schedules.update(_org(), schedule_id, _body()))


@maintenance_api.route('/schedules/<schedule_id>/deactivate', methods=['POST'])
def deactivate_schedule(schedule_id: str):
    return _ok(_engine().schedules.deactivate(_org(), schedule_id))


@maintenance_api.route('/schedules/<schedule_id>', methods=['DELETE'])
def delete_schedule(schedule_id: str):
    _engine().schedules.delete(_org(), schedule_id)
    return _ok({'id': schedule_id, 'deleted': True})


@maintenance_api.route('/schedules/<schedule_id>/executions', methods=['GET'])
def schedule_executions(schedule_id: str):
    return _ok(_engine().schedules.history(_org(), schedule_id, _int_arg('limit')))


@maintenance_api.route('/schedules/<schedule_id>/generate', methods=['POST'])
def generate_work_order(schedule_id: str):
    return _ok(_engine().schedules.generate_manual(_org(), schedule_id, _actor()), 201)


@maintenance_api.route('/executions/<execution_id>/complete', methods=['POST'])
def complete_execution(execution_id: str):
    body = _body()
    record = _engine().schedules.complete_execution(
        _org(), execution_id, _datetime(body.get('completed_at')), body.get('notes')
    )
    return _ok(record)


# =============================================================================
# Readings
# =============================================================================

@maintenance_api.route('/meter-readings', methods=['POST'])
def record_meter_reading():
    body = _body()
    for required in ('asset_id', 'meter_kind', 'value'):
        if body.get(required) is None:
            raise InvalidConfigurationError(f"Meter reading requires {required}")
    try:
        value = float(body['value'])
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"Meter value is not numeric: {body['value']!r}") from e

    result = _engine().processor.record_meter_reading(
        _org(), body['asset_id'], body['meter_kind'], value,
        recorded_at=_datetime(body.get('recorded_at')),
        recorded_by_id=_actor(),
        source=body.get('source', 'manual'),
        notes=body.get('notes')
    )
    return _ok(result, 201)


@maintenance_api.route('/sensors/data', methods=['POST'])
def ingest_sensor_reading():
    return _ok(_engine().detector.ingest(_org(), _body()), 201)


@maintenance_api.route('/sensors/data/bulk', methods=['POST'])
def ingest_sensor_readings():
    readings = _body().get('readings')
    if not isinstance(readings, list):
        raise InvalidConfigurationError("Bulk ingest requires a readings list")
    return _ok(_engine().detector.bulk_ingest(_org(), readings), 201)


@maintenance_api.route('/assets/<asset_id>/sensors', methods=['GET'])
def sensor_history(asset_id: str):
    readings = _engine().detector.sensor_history(
        _org(), asset_id,
        sensor_kind=request.args.get('sensor_kind'),
        start=_datetime(request.args.get('start')),
        end=_datetime(request.args.get('end')),
        limit=_int_arg('limit')
    )
    return _ok(readings)


# =============================================================================
# Asset analytics
# =============================================================================

@maintenance_api.route('/assets/<asset_id>/analyze', methods=['POST'])
def analyze_asset(asset_id: str):
    return _ok(_engine().detector.analyze_asset(_org(), asset_id))


@maintenance_api.route('/assets/<asset_id>/predict-failure', methods=['POST'])
def predict_failure(asset_id: str):
    return _ok(_engine().predictions.predict_failure(_org(), asset_id))


@maintenance_api.route('/assets/<asset_id>/remaining-life', methods=['POST'])
def remaining_life(asset_id: str):
    return _ok(_engine().predictions.remaining_life(_org(), asset_id))


@maintenance_api.route('/assets/<asset_id>/predictions', methods=['GET'])
def asset_predictions(asset_id: str):
    predictions = _engine().predictions.list_predictions(
        _org(), asset_id=asset_id,
        status=request.args.get('status'),
        kind=request.args.get('kind'),
        risk_level=request.args.get('risk_level'),
        limit=_int_arg('limit')
    )
    return _ok(predictions)


# =============================================================================
# Predictions
# =============================================================================

@maintenance_api.route('/predictions/anomalies', methods=['GET'])
def list_anomalies():
    anomalies = _engine().predictions.list_anomalies(
        _org(),
        start=_datetime(request.args.get('start')),
        end=_datetime(request.args.get('end')),
        asset_id=request.args.get('asset_id'),
        risk_level=request.args.get('risk_level'),
        limit=_int_arg('limit')
    )
    return _ok(anomalies)


@maintenance_api.route('/predictions/dashboard', methods=['GET'])
def dashboard():
    return _ok(_engine().predictions.dashboard(_org()))


@maintenance_api.route('/predictions/<prediction_id>/acknowledge', methods=['POST'])
def acknowledge_prediction(prediction_id: str):
    body = _body()
    return _ok(_engine().predictions.acknowledge(_org(), prediction_id, _actor(), body.get('notes')))


@maintenance_api.route('/predictions/<prediction_id>/dismiss', methods=['POST'])
def dismiss_prediction(prediction_id: str):
    body = _body()
    prediction = _engine().predictions.dismiss(
        _org(), prediction_id, _actor(),
        false_positive=bool(_bool(body.get('false_positive'))),
        notes=body.get('notes')
    )
    return _ok(prediction)


@maintenance_api.route('/predictions/<prediction_id>/resolve', methods=['POST'])
def resolve_prediction(prediction_id: str):
    body = _body()
    prediction = _engine().predictions.resolve(
        _org(), prediction_id, _actor(),
        was_accurate=_bool(body.get('was_accurate')),
        actual_failure_date=_datetime(body.get('actual_failure_date')),
        notes=body.get('notes')
    )
    return _ok(prediction)


@maintenance_api.route('/predictions/<prediction_id>/work-order', methods=['POST'])
def prediction_work_order(prediction_id: str):
    body = _body()
    result = _engine().predictions.create_work_order(
        _org(), prediction_id, _actor(),
        title=body.get('title'),
        description=body.get('description'),
        assigned_to_id=body.get('assigned_to_id'),
        scheduled_date=_datetime(body.get('scheduled_date'))
    )
    return _ok(result, 201)


# =============================================================================
# Models
# =============================================================================

@maintenance_api.route('/models', methods=['POST'])
def create_model():
    body = _body()
    if not body.get('name') or not body.get('model_type'):
        raise InvalidConfigurationError("Model requires name and model_type")
    model = _engine().models.create(
        _org(), body['name'], body['model_type'],
        asset_type=body.get('asset_type'),
        description=body.get('description'),
        parameters=body.get('parameters')
    )
    return _ok(model, 201)


@maintenance_api.route('/models', methods=['GET'])
def list_models():
    return _ok(_engine().models.list(_org(), request.args.get('asset_type')))


@maintenance_api.route('/models/<model_id>/train', methods=['POST'])
def train_model(model_id: str):
    days = _body().get('historical_days')
    return _ok(_engine().models.train(_org(), model_id, int(days) if days else None))


# =============================================================================
# Errors and registration
# =============================================================================

@maintenance_api.errorhandler(MaintenanceEngineError)
def engine_error(error: MaintenanceEngineError):
    log = logger.error if error.status_code >= 500 else logger.info
    log(f"{request.method} {request.path} -> {error.code}: {error.message}")
    return jsonify({'success': False, 'error': error.to_dict()}), error.status_code


def register_maintenance_api(app: Flask, engine, url_prefix: str = '/api/v1'):
    """Register the blueprint and attach the engine it serves"""
    app.extensions[ENGINE_KEY] = engine
    app.register_blueprint(maintenance_api, url_prefix=url_prefix)
    logger.info(f"Maintenance API registered under {url_prefix}")


def create_app(engine=None, url_prefix: Optional[str] = None) -> Flask:
    """Flask application serving the engine"""
    from config.settings import settings
    from src.engine import build_engine

    app = Flask(__name__)
    register_maintenance_api(app, engine or build_engine(),
                             url_prefix or settings.get('api.prefix', '/api/v1'))

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': {'code': 'NOT_FOUND',
                                                    'message': 'Endpoint not found', 'details': {}}}), 404

    return app
