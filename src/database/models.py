"""
Database models for schedules, executions, readings, predictions and models.
Every table carries an organization scope column.
"""

from datetime import date, datetime
from typing import Any, Dict

from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime, Date, JSON, Text, Index
)
from sqlalchemy.orm import declarative_base

from src.database.enums import (
    ExecutionStatus, ModelStatus, PredictionStatus, WorkOrderPriority
)
from src.utils.helpers import new_id, utc_now

Base = declarative_base()

# Pure meter/condition schedules park their time rule here
FAR_FUTURE_DATE = date(2999, 12, 31)


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class SerializableMixin:
    """to_dict over the mapped columns"""

    def to_dict(self) -> Dict[str, Any]:
        return {
            attr.key: _serialize(getattr(self, attr.key))
            for attr in self.__mapper__.column_attrs
        }


class Asset(Base, SerializableMixin):
    """Asset directory table"""
    __tablename__ = 'assets'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    asset_type = Column(String(100), index=True)
    criticality = Column(Integer)  # 1-5
    installed_date = Column(DateTime)
    purchase_date = Column(DateTime)
    useful_life_years = Column(Float)
    replacement_cost = Column(Float)
    last_maintenance_date = Column(DateTime)
    total_maintenance_count = Column(Integer, default=0)
    current_meter_readings = Column(JSON, default=dict)  # meter kind -> value
    created_at = Column(DateTime, default=utc_now)


class WorkOrder(Base, SerializableMixin):
    """Work orders created through the work-order service"""
    __tablename__ = 'work_orders'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    wo_number = Column(String(32), nullable=False)
    title = Column(String(300), nullable=False)
    description = Column(Text)
    wo_type = Column(String(20), nullable=False)
    priority = Column(String(20), nullable=False)
    status = Column(String(20), default='open')
    asset_id = Column(String(32), index=True)
    assigned_to_id = Column(String(64))
    scheduled_date = Column(DateTime)
    due_date = Column(DateTime)
    checklist = Column(JSON, default=list)
    estimated_hours = Column(Float)
    estimated_cost = Column(Float)
    source_kind = Column(String(20))  # pm_schedule | prediction
    source_id = Column(String(32))
    created_by_id = Column(String(64))
    created_at = Column(DateTime, default=utc_now)


class Schedule(Base, SerializableMixin):
    """Preventive maintenance schedule"""
    __tablename__ = 'pm_schedules'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    asset_id = Column(String(32), nullable=False, index=True)
    trigger_kind = Column(String(20), nullable=False)

    # Time rule
    frequency_unit = Column(String(20))
    frequency_value = Column(Integer, default=1)
    custom_days_interval = Column(Integer)
    start_date = Column(Date)
    lead_days = Column(Integer, default=0)
    overdue_days_threshold = Column(Integer, default=7)
    next_due_date = Column(Date, index=True)
    last_completed_date = Column(DateTime)

    # Meter rule
    meter_kind = Column(String(30))
    meter_interval = Column(Float)
    last_meter_reading = Column(Float)
    next_meter_due = Column(Float)

    # Condition rules: [{sensor_kind, operator, threshold, unit}]
    condition_rules = Column(JSON, default=list)

    checklist = Column(JSON, default=list)  # [{item, mandatory, order}]
    priority = Column(String(20), default=WorkOrderPriority.MEDIUM.value)
    estimated_hours = Column(Float)
    assigned_to_id = Column(String(64))
    is_active = Column(Boolean, default=True, index=True)
    completed_count = Column(Integer, default=0)
    missed_count = Column(Integer, default=0)
    # Bumped by every firing; generation claims a firing with a conditional update on it
    firing_version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('idx_pm_schedule_active_kind', 'is_active', 'trigger_kind'),
    )


class ExecutionRecord(Base, SerializableMixin):
    """One firing of a schedule or a prediction"""
    __tablename__ = 'pm_executions'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    schedule_id = Column(String(32), index=True)  # null for prediction-driven work
    prediction_id = Column(String(32), index=True)
    work_order_id = Column(String(32))
    trigger_reason = Column(String(20), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    status = Column(String(20), default=ExecutionStatus.GENERATED.value, nullable=False)
    days_overdue = Column(Integer, default=0)
    overdue_days_threshold = Column(Integer, default=7)
    meter_reading_at_execution = Column(Float)
    notes = Column(Text)
    details = Column('metadata', JSON, default=dict)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index('idx_pm_execution_schedule_reason', 'schedule_id', 'trigger_reason', 'created_at'),
        Index('idx_pm_execution_status', 'status', 'scheduled_at'),
    )


class MeterReading(Base, SerializableMixin):
    """Cumulative meter values per asset and meter kind"""
    __tablename__ = 'meter_readings'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    asset_id = Column(String(32), nullable=False)
    meter_kind = Column(String(30), nullable=False)
    value = Column(Float, nullable=False)
    previous_value = Column(Float)
    usage_since_last = Column(Float)
    recorded_at = Column(DateTime, nullable=False, default=utc_now)
    recorded_by_id = Column(String(64))
    source = Column(String(30), default='manual')
    notes = Column(Text)

    __table_args__ = (
        Index('idx_meter_asset_kind_time', 'asset_id', 'meter_kind', 'recorded_at'),
    )


class SensorReading(Base, SerializableMixin):
    """Sensor values with the anomaly verdict computed at ingest"""
    __tablename__ = 'sensor_readings'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    asset_id = Column(String(32), nullable=False)
    sensor_kind = Column(String(30), nullable=False)
    sensor_id = Column(String(64))
    sensor_name = Column(String(200))
    value = Column(Float, nullable=False)
    unit = Column(String(20))
    timestamp = Column(DateTime, nullable=False, default=utc_now)
    min_expected = Column(Float)
    max_expected = Column(Float)
    is_anomaly = Column(Boolean, default=False)
    is_out_of_range = Column(Boolean, default=False)
    z_score = Column(Float)
    details = Column('metadata', JSON, default=dict)

    __table_args__ = (
        Index('idx_sensor_asset_kind_time', 'asset_id', 'sensor_kind', 'timestamp'),
    )


class Prediction(Base, SerializableMixin):
    """Health signal for one asset"""
    __tablename__ = 'asset_predictions'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    asset_id = Column(String(32), nullable=False, index=True)
    model_id = Column(String(32))
    sensor_reading_id = Column(String(32))
    prediction_kind = Column(String(20), nullable=False)
    narrative = Column(Text, nullable=False)
    probability = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    risk_level = Column(String(20), nullable=False)
    status = Column(String(20), default=PredictionStatus.NEW.value, nullable=False)
    predicted_date = Column(DateTime)
    remaining_life_days = Column(Integer)
    factors = Column(JSON, default=list)
    recommended_action = Column(Text)
    estimated_cost = Column(Float)
    potential_savings = Column(Float)
    acknowledged_at = Column(DateTime)
    acknowledged_by = Column(String(64))
    resolved_at = Column(DateTime)
    resolved_by = Column(String(64))
    resolution_notes = Column(Text)
    was_accurate = Column(Boolean)
    actual_failure_date = Column(DateTime)
    work_order_id = Column(String(32))
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('idx_prediction_org_status', 'organization_id', 'status', 'risk_level'),
    )


class PredictionModel(Base, SerializableMixin):
    """Named parameter bag per asset type"""
    __tablename__ = 'prediction_models'

    id = Column(String(32), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    asset_type = Column(String(100), index=True)
    model_type = Column(String(30), nullable=False)
    status = Column(String(20), default=ModelStatus.INACTIVE.value)
    parameters = Column(JSON, default=dict)
    training_stats = Column(JSON)
    training_data_points = Column(Integer, default=0)
    accuracy = Column(Float, default=0.0)
    total_predictions = Column(Integer, default=0)
    correct_predictions = Column(Integer, default=0)
    last_trained_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)
