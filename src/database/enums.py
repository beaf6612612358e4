"""
Persisted vocabularies. Columns store the enum values as strings.
"""

from enum import Enum


class TriggerKind(Enum):
    TIME_BASED = "time_based"
    METER_BASED = "meter_based"
    CONDITION_BASED = "condition_based"
    HYBRID = "hybrid"

    @property
    def uses_time(self) -> bool:
        return self in (TriggerKind.TIME_BASED, TriggerKind.HYBRID)

    @property
    def uses_meter(self) -> bool:
        return self in (TriggerKind.METER_BASED, TriggerKind.HYBRID)

    @property
    def uses_conditions(self) -> bool:
        return self in (TriggerKind.CONDITION_BASED, TriggerKind.HYBRID)


class FrequencyUnit(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    YEARLY = "yearly"
    CUSTOM = "custom"


class MeterKind(Enum):
    RUNTIME_HOURS = "runtime_hours"
    CYCLES = "cycles"
    PRODUCTION_COUNT = "production_count"
    MILEAGE = "mileage"
    ENERGY_KWH = "energy_kwh"
    FUEL_CONSUMPTION = "fuel_consumption"
    TEMPERATURE = "temperature"
    PRESSURE = "pressure"
    VIBRATION = "vibration"
    CUSTOM = "custom"


class SensorKind(Enum):
    TEMPERATURE = "temperature"
    VIBRATION = "vibration"
    PRESSURE = "pressure"
    CURRENT = "current"
    VOLTAGE = "voltage"
    HUMIDITY = "humidity"
    FLOW_RATE = "flow_rate"
    RPM = "rpm"
    POWER = "power"
    OIL_LEVEL = "oil_level"
    OIL_QUALITY = "oil_quality"
    NOISE_LEVEL = "noise_level"
    CUSTOM = "custom"


class ExecutionStatus(Enum):
    GENERATED = "generated"
    COMPLETED = "completed"
    COMPLETED_LATE = "completed_late"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.GENERATED


class TriggerReason(Enum):
    TIME_DUE = "time_due"
    METER_TRIGGER = "meter_trigger"
    CONDITION_TRIGGER = "condition_trigger"
    MANUAL = "manual"
    PREDICTION = "prediction"


class WorkOrderPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(WorkOrderPriority).index(self)


class WorkOrderType(Enum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    PREDICTIVE = "predictive"


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PredictionKind(Enum):
    ANOMALY = "anomaly"
    FAILURE = "failure"
    REMAINING_LIFE = "remaining_life"


class PredictionStatus(Enum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    DISMISSED = "dismissed"
    FALSE_POSITIVE = "false_positive"
    WORK_ORDER_CREATED = "work_order_created"
    RESOLVED = "resolved"


class ModelType(Enum):
    ANOMALY_DETECTION = "anomaly_detection"
    FAILURE_PREDICTION = "failure_prediction"
    REMAINING_LIFE = "remaining_life"


class ModelStatus(Enum):
    TRAINING = "training"
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"
