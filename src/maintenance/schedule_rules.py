"""
Schedule rule definitions

Frequency arithmetic for the time rule, the closed set of condition
operators, and validation of schedule definitions per trigger kind.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from src.database.enums import FrequencyUnit, TriggerKind
from src.utils.exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CUSTOM_DAYS_INTERVAL = 30


class ComparisonOperator(Enum):
    """Condition rule operator"""
    GREATER_THAN = "gt"
    GREATER_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_OR_EQUAL = "lte"
    EQUAL = "eq"

    @classmethod
    def parse(cls, code: Any) -> 'ComparisonOperator':
        """Accept the stored codes and their symbolic spellings

        Raises:
            InvalidConfigurationError: for any other code
        """
        if isinstance(code, cls):
            return code
        normalized = str(code).strip().lower() if code is not None else ''
        operator = _OPERATOR_ALIASES.get(normalized)
        if operator is None:
            raise InvalidConfigurationError(
                f"Unknown condition operator: {code!r}",
                {'operator': code, 'allowed': sorted(_OPERATOR_ALIASES)}
            )
        return operator

    @property
    def symbol(self) -> str:
        return _OPERATOR_SYMBOLS[self]

    def evaluate(self, value: float, threshold: float) -> bool:
        if self is ComparisonOperator.GREATER_THAN:
            return value > threshold
        if self is ComparisonOperator.GREATER_OR_EQUAL:
            return value >= threshold
        if self is ComparisonOperator.LESS_THAN:
            return value < threshold
        if self is ComparisonOperator.LESS_OR_EQUAL:
            return value <= threshold
        return value == threshold


_OPERATOR_SYMBOLS = {
    ComparisonOperator.GREATER_THAN: '>',
    ComparisonOperator.GREATER_OR_EQUAL: '>=',
    ComparisonOperator.LESS_THAN: '<',
    ComparisonOperator.LESS_OR_EQUAL: '<=',
    ComparisonOperator.EQUAL: '=',
}

_OPERATOR_ALIASES = {op.value: op for op in ComparisonOperator}
_OPERATOR_ALIASES.update({
    '>': ComparisonOperator.GREATER_THAN,
    '>=': ComparisonOperator.GREATER_OR_EQUAL,
    '≥': ComparisonOperator.GREATER_OR_EQUAL,
    '<': ComparisonOperator.LESS_THAN,
    '<=': ComparisonOperator.LESS_OR_EQUAL,
    '≤': ComparisonOperator.LESS_OR_EQUAL,
    '=': ComparisonOperator.EQUAL,
    '==': ComparisonOperator.EQUAL,
})


@dataclass(frozen=True)
class ConditionRule:
    """One sensor condition of a condition or hybrid schedule"""
    sensor_kind: str
    operator: ComparisonOperator
    threshold: float
    unit: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConditionRule':
        sensor_kind = data.get('sensor_kind') or data.get('sensorType') or data.get('sensor_type')
        if not sensor_kind:
            raise InvalidConfigurationError("Condition rule requires a sensor kind", {'rule': data})
        if data.get('threshold') is None:
            raise InvalidConfigurationError("Condition rule requires a threshold", {'rule': data})
        try:
            threshold = float(data['threshold'])
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(
                f"Condition threshold is not numeric: {data['threshold']!r}", {'rule': data}
            ) from e
        return cls(
            sensor_kind=str(sensor_kind),
            operator=ComparisonOperator.parse(data.get('operator')),
            threshold=threshold,
            unit=data.get('unit')
        )

    def matches(self, value: float) -> bool:
        return self.operator.evaluate(value, self.threshold)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sensor_kind': self.sensor_kind,
            'operator': self.operator.value,
            'threshold': self.threshold,
            'unit': self.unit
        }


def parse_condition_rules(raw_rules: Optional[List[Dict[str, Any]]]) -> List[ConditionRule]:
    return [ConditionRule.from_dict(rule) for rule in (raw_rules or [])]


def parse_trigger_kind(value: Any) -> TriggerKind:
    try:
        return value if isinstance(value, TriggerKind) else TriggerKind(value)
    except ValueError as e:
        raise InvalidConfigurationError(f"Unknown trigger kind: {value!r}") from e


def parse_frequency_unit(value: Any) -> Optional[FrequencyUnit]:
    if value is None or isinstance(value, FrequencyUnit):
        return value
    try:
        return FrequencyUnit(value)
    except ValueError as e:
        raise InvalidConfigurationError(f"Unknown frequency unit: {value!r}") from e


def frequency_step(unit: Optional[FrequencyUnit], value: Optional[int] = None,
                   custom_days: Optional[int] = None) -> relativedelta:
    """Calendar step of one period

    Args:
        unit: Frequency unit; None falls back to one month
        value: Multiplier for daily/weekly/monthly/yearly (default 1)
        custom_days: Day interval for custom frequencies (default 30)

    Returns:
        relativedelta for the period
    """
    n = value or 1

    if unit is FrequencyUnit.DAILY:
        return relativedelta(days=n)
    if unit is FrequencyUnit.WEEKLY:
        return relativedelta(weeks=n)
    if unit is FrequencyUnit.BIWEEKLY:
        return relativedelta(weeks=2)
    if unit is FrequencyUnit.MONTHLY:
        return relativedelta(months=n)
    if unit is FrequencyUnit.QUARTERLY:
        return relativedelta(months=3)
    if unit is FrequencyUnit.SEMI_ANNUALLY:
        return relativedelta(months=6)
    if unit is FrequencyUnit.YEARLY:
        return relativedelta(years=n)
    if unit is FrequencyUnit.CUSTOM:
        return relativedelta(days=custom_days or DEFAULT_CUSTOM_DAYS_INTERVAL)
    return relativedelta(months=1)


def advance_due_date(base: date, unit: Optional[FrequencyUnit], value: Optional[int] = None,
                     custom_days: Optional[int] = None) -> date:
    """Advance a date by one period; month ends clamp (Jan 31 + 1 month = Feb 28/29)"""
    return base + frequency_step(unit, value, custom_days)


def validate_schedule_definition(data: Dict[str, Any]) -> List[ConditionRule]:
    """Reject definitions missing what their trigger kind needs

    Args:
        data: Schedule fields (trigger_kind, frequency_unit, meter_kind, ...)

    Returns:
        Parsed condition rules

    Raises:
        InvalidConfigurationError
    """
    kind = parse_trigger_kind(data.get('trigger_kind'))
    unit = parse_frequency_unit(data.get('frequency_unit'))

    if not data.get('asset_id'):
        raise InvalidConfigurationError("Schedule requires an asset")
    if not data.get('name'):
        raise InvalidConfigurationError("Schedule requires a name")

    if kind.uses_time:
        if unit is None:
            raise InvalidConfigurationError(
                f"{kind.value} schedule requires a frequency unit")
        if unit is FrequencyUnit.CUSTOM:
            interval = data.get('custom_days_interval')
            if interval is not None and int(interval) <= 0:
                raise InvalidConfigurationError("Custom day interval must be positive")
        if data.get('frequency_value') is not None and int(data['frequency_value']) <= 0:
            raise InvalidConfigurationError("Frequency multiplier must be positive")

    if kind is TriggerKind.METER_BASED or (kind is TriggerKind.HYBRID and data.get('meter_kind')):
        if not data.get('meter_kind'):
            raise InvalidConfigurationError(f"{kind.value} schedule requires a meter kind")
        interval = data.get('meter_interval')
        if interval is None or float(interval) <= 0:
            raise InvalidConfigurationError("Meter interval must be positive")

    rules = parse_condition_rules(data.get('condition_rules'))
    if kind is TriggerKind.CONDITION_BASED and not rules:
        raise InvalidConfigurationError("Condition-based schedule requires at least one condition rule")

    for threshold_field in ('lead_days', 'overdue_days_threshold'):
        if data.get(threshold_field) is not None and int(data[threshold_field]) < 0:
            raise InvalidConfigurationError(f"{threshold_field} must not be negative")

    return rules
