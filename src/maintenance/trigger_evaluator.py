"""
Trigger Evaluator Module
Decides whether a schedule is due now from its time rule, meter rule and
condition rules. Stateless: callers supply the clock and the latest readings.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from src.database.enums import TriggerKind, TriggerReason
from src.database.models import FAR_FUTURE_DATE
from src.maintenance.schedule_rules import (
    advance_due_date, parse_condition_rules, parse_frequency_unit, parse_trigger_kind
)
from src.utils.helpers import start_of_day

logger = logging.getLogger(__name__)


@dataclass
class MatchedCondition:
    """A condition rule that held against the latest reading"""
    sensor_kind: str
    current_value: float
    operator: str
    threshold: float
    unit: Optional[str] = None

    def describe(self) -> str:
        unit = f" {self.unit}" if self.unit else ""
        return f"{self.sensor_kind}: {self.current_value:g}{unit} {self.operator} {self.threshold:g}{unit}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sensor_kind': self.sensor_kind,
            'current_value': self.current_value,
            'operator': self.operator,
            'threshold': self.threshold,
            'unit': self.unit
        }


@dataclass
class Firing:
    """One reason a schedule is due"""
    reason: TriggerReason
    scheduled_at: datetime
    meter_value: Optional[float] = None
    conditions: List[MatchedCondition] = field(default_factory=list)

    def details(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'trigger_reason': self.reason.value}
        if self.meter_value is not None:
            data['meter_reading'] = self.meter_value
        if self.conditions:
            data['triggered_conditions'] = [c.to_dict() for c in self.conditions]
        return data


@dataclass
class TriggerDecision:
    """Every path that fired for one schedule at one instant"""
    schedule_id: str
    evaluated_at: datetime
    firings: List[Firing] = field(default_factory=list)

    @property
    def is_due(self) -> bool:
        return bool(self.firings)

    def firing(self, reason: TriggerReason) -> Optional[Firing]:
        for item in self.firings:
            if item.reason is reason:
                return item
        return None


def initial_next_due_date(trigger_kind: Any, frequency_unit: Any = None,
                          frequency_value: Optional[int] = None,
                          custom_days_interval: Optional[int] = None,
                          start_date: Optional[date] = None,
                          today: Optional[date] = None) -> date:
    """First due date of a schedule

    Time and hybrid schedules advance the start date (or today) by one
    period; pure meter and condition schedules park on the far-future date.
    """
    kind = parse_trigger_kind(trigger_kind)
    if not kind.uses_time:
        return FAR_FUTURE_DATE

    base = start_date or today or date.today()
    return advance_due_date(base, parse_frequency_unit(frequency_unit),
                            frequency_value, custom_days_interval)


def initial_next_meter_due(meter_interval: Optional[float],
                           last_meter_reading: Optional[float] = None,
                           current_meter_reading: Optional[float] = None) -> Optional[float]:
    """Next meter threshold from the last known reading (or 0)"""
    if not meter_interval:
        return None
    if last_meter_reading is not None:
        base = last_meter_reading
    elif current_meter_reading is not None:
        base = current_meter_reading
    else:
        base = 0.0
    return float(base) + float(meter_interval)


class TriggerEvaluator:
    """Evaluate the time, meter and condition paths of a schedule"""

    def evaluate(self, schedule, now: datetime,
                 latest_meter: Optional[float] = None,
                 latest_conditions: Optional[Mapping[str, Optional[float]]] = None,
                 paths: Optional[List[TriggerReason]] = None) -> TriggerDecision:
        """Evaluate a schedule

        Args:
            schedule: Schedule record
            now: Evaluation instant
            latest_meter: Newest reading of the schedule's meter kind
            latest_conditions: Newest reading per sensor kind named by its rules
            paths: Restrict evaluation to these reasons (default: all live paths)

        Returns:
            TriggerDecision listing every path that fired

        Raises:
            InvalidConfigurationError: on an unknown kind or operator
        """
        kind = parse_trigger_kind(schedule.trigger_kind)
        decision = TriggerDecision(schedule_id=schedule.id, evaluated_at=now)
        wanted = set(paths) if paths else None

        def live(reason: TriggerReason) -> bool:
            return wanted is None or reason in wanted

        if kind.uses_time and live(TriggerReason.TIME_DUE):
            firing = self.evaluate_time(schedule, now.date())
            if firing:
                decision.firings.append(firing)

        if kind.uses_meter and live(TriggerReason.METER_TRIGGER):
            firing = self.evaluate_meter(schedule, now, latest_meter)
            if firing:
                decision.firings.append(firing)

        if kind.uses_conditions and live(TriggerReason.CONDITION_TRIGGER):
            firing = self.evaluate_conditions(schedule, now, latest_conditions or {})
            if firing:
                decision.firings.append(firing)

        if decision.is_due:
            logger.debug(f"Schedule {schedule.id} due via "
                         f"{[f.reason.value for f in decision.firings]}")
        return decision

    def evaluate_time(self, schedule, today: date) -> Optional[Firing]:
        """Due when today >= next due date minus lead days"""
        next_due = schedule.next_due_date
        if next_due is None or next_due >= FAR_FUTURE_DATE:
            return None

        window_opens = next_due - timedelta(days=schedule.lead_days or 0)
        if today < window_opens:
            return None
        return Firing(reason=TriggerReason.TIME_DUE, scheduled_at=start_of_day(next_due))

    def evaluate_meter(self, schedule, now: datetime,
                       latest_meter: Optional[float]) -> Optional[Firing]:
        """Due when the latest reading reaches the next meter threshold"""
        if not schedule.meter_kind or schedule.next_meter_due is None or not schedule.meter_interval:
            return None
        if latest_meter is None or latest_meter < schedule.next_meter_due:
            return None
        return Firing(reason=TriggerReason.METER_TRIGGER, scheduled_at=now,
                      meter_value=float(latest_meter))

    def evaluate_conditions(self, schedule, now: datetime,
                            latest: Mapping[str, Optional[float]]) -> Optional[Firing]:
        """Due when any rule matches; every matching rule is reported"""
        matched = []
        for rule in parse_condition_rules(schedule.condition_rules):
            value = latest.get(rule.sensor_kind)
            if value is None:
                continue
            if rule.matches(value):
                matched.append(MatchedCondition(
                    sensor_kind=rule.sensor_kind,
                    current_value=float(value),
                    operator=rule.operator.symbol,
                    threshold=rule.threshold,
                    unit=rule.unit
                ))

        if not matched:
            return None
        return Firing(reason=TriggerReason.CONDITION_TRIGGER, scheduled_at=now, conditions=matched)

    @staticmethod
    def condition_kinds(schedule) -> List[str]:
        """Sensor kinds whose latest values the condition path needs"""
        kinds = []
        for rule in parse_condition_rules(schedule.condition_rules):
            if rule.sensor_kind not in kinds:
                kinds.append(rule.sensor_kind)
        return kinds

    @staticmethod
    def meter_progress(schedule, current_reading: float) -> Optional[float]:
        """Percentage of the meter interval consumed since the last firing"""
        if not schedule.meter_interval:
            return None
        if schedule.next_meter_due is not None:
            baseline = schedule.next_meter_due - schedule.meter_interval
        else:
            baseline = schedule.last_meter_reading or 0.0
        return (current_reading - baseline) / schedule.meter_interval * 100
