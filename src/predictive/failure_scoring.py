"""
Failure scoring heuristics.

Weighted factor blend for failure probability, the data-volume confidence
composite, Weibull remaining-life assessment, and the tier/cost tables shared
by every prediction kind.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from src.analytics.statistics import (
    Severity, double_exponential_smoothing, weibull_estimate
)
from src.database.enums import RiskLevel


@dataclass(frozen=True)
class FailureScoringWeights:
    """Caps, weights and reference values of the failure-probability factors"""
    anomaly_weight: float = 30
    anomaly_rate_multiplier: float = 3
    anomaly_rate_reference: float = 10
    maintenance_weight: float = 25
    maintenance_interval_days: float = 90
    maintenance_slope: float = 15
    never_maintained_days: int = 365
    work_order_weight: float = 20
    work_order_step: float = 4
    work_order_reference: int = 3
    work_order_window_days: int = 90
    criticality_weight: float = 15
    criticality_step: float = 3
    default_criticality: int = 3
    trend_weight: float = 10
    trend_min_points: int = 10
    strong_trend: float = 0.05


@dataclass(frozen=True)
class ConfidenceWeights:
    """Data-volume composite for failure-prediction confidence"""
    sensor_cap: float = 40
    sensor_full_count: int = 100
    sensor_step: float = 0.4
    work_order_cap: float = 30
    work_order_full_count: int = 5
    work_order_step: float = 6
    baseline: float = 25
    ceiling: float = 95


@dataclass(frozen=True)
class RiskThresholds:
    critical: float = 75
    high: float = 50
    medium: float = 25


DEFAULT_WEIGHTS = FailureScoringWeights()
DEFAULT_CONFIDENCE = ConfidenceWeights()
PROBABILITY_TIERS = RiskThresholds()
REMAINING_LIFE_TIERS_DAYS = RiskThresholds(critical=30, high=90, medium=180)

REPAIR_COST_BY_TIER = {
    'critical': 5000.0,
    'high': 2500.0,
    'medium': 1000.0,
    'low': 250.0,
}
DEFAULT_REPAIR_COST = 500.0
DEFAULT_REPLACEMENT_COST = 10000.0

FAILURE_ACTIONS = {
    RiskLevel.CRITICAL: 'Schedule emergency maintenance immediately. High failure probability detected.',
    RiskLevel.HIGH: 'Plan maintenance within the next 7 days. Significant failure indicators present.',
    RiskLevel.MEDIUM: 'Include in next preventive maintenance cycle. Monitor trends closely.',
    RiskLevel.LOW: 'Continue regular monitoring. No immediate action required.',
}

SENSOR_ACTIONS = {
    'critical': {
        'temperature': 'Immediate shutdown and inspection required. Check cooling system and thermal overload protection.',
        'vibration': 'Stop equipment immediately. Inspect bearings, alignment, and mounting.',
        'pressure': 'Emergency pressure relief required. Check for blockages and valve functionality.',
        'current': 'Disconnect and inspect electrical connections. Check for short circuits.',
        'default': 'Stop operation and perform immediate inspection.',
    },
    'high': {
        'temperature': 'Schedule urgent maintenance. Monitor continuously and reduce load if possible.',
        'vibration': 'Schedule bearing inspection within 48 hours. Reduce operating speed.',
        'pressure': 'Check pressure relief valves and seals. Monitor closely.',
        'current': 'Check electrical load and connections. Consider load reduction.',
        'default': 'Schedule maintenance within 48 hours.',
    },
    'medium': {
        'temperature': 'Schedule inspection during next maintenance window. Check cooling efficiency.',
        'vibration': 'Add to next preventive maintenance cycle. Monitor trend.',
        'pressure': 'Verify calibration and check for minor leaks.',
        'current': 'Review electrical load distribution.',
        'default': 'Include in next scheduled maintenance.',
    },
    'low': {
        'default': 'Continue monitoring. No immediate action required.',
    },
}


@dataclass
class Factor:
    """One contributing factor of a prediction"""
    name: str
    contribution: float
    value: float
    threshold: Optional[float] = None
    unit: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'name': self.name, 'contribution': self.contribution, 'value': self.value}
        for key in ('threshold', 'unit', 'description'):
            if getattr(self, key) is not None:
                data[key] = getattr(self, key)
        return data


@dataclass
class FailureAssessment:
    probability: float
    confidence: float
    risk_level: RiskLevel
    predicted_date: datetime
    factors: List[Factor] = field(default_factory=list)
    recommended_action: str = ''
    estimated_cost: float = 0.0
    potential_savings: float = 0.0


@dataclass
class RemainingLifeAssessment:
    remaining_days: int
    survival_probability: float
    hazard_rate: float
    probability: float
    confidence: float
    risk_level: RiskLevel
    predicted_date: datetime
    factors: List[Factor] = field(default_factory=list)
    recommended_action: str = ''
    estimated_cost: float = DEFAULT_REPLACEMENT_COST


def risk_tier(probability: float, tiers: RiskThresholds = PROBABILITY_TIERS) -> RiskLevel:
    if probability >= tiers.critical:
        return RiskLevel.CRITICAL
    if probability >= tiers.high:
        return RiskLevel.HIGH
    if probability >= tiers.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def remaining_life_tier(remaining_days: int,
                        tiers: RiskThresholds = REMAINING_LIFE_TIERS_DAYS) -> RiskLevel:
    """Fewer remaining days means higher risk"""
    if remaining_days < tiers.critical:
        return RiskLevel.CRITICAL
    if remaining_days < tiers.high:
        return RiskLevel.HIGH
    if remaining_days < tiers.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def severity_to_risk(severity: Severity) -> RiskLevel:
    return {
        Severity.CRITICAL: RiskLevel.CRITICAL,
        Severity.HIGH: RiskLevel.HIGH,
        Severity.MEDIUM: RiskLevel.MEDIUM,
    }.get(severity, RiskLevel.LOW)


def repair_cost(tier: str) -> float:
    return REPAIR_COST_BY_TIER.get(tier, DEFAULT_REPAIR_COST)


def sensor_action(severity: str, sensor_kind: str) -> str:
    by_kind = SENSOR_ACTIONS.get(severity) or SENSOR_ACTIONS['low']
    return by_kind.get(sensor_kind) or by_kind.get('default') or SENSOR_ACTIONS['low']['default']


def failure_confidence(sensor_count: int, work_order_count: int,
                       weights: ConfidenceWeights = DEFAULT_CONFIDENCE) -> float:
    """Confidence from data volume, independent of the probability itself"""
    sensor_part = weights.sensor_cap if sensor_count >= weights.sensor_full_count \
        else sensor_count * weights.sensor_step
    wo_part = weights.work_order_cap if work_order_count >= weights.work_order_full_count \
        else work_order_count * weights.work_order_step
    return min(weights.ceiling, sensor_part + wo_part + weights.baseline)


def score_failure_probability(now: datetime,
                              readings: Sequence[Dict[str, Any]],
                              work_order_dates: Sequence[datetime],
                              last_maintenance_date: Optional[datetime] = None,
                              criticality: Optional[int] = None,
                              weights: FailureScoringWeights = DEFAULT_WEIGHTS,
                              alpha: float = 0.3,
                              beta: float = 0.1) -> FailureAssessment:
    """Blend the failure factors into a probability

    The probability is the sum of contributions divided by the sum of the
    weights actually used, so the optional trend factor changes the
    denominator when it is present.

    Args:
        now: Evaluation time
        readings: Recent sensor readings, chronological, each with
            'value' and 'is_anomaly'
        work_order_dates: Creation dates of the asset's recent work orders
        last_maintenance_date: Last completed maintenance, if any
        criticality: Asset criticality 1-5
        weights: Factor caps and weights
        alpha: Smoothing level constant for the trend factor
        beta: Smoothing trend constant for the trend factor

    Returns:
        FailureAssessment
    """
    factors: List[Factor] = []
    total = 0.0
    weight_sum = 0.0

    # Anomaly frequency
    anomaly_count = sum(1 for r in readings if r.get('is_anomaly'))
    anomaly_rate = (anomaly_count / len(readings)) * 100 if readings else 0.0
    contribution = min(weights.anomaly_weight, anomaly_rate * weights.anomaly_rate_multiplier)
    factors.append(Factor(
        name='Anomaly Frequency', contribution=contribution, value=anomaly_rate,
        threshold=weights.anomaly_rate_reference, unit='%',
        description=f"{anomaly_count} anomalies detected in {len(readings)} readings"
    ))
    total += contribution
    weight_sum += weights.anomaly_weight

    # Days since maintenance
    if last_maintenance_date is not None:
        days_since = max(0, (now - last_maintenance_date).days)
    else:
        days_since = weights.never_maintained_days
    contribution = min(weights.maintenance_weight,
                       days_since / weights.maintenance_interval_days * weights.maintenance_slope)
    factors.append(Factor(
        name='Days Since Maintenance', contribution=contribution, value=days_since,
        threshold=weights.maintenance_interval_days, unit='days',
        description=f"Last maintained {days_since} days ago"
    ))
    total += contribution
    weight_sum += weights.maintenance_weight

    # Recent work orders
    window_start = now - timedelta(days=weights.work_order_window_days)
    recent = sum(1 for created in work_order_dates if created > window_start)
    contribution = min(weights.work_order_weight, recent * weights.work_order_step)
    factors.append(Factor(
        name='Recent Work Orders', contribution=contribution, value=recent,
        threshold=weights.work_order_reference,
        description=f"{recent} work orders in last {weights.work_order_window_days} days"
    ))
    total += contribution
    weight_sum += weights.work_order_weight

    # Criticality
    level = criticality or weights.default_criticality
    contribution = level * weights.criticality_step
    factors.append(Factor(
        name='Asset Criticality', contribution=contribution, value=level, threshold=5,
        description=f"Criticality level: {level}/5"
    ))
    total += contribution
    weight_sum += weights.criticality_weight

    # Trend, only with enough history
    if len(readings) >= weights.trend_min_points:
        smoothed = double_exponential_smoothing([float(r['value']) for r in readings], alpha, beta)
        if smoothed.trend > weights.strong_trend:
            contribution, description = weights.trend_weight, 'Strong upward trend detected'
        elif smoothed.trend > 0:
            contribution, description = weights.trend_weight / 2, 'Slight upward trend'
        else:
            contribution, description = 0.0, 'Stable or decreasing trend'
        factors.append(Factor(
            name='Trend Direction', contribution=contribution, value=smoothed.trend,
            description=description
        ))
        total += contribution
        weight_sum += weights.trend_weight

    probability = max(0.0, min(100.0, total / weight_sum * 100))
    confidence = failure_confidence(len(readings), len(work_order_dates))
    days_until = max(1, int(round(100 / (probability or 1) * 30)))
    tier = risk_tier(probability)

    return FailureAssessment(
        probability=probability,
        confidence=confidence,
        risk_level=tier,
        predicted_date=now + timedelta(days=days_until),
        factors=factors,
        recommended_action=FAILURE_ACTIONS[tier],
        estimated_cost=repair_cost(tier.value),
        potential_savings=repair_cost('critical') * probability / 100
    )


def assess_remaining_life(now: datetime,
                          installed_date: Optional[datetime],
                          created_at: datetime,
                          useful_life_years: Optional[float],
                          maintenance_count: int = 0,
                          replacement_cost: Optional[float] = None,
                          model_parameters: Optional[Dict[str, Any]] = None,
                          default_shape: float = 2.5,
                          default_useful_life_years: float = 10.0) -> RemainingLifeAssessment:
    """Weibull remaining-life estimate for one asset

    Shape and scale come from an active remaining-life model when one is
    supplied, else from the default shape and the asset's useful life.
    """
    start = installed_date or created_at
    age_days = max(0, (now - start).days)

    params = model_parameters or {}
    shape = float(params.get('shape') or default_shape)
    scale = float(params.get('scale') or (useful_life_years or default_useful_life_years) * 365)

    estimate = weibull_estimate(age_days, shape, scale)
    remaining = estimate.remaining_life

    factors = [
        Factor('Current Age', 40, age_days,
               description=f"Asset has been operational for {age_days} days"),
        Factor('Survival Probability', 30, estimate.survival_probability * 100,
               description=f"{estimate.survival_probability * 100:.1f}% probability of continued operation"),
        Factor('Hazard Rate', 20, estimate.hazard_rate * 1000,
               description=f"Current failure hazard rate: {estimate.hazard_rate * 1000:.4f}/1000 days"),
        Factor('Maintenance History', 10, maintenance_count,
               description=f"{maintenance_count} maintenance events recorded"),
    ]

    confidence = min(90, (30 if installed_date else 10)
                     + (20 if useful_life_years else 5)
                     + (30 if model_parameters else 15)
                     + (15 if maintenance_count > 0 else 5))

    tier = remaining_life_tier(remaining)

    if remaining < REMAINING_LIFE_TIERS_DAYS.critical:
        action = 'Plan for asset replacement within the next month'
    elif remaining < REMAINING_LIFE_TIERS_DAYS.high:
        action = 'Begin procurement process for replacement parts or equipment'
    else:
        action = 'Continue regular maintenance and monitoring'

    return RemainingLifeAssessment(
        remaining_days=remaining,
        survival_probability=estimate.survival_probability * 100,
        hazard_rate=estimate.hazard_rate,
        probability=(1 - estimate.survival_probability) * 100,
        confidence=confidence,
        risk_level=tier,
        predicted_date=now + timedelta(days=remaining),
        factors=factors,
        recommended_action=action,
        estimated_cost=float(replacement_cost) if replacement_cost else DEFAULT_REPLACEMENT_COST
    )
