"""
Statistical Toolkit Module
Pure numeric helpers for sensor health: descriptive statistics, z-score and
IQR outlier tests, Holt double exponential smoothing, and Weibull survival
estimation. No state, no I/O.
"""

import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.utils.exceptions import InsufficientDataError


class Severity(Enum):
    """Outlier severity"""
    NORMAL = "normal"
    APPROACHING = "approaching"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_anomaly(self) -> bool:
        return self in (Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)


class TrendDirection(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class ZScoreBands:
    """Multiples of the z threshold T at which each severity starts"""
    critical: float = 2.0
    high: float = 1.5
    medium: float = 1.0
    approaching: float = 0.75


@dataclass(frozen=True)
class IQRBands:
    """IQR multiples beyond the quartiles at which severity escalates"""
    high: float = 2.0
    critical: float = 3.0


ZSCORE_BANDS = ZScoreBands()
IQR_BANDS = IQRBands()

DEFAULT_ZSCORE_THRESHOLD = 3.0
DEFAULT_IQR_MULTIPLIER = 1.5
DEFAULT_ALPHA = 0.3
DEFAULT_BETA = 0.1
DEFAULT_FORECAST_PERIODS = 30
DEFAULT_STABLE_BAND = 0.01

# A constant baseline needs this many points before a departure from it counts
MIN_CONSTANT_BASELINE_POINTS = 5

# Raw Weibull defaults; asset scoring supplies its own shape and scale
DEFAULT_WEIBULL_SHAPE = 2.0
DEFAULT_WEIBULL_SCALE = 1000.0
REMAINING_LIFE_SEARCH_FACTOR = 5.0


@dataclass
class StatisticalSummary:
    """Descriptive statistics of a value series"""
    mean: float
    std_dev: float
    min: float
    max: float
    q1: float
    q2: float
    q3: float
    iqr: float
    count: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class AnomalyResult:
    """Verdict of a single outlier test"""
    is_anomaly: bool
    z_score: float
    severity: Severity
    message: str
    method: str = "zscore"
    constant_baseline: bool = False

    def to_dict(self) -> Dict:
        return {
            'is_anomaly': self.is_anomaly,
            'z_score': self.z_score,
            'severity': self.severity.value,
            'message': self.message,
            'method': self.method,
            'constant_baseline': self.constant_baseline
        }


@dataclass
class SmoothingResult:
    """Holt smoothing output"""
    level: float
    trend: float
    forecast: List[float] = field(default_factory=list)

    def forecast_at(self, horizon: int) -> float:
        return self.level + horizon * self.trend


@dataclass
class WeibullEstimate:
    """Survival, hazard and median remaining life at a given age"""
    survival_probability: float
    hazard_rate: float
    remaining_life: int


def calculate_statistics(values: Sequence[float]) -> StatisticalSummary:
    """Descriptive statistics with population standard deviation

    Quartiles are taken from the ascending sort at index floor(n * p).

    Args:
        values: Numeric series

    Returns:
        StatisticalSummary

    Raises:
        InsufficientDataError: if the series is empty
    """
    data = np.asarray(values, dtype=float)
    n = int(data.size)
    if n == 0:
        raise InsufficientDataError("Cannot compute statistics of an empty series",
                                    minimum_required=1, found=0)

    ordered = np.sort(data)
    q1 = float(ordered[int(math.floor(n * 0.25))])
    q2 = float(ordered[int(math.floor(n * 0.5))])
    q3 = float(ordered[int(math.floor(n * 0.75))])

    return StatisticalSummary(
        mean=float(np.mean(data)),
        std_dev=float(np.std(data)),  # ddof=0
        min=float(ordered[0]),
        max=float(ordered[-1]),
        q1=q1,
        q2=q2,
        q3=q3,
        iqr=q3 - q1,
        count=n
    )


def z_score(value: float, mean: float, std_dev: float) -> float:
    if std_dev == 0:
        return 0.0
    return (value - mean) / std_dev


def detect_anomaly_zscore(value: float, stats: StatisticalSummary,
                          threshold: float = DEFAULT_ZSCORE_THRESHOLD,
                          bands: ZScoreBands = ZSCORE_BANDS) -> AnomalyResult:
    """Classify a value by its distance from the baseline mean

    Args:
        value: Candidate value
        stats: Baseline statistics (the candidate is not part of it)
        threshold: z threshold T
        bands: Severity multiples of T

    Returns:
        AnomalyResult
    """
    z = z_score(value, stats.mean, stats.std_dev)
    abs_z = abs(z)

    if stats.std_dev == 0 and stats.count >= MIN_CONSTANT_BASELINE_POINTS and value != stats.mean:
        return AnomalyResult(
            is_anomaly=True,
            z_score=z,
            severity=Severity.CRITICAL,
            message=f"Critical anomaly: value departs from a constant baseline of {stats.mean:.2f}",
            constant_baseline=True
        )

    if abs_z >= threshold * bands.critical:
        severity = Severity.CRITICAL
        message = f"Critical anomaly: value is {abs_z:.2f} standard deviations from mean"
    elif abs_z >= threshold * bands.high:
        severity = Severity.HIGH
        message = f"High severity anomaly: value is {abs_z:.2f} standard deviations from mean"
    elif abs_z >= threshold * bands.medium:
        severity = Severity.MEDIUM
        message = f"Medium severity anomaly: value is {abs_z:.2f} standard deviations from mean"
    elif abs_z >= threshold * bands.approaching:
        severity = Severity.APPROACHING
        message = f"Value approaching anomaly threshold ({abs_z:.2f} std dev)"
    else:
        severity = Severity.NORMAL
        message = "Value within normal range"

    return AnomalyResult(is_anomaly=severity.is_anomaly, z_score=z, severity=severity, message=message)


def detect_anomaly_iqr(value: float, stats: StatisticalSummary,
                       multiplier: float = DEFAULT_IQR_MULTIPLIER,
                       bands: IQRBands = IQR_BANDS) -> AnomalyResult:
    """Classify a value against the quartile fences Q1 - k*IQR and Q3 + k*IQR"""
    lower = stats.q1 - multiplier * stats.iqr
    upper = stats.q3 + multiplier * stats.iqr
    z = z_score(value, stats.mean, stats.std_dev)

    if lower <= value <= upper:
        return AnomalyResult(False, z, Severity.NORMAL, "Value within interquartile range", method="iqr")

    if value < stats.q1 - bands.critical * stats.iqr or value > stats.q3 + bands.critical * stats.iqr:
        severity = Severity.CRITICAL
        message = f"Extreme outlier detected (beyond {bands.critical:g}x IQR)"
    elif value < stats.q1 - bands.high * stats.iqr or value > stats.q3 + bands.high * stats.iqr:
        severity = Severity.HIGH
        message = f"Significant outlier detected (beyond {bands.high:g}x IQR)"
    else:
        severity = Severity.MEDIUM
        message = f"Moderate outlier detected (beyond {multiplier:g}x IQR)"

    return AnomalyResult(True, z, severity, message, method="iqr")


def find_outliers(values: Sequence[float], method: str = "zscore",
                  threshold: Optional[float] = None) -> List[Tuple[int, AnomalyResult]]:
    """Test every point of a series against the rest of the series

    The z-score test uses a leave-one-out baseline so a point never dilutes
    its own deviation; the IQR test uses the quartiles of the full series.

    Returns:
        (index, result) pairs for the flagged points
    """
    data = [float(v) for v in values]
    if len(data) < 2:
        raise InsufficientDataError("Outlier search needs at least two points",
                                    minimum_required=2, found=len(data))

    flagged = []
    if method == "iqr":
        stats = calculate_statistics(data)
        k = DEFAULT_IQR_MULTIPLIER if threshold is None else threshold
        for i, value in enumerate(data):
            result = detect_anomaly_iqr(value, stats, k)
            if result.is_anomaly:
                flagged.append((i, result))
    elif method == "zscore":
        t = DEFAULT_ZSCORE_THRESHOLD if threshold is None else threshold
        for i, value in enumerate(data):
            baseline = calculate_statistics(data[:i] + data[i + 1:])
            result = detect_anomaly_zscore(value, baseline, t)
            if result.is_anomaly:
                flagged.append((i, result))
    else:
        raise ValueError(f"Unknown outlier method: {method}")

    return flagged


def double_exponential_smoothing(values: Sequence[float],
                                 alpha: float = DEFAULT_ALPHA,
                                 beta: float = DEFAULT_BETA,
                                 periods_ahead: int = DEFAULT_FORECAST_PERIODS) -> SmoothingResult:
    """Holt's linear smoothing

    level_0 = x_0, trend_0 = x_1 - x_0, then for each later point
    level = a*x + (1-a)*(level+trend), trend = b*(level-prev) + (1-b)*trend.

    Args:
        values: Series in chronological order
        alpha: Level smoothing constant
        beta: Trend smoothing constant
        periods_ahead: Forecast horizon

    Returns:
        SmoothingResult; series shorter than two points have no forecast
    """
    if len(values) < 2:
        return SmoothingResult(level=float(values[0]) if len(values) else 0.0, trend=0.0)

    level = float(values[0])
    trend = float(values[1]) - float(values[0])

    for x in values[1:]:
        prev_level = level
        level = alpha * float(x) + (1 - alpha) * (level + trend)
        trend = beta * (level - prev_level) + (1 - beta) * trend

    forecast = [level + h * trend for h in range(1, periods_ahead + 1)]
    return SmoothingResult(level=level, trend=trend, forecast=forecast)


def classify_trend(trend: float, stable_band: float = DEFAULT_STABLE_BAND) -> TrendDirection:
    if trend > stable_band:
        return TrendDirection.INCREASING
    if trend < -stable_band:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def adaptive_zscore_threshold(stats: StatisticalSummary) -> float:
    """Looser thresholds for noisier data, judged by coefficient of variation"""
    if stats.mean == 0:
        cv = math.inf if stats.std_dev > 0 else 0.0
    else:
        cv = stats.std_dev / abs(stats.mean)

    if cv > 0.5:
        return 4.0
    if cv > 0.25:
        return 3.0
    return 2.5


def _check_weibull(shape: float, scale: float):
    if shape <= 0 or scale <= 0:
        raise ValueError(f"Weibull shape and scale must be positive (shape={shape}, scale={scale})")


def weibull_survival(t: float, shape: float = DEFAULT_WEIBULL_SHAPE,
                     scale: float = DEFAULT_WEIBULL_SCALE) -> float:
    """S(t) = exp(-(t/scale)^shape)"""
    _check_weibull(shape, scale)
    if t <= 0:
        return 1.0
    return math.exp(-((t / scale) ** shape))


def weibull_hazard(t: float, shape: float = DEFAULT_WEIBULL_SHAPE,
                   scale: float = DEFAULT_WEIBULL_SCALE) -> float:
    """h(t) = (shape/scale) * (t/scale)^(shape-1)"""
    _check_weibull(shape, scale)
    if t <= 0:
        # Limit at zero age depends on the shape regime
        if shape < 1:
            return math.inf
        return shape / scale if shape == 1 else 0.0
    return (shape / scale) * ((t / scale) ** (shape - 1))


def weibull_remaining_life(age: float, shape: float = DEFAULT_WEIBULL_SHAPE,
                           scale: float = DEFAULT_WEIBULL_SCALE) -> int:
    """Median remaining life conditional on survival to `age`

    Binary search over [0, 5*scale] for the point where survival falls to
    half of S(age), stopping at one-day resolution.
    """
    target = 0.5 * weibull_survival(age, shape, scale)
    low, high = 0.0, REMAINING_LIFE_SEARCH_FACTOR * scale

    while high - low > 1:
        mid = (low + high) / 2
        if weibull_survival(age + mid, shape, scale) > target:
            low = mid
        else:
            high = mid

    return int(round((low + high) / 2))


def weibull_estimate(age: float, shape: float = DEFAULT_WEIBULL_SHAPE,
                     scale: float = DEFAULT_WEIBULL_SCALE) -> WeibullEstimate:
    return WeibullEstimate(
        survival_probability=weibull_survival(age, shape, scale),
        hazard_rate=weibull_hazard(age, shape, scale),
        remaining_life=weibull_remaining_life(age, shape, scale)
    )
