"""
Unit Tests for the Statistical Toolkit
Descriptive statistics, outlier tests, Holt smoothing and Weibull estimation
"""

import math
import unittest

import pytest

from src.analytics.statistics import (
    Severity, StatisticalSummary, TrendDirection, adaptive_zscore_threshold,
    calculate_statistics, classify_trend, detect_anomaly_iqr, detect_anomaly_zscore,
    double_exponential_smoothing, find_outliers, weibull_hazard, weibull_remaining_life,
    weibull_survival
)
from src.utils.exceptions import InsufficientDataError


def summary(mean=50.0, std_dev=5.0, q1=45.0, q3=55.0, count=30):
    return StatisticalSummary(mean=mean, std_dev=std_dev, min=mean - 3 * std_dev,
                              max=mean + 3 * std_dev, q1=q1, q2=mean, q3=q3,
                              iqr=q3 - q1, count=count)


class TestCalculateStatistics(unittest.TestCase):
    """Descriptive statistics"""

    def test_population_std_and_floor_quartiles(self):
        stats = calculate_statistics([40, 10, 30, 20])

        self.assertAlmostEqual(stats.mean, 25.0)
        self.assertAlmostEqual(stats.std_dev, math.sqrt(125))
        self.assertEqual(stats.min, 10)
        self.assertEqual(stats.max, 40)
        self.assertEqual(stats.q1, 20)
        self.assertEqual(stats.q2, 30)
        self.assertEqual(stats.q3, 40)
        self.assertEqual(stats.iqr, 20)
        self.assertEqual(stats.count, 4)

    def test_single_value(self):
        stats = calculate_statistics([7.5])
        self.assertEqual(stats.mean, 7.5)
        self.assertEqual(stats.std_dev, 0.0)
        self.assertEqual(stats.iqr, 0.0)

    def test_empty_series_rejected(self):
        with self.assertRaises(InsufficientDataError) as ctx:
            calculate_statistics([])
        self.assertEqual(ctx.exception.found, 0)


class TestZScoreDetection(unittest.TestCase):
    """Severity bands relative to the threshold"""

    def setUp(self):
        self.stats = summary()

    def test_severity_bands(self):
        cases = [
            (50.0, Severity.NORMAL),
            (62.5, Severity.APPROACHING),   # z = 2.5
            (66.0, Severity.MEDIUM),        # z = 3.2
            (75.0, Severity.HIGH),          # z = 5.0
            (81.0, Severity.CRITICAL),      # z = 6.2
            (19.0, Severity.CRITICAL),      # z = -6.2
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                result = detect_anomaly_zscore(value, self.stats, 3.0)
                self.assertEqual(result.severity, expected)
                self.assertEqual(result.is_anomaly, expected.is_anomaly)

    def test_approaching_is_not_anomalous(self):
        result = detect_anomaly_zscore(62.5, self.stats)
        self.assertFalse(result.is_anomaly)
        self.assertIn('approaching', result.message)

    def test_custom_threshold(self):
        result = detect_anomaly_zscore(62.5, self.stats, threshold=2.0)
        self.assertTrue(result.is_anomaly)

    def test_constant_baseline_departure_is_critical(self):
        stats = calculate_statistics([10, 10, 10, 10, 10])
        result = detect_anomaly_zscore(100, stats)

        self.assertTrue(result.is_anomaly)
        self.assertEqual(result.severity, Severity.CRITICAL)
        self.assertTrue(result.constant_baseline)

    def test_constant_baseline_needs_enough_points(self):
        stats = calculate_statistics([10, 10, 10, 10])
        result = detect_anomaly_zscore(100, stats)

        self.assertFalse(result.is_anomaly)
        self.assertEqual(result.z_score, 0.0)

    def test_value_on_constant_baseline_is_normal(self):
        stats = calculate_statistics([10] * 8)
        self.assertFalse(detect_anomaly_zscore(10, stats).is_anomaly)


class TestIQRDetection(unittest.TestCase):

    def setUp(self):
        self.stats = summary(mean=15.0, std_dev=5.0, q1=10.0, q3=20.0)

    def test_inside_fences(self):
        result = detect_anomaly_iqr(30, self.stats)
        self.assertFalse(result.is_anomaly)
        self.assertEqual(result.method, 'iqr')

    def test_escalation(self):
        self.assertEqual(detect_anomaly_iqr(38, self.stats).severity, Severity.MEDIUM)
        self.assertEqual(detect_anomaly_iqr(45, self.stats).severity, Severity.HIGH)
        self.assertEqual(detect_anomaly_iqr(55, self.stats).severity, Severity.CRITICAL)
        self.assertEqual(detect_anomaly_iqr(-25, self.stats).severity, Severity.CRITICAL)


class TestFindOutliers(unittest.TestCase):

    def test_leave_one_out_flags_only_the_spike(self):
        flagged = find_outliers([10, 10, 10, 10, 10, 100])

        self.assertEqual([index for index, _ in flagged], [5])
        self.assertEqual(flagged[0][1].severity, Severity.CRITICAL)

    def test_iqr_method(self):
        flagged = find_outliers([10, 11, 12, 13, 14, 15, 16, 200], method='iqr')
        self.assertEqual([index for index, _ in flagged], [7])

    def test_iqr_flags_single_spike_in_short_series(self):
        stats = calculate_statistics([1, 2, 3, 4, 5, 100])
        self.assertEqual((stats.q1, stats.q3, stats.iqr), (2.0, 5.0, 3.0))

        result = detect_anomaly_iqr(100, stats)
        self.assertTrue(result.is_anomaly)
        self.assertEqual(result.severity, Severity.CRITICAL)

        flagged = find_outliers([1, 2, 3, 4, 5, 100], method='iqr')
        self.assertEqual([index for index, _ in flagged], [5])

    def test_too_short(self):
        with self.assertRaises(InsufficientDataError):
            find_outliers([1])

    def test_unknown_method(self):
        with self.assertRaises(ValueError):
            find_outliers([1, 2, 3], method='mad')


class TestSmoothing(unittest.TestCase):

    def test_linear_series_keeps_slope(self):
        result = double_exponential_smoothing([1, 2, 3, 4, 5], alpha=0.3, beta=0.1, periods_ahead=3)

        self.assertAlmostEqual(result.level, 5.0)
        self.assertAlmostEqual(result.trend, 1.0)
        self.assertEqual(len(result.forecast), 3)
        self.assertAlmostEqual(result.forecast[0], 6.0)
        self.assertAlmostEqual(result.forecast_at(3), 8.0)

    def test_short_series_has_no_forecast(self):
        result = double_exponential_smoothing([7])
        self.assertEqual(result.level, 7.0)
        self.assertEqual(result.trend, 0.0)
        self.assertEqual(result.forecast, [])

    def test_trend_classification(self):
        self.assertEqual(classify_trend(0.02), TrendDirection.INCREASING)
        self.assertEqual(classify_trend(-0.02), TrendDirection.DECREASING)
        self.assertEqual(classify_trend(0.005), TrendDirection.STABLE)
        self.assertEqual(classify_trend(0.01), TrendDirection.STABLE)


class TestAdaptiveThreshold(unittest.TestCase):

    def test_noisier_data_gets_looser_threshold(self):
        self.assertEqual(adaptive_zscore_threshold(summary(mean=100, std_dev=60)), 4.0)
        self.assertEqual(adaptive_zscore_threshold(summary(mean=100, std_dev=30)), 3.0)
        self.assertEqual(adaptive_zscore_threshold(summary(mean=100, std_dev=10)), 2.5)

    def test_zero_mean(self):
        self.assertEqual(adaptive_zscore_threshold(summary(mean=0, std_dev=1)), 4.0)
        self.assertEqual(adaptive_zscore_threshold(summary(mean=0, std_dev=0)), 2.5)


class TestWeibull(unittest.TestCase):

    def test_survival(self):
        self.assertEqual(weibull_survival(0, 2, 1000), 1.0)
        self.assertAlmostEqual(weibull_survival(1000, 2, 1000), math.exp(-1))

    def test_hazard(self):
        self.assertAlmostEqual(weibull_hazard(1000, 2, 1000), 0.002)
        self.assertEqual(weibull_hazard(0, 1, 1000), 0.001)
        self.assertEqual(weibull_hazard(0, 2, 1000), 0.0)

    def test_exponential_median_is_memoryless(self):
        expected = math.log(2) * 1000
        self.assertAlmostEqual(weibull_remaining_life(0, 1, 1000), expected, delta=1)
        self.assertAlmostEqual(weibull_remaining_life(500, 1, 1000), expected, delta=1)

    def test_wear_out_shortens_remaining_life(self):
        young = weibull_remaining_life(100, 2.5, 3650)
        old = weibull_remaining_life(3000, 2.5, 3650)
        self.assertLess(old, young)

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            weibull_survival(10, 0, 1000)
        with pytest.raises(ValueError):
            weibull_hazard(10, 2, -5)


if __name__ == '__main__':
    unittest.main()
