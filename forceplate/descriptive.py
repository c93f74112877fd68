"""
Statistical primitives over lists of metric values.

Scalar helpers return None when the statistic is undefined for the input
(too few values) and 0.0 where zero is the defined sentinel for a degenerate
input. Method-level helpers return result objects whose `reason` explains why
they could not be computed.
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy import stats

logger = logging.getLogger(__name__)


class Computable:
    """Mixin for result dataclasses carrying an optional `reason` field."""

    @property
    def computable(self):
        return self.reason is None


@dataclass
class LinearRegressionResult(Computable):
    slope: Optional[float] = None
    intercept: Optional[float] = None
    r_squared: Optional[float] = None
    standard_error: Optional[float] = None  # residual standard error
    slope_standard_error: Optional[float] = None
    n: int = 0
    reason: Optional[str] = None


@dataclass
class TTestResult(Computable):
    t_statistic: Optional[float] = None
    p_value: Optional[float] = None
    degrees_of_freedom: Optional[float] = None
    mean_difference: Optional[float] = None
    standard_error: Optional[float] = None
    reason: Optional[str] = None

    @property
    def significant(self):
        return self.p_value is not None and self.p_value < 0.05


@dataclass
class BootstrapResult(Computable):
    statistic: Optional[float] = None
    lower: Optional[float] = None
    upper: Optional[float] = None
    bootstrap_mean: Optional[float] = None
    bootstrap_sd: Optional[float] = None
    confidence: float = 0.95
    iterations: int = 0
    reason: Optional[str] = None


def _as_array(values):
    return np.asarray(list(values) if not isinstance(values, np.ndarray) else values, dtype=float)


def mean(values):
    values = _as_array(values)
    return float(np.mean(values)) if values.size else None


def median(values):
    values = _as_array(values)
    return float(np.median(values)) if values.size else None


def variance(values):
    """Sample variance (n - 1)."""
    values = _as_array(values)
    return float(np.var(values, ddof=1)) if values.size >= 2 else None


def standard_deviation(values):
    """Sample standard deviation (n - 1)."""
    values = _as_array(values)
    return float(np.std(values, ddof=1)) if values.size >= 2 else None


def coefficient_of_variation(values):
    """CV in percent; 0.0 when the mean is zero."""
    values = _as_array(values)
    if values.size < 2:
        return None
    m = float(np.mean(values))
    if m == 0:
        return 0.0
    return float(np.std(values, ddof=1)) / abs(m) * 100.0


def skewness(values):
    """Adjusted Fisher-Pearson skewness; 0.0 for constant data."""
    values = _as_array(values)
    n = values.size
    if n < 3:
        return None
    if np.ptp(values) == 0:
        return 0.0
    return float(stats.skew(values, bias=False))


def kurtosis(values):
    """Sample excess kurtosis; 0.0 for constant data."""
    values = _as_array(values)
    n = values.size
    if n < 4:
        return None
    if np.ptp(values) == 0:
        return 0.0
    return float(stats.kurtosis(values, fisher=True, bias=False))


def percentile(values, pct):
    """Percentile (0-100) with linear interpolation between closest ranks."""
    values = _as_array(values)
    if not values.size:
        return None
    ordered = np.sort(values)
    index = (pct / 100.0) * (ordered.size - 1)
    lower = int(math.floor(index))
    upper = int(math.ceil(index))
    if lower == upper:
        return float(ordered[lower])
    return float(ordered[lower] + (ordered[upper] - ordered[lower]) * (index - lower))


def pearson_correlation(x, y):
    """Pearson r; 0.0 when either series is constant."""
    x, y = _as_array(x), _as_array(y)
    if x.size != y.size or x.size < 2:
        return None
    dx, dy = x - x.mean(), y - y.mean()
    denominator = math.sqrt(float(np.sum(dx * dx) * np.sum(dy * dy)))
    return float(np.sum(dx * dy)) / denominator if denominator != 0 else 0.0


def z_score(value, mean_value, sd):
    return (value - mean_value) / sd if sd else 0.0


def linear_regression(x, y, min_points=3):
    """
    Ordinary least squares y = intercept + slope * x.

    R^2 is clamped to [0, 1]. Needs at least 3 points and non-constant x.
    """
    x, y = _as_array(x), _as_array(y)
    if x.size != y.size:
        return LinearRegressionResult(reason=f"Length mismatch: {x.size} x values, {y.size} y values")
    n = x.size
    if n < min_points:
        return LinearRegressionResult(n=n, reason=f"Need at least {min_points} points, got {n}")

    sxx = float(np.sum((x - x.mean()) ** 2))
    if sxx == 0:
        return LinearRegressionResult(n=n, reason="All x values are identical")

    fit = stats.linregress(x, y)
    return LinearRegressionResult(
        slope=float(fit.slope),
        intercept=float(fit.intercept),
        r_squared=min(1.0, max(0.0, float(fit.rvalue) ** 2)),
        standard_error=float(fit.stderr) * math.sqrt(sxx),
        slope_standard_error=float(fit.stderr),
        n=n,
    )


def welch_t_test(group1, group2):
    """
    Unequal-variance t-test with Welch-Satterthwaite degrees of freedom.
    Two-sided p-value from the t distribution.
    """
    a, b = _as_array(group1), _as_array(group2)
    n1, n2 = a.size, b.size
    if n1 < 2 or n2 < 2:
        return TTestResult(reason=f"Need at least 2 values per group, got {n1} and {n2}")

    v1, v2 = float(np.var(a, ddof=1)), float(np.var(b, ddof=1))
    diff = float(a.mean() - b.mean())
    se = math.sqrt(v1 / n1 + v2 / n2)
    if se == 0:
        return TTestResult(mean_difference=diff, standard_error=0.0, reason="Both groups have zero variance")

    result = stats.ttest_ind(a, b, equal_var=False)
    return TTestResult(t_statistic=float(result.statistic), p_value=float(result.pvalue),
                       degrees_of_freedom=float(result.df),
                       mean_difference=diff, standard_error=se)


def bootstrap_ci(data, statistic=np.mean, iterations=1000, confidence=0.95, seed=None):
    """
    Percentile bootstrap confidence interval.

    Args:
        data: Observed values
        statistic: Callable reducing a 1D array to a float
        iterations: Number of resamples
        confidence: Two-sided confidence level
        seed: Optional seed for a reproducible numpy Generator
    """
    values = _as_array(data)
    if values.size < 2:
        return BootstrapResult(confidence=confidence, reason=f"Need at least 2 values, got {values.size}")
    if iterations < 2:
        return BootstrapResult(confidence=confidence, reason="Need at least 2 bootstrap iterations")

    rng = np.random.default_rng(seed)
    resamples = rng.choice(values, size=(iterations, values.size), replace=True)
    boot = np.sort(np.array([float(statistic(row)) for row in resamples]))

    alpha = (1.0 - confidence) / 2.0
    lower_index = int(math.floor(alpha * iterations))
    upper_index = max(lower_index, int(math.floor((1.0 - alpha) * iterations)) - 1)
    return BootstrapResult(
        statistic=float(statistic(values)),
        lower=float(boot[lower_index]),
        upper=float(boot[upper_index]),
        bootstrap_mean=float(np.mean(boot)),
        bootstrap_sd=float(np.std(boot, ddof=1)),
        confidence=confidence,
        iterations=iterations,
    )


def iqr_fences(values, threshold=1.5) -> Optional[Tuple[float, float]]:
    """(lower, upper) Tukey fences; None for fewer than 4 values."""
    values = _as_array(values)
    if values.size < 4:
        return None
    ordered = np.sort(values)
    q1 = ordered[int(math.floor(ordered.size * 0.25))]
    q3 = ordered[int(math.floor(ordered.size * 0.75))]
    iqr = q3 - q1
    return float(q1 - threshold * iqr), float(q3 + threshold * iqr)


def remove_outliers(values, threshold=1.5):
    """
    Drop values outside the 1.5 x IQR fences, keeping input order.
    Fewer than 4 values are returned unchanged.
    """
    values = list(values)
    fences = iqr_fences(values, threshold)
    if fences is None:
        logger.debug("Outlier removal skipped: %d values", len(values))
        return values
    low, high = fences
    return [v for v in values if low <= v <= high]
