"""
Interpreting change across sessions.

- Magnitude-based inference against a smallest worthwhile change
- Samozino force-velocity profiling
- Trend analysis over session index
- Exponential performance model
- Reactive strength helpers
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np
from scipy import stats

from .descriptive import Computable, linear_regression

logger = logging.getLogger(__name__)

# Samozino reference norms
F0_NORM_N_PER_KG = 35.0
V0_NORM_M_PER_S = 4.0
FV_IMBALANCE_THRESHOLD = 0.40
FV_POWER_DEFICIT_THRESHOLD = 0.20

SIGNIFICANCE_LEVEL = 0.05
FLAT_SLOPE_EPSILON = 1e-9
MIN_EXPONENTIAL_POINTS = 5

# |effect| / SWC upper bounds
MAGNITUDE_CLASSES = (
    (0.2, "trivial"),
    (0.6, "small"),
    (1.2, "moderate"),
    (2.0, "large"),
    (4.0, "very large"),
)


class FVDeficit(Enum):
    FORCE = "force"
    VELOCITY = "velocity"
    POWER = "power"
    NONE = "none"


class TrendDirection(Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


@dataclass
class MagnitudeInferenceResult(Computable):
    effect: Optional[float] = None
    standardized_effect: Optional[float] = None  # effect in SWC units
    standard_error: Optional[float] = None
    swc: Optional[float] = None
    beneficial: Optional[float] = None  # percent
    trivial: Optional[float] = None
    harmful: Optional[float] = None
    label: Optional[str] = None
    magnitude: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class ForceVelocityProfile(Computable):
    f0: Optional[float] = None  # N
    v0: Optional[float] = None  # m/s
    pmax: Optional[float] = None  # W
    f0_relative: Optional[float] = None  # N/kg
    pmax_relative: Optional[float] = None  # W/kg
    slope: Optional[float] = None
    r_squared: Optional[float] = None
    force_deficit: Optional[float] = None
    velocity_deficit: Optional[float] = None
    deficit: Optional[FVDeficit] = None
    reason: Optional[str] = None


@dataclass
class TrendResult(Computable):
    slope: Optional[float] = None
    intercept: Optional[float] = None
    r_squared: Optional[float] = None
    t_statistic: Optional[float] = None
    p_value: Optional[float] = None
    significant: bool = False
    direction: Optional[TrendDirection] = None
    n: int = 0
    reason: Optional[str] = None


@dataclass
class ExponentialModel(Computable):
    baseline: Optional[float] = None
    decay_rate: Optional[float] = None
    r_squared: Optional[float] = None
    predictions: List[float] = field(default_factory=list)
    reason: Optional[str] = None

    def predict(self, t):
        return self.baseline * math.exp(-self.decay_rate * t)


def erf(x):
    """Abramowitz & Stegun 7.1.26 approximation (|error| < 1.5e-7)."""
    a1, a2, a3, a4, a5 = 0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429
    p = 0.3275911
    sign = -1.0 if x < 0 else 1.0
    x = abs(x)
    t = 1.0 / (1.0 + p * x)
    y = 1.0 - (((((a5 * t + a4) * t) + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return sign * y


def normal_cdf(x):
    return 0.5 * (1.0 + erf(x / math.sqrt(2.0)))


def magnitude_class(effect, swc):
    """Qualitative size of an effect in SWC units."""
    if not swc:
        return None
    ratio = abs(effect) / abs(swc)
    for bound, name in MAGNITUDE_CLASSES:
        if ratio < bound:
            return name
    return "extremely large"


def inference_label(beneficial, trivial, harmful):
    if beneficial >= 75 and harmful < 5:
        return "very likely beneficial"
    if beneficial >= 75 and harmful < 25:
        return "likely beneficial"
    if harmful >= 75 and beneficial < 5:
        return "very likely harmful"
    if harmful >= 75 and beneficial < 25:
        return "likely harmful"
    if trivial >= 75:
        return "most likely trivial"
    return "unclear"


def magnitude_based_inference(effect, standard_error, swc):
    """
    Chances that a true effect is beneficial, trivial or harmful.

    Args:
        effect: Observed change (positive = beneficial)
        standard_error: Standard error of the effect
        swc: Smallest worthwhile change (positive)

    Returns:
        MagnitudeInferenceResult with percentages that sum to 100
    """
    if standard_error is None or standard_error <= 0:
        return MagnitudeInferenceResult(effect=effect, swc=swc,
                                        reason="Standard error must be positive")
    if swc is None or swc <= 0:
        return MagnitudeInferenceResult(effect=effect, standard_error=standard_error,
                                        reason="SWC must be positive")

    beneficial = (1.0 - normal_cdf((swc - effect) / standard_error)) * 100.0
    harmful = normal_cdf((-swc - effect) / standard_error) * 100.0
    trivial = max(0.0, 100.0 - beneficial - harmful)

    return MagnitudeInferenceResult(
        effect=effect,
        standardized_effect=effect / swc,
        standard_error=standard_error,
        swc=swc,
        beneficial=beneficial,
        trivial=trivial,
        harmful=harmful,
        label=inference_label(beneficial, trivial, harmful),
        magnitude=magnitude_class(effect, swc),
    )


def compare_groups(baseline, follow_up, swc):
    """MBI of the mean difference between two sets of values."""
    a, b = np.asarray(baseline, dtype=float), np.asarray(follow_up, dtype=float)
    n1, n2 = a.size, b.size
    if n1 < 2 or n2 < 2:
        return MagnitudeInferenceResult(swc=swc, reason=f"Need at least 2 values per group, got {n1} and {n2}")
    pooled_sd = math.sqrt(((n1 - 1) * np.var(a, ddof=1) + (n2 - 1) * np.var(b, ddof=1)) / (n1 + n2 - 2))
    te = pooled_sd / math.sqrt(2.0)
    se = te * math.sqrt(1.0 / n1 + 1.0 / n2)
    return magnitude_based_inference(float(b.mean() - a.mean()), se, swc)


def force_velocity_profile(forces, velocities, body_mass):
    """
    Samozino force-velocity profile from loaded jump conditions.

    Args:
        forces: Mean force per condition (N)
        velocities: Mean velocity per condition (m/s)
        body_mass: Athlete mass (kg)
    """
    if body_mass is None or body_mass <= 0:
        return ForceVelocityProfile(reason="Body mass must be positive")
    fit = linear_regression(velocities, forces)
    if not fit.computable:
        return ForceVelocityProfile(reason=fit.reason)
    if fit.slope == 0:
        return ForceVelocityProfile(slope=0.0, r_squared=fit.r_squared,
                                    reason="Flat force-velocity relationship")

    f0 = fit.intercept
    v0 = -f0 / fit.slope
    pmax = f0 * v0 / 4.0
    f0_rel = f0 / body_mass

    force_def = (F0_NORM_N_PER_KG - f0_rel) / F0_NORM_N_PER_KG
    velocity_def = (V0_NORM_M_PER_S - v0) / V0_NORM_M_PER_S
    if force_def > velocity_def and force_def > FV_IMBALANCE_THRESHOLD:
        deficit = FVDeficit.FORCE
    elif velocity_def > force_def and velocity_def > FV_IMBALANCE_THRESHOLD:
        deficit = FVDeficit.VELOCITY
    elif force_def > FV_POWER_DEFICIT_THRESHOLD and velocity_def > FV_POWER_DEFICIT_THRESHOLD:
        deficit = FVDeficit.POWER
    else:
        deficit = FVDeficit.NONE

    return ForceVelocityProfile(
        f0=f0,
        v0=v0,
        pmax=pmax,
        f0_relative=f0_rel,
        pmax_relative=pmax / body_mass,
        slope=fit.slope,
        r_squared=fit.r_squared,
        force_deficit=force_def,
        velocity_deficit=velocity_def,
        deficit=deficit,
    )


def trend_analysis(values, higher_is_better=True):
    """
    Linear trend of a metric over session index 0..n-1.

    Significance comes from the t statistic of the slope (n - 2 df). Flat or
    non-significant slopes are STABLE.
    """
    values = list(values)
    fit = linear_regression(np.arange(len(values), dtype=float), values)
    if not fit.computable:
        return TrendResult(n=len(values), reason=fit.reason)

    if fit.slope_standard_error == 0:
        t_stat = 0.0 if abs(fit.slope) < FLAT_SLOPE_EPSILON else math.copysign(math.inf, fit.slope)
        p_value = 1.0 if t_stat == 0.0 else 0.0
    else:
        t_stat = fit.slope / fit.slope_standard_error
        p_value = float(2 * stats.t.sf(abs(t_stat), fit.n - 2))
    significant = p_value < SIGNIFICANCE_LEVEL

    if not significant or abs(fit.slope) < FLAT_SLOPE_EPSILON:
        direction = TrendDirection.STABLE
    elif (fit.slope > 0) == higher_is_better:
        direction = TrendDirection.IMPROVING
    else:
        direction = TrendDirection.DECLINING

    return TrendResult(
        slope=fit.slope,
        intercept=fit.intercept,
        r_squared=fit.r_squared,
        t_statistic=t_stat,
        p_value=p_value,
        significant=significant,
        direction=direction,
        n=fit.n,
    )


def fit_exponential_model(times, values):
    """
    Fit y = baseline * exp(-decay_rate * t) by regressing log(y) on t.
    Needs at least 5 strictly positive values.
    """
    t, y = np.asarray(times, dtype=float), np.asarray(values, dtype=float)
    if t.size != y.size:
        return ExponentialModel(reason=f"Length mismatch: {t.size} times, {y.size} values")
    if t.size < MIN_EXPONENTIAL_POINTS:
        return ExponentialModel(reason=f"Need at least {MIN_EXPONENTIAL_POINTS} points, got {t.size}")
    if np.any(y <= 0):
        return ExponentialModel(reason="Values must be positive for a log-linear fit")

    fit = linear_regression(t, np.log(y))
    if not fit.computable:
        return ExponentialModel(reason=fit.reason)

    model = ExponentialModel(
        baseline=math.exp(fit.intercept),
        decay_rate=-fit.slope,
        r_squared=fit.r_squared,
    )
    model.predictions = [model.predict(ti) for ti in t]
    return model


def rsi(jump_height_cm, contact_time_ms):
    """Reactive strength index (m/s); None without a positive contact time."""
    if not contact_time_ms or contact_time_ms <= 0:
        return None
    return (jump_height_cm / 100.0) / (contact_time_ms / 1000.0)


def rsi_modified(flight_time_ms, contact_time_ms):
    if not contact_time_ms or contact_time_ms <= 0:
        return None
    return flight_time_ms / contact_time_ms
