"""
Test-retest reliability and change thresholds for metric values.

ICC follows the two-way mixed-effects, consistency, single-measure form,
ICC(3,1) of Shrout & Fleiss (1979).
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from .descriptive import Computable, pearson_correlation, standard_deviation

logger = logging.getLogger(__name__)

MIN_ICC_PAIRS = 3
MIN_SPLIT_HALF_VALUES = 6
MIN_ANCHOR_PAIRS = 5
MDC95_Z = 1.96

# Hopkins published both 0.2 and 0.3 x SD; 0.2 (same as Cohen's small effect) is used
HOPKINS_SWC_FACTOR = 0.2
COHEN_SWC_FACTOR = 0.2
INDIVIDUAL_SWC_FACTOR = 0.5


@dataclass
class ReliabilityResult(Computable):
    icc: Optional[float] = None
    sem: Optional[float] = None
    mdc95: Optional[float] = None
    sd: Optional[float] = None
    n_subjects: int = 0
    n_trials: int = 0
    is_approximation: bool = False
    note: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class IndividualResponseResult(Computable):
    mean_change: Optional[float] = None
    sd_change: Optional[float] = None
    typical_error: Optional[float] = None
    true_individual_sd: Optional[float] = None
    responders: int = 0
    non_responders: int = 0
    responder_rate: Optional[float] = None
    changes: List[float] = None
    reason: Optional[str] = None


class SWCMethod(Enum):
    COHEN = "cohen"
    HOPKINS = "hopkins"
    CV = "cv"
    INDIVIDUAL = "individual"


def standard_error_of_measurement(sd, icc):
    """SEM = SD * sqrt(1 - ICC)."""
    return sd * math.sqrt(max(0.0, 1.0 - icc))


def minimal_detectable_change(sem):
    """MDC95 = 1.96 * sqrt(2) * SEM."""
    return MDC95_Z * math.sqrt(2.0) * sem


def icc_from_trials(data):
    """
    ICC(3,1) from an n_subjects x k_trials matrix.

    Returns:
        (icc, reason) - icc is clamped to [0, 1]; reason is set instead when
        the between-subject mean square is zero
    """
    data = np.asarray(data, dtype=float)
    n, k = data.shape
    grand_mean = data.mean()
    subject_means = data.mean(axis=1)
    trial_means = data.mean(axis=0)

    ss_rows = k * float(np.sum((subject_means - grand_mean) ** 2))
    ss_cols = n * float(np.sum((trial_means - grand_mean) ** 2))
    ss_total = float(np.sum((data - grand_mean) ** 2))
    ss_error = max(0.0, ss_total - ss_rows - ss_cols)

    ms_rows = ss_rows / (n - 1)
    ms_error = ss_error / ((n - 1) * (k - 1))
    if ms_rows == 0:
        return None, "No between-subject variance"

    icc = (ms_rows - ms_error) / (ms_rows + (k - 1) * ms_error)
    return min(1.0, max(0.0, icc)), None


def icc_paired(test, retest):
    """
    Reliability of matched test/retest values.

    Args:
        test: First-session values, one per subject
        retest: Second-session values in the same subject order

    Returns:
        ReliabilityResult with ICC(3,1), SEM and MDC95
    """
    test, retest = list(test), list(retest)
    if len(test) != len(retest):
        return ReliabilityResult(reason=f"Length mismatch: {len(test)} test vs {len(retest)} retest values")
    if len(test) < MIN_ICC_PAIRS:
        return ReliabilityResult(n_subjects=len(test), n_trials=2,
                                 reason=f"Need at least {MIN_ICC_PAIRS} pairs, got {len(test)}")
    return _reliability_from_matrix(np.column_stack([test, retest]))


def icc_split_half(values):
    """
    Split-half reliability of a single list of values.

    The first half is treated as the test and the second half as the retest.
    Odd-length inputs drop the middle value. The result is flagged as an
    approximation: it assumes the list is ordered by repeat, not by subject.
    """
    values = list(values)
    if len(values) < MIN_SPLIT_HALF_VALUES:
        return ReliabilityResult(is_approximation=True,
                                 reason=f"Need at least {MIN_SPLIT_HALF_VALUES} values, got {len(values)}")
    half = len(values) // 2
    first, second = values[:half], values[len(values) - half:]
    result = _reliability_from_matrix(np.column_stack([first, second]))
    result.is_approximation = True
    result.note = "Split-half approximation (first half vs second half)"
    return result


def reliability(values, retest=None):
    """Paired ICC when `retest` is given, split-half approximation otherwise."""
    if retest is None:
        return icc_split_half(values)
    return icc_paired(values, retest)


def _reliability_from_matrix(matrix):
    n, k = matrix.shape
    icc, reason = icc_from_trials(matrix)
    if reason is not None:
        logger.debug("ICC not computable: %s", reason)
        return ReliabilityResult(n_subjects=n, n_trials=k, reason=reason)
    sd = standard_deviation(matrix.ravel())
    sem = standard_error_of_measurement(sd, icc)
    return ReliabilityResult(
        icc=icc,
        sem=sem,
        mdc95=minimal_detectable_change(sem),
        sd=sd,
        n_subjects=n,
        n_trials=k,
    )


def typical_error(test, retest):
    """SD of the paired differences / sqrt(2); None for mismatched or short input."""
    test, retest = np.asarray(test, dtype=float), np.asarray(retest, dtype=float)
    if test.size != retest.size or test.size < 2:
        return None
    return float(np.std(retest - test, ddof=1)) / math.sqrt(2.0)


def smallest_worthwhile_change(values, method=SWCMethod.COHEN, cv_percent=None):
    """
    Smallest worthwhile change from the between-subject SD.

    Args:
        values: Metric values
        method: SWCMethod selecting the multiplier
        cv_percent: Coefficient of variation (%) for SWCMethod.CV. When not
            given it is computed from `values`.

    Returns:
        float, or None when fewer than 2 values are given
    """
    sd = standard_deviation(values)
    if sd is None:
        return None
    method = SWCMethod(method)

    if method is SWCMethod.COHEN:
        return COHEN_SWC_FACTOR * sd
    if method is SWCMethod.HOPKINS:
        return HOPKINS_SWC_FACTOR * sd
    if method is SWCMethod.INDIVIDUAL:
        return INDIVIDUAL_SWC_FACTOR * sd

    mean_value = float(np.mean(values))
    if cv_percent is None:
        cv_percent = sd / abs(mean_value) * 100.0 if mean_value else 0.0
    te = (cv_percent / 100.0) * mean_value / math.sqrt(2.0)
    return abs(te) * MDC95_Z


def distribution_swc(values, effect_size=0.2):
    """SWC as a chosen standardized effect size times SD."""
    sd = standard_deviation(values)
    return None if sd is None else effect_size * sd


def anchor_swc(values, anchor):
    """
    Anchor-based SWC from values paired with an external criterion.

    SD * sqrt(1 - r^2) * 1.96, where r is the correlation with the anchor.
    Needs at least 5 pairs.
    """
    values, anchor = list(values), list(anchor)
    if len(values) != len(anchor) or len(values) < MIN_ANCHOR_PAIRS:
        return None
    r = pearson_correlation(values, anchor)
    sd = standard_deviation(values)
    return sd * math.sqrt(max(0.0, 1.0 - r * r)) * MDC95_Z


def individual_response(pre, post, swc=None):
    """
    Individual responses to an intervention.

    True individual SD removes measurement noise (typical error) from the SD
    of changes. A responder changed by more than `swc` in either direction;
    when `swc` is omitted, 0.2 x SD of the baseline values is used.
    """
    pre, post = np.asarray(pre, dtype=float), np.asarray(post, dtype=float)
    if pre.size != post.size:
        return IndividualResponseResult(reason=f"Length mismatch: {pre.size} pre vs {post.size} post values")
    if pre.size < 2:
        return IndividualResponseResult(reason=f"Need at least 2 pairs, got {pre.size}")

    changes = post - pre
    sd_change = float(np.std(changes, ddof=1))
    te = sd_change / math.sqrt(2.0)
    true_sd = math.sqrt(max(0.0, sd_change ** 2 - te ** 2))

    if swc is None:
        swc = smallest_worthwhile_change(pre, SWCMethod.COHEN)
    responders = int(np.sum(np.abs(changes) > swc))

    return IndividualResponseResult(
        mean_change=float(np.mean(changes)),
        sd_change=sd_change,
        typical_error=te,
        true_individual_sd=true_sd,
        responders=responders,
        non_responders=int(changes.size - responders),
        responder_rate=responders / changes.size,
        changes=changes.tolist(),
    )
