"""
Recognizes which test protocol a movement window belongs to.

Features extracted from the post-onset window are scored against a static
signature per test type; the best signature is reported only when it clears
the confidence threshold.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

import config

logger = logging.getLogger(__name__)


class TestType(Enum):
    """Recognized test protocols, in signature declaration order."""
    __test__ = False  # keep pytest from collecting Test* names

    CMJ = "countermovement_jump"
    SJ = "squat_jump"
    DJ = "drop_jump"
    IMTP = "isometric_mid_thigh_pull"

    @property
    def is_jump(self):
        return self is not TestType.IMTP


@dataclass(frozen=True)
class TestSignature:
    """Expected qualitative features of one test type."""
    __test__ = False

    has_unloading: bool
    unloading_depth: float  # min force / BW expected at the bottom of the dip
    has_flight: bool
    min_flight_ms: float
    has_countermovement: bool
    peak_force_range: Tuple[float, float]  # multiples of BW


TEST_SIGNATURES: Dict[TestType, TestSignature] = {
    TestType.CMJ: TestSignature(True, 0.8, True, 100.0, True, (1.5, 4.0)),
    TestType.SJ: TestSignature(False, 0.95, True, 100.0, False, (1.3, 3.5)),
    TestType.DJ: TestSignature(True, 0.5, True, 50.0, True, (2.0, 5.0)),
    TestType.IMTP: TestSignature(False, 1.0, False, 0.0, False, (2.0, 4.0)),
}


@dataclass
class MovementFeatures:
    max_force: float
    min_force: float
    avg_force: float
    max_force_relative: float
    unloading_depth: float
    has_unloading: bool
    flight_samples: int
    flight_duration_ms: float
    has_flight: bool
    has_countermovement: bool
    max_rfd: float  # N/s
    duration_ms: float
    force_variability: float


@dataclass
class ClassificationResult:
    test_type: Optional[TestType]
    confidence: float
    scores: Dict[TestType, float] = field(default_factory=dict)
    features: Optional[MovementFeatures] = None
    reason: Optional[str] = None

    @property
    def detected(self):
        return self.test_type is not None


def max_rfd(forces, sample_rate, window_ms=config.RFD_WINDOW_MS):
    """Largest force rise over any window_ms span, in N/s."""
    forces = np.asarray(forces, dtype=float)
    window = max(1, int(round(window_ms * sample_rate / 1000.0)))
    if len(forces) <= window:
        return 0.0
    rises = (forces[window:] - forces[:-window]) / (window / sample_rate)
    return float(np.max(rises))


def extract_features(forces, body_weight, sample_rate, timestamps=None):
    """
    Summarize a movement window.

    Args:
        forces: 1D array of total force (N)
        body_weight: Bodyweight in N
        sample_rate: Sampling rate in Hz
        timestamps: Optional timestamps (ms); duration falls back to the sample count

    Returns:
        MovementFeatures
    """
    forces = np.asarray(forces, dtype=float)
    if len(forces) == 0:
        raise ValueError("Cannot extract features from an empty window")
    if body_weight <= 0:
        raise ValueError(f"Bodyweight must be positive, got {body_weight}")

    max_force = float(np.max(forces))
    min_force = float(np.min(forces))
    unloading_depth = min_force / body_weight

    flight_samples = int(np.count_nonzero(forces < body_weight * config.FLIGHT_FORCE_FACTOR))
    flight_ms = flight_samples * 1000.0 / sample_rate

    first_quarter = forces[:len(forces) // 4]
    has_cm = bool(np.any(first_quarter < body_weight * config.COUNTERMOVEMENT_FACTOR))

    if timestamps is not None and len(timestamps) > 1:
        duration_ms = float(timestamps[-1] - timestamps[0])
    else:
        duration_ms = (len(forces) - 1) * 1000.0 / sample_rate

    return MovementFeatures(
        max_force=max_force,
        min_force=min_force,
        avg_force=float(np.mean(forces)),
        max_force_relative=max_force / body_weight,
        unloading_depth=unloading_depth,
        has_unloading=unloading_depth < 0.95,
        flight_samples=flight_samples,
        flight_duration_ms=flight_ms,
        has_flight=flight_ms > config.MIN_FLIGHT_MS,
        has_countermovement=has_cm,
        max_rfd=max_rfd(forces, sample_rate),
        duration_ms=duration_ms,
        force_variability=float(np.std(forces)),
    )


def score_signature(features, signature):
    """
    Weighted match of features against one signature, in [0, 1].

    Unloading 20 pts (depth mismatch penalized), flight 30 pts (+10 when long
    enough), countermovement 20 pts, peak-force range 30 pts decaying by 10 per
    BW outside the range.
    """
    score = 0.0
    max_score = 100.0

    if features.has_unloading == signature.has_unloading:
        score += 20
        if features.has_unloading:
            score -= abs(features.unloading_depth - signature.unloading_depth) * 10

    if features.has_flight == signature.has_flight:
        score += 30
        if features.has_flight and features.flight_duration_ms >= signature.min_flight_ms:
            score += 10

    if features.has_countermovement == signature.has_countermovement:
        score += 20

    low, high = signature.peak_force_range
    peak = features.max_force_relative
    if low <= peak <= high:
        score += 30
    else:
        distance = low - peak if peak < low else peak - high
        score += max(0.0, 30 - distance * 10)

    return min(1.0, max(0.0, score / max_score))


class TestClassifier:
    """Scores a movement window against every known TestSignature."""
    __test__ = False

    def __init__(self, signatures=None, confidence_threshold=config.CLASSIFIER_CONFIDENCE_THRESHOLD,
                 min_samples=config.CLASSIFIER_MIN_SAMPLES):
        self.signatures = dict(signatures if signatures is not None else TEST_SIGNATURES)
        self.confidence_threshold = confidence_threshold
        self.min_samples = min_samples

    def classify(self, forces, body_weight, sample_rate=config.SAMPLE_RATE, timestamps=None):
        """
        Classify a post-onset movement window.

        Returns:
            ClassificationResult; test_type is None when there is too little
            data or no signature clears the confidence threshold.
        """
        forces = np.asarray(forces, dtype=float)
        if len(forces) < self.min_samples:
            return ClassificationResult(
                None, 0.0,
                reason=f"Need at least {self.min_samples} samples, got {len(forces)}",
            )

        features = extract_features(forces, body_weight, sample_rate, timestamps)
        scores = {test_type: score_signature(features, sig) for test_type, sig in self.signatures.items()}

        # Strict comparison keeps the first declared signature on ties
        best_type, best_score = None, -1.0
        for test_type, value in scores.items():
            if value > best_score:
                best_type, best_score = test_type, value

        if best_score > self.confidence_threshold:
            logger.info("Detected %s (confidence %.2f)", best_type.name, best_score)
            return ClassificationResult(best_type, best_score, scores, features)

        logger.debug("No test type above %.2f (best %s at %.2f)",
                     self.confidence_threshold, best_type.name, best_score)
        return ClassificationResult(
            None, best_score, scores, features,
            reason=f"Best match {best_type.name} at {best_score:.2f} is below {self.confidence_threshold:.2f}",
        )

    def classify_trial(self, trial, body_weight):
        """Classify a ForceTrial using its total force and timestamps."""
        return self.classify(trial.total, body_weight, trial.sample_rate, trial.timestamps)
