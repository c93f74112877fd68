"""
Post-acquisition analysis of one recorded trial.
Classifies the movement, segments it into phases and computes the MetricSet.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

import config
from .metrics_calculator import MetricSet, MetricsCalculator
from .movement_classifier import ClassificationResult, TestClassifier, TestType
from .phase_detector import PhaseAnalysisResult, analyze_phases
from .thresholds import AdaptiveThresholdCalculator, PhaseThresholds

logger = logging.getLogger(__name__)


@dataclass
class TrialAnalysis:
    trial: object
    body_weight: float
    test_type: Optional[TestType]
    classification: Optional[ClassificationResult]
    thresholds: Optional[PhaseThresholds]
    phases: Optional[PhaseAnalysisResult]
    metrics: MetricSet
    onset_index: Optional[int] = None

    @property
    def detected(self):
        return self.test_type is not None

    @property
    def segments(self):
        return self.phases.segments if self.phases is not None else []


def find_onset_index(forces, baseline, threshold_n=config.ONSET_THRESHOLD_N):
    """First sample deviating from baseline by more than threshold_n, or None."""
    forces = np.asarray(forces, dtype=float)
    outside = np.flatnonzero(np.abs(forces - baseline) > threshold_n)
    return int(outside[0]) if outside.size else None


class TrialAnalyzer:
    """
    Batch pipeline for a complete trial.

    Earlier phase results are kept per test type so thresholds re-tune over a
    session the same way the adaptive calculator does for live data.
    """

    def __init__(self, classifier=None, metrics_calculator=None, age=None, level=None, sport=None,
                 history_size=config.TRIAL_HISTORY_SIZE):
        self.classifier = classifier or TestClassifier()
        if metrics_calculator is None:
            cutoff = config.FILTER_CUTOFF if config.APPLY_LOWPASS_FILTER else None
            metrics_calculator = MetricsCalculator(lowpass_cutoff=cutoff)
        self.metrics_calculator = metrics_calculator
        self.age = age
        self.level = level
        self.sport = sport
        self._history_size = history_size
        self._phase_history = {}

    def reset_history(self):
        self._phase_history = {}

    def thresholds_for(self, test_type):
        """Athlete-adapted thresholds, re-tuned from earlier trials of the same test."""
        thresholds = AdaptiveThresholdCalculator.get_initial_thresholds(
            test_type, age=self.age, level=self.level, sport=self.sport)
        history = self._phase_history.get(test_type)
        if history:
            thresholds = AdaptiveThresholdCalculator.update_thresholds(thresholds, history)
        return thresholds

    def analyze(self, trial, body_weight, test_type=None, onset_index=None):
        """
        Analyze one ForceTrial.

        Args:
            trial: ForceTrial covering quiet stance, the movement and recovery
            body_weight: Bodyweight in N
            test_type: Known TestType; classified from the data when None
            onset_index: Sample index of movement onset, searched when None

        Returns:
            TrialAnalysis. When the test type is neither given nor detected,
            phases are not segmented and only generic metrics are computed.
        """
        if body_weight is None or body_weight <= 0:
            raise ValueError(f"Bodyweight must be positive, got {body_weight}")

        if onset_index is None:
            onset_index = find_onset_index(trial.total, body_weight)

        classification = None
        if test_type is None:
            classification = self._classify(trial, body_weight, onset_index)
            test_type = classification.test_type
            if test_type is None:
                logger.info("Test type not detected: %s", classification.reason)

        thresholds = None
        phases = None
        if test_type is not None:
            thresholds = self.thresholds_for(test_type)
            phases = analyze_phases(trial, body_weight, thresholds)
            self._remember(test_type, phases)

        metrics = self.metrics_calculator.calculate(trial, body_weight, test_type, phases)
        if classification is not None and classification.test_type is None:
            metrics.errors['test_type'] = classification.reason

        logger.info("Trial analyzed: %s, %d phases, %d metrics, %d failures",
                    test_type.name if test_type else "undetected",
                    len(phases.segments) if phases else 0,
                    len(metrics.values), len(metrics.errors))
        return TrialAnalysis(trial, body_weight, test_type, classification, thresholds,
                             phases, metrics, onset_index)

    def _classify(self, trial, body_weight, onset_index):
        # Classify from onset onwards when that leaves enough samples, else the whole trial
        window = trial
        if onset_index is not None and len(trial) - onset_index >= self.classifier.min_samples:
            window = trial.window(onset_index, len(trial))
        return self.classifier.classify_trial(window, body_weight)

    def _remember(self, test_type, phases):
        history = self._phase_history.setdefault(test_type, deque(maxlen=self._history_size))
        history.append(phases)
