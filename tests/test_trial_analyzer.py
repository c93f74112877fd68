"""Unit tests for the batch trial pipeline."""
import numpy as np
import pytest

from conftest import BODY_WEIGHT, trial_from_total
from forceplate.metrics_calculator import MetricsCalculator
from forceplate.movement_classifier import TestClassifier, TestType
from forceplate.phase_detector import JumpPhase
from forceplate.trial_analyzer import TrialAnalyzer, find_onset_index


def test_find_onset_index(cmj_force):
    assert find_onset_index(cmj_force, BODY_WEIGHT) == 1096
    assert find_onset_index(np.full(100, BODY_WEIGHT), BODY_WEIGHT) is None


class TestTrialAnalyzer:

    def test_classifies_and_segments_cmj(self, cmj_trial):
        analysis = TrialAnalyzer().analyze(cmj_trial, BODY_WEIGHT)
        assert analysis.detected
        assert analysis.test_type is TestType.CMJ
        assert analysis.classification.test_type is TestType.CMJ
        assert analysis.onset_index == 1096
        assert analysis.phases.is_valid
        assert JumpPhase.FLIGHT in analysis.phases.found_phases
        assert analysis.metrics['jump_height_cm'] == pytest.approx(19.9, abs=1.0)
        assert 'braking_duration_ms' in analysis.metrics

    def test_squat_jump(self, sj_trial):
        analysis = TrialAnalyzer().analyze(sj_trial, BODY_WEIGHT)
        assert analysis.test_type is TestType.SJ
        assert not analysis.thresholds.has_unloading

    def test_drop_jump_from_whole_trial(self, dj_trial):
        analysis = TrialAnalyzer().analyze(dj_trial, BODY_WEIGHT)
        assert analysis.onset_index == 0
        assert analysis.test_type is TestType.DJ
        assert analysis.metrics['contact_time_ms'] == pytest.approx(244.0, abs=5.0)

    def test_known_type_skips_classification(self, imtp_trial):
        analysis = TrialAnalyzer().analyze(imtp_trial, BODY_WEIGHT, TestType.IMTP)
        assert analysis.classification is None
        assert analysis.test_type is TestType.IMTP
        assert 'rfd_0_50ms' in analysis.metrics

    def test_undetected_type_keeps_generic_metrics(self, quiet_trial):
        analyzer = TrialAnalyzer(classifier=TestClassifier(confidence_threshold=0.95))
        analysis = analyzer.analyze(quiet_trial, BODY_WEIGHT)
        assert not analysis.detected
        assert analysis.phases is None
        assert analysis.segments == []
        assert analysis.metrics['peak_force'] == pytest.approx(BODY_WEIGHT)
        assert "below" in analysis.metrics.errors['test_type']

    def test_short_trial_is_undetected(self):
        analysis = TrialAnalyzer().analyze(trial_from_total(np.full(500, BODY_WEIGHT)), BODY_WEIGHT)
        assert analysis.test_type is None
        assert "at least 1000" in analysis.metrics.errors['test_type']

    def test_explicit_onset_is_kept(self, cmj_trial):
        analysis = TrialAnalyzer().analyze(cmj_trial, BODY_WEIGHT, onset_index=1000)
        assert analysis.onset_index == 1000
        assert analysis.test_type is TestType.CMJ

    def test_custom_metrics_calculator(self, cmj_trial):
        analyzer = TrialAnalyzer(metrics_calculator=MetricsCalculator())
        analysis = analyzer.analyze(cmj_trial, BODY_WEIGHT, TestType.CMJ)
        assert analysis.metrics['flight_time_ms'] == pytest.approx(362.0)

    def test_rejects_bad_bodyweight(self, cmj_trial):
        with pytest.raises(ValueError):
            TrialAnalyzer().analyze(cmj_trial, 0.0)


class TestThresholdHistory:

    def test_athlete_adaptation(self):
        analyzer = TrialAnalyzer(age=40)
        assert analyzer.thresholds_for(TestType.CMJ).quiet_band == pytest.approx(0.024)

    def test_low_confidence_history_relaxes_thresholds(self, quiet_trial):
        analyzer = TrialAnalyzer()
        base = analyzer.thresholds_for(TestType.CMJ)
        for _ in range(2):
            analyzer.analyze(quiet_trial, BODY_WEIGHT, TestType.CMJ)
        assert analyzer.thresholds_for(TestType.CMJ) == base

        analysis = analyzer.analyze(quiet_trial, BODY_WEIGHT, TestType.CMJ)
        assert analysis.phases.confidence == pytest.approx(0.625)
        relaxed = analyzer.thresholds_for(TestType.CMJ)
        assert relaxed.quiet_band == pytest.approx(base.quiet_band * 1.1)
        assert relaxed.smoothing_window == base.smoothing_window + 1
        # History is kept per test type
        assert analyzer.thresholds_for(TestType.SJ).smoothing_window == 3

        analyzer.reset_history()
        assert analyzer.thresholds_for(TestType.CMJ) == base
