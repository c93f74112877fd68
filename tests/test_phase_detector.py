"""Unit tests for the jump phase state machine, batch segmentation and quality scoring."""
import numpy as np
import pytest

from conftest import BODY_WEIGHT, SAMPLE_RATE, trial_from_total
from forceplate.movement_classifier import TestType
from forceplate.phase_detector import (JumpPhase, PhaseSegment, PhaseTracker, analyze_phases, detection_confidence,
                                       initial_phase, next_phase, score_phase_quality, segment_phases)
from forceplate.thresholds import BASE_THRESHOLDS

CMJ = BASE_THRESHOLDS[TestType.CMJ]
SJ = BASE_THRESHOLDS[TestType.SJ]
LEVELS = CMJ.force_levels(BODY_WEIGHT)
QUIET_HISTORY = [BODY_WEIGHT] * 20


class TestTransitionRule:

    def test_initial_phase(self):
        assert initial_phase(BODY_WEIGHT, LEVELS) is JumpPhase.QUIET_STANDING
        assert initial_phase(0.0, LEVELS) is JumpPhase.FLIGHT

    def test_quiet_edges(self):
        assert next_phase(JumpPhase.QUIET_STANDING, 600.0, [600.0], LEVELS) is JumpPhase.UNLOADING
        assert next_phase(JumpPhase.QUIET_STANDING, 800.0, [800.0], LEVELS) is JumpPhase.BRAKING
        assert next_phase(JumpPhase.QUIET_STANDING, 690.0, [690.0], LEVELS) is JumpPhase.QUIET_STANDING

    def test_no_unloading_for_squat_jumps(self):
        levels = SJ.force_levels(BODY_WEIGHT)
        assert next_phase(JumpPhase.QUIET_STANDING, 500.0, [500.0], levels,
                          has_unloading=False) is JumpPhase.QUIET_STANDING

    def test_unloading_edges(self):
        assert next_phase(JumpPhase.UNLOADING, 800.0, [800.0], LEVELS) is JumpPhase.BRAKING
        assert next_phase(JumpPhase.UNLOADING, 700.0, QUIET_HISTORY, LEVELS) is JumpPhase.QUIET_STANDING
        # Too little quiet history
        assert next_phase(JumpPhase.UNLOADING, 700.0, [700.0] * 4, LEVELS) is JumpPhase.UNLOADING

    def test_braking_needs_past_peak(self):
        rising = [1000.0, 1100.0, 1200.0]
        falling = [1200.0, 1150.0, 1100.0]
        assert next_phase(JumpPhase.BRAKING, 1200.0, rising, LEVELS) is JumpPhase.BRAKING
        assert next_phase(JumpPhase.BRAKING, 1100.0, falling, LEVELS) is JumpPhase.PROPULSION
        # Falling but below the propulsion level
        low = [830.0, 820.0, 810.0]
        assert next_phase(JumpPhase.BRAKING, 810.0, low, LEVELS) is JumpPhase.BRAKING

    def test_propulsion_to_flight(self):
        assert next_phase(JumpPhase.PROPULSION, 50.0, [50.0], LEVELS) is JumpPhase.FLIGHT

    def test_flight_and_landing(self):
        assert next_phase(JumpPhase.FLIGHT, 100.0, [100.0], LEVELS) is JumpPhase.FLIGHT
        assert next_phase(JumpPhase.FLIGHT, 400.0, [400.0], LEVELS) is JumpPhase.LANDING
        assert next_phase(JumpPhase.LANDING, 20.0, [20.0], LEVELS) is JumpPhase.FLIGHT
        assert next_phase(JumpPhase.LANDING, 700.0, QUIET_HISTORY, LEVELS) is JumpPhase.QUIET_STANDING

    def test_quiet_return_uses_last_20_samples(self):
        history = [2000.0] + [BODY_WEIGHT] * 20
        assert next_phase(JumpPhase.LANDING, 700.0, history, LEVELS) is JumpPhase.QUIET_STANDING
        history = [BODY_WEIGHT] * 19 + [2000.0, BODY_WEIGHT]
        assert next_phase(JumpPhase.LANDING, 700.0, history, LEVELS) is JumpPhase.LANDING


class TestQualityScoring:

    def test_duration_bands(self):
        flat = np.full(10, 100.0)
        assert score_phase_quality(60.0, flat, 50.0) == (0.75, 'good')
        assert score_phase_quality(200.0, flat, 50.0) == (1.0, 'excellent')
        assert score_phase_quality(600.0, flat, 50.0) == (0.85, 'excellent')

    def test_inconsistent_forces(self):
        score, band = score_phase_quality(200.0, [0.0, 0.0, 0.0, 400.0], 50.0)
        assert score == pytest.approx(0.5)
        assert band == 'fair'

    def test_confidence_blends_completeness_and_quality(self):
        def seg(phase, band):
            return PhaseSegment(phase, 0, 1, 1.0, 1.0, 1.0, quality_band=band)
        segments = [seg(JumpPhase.QUIET_STANDING, 'excellent'), seg(JumpPhase.FLIGHT, 'poor')]
        assert detection_confidence(segments) == pytest.approx((0.5 + 0.7) / 2)
        assert detection_confidence([]) == 0.0


class TestBatchSegmentation:

    def test_cmj_phase_sequence(self, cmj_force):
        segments = segment_phases(cmj_force, BODY_WEIGHT, CMJ, SAMPLE_RATE)
        assert [s.phase for s in segments] == [
            JumpPhase.QUIET_STANDING, JumpPhase.UNLOADING, JumpPhase.BRAKING, JumpPhase.PROPULSION,
            JumpPhase.FLIGHT, JumpPhase.LANDING, JumpPhase.QUIET_STANDING,
        ]
        starts = {s.phase: s.start_index for s in segments[1:6]}
        assert starts[JumpPhase.UNLOADING] == pytest.approx(1067, abs=3)
        assert starts[JumpPhase.BRAKING] == pytest.approx(1256, abs=3)
        assert starts[JumpPhase.PROPULSION] == pytest.approx(1451, abs=3)
        assert starts[JumpPhase.FLIGHT] == pytest.approx(1547, abs=3)
        assert starts[JumpPhase.LANDING] == pytest.approx(1909, abs=3)

    def test_segments_are_ordered_and_contiguous(self, cmj_force):
        segments = segment_phases(cmj_force, BODY_WEIGHT, CMJ, SAMPLE_RATE)
        assert segments[0].start_index == 0
        assert segments[-1].end_index == len(cmj_force) - 1
        for previous, segment in zip(segments, segments[1:]):
            assert segment.start_index == previous.end_index + 1
            assert segment.phase is not previous.phase

    def test_flight_duration(self, cmj_force):
        segments = segment_phases(cmj_force, BODY_WEIGHT, CMJ, SAMPLE_RATE)
        flight = next(s for s in segments if s.phase is JumpPhase.FLIGHT)
        assert flight.duration_ms == pytest.approx(362.0, abs=5.0)
        assert flight.peak_force < BODY_WEIGHT * 0.5

    def test_short_excursions_are_folded(self):
        force = np.full(1000, BODY_WEIGHT)
        force[500:520] = 600.0  # 20 ms dip, shorter than the 50 ms minimum
        segments = segment_phases(force, BODY_WEIGHT, CMJ, SAMPLE_RATE)
        assert len(segments) == 1
        assert segments[0].phase is JumpPhase.QUIET_STANDING
        assert segments[0].sample_count == 1000

    def test_empty_and_invalid(self):
        assert segment_phases([], BODY_WEIGHT, CMJ, SAMPLE_RATE) == []
        with pytest.raises(ValueError, match="Bodyweight"):
            segment_phases([1.0, 2.0], 0.0, CMJ, SAMPLE_RATE)

    def test_asymmetry_statistics(self, cmj_trial):
        segments = segment_phases(cmj_trial.total, BODY_WEIGHT, CMJ, SAMPLE_RATE, cmj_trial.asymmetry)
        quiet = segments[0]
        assert quiet.average_asymmetry == pytest.approx(0.04)
        assert quiet.max_asymmetry == pytest.approx(0.04)


class TestAnalyzePhases:

    def test_cmj_is_valid(self, cmj_trial):
        result = analyze_phases(cmj_trial, BODY_WEIGHT, CMJ)
        assert result.is_valid
        assert result.reason is None
        assert result.confidence == pytest.approx(0.9, abs=0.05)
        for phase in (JumpPhase.QUIET_STANDING, JumpPhase.BRAKING, JumpPhase.PROPULSION, JumpPhase.FLIGHT):
            assert phase in result.found_phases
        assert result.durations_ms()[JumpPhase.BRAKING] == pytest.approx(195.0, abs=5.0)

    def test_quiet_trial_is_not_valid(self, quiet_trial):
        result = analyze_phases(quiet_trial, BODY_WEIGHT, CMJ)
        assert not result.is_valid
        assert result.found_phases == (JumpPhase.QUIET_STANDING,)
        assert result.first(JumpPhase.FLIGHT) is None

    def test_too_short(self):
        result = analyze_phases(trial_from_total([700.0]), BODY_WEIGHT, CMJ)
        assert not result.is_valid
        assert "at least 2" in result.reason


class TestPhaseTracker:

    def test_follows_a_cmj(self, cmj_force):
        tracker = PhaseTracker(BODY_WEIGHT, CMJ)
        for i, force in enumerate(cmj_force):
            tracker.update(force, float(i))
        phases = [t.phase for t in tracker.transitions]
        assert phases == [
            JumpPhase.QUIET_STANDING, JumpPhase.UNLOADING, JumpPhase.BRAKING, JumpPhase.PROPULSION,
            JumpPhase.FLIGHT, JumpPhase.LANDING, JumpPhase.QUIET_STANDING,
        ]
        durations = tracker.phase_durations_ms(3000.0)
        assert durations[JumpPhase.FLIGHT] == pytest.approx(362.0, abs=6.0)
        assert sum(durations.values()) == pytest.approx(3000.0)

    def test_transition_log_restarts_with_each_attempt(self, cmj_force):
        tracker = PhaseTracker(BODY_WEIGHT, CMJ)
        for i, force in enumerate(np.concatenate([cmj_force, cmj_force])):
            tracker.update(force, float(i))
        phases = [t.phase for t in tracker.transitions]
        assert phases == [
            JumpPhase.QUIET_STANDING, JumpPhase.UNLOADING, JumpPhase.BRAKING, JumpPhase.PROPULSION,
            JumpPhase.FLIGHT, JumpPhase.LANDING, JumpPhase.QUIET_STANDING,
        ]
        # Starts from the quiet stance that closed the first jump
        assert tracker.transitions[0].timestamp_ms < len(cmj_force)
        assert tracker.transitions[1].timestamp_ms > len(cmj_force)
        durations = tracker.phase_durations_ms(2.0 * len(cmj_force))
        assert durations[JumpPhase.FLIGHT] == pytest.approx(362.0, abs=6.0)

    def test_transition_log_is_bounded(self):
        tracker = PhaseTracker(BODY_WEIGHT, CMJ, max_transitions=3)
        for i, phase in enumerate([JumpPhase.UNLOADING, JumpPhase.BRAKING, JumpPhase.PROPULSION,
                                   JumpPhase.FLIGHT, JumpPhase.LANDING]):
            tracker.override(phase, float(i))
        assert [t.phase for t in tracker.transitions] == [JumpPhase.PROPULSION, JumpPhase.FLIGHT, JumpPhase.LANDING]

    def test_override_keeps_history(self):
        tracker = PhaseTracker(BODY_WEIGHT, CMJ)
        for i in range(30):
            tracker.update(BODY_WEIGHT, float(i))
        tracker.override(JumpPhase.BRAKING, 30.0)
        assert tracker.phase is JumpPhase.BRAKING
        assert tracker.transitions[-1].manual
        assert len(tracker.history) == 30

    def test_history_is_bounded(self):
        tracker = PhaseTracker(BODY_WEIGHT, CMJ, history_samples=10)
        for i in range(100):
            tracker.update(BODY_WEIGHT, float(i))
        assert len(tracker.history) == 10
        tracker.reset()
        assert tracker.phase is None
        assert tracker.smoothed_force is None

    def test_rejects_bad_bodyweight(self):
        with pytest.raises(ValueError):
            PhaseTracker(0.0, CMJ)
