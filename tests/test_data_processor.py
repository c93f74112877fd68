"""Unit tests for the live ingestion facade."""
import math

import numpy as np
import pytest

import config
from conftest import BODY_WEIGHT, DJ_KNOTS, LEFT_SHARE, piecewise_force
from forceplate.data_processor import ForcePlateProcessor
from forceplate.movement_classifier import TestType
from forceplate.samples import ForceSample


def _samples(total, start_ms=0.0):
    return [ForceSample(start_ms + i, f * LEFT_SHARE, f * (1.0 - LEFT_SHARE)) for i, f in enumerate(total)]


@pytest.fixture
def processor():
    return ForcePlateProcessor()


class TestCalibration:

    def test_bodyweight_from_quiet_stance(self, processor):
        weights, statuses = [], []
        processor.body_weight_signal.connect(weights.append)
        processor.status_signal.connect(statuses.append)

        processor.process_samples(_samples(np.full(1500, BODY_WEIGHT)))

        assert weights == [pytest.approx(BODY_WEIGHT)]
        assert processor.get_body_weight() == pytest.approx(BODY_WEIGHT)
        assert processor.phase == ForcePlateProcessor.PHASE_ARMED
        assert any(s.startswith("Bodyweight detected") for s in statuses)

    def test_manual_bodyweight(self, processor):
        processor.set_body_weight(BODY_WEIGHT)
        assert processor.phase == ForcePlateProcessor.PHASE_ARMED
        with pytest.raises(ValueError):
            processor.set_body_weight(0.0)


class TestTrialCapture:

    def test_cmj_stream(self, processor, cmj_force):
        onsets, analyses = [], []
        processor.onset_signal.connect(onsets.append)
        processor.trial_complete_signal.connect(analyses.append)

        processor.process_samples(_samples(np.full(1500, BODY_WEIGHT)))
        processor.process_samples(_samples(cmj_force, start_ms=1500.0))

        assert onsets == [2596.0]
        assert len(analyses) == 1
        analysis = analyses[0]
        assert analysis.test_type is TestType.CMJ
        # Capture runs from 1s before onset to 1s after landing
        assert analysis.trial.timestamps[0] == 1596.0
        assert analysis.trial.timestamps[-1] == 4409.0
        assert analysis.onset_index == 1000
        assert analysis.metrics['jump_height_cm'] == pytest.approx(19.9, abs=1.0)
        assert processor.get_trials() == analyses
        assert processor.phase == ForcePlateProcessor.PHASE_ARMED

    def test_rearms_for_next_trial(self, processor, cmj_force):
        analyses = []
        processor.trial_complete_signal.connect(analyses.append)
        processor.set_body_weight(BODY_WEIGHT)
        processor.process_samples(_samples(cmj_force))
        processor.process_samples(_samples(cmj_force, start_ms=3001.0))
        assert len(analyses) == 2
        assert [a.test_type for a in analyses] == [TestType.CMJ, TestType.CMJ]

    def test_keeps_only_recent_trials(self, monkeypatch, cmj_force):
        monkeypatch.setattr(config, 'MAX_KEPT_TRIALS', 1)
        processor = ForcePlateProcessor()
        analyses, statuses = [], []
        processor.trial_complete_signal.connect(analyses.append)
        processor.status_signal.connect(statuses.append)
        processor.set_body_weight(BODY_WEIGHT)
        processor.process_samples(_samples(cmj_force))
        processor.process_samples(_samples(cmj_force, start_ms=3001.0))
        assert len(analyses) == 2
        assert processor.get_trials() == [analyses[1]]
        assert "Trial #2 complete (CMJ)." in statuses

    def test_drop_jump_with_zero_baseline(self):
        processor = ForcePlateProcessor(test_type=TestType.DJ)
        analyses = []
        processor.trial_complete_signal.connect(analyses.append)
        processor.set_body_weight(BODY_WEIGHT, baseline=0.0)

        processor.process_samples(_samples(piecewise_force(DJ_KNOTS)))

        assert len(analyses) == 1
        analysis = analyses[0]
        assert analysis.classification is None
        assert analysis.test_type is TestType.DJ
        assert analysis.metrics['contact_time_ms'] == pytest.approx(244.0, abs=5.0)
        assert analysis.metrics['flight_time_ms'] == pytest.approx(413.0, abs=5.0)

    def test_trial_is_capped(self, processor):
        analyses = []
        processor.trial_complete_signal.connect(analyses.append)
        processor.set_body_weight(BODY_WEIGHT)
        # Steps off the plates and never comes back
        processor.process_samples(_samples(np.concatenate([np.full(500, BODY_WEIGHT), np.zeros(9000)])))
        assert len(analyses) == 1
        assert analyses[0].trial.duration_ms == pytest.approx(8500.0)


class TestTiming:

    def test_regular_stream(self, processor):
        processor.process_samples(_samples(np.full(100, BODY_WEIGHT)))
        stats = processor.get_timing_statistics()
        assert stats['avg_interval_ms'] == pytest.approx(1.0)
        assert stats['max_jitter_ms'] == 0.0
        assert stats['avg_sample_rate'] == pytest.approx(1000.0)
        assert stats['jitter_warnings'] == 0
        assert stats['evicted_samples'] == 0

    def test_gap_is_reported(self, processor):
        processor.process_samples(_samples(np.full(10, BODY_WEIGHT)))
        processor.process_samples(_samples(np.full(10, BODY_WEIGHT), start_ms=19.0))
        stats = processor.get_timing_statistics()
        assert stats['gap_warnings'] == 1
        assert stats['jitter_warnings'] == 1
        assert stats['total_gaps_ms'] == pytest.approx(9.0)
        # 18 one-millisecond intervals and one of 10ms
        mean = 28.0 / 19.0
        assert stats['avg_interval_ms'] == pytest.approx(mean)
        assert stats['std_interval_ms'] == pytest.approx(math.sqrt(118.0 / 19.0 - mean ** 2))
        assert stats['avg_sample_rate'] == pytest.approx(19.0 / 28.0 * 1000.0)

    def test_diagnostics_stay_bounded(self, processor):
        processor.set_body_weight(BODY_WEIGHT)
        processor.process_samples(_samples(np.full(12000, BODY_WEIGHT)))
        buffer = processor.get_buffer()
        assert len(buffer) == buffer.max_samples
        stats = processor.get_timing_statistics()
        assert stats['evicted_samples'] == 2000
        assert stats['avg_interval_ms'] == pytest.approx(1.0)
        assert stats['std_interval_ms'] == pytest.approx(0.0)
        assert all(isinstance(value, (int, float)) for value in processor._timing_stats.values())

    def test_empty_statistics(self, processor):
        stats = processor.get_timing_statistics()
        assert stats['avg_sample_rate'] == 1000.0
        assert stats['gap_warnings'] == 0

    def test_out_of_order_sample(self, processor):
        processor.process_sample(ForceSample(10.0, 350.0, 350.0))
        with pytest.raises(ValueError, match="Out-of-order"):
            processor.process_sample(ForceSample(10.0, 350.0, 350.0))


def test_reset_data(processor):
    processor.process_samples(_samples(np.full(1500, BODY_WEIGHT)))
    processor.reset_data()
    assert processor.get_body_weight() is None
    assert processor.get_trials() == []
    assert len(processor.get_buffer()) == 0
    assert processor.phase == ForcePlateProcessor.PHASE_CALIBRATING


def test_buffer_must_hold_a_trial():
    with pytest.raises(ValueError):
        ForcePlateProcessor(buffer_seconds=5)
