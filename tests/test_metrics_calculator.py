"""Unit tests for post-trial metric computation."""
import numpy as np
import pytest

from conftest import BODY_WEIGHT, SAMPLE_RATE, trial_from_total
from forceplate.metrics_calculator import (MetricsCalculator, MetricSet, MetricUnavailable, cop_metrics,
                                           find_landing_index, find_takeoff_index, impulse,
                                           jump_height_from_flight_time, jump_height_from_impulse, peak_rfd,
                                           rate_of_force_development, velocity_power)
from forceplate.movement_classifier import TestType
from forceplate.phase_detector import analyze_phases
from forceplate.thresholds import BASE_THRESHOLDS


class TestPhysics:

    def test_flight_time_height(self):
        assert jump_height_from_flight_time(0.5) == pytest.approx(9.81 * 0.25 / 8 * 100)
        assert jump_height_from_flight_time(0.0) == 0.0

    def test_impulse_height_of_cmj(self, cmj_force):
        height = jump_height_from_impulse(cmj_force, BODY_WEIGHT, 1547, SAMPLE_RATE)
        assert height == pytest.approx(19.9, abs=0.3)

    def test_zero_impulse_gives_zero_height(self):
        forces = np.concatenate([np.full(500, BODY_WEIGHT), np.full(200, 300.0), np.zeros(100)])
        takeoff = find_takeoff_index(forces, BODY_WEIGHT)
        assert jump_height_from_impulse(forces, BODY_WEIGHT, takeoff, SAMPLE_RATE) == 0.0

    def test_impulse_height_rejects_bad_bodyweight(self, cmj_force):
        with pytest.raises(ValueError):
            jump_height_from_impulse(cmj_force, 0.0, 1547, SAMPLE_RATE)

    def test_impulse(self):
        assert impulse(np.full(1001, 800.0), 1000) == pytest.approx(800.0)
        assert impulse(np.full(1001, 800.0), 1000, body_weight=700.0) == pytest.approx(100.0)
        assert impulse([5.0], 1000) == 0.0

    def test_velocity_from_rest(self):
        velocity, power = velocity_power(np.full(100, BODY_WEIGHT), BODY_WEIGHT, SAMPLE_RATE)
        assert np.all(velocity == 0.0)
        assert np.all(power == 0.0)

    def test_rfd_windows(self):
        ramp = np.arange(0.0, 300.0) * 2.0  # 2 N per ms
        assert rate_of_force_development(ramp, 1000, 10, 100) == pytest.approx(2000.0)
        assert peak_rfd(ramp, 1000) == pytest.approx(2000.0)
        with pytest.raises(MetricUnavailable):
            rate_of_force_development(ramp, 1000, 250, 100)
        with pytest.raises(MetricUnavailable):
            peak_rfd(ramp[:40], 1000)


class TestEvents:

    def test_cmj_events(self, cmj_force):
        takeoff = find_takeoff_index(cmj_force, BODY_WEIGHT)
        assert takeoff == 1547
        assert find_landing_index(cmj_force, BODY_WEIGHT, takeoff) == 1909

    def test_no_landing(self, cmj_force):
        truncated = cmj_force[:1700]
        takeoff = find_takeoff_index(truncated, BODY_WEIGHT)
        assert find_landing_index(truncated, BODY_WEIGHT, takeoff) is None
        assert find_landing_index(truncated, BODY_WEIGHT, None) is None


class TestCopMetrics:

    def test_straight_line_sway(self):
        cop = np.column_stack([np.linspace(0.0, 10.0, 1001), np.zeros(1001)])
        out = cop_metrics(cop, 1000)
        assert out['cop_range_ml'] == pytest.approx(10.0)
        assert out['cop_range_ap'] == 0.0
        assert out['cop_area'] == 0.0
        assert out['cop_path_length'] == pytest.approx(10.0)
        assert out['cop_velocity'] == pytest.approx(10.0)
        assert out['cop_velocity_ml'] == pytest.approx(10.0)

    def test_needs_two_points(self):
        with pytest.raises(MetricUnavailable):
            cop_metrics(np.zeros((1, 2)), 1000)


class TestMetricsCalculator:

    def test_cmj(self, cmj_trial):
        metrics = MetricsCalculator().calculate(cmj_trial, BODY_WEIGHT, TestType.CMJ)
        assert 0.0 < metrics['jump_height_cm'] < 100.0
        assert metrics['jump_height_cm'] == pytest.approx(19.9, abs=0.3)
        assert metrics['flight_time_ms'] == pytest.approx(362.0)
        assert metrics['jump_height_flight_cm'] == pytest.approx(16.07, abs=0.05)
        assert metrics['peak_force'] == pytest.approx(2100.0)
        assert metrics['relative_peak_force'] == pytest.approx(3.0)
        assert metrics['left_load_percent'] == pytest.approx(52.0)
        assert metrics['average_asymmetry'] == pytest.approx(4.0)
        assert metrics['peak_landing_force'] == pytest.approx(2100.0)
        assert metrics['peak_velocity'] > 0
        assert metrics['peak_power'] > 0
        assert metrics['peak_rfd'] > 0
        assert 'contact_time_ms' not in metrics
        assert 'cop' in metrics.errors

    def test_repeatable(self, cmj_trial):
        calculator = MetricsCalculator()
        first = calculator.calculate(cmj_trial, BODY_WEIGHT, TestType.CMJ)
        second = calculator.calculate(cmj_trial, BODY_WEIGHT, TestType.CMJ)
        assert first.values == second.values
        assert first.errors == second.errors

    def test_no_landing_is_representable(self, cmj_force):
        trial = trial_from_total(cmj_force[:1700])
        metrics = MetricsCalculator().calculate(trial, BODY_WEIGHT, TestType.CMJ)
        assert metrics['landing_index'] is None
        assert metrics['flight_time_ms'] is None
        assert 'flight_time_ms' in metrics.errors
        assert 'landing' in metrics.errors
        assert metrics['jump_height_cm'] == pytest.approx(19.9, abs=0.3)

    def test_failed_groups_do_not_stop_the_rest(self, quiet_trial):
        metrics = MetricsCalculator().calculate(quiet_trial, BODY_WEIGHT, TestType.CMJ)
        assert metrics['peak_force'] == pytest.approx(BODY_WEIGHT)
        assert metrics['net_impulse'] == pytest.approx(0.0)
        for group in ('jump_height', 'power', 'rfd', 'landing'):
            assert group in metrics.errors
        assert 'jump_height_cm' not in metrics
        assert 'Analysis Note' in metrics.as_dict()

    def test_drop_jump(self, dj_trial):
        metrics = MetricsCalculator().calculate(dj_trial, BODY_WEIGHT, TestType.DJ)
        assert metrics['contact_time_ms'] == pytest.approx(244.0)
        assert metrics['flight_time_ms'] == pytest.approx(413.0)
        assert metrics['jump_height_cm'] == pytest.approx(metrics['jump_height_flight_cm'])
        assert metrics['rsi'] == pytest.approx((metrics['jump_height_cm'] / 100.0) / 0.244)
        assert metrics['rsi_modified'] == pytest.approx(413.0 / 244.0)

    def test_isometric_pull(self, imtp_trial):
        metrics = MetricsCalculator().calculate(imtp_trial, BODY_WEIGHT, TestType.IMTP)
        assert metrics['force_onset_ms'] == pytest.approx(1008.0)
        assert metrics['time_to_peak_ms'] == pytest.approx(292.0)
        assert metrics['peak_net_force'] == pytest.approx(1400.0)
        assert metrics['rfd_0_50ms'] == pytest.approx(14000.0 / 3.0)
        assert metrics['rfd_100_200ms'] == pytest.approx(14000.0 / 3.0)
        assert metrics['force_at_50ms'] == pytest.approx(700.0 + 58 * 14.0 / 3.0)
        assert metrics['impulse_100ms'] == pytest.approx(0.1 * (8 + 108) / 2 * 14.0 / 3.0)
        assert 'jump_height_cm' not in metrics
        assert 'jump_height' not in metrics.errors

    def test_phase_metrics(self, cmj_trial):
        phases = analyze_phases(cmj_trial, BODY_WEIGHT, BASE_THRESHOLDS[TestType.CMJ])
        metrics = MetricsCalculator().calculate(cmj_trial, BODY_WEIGHT, TestType.CMJ, phases=phases)
        assert metrics['braking_duration_ms'] == pytest.approx(195.0, abs=5.0)
        assert 0.0 < metrics['jump_strategy'] < 1.0
        assert metrics['braking_impulse'] > 0
        assert metrics['phase_confidence'] == phases.confidence

    def test_cop_metrics_from_trial(self):
        n = 1001
        cop = np.column_stack([np.linspace(0.0, 10.0, n), np.zeros(n)])
        trial = trial_from_total(np.full(n, BODY_WEIGHT), left_cop=cop, right_cop=cop)
        metrics = MetricsCalculator().calculate(trial, BODY_WEIGHT, TestType.CMJ)
        assert metrics['cop_range_ml'] == pytest.approx(10.0)
        assert 'cop' not in metrics.errors

    def test_lowpass_keeps_height(self, cmj_trial):
        metrics = MetricsCalculator(lowpass_cutoff=50).calculate(cmj_trial, BODY_WEIGHT, TestType.CMJ)
        assert metrics['jump_height_cm'] == pytest.approx(19.9, abs=1.0)

    def test_short_trial(self):
        metrics = MetricsCalculator().calculate(trial_from_total([700.0]), BODY_WEIGHT)
        assert metrics.values == {}
        assert 'trial' in metrics.errors

    def test_rejects_bad_bodyweight(self, cmj_trial):
        with pytest.raises(ValueError):
            MetricsCalculator().calculate(cmj_trial, 0.0)


def test_metric_set_access():
    metrics = MetricSet(values={'a': 1.0, 'b': None})
    assert metrics['a'] == 1.0
    assert 'b' in metrics
    assert metrics.get('c', 5) == 5
    assert metrics.as_dict() == {'a': 1.0, 'b': None}
