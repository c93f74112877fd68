"""
Ingestion facade for a live force plate stream:
- Buffering samples in a bounded ring
- Stand-still and bodyweight detection
- Movement onset detection against the bodyweight baseline
- Capturing one trial from just before onset until after landing
- Post-trial analysis (classification, phases, metrics)

Each concern lives in its own module; this class only wires them together
and forwards their notifications.
"""
import logging
import math
from collections import deque

import numpy as np
from PyQt6.QtCore import QObject, pyqtSignal, pyqtSlot

import config
from .buffer_manager import SampleBuffer
from .calibration_manager import StabilityDetector
from .onset_detector import MovementOnsetDetector
from .samples import ForceTrial
from .trial_analyzer import TrialAnalyzer

logger = logging.getLogger(__name__)


class ForcePlateProcessor(QObject):
    """
    Processes ForceSamples one at a time and emits a TrialAnalysis for every
    completed trial.
    """

    status_signal = pyqtSignal(str)
    body_weight_signal = pyqtSignal(float)
    onset_signal = pyqtSignal(float)
    trial_complete_signal = pyqtSignal(object)  # TrialAnalysis

    PHASE_CALIBRATING = 0  # Waiting for a stable bodyweight
    PHASE_ARMED = 1  # Bodyweight known, waiting for movement
    PHASE_CAPTURING = 2  # Recording a trial

    def __init__(self, sample_rate=config.SAMPLE_RATE, test_type=None, analyzer=None,
                 buffer_seconds=config.CONTINUOUS_BUFFER_SECONDS, parent=None):
        """
        Args:
            sample_rate: Nominal sample rate in Hz
            test_type: Fixed TestType, or None to classify each trial
            analyzer: TrialAnalyzer used for completed trials
            buffer_seconds: Ring buffer length
        """
        super().__init__(parent)
        if buffer_seconds < config.MAX_TRIAL_SECONDS + config.PRE_ONSET_CAPTURE_MS / 1000.0:
            raise ValueError("Buffer is shorter than the longest trial that can be captured")

        self.sample_rate = sample_rate
        self.test_type = test_type
        self._expected_interval_ms = 1000.0 / sample_rate

        self._buffer = SampleBuffer(sample_rate, buffer_seconds)
        self._stability = StabilityDetector()
        self._onset = MovementOnsetDetector()
        self._analyzer = analyzer or TrialAnalyzer()

        self._connect_module_signals()
        self._reset_state()

    def _connect_module_signals(self):
        """Forward notifications from the detectors through this class."""
        self._stability.status_signal.connect(lambda msg: self.status_signal.emit(msg))
        self._stability.body_weight_detected_signal.connect(self._on_body_weight)
        self._onset.onset_detected_signal.connect(self._on_onset)

    def _reset_state(self):
        self.phase = self.PHASE_CALIBRATING
        self._body_weight = None
        self._capture_start_ms = None
        self._onset_ms = None
        self._takeoff_ms = None
        self._landing_ms = None
        # Completed trials are handed off on trial_complete_signal; only the latest few are kept
        self._trials = deque(maxlen=config.MAX_KEPT_TRIALS)
        self._trial_count = 0
        # Running aggregates only; nothing here grows with session length
        self._timing_stats = {
            'interval_count': 0,
            'interval_sum': 0.0,
            'interval_mean': 0.0,
            'interval_m2': 0.0,  # Welford sum of squared deviations
            'max_jitter': 0.0,
            'total_gaps': 0.0,
            'jitter_warnings': 0,
            'gap_warnings': 0,
        }
        self._last_timestamp = None

    @pyqtSlot()
    def reset_data(self):
        """Clear buffers and detection state before a new session."""
        self._buffer.reset()
        self._stability.reset()
        self._onset.set_baseline(None)
        self._reset_state()
        self._emit_status("Data buffers and trial state cleared.")

    def set_body_weight(self, body_weight, baseline=None):
        """
        Skip stand-still detection with a known bodyweight.

        Args:
            body_weight: Bodyweight in N
            baseline: Force read while waiting for movement; defaults to the
                bodyweight, use 0 for a drop jump started off the plates
        """
        if body_weight is None or body_weight <= 0:
            raise ValueError(f"Bodyweight must be positive, got {body_weight}")
        self._body_weight = float(body_weight)
        self._onset.set_baseline(self._body_weight if baseline is None else float(baseline))
        self.phase = self.PHASE_ARMED
        self._emit_status(f"Bodyweight set to {self._body_weight:.1f}N. Ready for movement.")

    @pyqtSlot(object)
    def process_sample(self, sample):
        """
        Feed one ForceSample.

        Raises:
            ValueError: if the sample is not newer than the previous one
        """
        self._buffer.append(sample)
        self._track_timing(sample.timestamp_ms)

        if self.phase == self.PHASE_CALIBRATING:
            self._stability.update(self._buffer)
        elif self.phase == self.PHASE_ARMED:
            self._onset.process_sample(sample)
        elif self.phase == self.PHASE_CAPTURING:
            self._track_flight(sample)
            if self._capture_finished(sample.timestamp_ms):
                self._finish_trial()

    def process_samples(self, samples):
        for sample in samples:
            self.process_sample(sample)

    def _on_body_weight(self, body_weight):
        self._body_weight = body_weight
        self._onset.set_baseline(self._stability.get_baseline())
        self.phase = self.PHASE_ARMED
        self.body_weight_signal.emit(body_weight)

    def _on_onset(self, onset_ms):
        self._onset_ms = onset_ms
        self._capture_start_ms = onset_ms - config.PRE_ONSET_CAPTURE_MS
        self._takeoff_ms = None
        self._landing_ms = None
        self.phase = self.PHASE_CAPTURING
        self.onset_signal.emit(onset_ms)
        self._emit_status("Movement detected. Recording trial.")

    def _track_flight(self, sample):
        force = sample.total_force
        if self._takeoff_ms is None:
            if force < self._body_weight * config.TAKEOFF_THRESHOLD_BW:
                self._takeoff_ms = sample.timestamp_ms
        elif self._landing_ms is None and force > self._body_weight * config.LANDING_THRESHOLD_BW:
            self._landing_ms = sample.timestamp_ms
            self._emit_status(f"Landing detected. Flight time {self._landing_ms - self._takeoff_ms:.0f}ms")

    def _capture_finished(self, now_ms):
        if self._landing_ms is not None and now_ms - self._landing_ms >= config.POST_LANDING_CAPTURE_MS:
            return True
        return now_ms - self._onset_ms >= config.MAX_TRIAL_SECONDS * 1000.0

    def _finish_trial(self):
        newest = self._buffer.latest.timestamp_ms
        samples = self._buffer.get_recent_window(newest - self._capture_start_ms)
        trial = ForceTrial(tuple(samples), self.sample_rate)
        onset_index = int(np.searchsorted(trial.timestamps, self._onset_ms))

        analysis = self._analyzer.analyze(trial, self._body_weight, self.test_type, onset_index)
        self._trials.append(analysis)
        self._trial_count += 1
        label = analysis.test_type.name if analysis.test_type else "undetected"
        self._emit_status(f"Trial #{self._trial_count} complete ({label}).")
        self.trial_complete_signal.emit(analysis)

        # Rearm for the next trial on the same bodyweight
        self._onset.reset()
        self._capture_start_ms = None
        self._onset_ms = None
        self.phase = self.PHASE_ARMED

    def _track_timing(self, timestamp_ms):
        if self._last_timestamp is not None:
            interval = timestamp_ms - self._last_timestamp
            self._add_interval(interval)
            jitter = abs(interval - self._expected_interval_ms)
            if jitter > self._timing_stats['max_jitter']:
                self._timing_stats['max_jitter'] = jitter
            if jitter > config.TIMING_JITTER_THRESHOLD_MS:
                self._timing_stats['jitter_warnings'] += 1
                if self._timing_stats['jitter_warnings'] <= 10:  # Log first 10 warnings
                    logger.warning("Timing jitter detected: %.1fms interval (expected %.1fms)",
                                   interval, self._expected_interval_ms)
            if interval > self._expected_interval_ms * config.TIMING_GAP_FACTOR:
                self._timing_stats['total_gaps'] += interval - self._expected_interval_ms
                self._timing_stats['gap_warnings'] += 1
        self._last_timestamp = timestamp_ms

    def _add_interval(self, interval):
        timing = self._timing_stats
        timing['interval_count'] += 1
        timing['interval_sum'] += interval
        delta = interval - timing['interval_mean']
        timing['interval_mean'] += delta / timing['interval_count']
        timing['interval_m2'] += delta * (interval - timing['interval_mean'])

    def _emit_status(self, message):
        logger.info(message)
        self.status_signal.emit(message)

    def get_body_weight(self):
        return self._body_weight

    def get_trials(self):
        """Most recent TrialAnalysis objects (up to MAX_KEPT_TRIALS) since the last reset."""
        return list(self._trials)

    def get_buffer(self):
        return self._buffer

    def get_timing_statistics(self):
        """Inter-sample timing diagnostics."""
        timing = self._timing_stats
        stats = {}
        count = timing['interval_count']
        if count:
            stats['avg_interval_ms'] = timing['interval_mean']
            stats['max_jitter_ms'] = timing['max_jitter']
            stats['std_interval_ms'] = math.sqrt(timing['interval_m2'] / count)
            total_ms = timing['interval_sum']
            stats['avg_sample_rate'] = count / total_ms * 1000.0 if total_ms > 0 else float(self.sample_rate)
        else:
            stats['avg_interval_ms'] = 0.0
            stats['max_jitter_ms'] = 0.0
            stats['std_interval_ms'] = 0.0
            stats['avg_sample_rate'] = float(self.sample_rate)

        stats['jitter_warnings'] = timing['jitter_warnings']
        stats['gap_warnings'] = timing['gap_warnings']
        stats['total_gaps_ms'] = timing['total_gaps']
        stats['evicted_samples'] = self._buffer.evicted_count
        return stats
