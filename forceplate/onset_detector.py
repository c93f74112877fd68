"""
Movement onset detection against the bodyweight baseline.
Debounces the departure from baseline so single-sample spikes never start a trial.
"""
import logging

from PyQt6.QtCore import QObject, pyqtSignal

import config

logger = logging.getLogger(__name__)


class MovementOnsetDetector(QObject):
    """
    Declares onset when |total - baseline| exceeds the threshold continuously
    for the confirmation window. Any sample back inside the threshold resets
    the timer.
    """

    onset_detected_signal = pyqtSignal(float)  # Timestamp (ms) where the deviation began
    status_signal = pyqtSignal(str)

    def __init__(self, baseline=None, threshold_n=config.ONSET_THRESHOLD_N,
                 confirm_ms=config.ONSET_CONFIRM_MS):
        """
        Args:
            baseline: Baseline force in N (usually the detected bodyweight)
            threshold_n: Absolute deviation that counts as movement
            confirm_ms: How long the deviation must persist
        """
        super().__init__()
        self._baseline = baseline
        self._threshold = threshold_n
        self._confirm_ms = confirm_ms

        self._deviation_start_ms = None
        self._onset_time_ms = None

    def reset(self):
        self._deviation_start_ms = None
        self._onset_time_ms = None

    def set_baseline(self, baseline):
        """Set a new baseline and rearm the detector."""
        self._baseline = baseline
        self.reset()

    @property
    def baseline(self):
        return self._baseline

    def process_sample(self, sample):
        """
        Process one ForceSample.

        Returns:
            bool: True on the sample that confirms onset
        """
        if self._baseline is None or self._onset_time_ms is not None:
            return False

        deviation = abs(sample.total_force - self._baseline)
        if deviation <= self._threshold:
            self._deviation_start_ms = None
            return False

        if self._deviation_start_ms is None:
            self._deviation_start_ms = sample.timestamp_ms

        if sample.timestamp_ms - self._deviation_start_ms >= self._confirm_ms:
            self._onset_time_ms = self._deviation_start_ms
            message = f"Movement onset at {self._onset_time_ms:.0f}ms (deviation {deviation:.1f}N)"
            logger.info(message)
            self.status_signal.emit(message)
            self.onset_detected_signal.emit(self._onset_time_ms)
            return True
        return False

    def is_triggered(self):
        return self._onset_time_ms is not None

    def get_onset_time(self):
        """Timestamp (ms) where the confirmed deviation began, or None."""
        return self._onset_time_ms
