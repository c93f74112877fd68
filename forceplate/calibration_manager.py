"""
Manages the stand-still / bodyweight state machine.
Detects when the subject is stable on the plates and derives the baseline force.
"""
import logging

import numpy as np
from PyQt6.QtCore import QObject, pyqtSignal

import config

logger = logging.getLogger(__name__)

# Below this the plates are considered unloaded (nobody standing on them)
SIGNIFICANT_FORCE_THRESHOLD_N = 200.0


class StabilityDetector(QObject):
    """
    Stability and bodyweight estimation over a SampleBuffer.

    Stability holds once the standard deviation of total force stays below the
    threshold for a continuous stability window, measured on sample timestamps.
    The window is then extended to the bodyweight window; if the trace is still
    stable the mean becomes the bodyweight and baseline force. Any break in the
    condition resets the timer to None.
    """

    stability_achieved_signal = pyqtSignal(float)  # Mean force of the stable window (N)
    body_weight_detected_signal = pyqtSignal(float)  # Bodyweight in N
    status_signal = pyqtSignal(str)

    PHASE_WAITING = 0  # Plates unloaded
    PHASE_SEARCHING = 1  # Loaded, waiting for a stable window
    PHASE_CONFIRMING = 2  # Stable, extending to the bodyweight window
    PHASE_READY = 3  # Bodyweight known

    def __init__(self, window_ms=config.STABILITY_WINDOW_MS,
                 std_threshold=config.STABILITY_STD_THRESHOLD_N,
                 body_weight_window_ms=config.BODY_WEIGHT_WINDOW_MS,
                 min_load_n=SIGNIFICANT_FORCE_THRESHOLD_N):
        super().__init__()
        if body_weight_window_ms < window_ms:
            raise ValueError("Bodyweight window must not be shorter than the stability window")

        self._window_ms = window_ms
        self._std_threshold = std_threshold
        self._bw_window_ms = body_weight_window_ms
        self._min_load_n = min_load_n

        self.phase = self.PHASE_WAITING
        self._stable_since_ms = None

        self._body_weight = None
        self._bw_std = None
        self._detected_at_ms = None

    def reset(self):
        """Start a new detection cycle."""
        self.phase = self.PHASE_WAITING
        self._stable_since_ms = None
        self._body_weight = None
        self._bw_std = None
        self._detected_at_ms = None

    def update(self, buffer):
        """
        Evaluate the newest sample in the buffer.

        Args:
            buffer: SampleBuffer holding the incoming stream

        Returns:
            bool: True if the detection phase changed, False otherwise
        """
        latest = buffer.latest
        if latest is None or self.phase == self.PHASE_READY:
            return False

        now = latest.timestamp_ms
        _, forces = buffer.get_force_window(self._window_ms)
        mean_force = float(np.mean(forces))
        is_stable = float(np.std(forces)) < self._std_threshold

        # STATE: plates unloaded
        if mean_force < self._min_load_n:
            if self.phase != self.PHASE_WAITING:
                self._stable_since_ms = None
                self.phase = self.PHASE_WAITING
                self._emit_status("Load removed from plates. Step on to begin.")
                return True
            return False

        phase_changed = False
        if self.phase == self.PHASE_WAITING:
            self.phase = self.PHASE_SEARCHING
            self._emit_status("Subject detected on force plate. Please stand still.")
            phase_changed = True

        if not is_stable:
            if self._stable_since_ms is not None:
                lost_during_confirmation = self.phase == self.PHASE_CONFIRMING
                self._stable_since_ms = None
                self.phase = self.PHASE_SEARCHING
                if lost_during_confirmation:
                    self._emit_status("Movement detected. Restarting bodyweight measurement.")
                return phase_changed or lost_during_confirmation
            return phase_changed

        if self._stable_since_ms is None:
            self._stable_since_ms = now

        elapsed = now - self._stable_since_ms

        # STATE: waiting for a full stable window
        if self.phase == self.PHASE_SEARCHING:
            if elapsed >= self._window_ms:
                self.phase = self.PHASE_CONFIRMING
                self._emit_status("Stability detected. Measuring bodyweight.")
                self.stability_achieved_signal.emit(mean_force)
                return True
            return phase_changed

        # STATE: extending to the bodyweight window
        if elapsed >= self._bw_window_ms:
            _, bw_forces = buffer.get_force_window(self._bw_window_ms)
            bw_std = float(np.std(bw_forces))
            if bw_std >= self._std_threshold:
                self._stable_since_ms = None
                self.phase = self.PHASE_SEARCHING
                self._emit_status("Bodyweight window unstable. Please stand still.")
                return True

            self._body_weight = float(np.mean(bw_forces))
            self._bw_std = bw_std
            self._detected_at_ms = now
            self.phase = self.PHASE_READY
            self._emit_status(f"Bodyweight detected: {self._body_weight:.1f}N")
            self.body_weight_detected_signal.emit(self._body_weight)
            return True

        return phase_changed

    def _emit_status(self, message):
        logger.info(message)
        self.status_signal.emit(message)

    def is_stable(self):
        return self.phase in (self.PHASE_CONFIRMING, self.PHASE_READY)

    def is_ready(self):
        """Bodyweight measured and usable as baseline."""
        return self.phase == self.PHASE_READY and self._body_weight is not None

    def get_bodyweight(self):
        """Estimated bodyweight in N, or None before detection."""
        return self._body_weight

    def get_baseline(self):
        return self._body_weight

    def get_bodyweight_std(self):
        """Standard deviation of the bodyweight window."""
        return self._bw_std

    def get_detection_time(self):
        """Timestamp (ms) at which the bodyweight was confirmed."""
        return self._detected_at_ms
