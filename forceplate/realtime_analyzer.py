"""
Live analysis of one force plate session.

Samples are pushed as they arrive; re-evaluation is driven by explicit
`advance(now_ms)` calls so the host decides what drives time (a QTimer, a poll
loop, or a simulated clock in tests). Phase detection and metric snapshots run
every ANALYSIS_INTERVAL_MS, feedback messages every FEEDBACK_INTERVAL_MS. The
two cadences are independent of each other and of the sample rate.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np
from PyQt6.QtCore import QObject, pyqtSignal

import config
from .buffer_manager import SampleBuffer
from .metrics_calculator import MetricsCalculator, jump_height_from_flight_time, velocity_power
from .movement_classifier import TestType
from .phase_detector import JumpPhase, PhaseTracker, analyze_phases
from .signal_filters import mean_abs_difference, trailing_moving_average
from .thresholds import AdaptiveThresholdCalculator

logger = logging.getLogger(__name__)

RFD_SAMPLES = 100  # Trailing samples used for the live RFD estimate
MIN_ANALYSIS_SAMPLES = 10


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class FeedbackType(Enum):
    INFO = "info"
    INSTRUCTION = "instruction"
    WARNING = "warning"
    POSITIVE = "positive"
    READY = "ready"
    COMPLETE = "complete"


class FeedbackPriority(Enum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class PerformanceLevel(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"


@dataclass
class QualityAssessment:
    signal_quality: float
    asymmetry: float  # fraction of total force
    force_variability: float  # N
    overall_score: float
    warnings: List[str] = field(default_factory=list)

    @property
    def is_good_quality(self):
        return self.overall_score >= config.SIGNAL_QUALITY_THRESHOLD

    @property
    def has_warnings(self):
        return bool(self.warnings)


@dataclass
class FeedbackMessage:
    timestamp_ms: float
    phase: Optional[JumpPhase]
    text: str
    feedback_type: FeedbackType
    priority: FeedbackPriority
    warnings: List[str] = field(default_factory=list)
    performance: PerformanceLevel = PerformanceLevel.POOR

    @property
    def action_required(self):
        return self.priority is FeedbackPriority.HIGH


@dataclass
class RealTimeSnapshot:
    timestamp_ms: float
    phase: Optional[JumpPhase]
    current_force: float
    smoothed_force: float
    peak_force: float
    average_force: float
    asymmetry_index: float
    left_force: float
    right_force: float
    left_load_percent: float
    right_load_percent: float
    cop: Optional[tuple]
    rfd: float  # N/s over the trailing RFD_SAMPLES
    estimated_power: Optional[float]
    jump_height_cm: Optional[float]
    flight_time_ms: Optional[float]
    contact_time_ms: Optional[float]
    phase_durations_ms: Dict[JumpPhase, float]
    sample_count: int
    test_duration_ms: float
    quality_score: float
    final: bool = False
    metrics: Optional[object] = None  # MetricSet, only on the closing snapshot


class RealTimeOrchestrator(QObject):
    """
    Owns all mutable state of one live session: buffer, smoothing, phase
    tracker, quality counters and tick schedule.
    """

    snapshot_signal = pyqtSignal(object)  # RealTimeSnapshot
    feedback_signal = pyqtSignal(object)  # FeedbackMessage
    quality_signal = pyqtSignal(object)  # QualityAssessment
    session_state_signal = pyqtSignal(str)
    status_signal = pyqtSignal(str)

    def __init__(self, sample_rate=config.SAMPLE_RATE,
                 analysis_interval_ms=config.ANALYSIS_INTERVAL_MS,
                 feedback_interval_ms=config.FEEDBACK_INTERVAL_MS,
                 buffer_seconds=config.CONTINUOUS_BUFFER_SECONDS, parent=None):
        super().__init__(parent)
        if analysis_interval_ms <= 0 or feedback_interval_ms <= 0:
            raise ValueError("Tick intervals must be positive")
        self.sample_rate = sample_rate
        self.analysis_interval_ms = analysis_interval_ms
        self.feedback_interval_ms = feedback_interval_ms

        self._buffer = SampleBuffer(sample_rate, buffer_seconds)
        self._smoothing = deque(maxlen=config.SMOOTHING_WINDOW)
        self._metrics_calculator = MetricsCalculator()

        self.state = SessionState.IDLE
        self.failure_reason = None
        self.body_weight = None
        self.test_type = None
        self.thresholds = None
        self._tracker = None
        self._reset_session()

    def _reset_session(self):
        self._buffer.reset()
        self._smoothing.clear()
        self._pending = []
        self._next_analysis_ms = None
        self._next_feedback_ms = None
        self._signal_quality = 1.0
        self._asymmetry_warnings = 0
        self._low_signal = False
        self._force_variability = 0.0
        self._has_started_movement = False
        self.last_snapshot = None
        self.last_feedback = None
        self.last_quality = None
        # last_snapshot always holds the newest; older ones age out
        self.snapshots = deque(maxlen=config.SNAPSHOT_HISTORY_SIZE)

    # --- Session control ------------------------------------------------------

    def start(self, body_weight, test_type=TestType.CMJ, age=None, level=None, sport=None, start_ms=0.0):
        """
        Begin a session.

        Args:
            body_weight: Bodyweight in N
            test_type: TestType whose thresholds drive phase detection
            age, level, sport: Optional athlete details for threshold adaptation
            start_ms: Clock value of the first tick schedule
        """
        if body_weight is None or body_weight <= 0:
            raise ValueError(f"Bodyweight must be positive, got {body_weight}")
        if self.state is SessionState.RUNNING:
            raise ValueError("Session already running")

        self._reset_session()
        self.failure_reason = None
        self.body_weight = float(body_weight)
        self.test_type = test_type
        self.thresholds = AdaptiveThresholdCalculator.get_initial_thresholds(
            test_type, age=age, level=level, sport=sport)
        self._tracker = PhaseTracker(self.body_weight, self.thresholds, history_samples=config.PHASE_WINDOW,
                                     max_transitions=config.PHASE_TRANSITION_HISTORY)
        self._next_analysis_ms = start_ms + self.analysis_interval_ms
        self._next_feedback_ms = start_ms + self.feedback_interval_ms
        self._set_state(SessionState.RUNNING)
        self._emit_status(f"Real-time analysis started: {test_type.name}, bodyweight {self.body_weight:.1f}N")

    def stop(self):
        """
        Halt the ticks and publish a closing snapshot and feedback.

        Returns:
            The closing RealTimeSnapshot, or None when no data was received
        """
        if self.state is not SessionState.RUNNING:
            return None
        self._set_state(SessionState.STOPPED)
        if not len(self._buffer):
            self._emit_status("Real-time analysis stopped (no data)")
            return None

        self._drain_pending()
        snapshot = self._build_snapshot(final=True)
        self._publish_snapshot(snapshot)
        latest = self._buffer.latest
        feedback = FeedbackMessage(latest.timestamp_ms, self._tracker.phase, "Test completed",
                                   FeedbackType.COMPLETE, FeedbackPriority.LOW,
                                   performance=self._performance_level())
        self.last_feedback = feedback
        self.feedback_signal.emit(feedback)
        self._emit_status("Real-time analysis stopped")
        return snapshot

    def report_source_lost(self, reason):
        """Terminal failure: the sample source disappeared. Computed snapshots are kept."""
        if self.state is not SessionState.RUNNING:
            return
        self.failure_reason = reason
        logger.error("Sample source lost: %s", reason)
        self._set_state(SessionState.FAILED)
        self.status_signal.emit(f"Session failed: {reason}")

    def override_phase(self, phase, timestamp_ms=None):
        """Manual phase correction; buffers, quality state and schedule are untouched."""
        if self._tracker is None:
            raise ValueError("No session has been started")
        self._drain_pending()
        if timestamp_ms is None:
            latest = self._buffer.latest
            timestamp_ms = latest.timestamp_ms if latest is not None else 0.0
        self._tracker.override(phase, timestamp_ms)
        self._emit_status(f"Phase manually set to {phase.value}")

    @property
    def current_phase(self):
        return self._tracker.phase if self._tracker is not None else None

    @property
    def is_running(self):
        return self.state is SessionState.RUNNING

    # --- Ingestion ------------------------------------------------------------

    def add_sample(self, sample):
        """Buffer one ForceSample. Ignored unless the session is running."""
        if self.state is not SessionState.RUNNING:
            return
        self._buffer.append(sample)
        self._smoothing.append(sample.total_force)
        self._pending.append(sample)
        self._check_quality(sample)

    def add_samples(self, samples):
        for sample in samples:
            self.add_sample(sample)

    def advance(self, now_ms):
        """
        Run whichever periodic work is due at now_ms.

        Returns:
            tuple: (analysis ran, feedback ran)
        """
        if self.state is not SessionState.RUNNING:
            return False, False

        analysed = False
        if now_ms >= self._next_analysis_ms:
            self._next_analysis_ms = self._next_due(self._next_analysis_ms, self.analysis_interval_ms, now_ms)
            analysed = self._run_analysis()

        gave_feedback = False
        if now_ms >= self._next_feedback_ms:
            self._next_feedback_ms = self._next_due(self._next_feedback_ms, self.feedback_interval_ms, now_ms)
            gave_feedback = self._run_feedback(now_ms)
        return analysed, gave_feedback

    @staticmethod
    def _next_due(due, interval, now_ms):
        # Missed ticks are skipped rather than replayed
        while due <= now_ms:
            due += interval
        return due

    # --- Quality ----------------------------------------------------------------

    def _check_quality(self, sample):
        self._signal_quality = self._assess_signal_quality(sample)
        if sample.asymmetry_index > config.ASYMMETRY_WARNING_THRESHOLD:
            self._asymmetry_warnings += 1
        if len(self._smoothing) == self._smoothing.maxlen:
            self._force_variability = float(np.std(self._smoothing))
            self._low_signal = self._force_variability < config.LOW_SIGNAL_STD_N

    def _assess_signal_quality(self, sample):
        score = 1.0
        if not config.MIN_PLAUSIBLE_FORCE_N <= sample.total_force <= config.MAX_PLAUSIBLE_FORCE_N:
            score -= 0.3
        if sample.asymmetry_index > config.QUALITY_ASYMMETRY_CEILING:
            score -= 0.2
        if sample.left_force < 0 or sample.right_force < 0:
            score -= 0.4
        if len(self._smoothing) >= 5 and mean_abs_difference(self._smoothing) > config.NOISE_CEILING_N:
            score -= 0.1
        return max(0.0, score)

    def overall_quality(self):
        score = self._signal_quality
        score -= min(0.3, self._asymmetry_warnings * 0.05)
        if self._low_signal:
            score -= 0.2
        if self._has_started_movement:
            score += 0.1
        return min(1.0, max(0.0, score))

    def _quality_warnings(self):
        warnings = []
        if self._asymmetry_warnings:
            warnings.append("High asymmetry")
        if self._low_signal:
            warnings.append("Low signal variability")
        if self._signal_quality < config.SIGNAL_QUALITY_THRESHOLD:
            warnings.append("Signal quality issue")
        return warnings

    # --- Periodic work --------------------------------------------------------

    def _drain_pending(self):
        if self._tracker is None:
            return
        for sample in self._pending:
            before = self._tracker.phase
            phase = self._tracker.update(sample.total_force, sample.timestamp_ms)
            if before is not None and phase is not before:
                if phase not in (JumpPhase.QUIET_STANDING, JumpPhase.FLIGHT):
                    self._has_started_movement = True
        self._pending = []

    def _run_analysis(self):
        if len(self._buffer) < MIN_ANALYSIS_SAMPLES:
            self._drain_pending()
            return False
        self._drain_pending()
        self._publish_snapshot(self._build_snapshot())

        latest = self._buffer.latest
        quality = QualityAssessment(
            signal_quality=self._signal_quality,
            asymmetry=latest.asymmetry_index,
            force_variability=self._force_variability,
            overall_score=self.overall_quality(),
            warnings=self._quality_warnings(),
        )
        self.last_quality = quality
        self.quality_signal.emit(quality)
        return True

    def _publish_snapshot(self, snapshot):
        self.last_snapshot = snapshot
        self.snapshots.append(snapshot)
        self.snapshot_signal.emit(snapshot)

    def _flight_events(self):
        """(movement start, takeoff, landing) timestamps from the transition log."""
        movement_ms = takeoff_ms = landing_ms = None
        transitions = self._tracker.transitions
        for i, transition in enumerate(transitions):
            if i == 0:
                continue
            if movement_ms is None and transition.phase not in (JumpPhase.QUIET_STANDING, JumpPhase.FLIGHT):
                movement_ms = transition.timestamp_ms
            if transition.phase is JumpPhase.FLIGHT:
                takeoff_ms, landing_ms = transition.timestamp_ms, None
            elif transition.phase is JumpPhase.LANDING and takeoff_ms is not None and landing_ms is None:
                landing_ms = transition.timestamp_ms
        return movement_ms, takeoff_ms, landing_ms

    def _build_snapshot(self, final=False):
        latest = self._buffer.latest
        times, forces = self._buffer.get_force_window(config.METRICS_WINDOW_SECONDS * 1000.0)

        rfd = 0.0
        recent_t, recent_f = times[-RFD_SAMPLES:], forces[-RFD_SAMPLES:]
        if recent_t.size >= MIN_ANALYSIS_SAMPLES:
            dt_s = (recent_t[-1] - recent_t[0]) / 1000.0
            if dt_s > 0:
                rfd = float(recent_f[-1] - recent_f[0]) / dt_s

        movement_ms, takeoff_ms, landing_ms = self._flight_events()
        flight_ms = jump_height = contact_ms = None
        if takeoff_ms is not None and landing_ms is not None:
            flight_ms = landing_ms - takeoff_ms
            jump_height = jump_height_from_flight_time(flight_ms / 1000.0)
        if movement_ms is not None and takeoff_ms is not None and takeoff_ms > movement_ms:
            contact_ms = takeoff_ms - movement_ms

        power = None
        if movement_ms is not None:
            end_ms = takeoff_ms if takeoff_ms is not None and takeoff_ms > movement_ms else latest.timestamp_ms
            moving = forces[(times >= movement_ms) & (times <= end_ms)]
            if moving.size >= 2:
                _, power_curve = velocity_power(moving, self.body_weight, self.sample_rate)
                power = float(np.max(power_curve))

        metrics = self._final_metrics() if final else None
        return RealTimeSnapshot(
            timestamp_ms=latest.timestamp_ms,
            phase=self._tracker.phase,
            current_force=latest.total_force,
            smoothed_force=trailing_moving_average(self._smoothing, config.SMOOTHING_WINDOW),
            peak_force=float(np.max(forces)),
            average_force=float(np.mean(forces)),
            asymmetry_index=latest.asymmetry_index,
            left_force=latest.left_force,
            right_force=latest.right_force,
            left_load_percent=latest.left_load_percent,
            right_load_percent=latest.right_load_percent,
            cop=latest.combined_cop,
            rfd=rfd,
            estimated_power=power,
            jump_height_cm=jump_height,
            flight_time_ms=flight_ms,
            contact_time_ms=contact_ms,
            phase_durations_ms=self._tracker.phase_durations_ms(latest.timestamp_ms),
            sample_count=len(self._buffer),
            test_duration_ms=latest.timestamp_ms - self._buffer.earliest.timestamp_ms,
            quality_score=self.overall_quality(),
            final=final,
            metrics=metrics,
        )

    def _final_metrics(self):
        trial = self._buffer.to_trial()
        if len(trial) < 2:
            return None
        phases = analyze_phases(trial, self.body_weight, self.thresholds)
        return self._metrics_calculator.calculate(trial, self.body_weight, self.test_type, phases)

    def _run_feedback(self, now_ms):
        if not len(self._buffer) or self._tracker.phase is None:
            return False
        feedback = self._phase_feedback(now_ms)
        self.last_feedback = feedback
        self.feedback_signal.emit(feedback)
        return True

    def _phase_feedback(self, now_ms):
        phase = self._tracker.phase
        asymmetry = self._buffer.latest.asymmetry_index
        asymmetry_warning = self._asymmetry_warnings > 0
        priority = FeedbackPriority.LOW

        if phase is JumpPhase.QUIET_STANDING:
            if self.overall_quality() < config.SIGNAL_QUALITY_THRESHOLD:
                text, kind, priority = "Stand still on the platforms", FeedbackType.INSTRUCTION, FeedbackPriority.MEDIUM
            else:
                text, kind = "Ready - start the test", FeedbackType.READY
        elif phase is JumpPhase.UNLOADING:
            if asymmetry_warning:
                text, kind, priority = "Lower yourself more evenly", FeedbackType.WARNING, FeedbackPriority.MEDIUM
            else:
                text, kind = "Good - keep going", FeedbackType.POSITIVE
        elif phase is JumpPhase.BRAKING:
            text, kind = "Building force...", FeedbackType.INFO
        elif phase is JumpPhase.PROPULSION:
            if asymmetry > 0.15:
                text, kind, priority = "Push evenly with both legs!", FeedbackType.WARNING, FeedbackPriority.HIGH
            else:
                text, kind = "Excellent - jump!", FeedbackType.POSITIVE
        elif phase is JumpPhase.FLIGHT:
            height = self.last_snapshot.jump_height_cm if self.last_snapshot else None
            if height is not None and height > 30:
                text, kind = "Great jump!", FeedbackType.POSITIVE
            else:
                text, kind = "In flight...", FeedbackType.INFO
        else:
            if asymmetry > 0.20:
                text, kind, priority = "Land carefully!", FeedbackType.WARNING, FeedbackPriority.HIGH
            else:
                text, kind = "Good landing", FeedbackType.POSITIVE

        warnings = []
        if self._asymmetry_warnings > config.PERSISTENT_ASYMMETRY_COUNT:
            warnings.append("Persistent asymmetry - check technique")
        if self._low_signal:
            warnings.append("Low signal quality")

        return FeedbackMessage(now_ms, phase, text, kind, priority, warnings, self._performance_level())

    def _performance_level(self):
        height = self.last_snapshot.jump_height_cm if self.last_snapshot else None
        height = height or 0.0
        asymmetry = self._buffer.latest.asymmetry_index if len(self._buffer) else 0.0
        if height > 40 and asymmetry < 0.05:
            return PerformanceLevel.EXCELLENT
        if height > 30 and asymmetry < 0.10:
            return PerformanceLevel.GOOD
        if height > 20 and asymmetry < 0.15:
            return PerformanceLevel.AVERAGE
        return PerformanceLevel.POOR

    # --- Helpers ----------------------------------------------------------------

    def _set_state(self, state):
        self.state = state
        self.session_state_signal.emit(state.value)

    def _emit_status(self, message):
        logger.info(message)
        self.status_signal.emit(message)
