"""
Biomechanical phase detection for jump and pull trials.

A single transition rule drives both operating modes:
- PhaseTracker feeds it one sample at a time during a live session.
- segment_phases smooths a whole recorded trial, walks it once and emits
  PhaseSegments, absorbing segments shorter than the minimum phase duration
  into the segment that follows.
"""
import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .signal_filters import centered_moving_average
from .thresholds import PhaseThresholds

logger = logging.getLogger(__name__)

HISTORY_SAMPLES = 50  # Recent smoothed samples handed to the transition rule
QUIET_RETURN_SAMPLES = 20  # Consecutive in-band samples needed to return to quiet standing
MIN_QUIET_HISTORY = 5
PEAK_LOOKBACK = 3  # Strictly decreasing samples that confirm the braking peak has passed
MAX_TRANSITIONS = 50  # Transition log bound; the log also restarts with each new attempt


class JumpPhase(Enum):
    QUIET_STANDING = "quiet_standing"
    UNLOADING = "unloading"
    BRAKING = "braking"
    PROPULSION = "propulsion"
    FLIGHT = "flight"
    LANDING = "landing"


CORE_PHASES = (JumpPhase.QUIET_STANDING, JumpPhase.BRAKING, JumpPhase.PROPULSION, JumpPhase.FLIGHT)

QUALITY_BAND_SCORES = {'excellent': 1.0, 'good': 0.8, 'fair': 0.6, 'poor': 0.4}


@dataclass
class PhaseSegment:
    """
    One labeled stretch of a trial. Indices are inclusive sample indices into
    the trial the segment was computed from.
    """
    phase: JumpPhase
    start_index: int
    end_index: int
    peak_force: float
    average_force: float
    duration_ms: float
    min_force: float = 0.0
    force_cv: float = 0.0
    average_asymmetry: float = 0.0
    max_asymmetry: float = 0.0
    quality_score: float = 0.0
    quality_band: str = 'poor'

    @property
    def sample_count(self):
        return self.end_index - self.start_index + 1

    def clamped(self, n_samples):
        """Segment limited to [0, n_samples), or None if nothing is left."""
        start = max(0, self.start_index)
        end = min(self.end_index, n_samples - 1)
        if end < start:
            return None
        if start == self.start_index and end == self.end_index:
            return self
        return replace(self, start_index=start, end_index=end)


@dataclass
class PhaseAnalysisResult:
    segments: List[PhaseSegment]
    confidence: float
    is_valid: bool
    thresholds: PhaseThresholds
    body_weight: float
    found_phases: Tuple[JumpPhase, ...] = ()
    reason: Optional[str] = None

    def first(self, phase):
        """First segment with the given phase tag, or None."""
        for segment in self.segments:
            if segment.phase is phase:
                return segment
        return None

    def durations_ms(self) -> Dict[JumpPhase, float]:
        """Total duration per phase tag."""
        out: Dict[JumpPhase, float] = {}
        for segment in self.segments:
            out[segment.phase] = out.get(segment.phase, 0.0) + segment.duration_ms
        return out


def _sustained_quiet(history, levels):
    if len(history) < MIN_QUIET_HISTORY:
        return False
    recent = np.asarray(history, dtype=float)[-QUIET_RETURN_SAMPLES:]
    return bool(np.all((recent >= levels.quiet_low) & (recent <= levels.quiet_high)))


def _past_peak(history):
    if len(history) < PEAK_LOOKBACK:
        return False
    recent = np.asarray(history, dtype=float)[-PEAK_LOOKBACK:]
    return bool(np.all(np.diff(recent) < 0))


def initial_phase(force, levels):
    """Starting state for a trace: airborne traces (drop jumps) start in flight."""
    return JumpPhase.FLIGHT if force < levels.takeoff else JumpPhase.QUIET_STANDING


def next_phase(current, force, history, levels, has_unloading=True):
    """
    Transition rule shared by the live and batch modes.

    Args:
        current: Current JumpPhase
        force: Current smoothed total force (N)
        history: Recent smoothed forces, oldest first, ending with `force`
        levels: ForceLevels in N
        has_unloading: False for protocols without a countermovement

    Returns:
        JumpPhase: the next phase, or `current` if no edge fires
    """
    if current is JumpPhase.QUIET_STANDING:
        if has_unloading and force < levels.unloading:
            return JumpPhase.UNLOADING
        if force > levels.braking:
            return JumpPhase.BRAKING
        return current

    if current is JumpPhase.UNLOADING:
        if force > levels.braking:
            return JumpPhase.BRAKING
        if _sustained_quiet(history, levels):
            return JumpPhase.QUIET_STANDING
        return current

    if current is JumpPhase.BRAKING:
        if force > levels.propulsion and _past_peak(history):
            return JumpPhase.PROPULSION
        if _sustained_quiet(history, levels):
            return JumpPhase.QUIET_STANDING
        return current

    if current is JumpPhase.PROPULSION:
        if force < levels.takeoff:
            return JumpPhase.FLIGHT
        if _sustained_quiet(history, levels):
            return JumpPhase.QUIET_STANDING
        return current

    if current is JumpPhase.FLIGHT:
        if force > levels.landing:
            return JumpPhase.LANDING
        return current

    # LANDING: rebound takeoff (drop jumps) or restabilization
    if force < levels.takeoff:
        return JumpPhase.FLIGHT
    if _sustained_quiet(history, levels):
        return JumpPhase.QUIET_STANDING
    return current


def score_phase_quality(duration_ms, forces, min_duration_ms):
    """
    Quality of one phase from its duration and force consistency.

    Returns:
        tuple: (score in [0, 1], band name)
    """
    if duration_ms < 2 * min_duration_ms:
        duration_score = 0.5
    elif duration_ms > 10 * min_duration_ms:
        duration_score = 0.7
    else:
        duration_score = 1.0

    forces = np.asarray(forces, dtype=float)
    mean = float(np.mean(forces)) if len(forces) else 0.0
    if len(forces) < 2 or mean == 0:
        cv = 0.0
    else:
        cv = float(np.std(forces)) / abs(mean)
    consistency = max(0.0, 1.0 - cv)

    score = (duration_score + consistency) / 2.0
    if score > 0.8:
        band = 'excellent'
    elif score > 0.6:
        band = 'good'
    elif score > 0.4:
        band = 'fair'
    else:
        band = 'poor'
    return score, band


def detection_confidence(segments):
    """
    Blend of core-phase completeness and the mean quality band of the core
    phases that were found.
    """
    found = []
    band_scores = []
    for phase in CORE_PHASES:
        segment = next((s for s in segments if s.phase is phase), None)
        if segment is not None:
            found.append(phase)
            band_scores.append(QUALITY_BAND_SCORES[segment.quality_band])
    if not found:
        return 0.0
    completeness = len(found) / len(CORE_PHASES)
    return (completeness + sum(band_scores) / len(band_scores)) / 2.0


def _build_segment(phase, start, end, total, asymmetry, sample_rate, min_duration_ms):
    forces = total[start:end + 1]
    duration_ms = (end - start + 1) * 1000.0 / sample_rate
    mean = float(np.mean(forces))
    cv = float(np.std(forces)) / abs(mean) if len(forces) > 1 and mean != 0 else 0.0
    score, band = score_phase_quality(duration_ms, forces, min_duration_ms)
    asym = asymmetry[start:end + 1] if asymmetry is not None else np.zeros(1)
    return PhaseSegment(
        phase=phase,
        start_index=int(start),
        end_index=int(end),
        peak_force=float(np.max(forces)),
        average_force=mean,
        duration_ms=duration_ms,
        min_force=float(np.min(forces)),
        force_cv=cv,
        average_asymmetry=float(np.mean(asym)),
        max_asymmetry=float(np.max(asym)),
        quality_score=score,
        quality_band=band,
    )


def segment_phases(total, body_weight, thresholds, sample_rate, asymmetry=None):
    """
    Batch segmentation of a whole trial.

    Args:
        total: 1D array of total force (N)
        body_weight: Bodyweight in N
        thresholds: PhaseThresholds for the test
        sample_rate: Sampling rate in Hz
        asymmetry: Optional per-sample asymmetry fractions for phase statistics

    Returns:
        list of PhaseSegment, time ordered, non-overlapping, no two adjacent
        segments sharing a tag
    """
    total = np.asarray(total, dtype=float)
    n = len(total)
    if n == 0:
        return []
    if body_weight <= 0:
        raise ValueError(f"Bodyweight must be positive, got {body_weight}")

    smoothed = centered_moving_average(total, thresholds.smoothing_window)
    levels = thresholds.force_levels(body_weight)
    min_samples = thresholds.min_phase_samples(sample_rate)
    min_duration_ms = thresholds.min_phase_duration_s * 1000.0
    asymmetry = np.asarray(asymmetry, dtype=float) if asymmetry is not None else None

    bounds = []  # (phase, start, end) before merging
    current = initial_phase(smoothed[0], levels)
    seg_start = 0
    for i in range(1, n):
        history = smoothed[max(0, i - HISTORY_SAMPLES + 1):i + 1]
        new = next_phase(current, smoothed[i], history, levels, thresholds.has_unloading)
        if new is current:
            continue
        if i - seg_start >= min_samples:
            bounds.append((current, seg_start, i - 1))
            seg_start = i
        # A short segment keeps seg_start so its samples fold into the next one
        current = new
    if n - seg_start >= min_samples:
        bounds.append((current, seg_start, n - 1))

    merged = []
    for phase, start, end in bounds:
        if merged and merged[-1][0] is phase:
            merged[-1] = (phase, merged[-1][1], end)
        else:
            merged.append((phase, start, end))

    return [_build_segment(phase, start, end, total, asymmetry, sample_rate, min_duration_ms)
            for phase, start, end in merged]


def analyze_phases(trial, body_weight, thresholds):
    """
    Segment a ForceTrial and score the detection.

    A trial is valid when the confidence exceeds 0.5 and at least three
    distinct phases were found.
    """
    if len(trial) < 2:
        return PhaseAnalysisResult([], 0.0, False, thresholds, body_weight,
                                   reason=f"Need at least 2 samples, got {len(trial)}")

    segments = segment_phases(trial.total, body_weight, thresholds, trial.sample_rate, trial.asymmetry)
    confidence = detection_confidence(segments)
    found = tuple(dict.fromkeys(s.phase for s in segments))
    is_valid = confidence > 0.5 and len(found) >= 3

    reason = None
    if not is_valid:
        reason = f"Confidence {confidence:.2f} with {len(found)} distinct phases"
        logger.debug("Phase detection not valid: %s", reason)
    return PhaseAnalysisResult(segments, confidence, is_valid, thresholds, body_weight, found, reason)


@dataclass
class PhaseTransition:
    phase: JumpPhase
    timestamp_ms: float
    manual: bool = False


class PhaseTracker:
    """
    Incremental phase state for one live session.

    Keeps its own trailing smoothing and bounded history so multiple sessions
    never share state.
    """

    def __init__(self, body_weight, thresholds, history_samples=HISTORY_SAMPLES, max_transitions=MAX_TRANSITIONS):
        if body_weight <= 0:
            raise ValueError(f"Bodyweight must be positive, got {body_weight}")
        self.body_weight = body_weight
        self.thresholds = thresholds
        self._levels = thresholds.force_levels(body_weight)
        self._raw = deque(maxlen=max(1, thresholds.smoothing_window))
        self._history = deque(maxlen=history_samples)
        self.phase = None
        self.transitions = deque(maxlen=max_transitions)

    def reset(self):
        self._raw.clear()
        self._history.clear()
        self.phase = None
        self.transitions.clear()

    @property
    def history(self):
        return list(self._history)

    @property
    def smoothed_force(self):
        return self._history[-1] if self._history else None

    def update(self, force, timestamp_ms):
        """
        Advance by one sample.

        Returns:
            JumpPhase: phase after this sample
        """
        self._raw.append(float(force))
        smoothed = float(np.mean(self._raw))
        self._history.append(smoothed)

        if self.phase is None:
            self.phase = initial_phase(smoothed, self._levels)
            self._record(PhaseTransition(self.phase, timestamp_ms))
            return self.phase

        new = next_phase(self.phase, smoothed, self._history, self._levels, self.thresholds.has_unloading)
        if new is not self.phase:
            logger.debug("Phase %s -> %s at %.0fms", self.phase.name, new.name, timestamp_ms)
            self.phase = new
            self._record(PhaseTransition(new, timestamp_ms))
        return self.phase

    def override(self, phase, timestamp_ms):
        """Force the current phase (user correction); history is kept."""
        self.phase = phase
        self._record(PhaseTransition(phase, timestamp_ms, manual=True))

    def _record(self, transition):
        last = self.transitions[-1] if self.transitions else None
        if (last is not None and last.phase is JumpPhase.QUIET_STANDING
                and transition.phase is not JumpPhase.QUIET_STANDING):
            # New attempt: keep only the quiet stance it starts from
            while len(self.transitions) > 1:
                self.transitions.popleft()
        self.transitions.append(transition)

    def phase_durations_ms(self, now_ms):
        """Time spent in each phase of the current attempt, from the transition log."""
        out: Dict[JumpPhase, float] = {}
        for i, transition in enumerate(self.transitions):
            end = self.transitions[i + 1].timestamp_ms if i + 1 < len(self.transitions) else now_ms
            out[transition.phase] = out.get(transition.phase, 0.0) + max(0.0, end - transition.timestamp_ms)
        return out
