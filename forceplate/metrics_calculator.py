"""
Post-trial metrics from force-time data.

Every metric group is computed independently: a group whose preconditions are
not met records a reason in MetricSet.errors and the remaining groups still
run. Integration uses the trapezoid rule at the trial's declared sample rate.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
from scipy.integrate import cumulative_trapezoid, trapezoid

import config
from .inference import rsi, rsi_modified
from .movement_classifier import TestType
from .phase_detector import JumpPhase
from .signal_filters import lowpass_filter

logger = logging.getLogger(__name__)


class MetricUnavailable(ValueError):
    """A metric's preconditions are not met for this trial."""


@dataclass
class MetricSet:
    """Metric name -> value for one completed trial, plus per-metric failures."""
    values: Dict[str, Optional[float]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    test_type: Optional[TestType] = None
    body_weight: Optional[float] = None

    def __getitem__(self, name):
        return self.values[name]

    def __contains__(self, name):
        return name in self.values

    def get(self, name, default=None):
        return self.values.get(name, default)

    def as_dict(self):
        """Flat dict of the computed values, with an 'Analysis Note' when something failed."""
        out = dict(self.values)
        if self.errors:
            out['Analysis Note'] = "; ".join(f"{k}: {v}" for k, v in self.errors.items())
        return out


# --- Event detection -------------------------------------------------------

def find_takeoff_index(forces, body_weight, start_index=0, threshold_bw=config.TAKEOFF_THRESHOLD_BW):
    """First sample at or after start_index below threshold_bw x BW, or None."""
    forces = np.asarray(forces, dtype=float)
    below = np.flatnonzero(forces[start_index:] < body_weight * threshold_bw)
    return int(below[0] + start_index) if below.size else None


def find_landing_index(forces, body_weight, takeoff_index, threshold_bw=config.LANDING_THRESHOLD_BW):
    """First sample after takeoff above threshold_bw x BW; None if the trial ends first."""
    if takeoff_index is None:
        return None
    forces = np.asarray(forces, dtype=float)
    above = np.flatnonzero(forces[takeoff_index + 1:] > body_weight * threshold_bw)
    return int(above[0] + takeoff_index + 1) if above.size else None


def find_contact_index(forces, body_weight, threshold_bw=config.TAKEOFF_THRESHOLD_BW):
    """First loaded sample of a trace that starts airborne (drop jump initial contact)."""
    forces = np.asarray(forces, dtype=float)
    loaded = np.flatnonzero(forces >= body_weight * threshold_bw)
    return int(loaded[0]) if loaded.size else None


def find_movement_onset(forces, body_weight, band=0.05):
    """First sample outside BW +/- band, or None for a flat trace."""
    forces = np.asarray(forces, dtype=float)
    outside = np.flatnonzero(np.abs(forces - body_weight) > body_weight * band)
    return int(outside[0]) if outside.size else None


# --- Physics ---------------------------------------------------------------

def jump_height_from_impulse(forces, body_weight, takeoff_index, sample_rate, start_index=0,
                             gravity=config.GRAVITY):
    """
    Jump height (cm) by impulse-momentum.

    Positive net force (F - BW) is integrated up to the takeoff sample, divided
    by mass for takeoff velocity, and h = v^2 / (2g). Never negative.
    """
    if body_weight <= 0:
        raise ValueError(f"Bodyweight must be positive, got {body_weight}")
    forces = np.asarray(forces, dtype=float)
    net = np.clip(forces[start_index:takeoff_index] - body_weight, 0.0, None)
    if len(net) < 2:
        return 0.0
    impulse = trapezoid(net, dx=1.0 / sample_rate)
    velocity = impulse / (body_weight / gravity)
    return max(0.0, velocity ** 2 / (2 * gravity) * 100.0)


def jump_height_from_flight_time(flight_time_s, gravity=config.GRAVITY):
    """Jump height (cm) from flight time: g t^2 / 8."""
    return max(0.0, gravity * flight_time_s ** 2 / 8.0 * 100.0)


def impulse(forces, sample_rate, body_weight=None):
    """Trapezoidal impulse (N.s); net impulse when body_weight is given."""
    forces = np.asarray(forces, dtype=float)
    if len(forces) < 2:
        return 0.0
    if body_weight is not None:
        forces = forces - body_weight
    return float(trapezoid(forces, dx=1.0 / sample_rate))


def rate_of_force_development(forces, sample_rate, start_index, window_ms):
    """Delta force / delta time (N/s) between start_index and start_index + window_ms."""
    window = int(round(window_ms * sample_rate / 1000.0))
    end_index = start_index + window
    if window <= 0 or start_index < 0 or end_index >= len(forces):
        raise MetricUnavailable(f"{window_ms}ms window from sample {start_index} exceeds the trial")
    return float((forces[end_index] - forces[start_index]) / (window / sample_rate))


def peak_rfd(forces, sample_rate, window_ms=config.RFD_WINDOW_MS):
    """Largest RFD over any window_ms span (N/s)."""
    forces = np.asarray(forces, dtype=float)
    window = max(1, int(round(window_ms * sample_rate / 1000.0)))
    if len(forces) <= window:
        raise MetricUnavailable(f"Trace shorter than the {window_ms}ms RFD window")
    return float(np.max((forces[window:] - forces[:-window]) / (window / sample_rate)))


def velocity_power(forces, body_weight, sample_rate, gravity=config.GRAVITY):
    """
    Centre-of-mass velocity (from rest) and instantaneous power.

    Returns:
        tuple: (velocity array m/s, power array W)
    """
    forces = np.asarray(forces, dtype=float)
    mass = body_weight / gravity
    acceleration = (forces - body_weight) / mass
    velocity = cumulative_trapezoid(acceleration, dx=1.0 / sample_rate, initial=0.0)
    return velocity, forces * velocity


def cop_metrics(cop, sample_rate):
    """
    Postural sway indices from an [n, 2] COP trace (mm).

    Area is the bounding box range_ml x range_ap, not a convex hull.
    """
    cop = np.asarray(cop, dtype=float)
    if cop.ndim != 2 or cop.shape[0] < 2:
        raise MetricUnavailable("Need at least 2 centre-of-pressure points")
    ml, ap = cop[:, 0], cop[:, 1]
    range_ml = float(np.ptp(ml))
    range_ap = float(np.ptp(ap))
    dx, dy = np.diff(ml), np.diff(ap)
    path = float(np.sum(np.hypot(dx, dy)))
    duration_s = (cop.shape[0] - 1) / sample_rate
    return {
        'cop_range_ml': range_ml,
        'cop_range_ap': range_ap,
        'cop_total_range': float(np.hypot(range_ml, range_ap)),
        'cop_area': range_ml * range_ap,
        'cop_path_length': path,
        'cop_velocity': path / duration_s,
        'cop_velocity_ml': float(np.sum(np.abs(dx))) / duration_s,
        'cop_velocity_ap': float(np.sum(np.abs(dy))) / duration_s,
    }


# --- Calculator ------------------------------------------------------------

class MetricsCalculator:
    """
    Derives a MetricSet from a recorded trial.
    """

    _RECOVERABLE = (MetricUnavailable, ValueError, ZeroDivisionError, IndexError, FloatingPointError)

    def __init__(self, gravity=config.GRAVITY, lowpass_cutoff=None):
        """
        Args:
            gravity: Gravitational acceleration in m/s^2
            lowpass_cutoff: Optional Butterworth cutoff (Hz) applied to total force first
        """
        self.gravity = gravity
        self.lowpass_cutoff = lowpass_cutoff

    def calculate(self, trial, body_weight, test_type=TestType.CMJ, phases=None):
        """
        Compute all metrics applicable to the test type.

        Args:
            trial: ForceTrial
            body_weight: Bodyweight in N
            test_type: TestType of the trial
            phases: Optional PhaseAnalysisResult for phase-based metrics

        Returns:
            MetricSet
        """
        if body_weight is None or body_weight <= 0:
            raise ValueError(f"Bodyweight must be positive, got {body_weight}")

        metrics = MetricSet(test_type=test_type, body_weight=body_weight)
        if len(trial) < 2:
            metrics.errors['trial'] = f"Not enough data for analysis ({len(trial)} samples)"
            return metrics

        forces = trial.total
        if self.lowpass_cutoff:
            forces = lowpass_filter(forces, trial.sample_rate, cutoff=self.lowpass_cutoff)
        ctx = _TrialContext(trial, forces, body_weight, test_type, phases, self.gravity)

        self._run(metrics, 'basic', self._basic_metrics, ctx)
        self._run(metrics, 'impulse', self._impulse_metrics, ctx)
        if test_type is TestType.IMTP:
            self._run(metrics, 'isometric', self._isometric_metrics, ctx)
        else:
            self._run(metrics, 'events', self._event_metrics, ctx)
            self._run(metrics, 'jump_height', self._jump_height_metrics, ctx)
            self._run(metrics, 'power', self._power_metrics, ctx)
            self._run(metrics, 'rfd', self._jump_rfd_metrics, ctx)
            self._run(metrics, 'landing', self._landing_metrics, ctx)
            if test_type is TestType.DJ:
                self._run(metrics, 'reactive_strength', self._reactive_strength_metrics, ctx)
        if phases is not None:
            self._run(metrics, 'phases', self._phase_metrics, ctx)
        self._run(metrics, 'cop', self._cop_metrics, ctx)

        return metrics

    def _run(self, metrics, group, func, ctx):
        # Metrics already computed earlier in the run are visible to later groups
        ctx.values = metrics.values
        try:
            with np.errstate(divide='raise', invalid='raise'):
                values, errors = func(ctx)
        except self._RECOVERABLE as e:
            logger.warning("Metric group '%s' not computable: %s", group, e)
            metrics.errors[group] = str(e)
            return
        metrics.values.update(values)
        for name, reason in errors.items():
            logger.debug("Metric '%s' not computable: %s", name, reason)
            metrics.errors[name] = reason

    # Each group returns (values, per-metric errors)

    def _basic_metrics(self, ctx):
        forces, bw = ctx.forces, ctx.body_weight
        mean = float(np.mean(forces))
        total_sum = float(np.sum(ctx.trial.total))
        values = {
            'peak_force': float(np.max(forces)),
            'average_force': mean,
            'min_force': float(np.min(forces)),
            'relative_peak_force': float(np.max(forces)) / bw,
            'average_asymmetry': float(np.mean(ctx.trial.asymmetry)) * 100.0,
            'max_asymmetry': float(np.max(ctx.trial.asymmetry)) * 100.0,
            'force_cv': float(np.std(forces)) / abs(mean) * 100.0 if mean != 0 else 0.0,
            'duration_ms': ctx.trial.duration_ms,
        }
        errors = {}
        if total_sum != 0:
            values['left_load_percent'] = float(np.sum(ctx.trial.left)) / total_sum * 100.0
            values['right_load_percent'] = 100.0 - values['left_load_percent']
        else:
            errors['left_load_percent'] = "No load on either platform"
        return values, errors

    def _impulse_metrics(self, ctx):
        rate = ctx.trial.sample_rate
        return {
            'impulse': impulse(ctx.forces, rate),
            'net_impulse': impulse(ctx.forces, rate, ctx.body_weight),
        }, {}

    def _event_metrics(self, ctx):
        takeoff, landing = ctx.takeoff_index, ctx.landing_index
        values = {
            'takeoff_index': takeoff,
            'landing_index': landing,
            'flight_time_ms': None,
        }
        errors = {}
        if takeoff is None:
            errors['takeoff_index'] = "Force never dropped below the takeoff threshold"
        elif landing is None:
            errors['flight_time_ms'] = "No landing before the end of the trial"
        else:
            values['flight_time_ms'] = (landing - takeoff) * 1000.0 / ctx.trial.sample_rate
        return values, errors

    def _jump_height_metrics(self, ctx):
        takeoff = ctx.takeoff_index
        if takeoff is None:
            raise MetricUnavailable("No takeoff detected")
        rate, bw = ctx.trial.sample_rate, ctx.body_weight
        values = {}
        errors = {}

        flight_ms = ctx.values.get('flight_time_ms')
        if flight_ms is not None:
            values['jump_height_flight_cm'] = jump_height_from_flight_time(flight_ms / 1000.0, self.gravity)
        else:
            errors['jump_height_flight_cm'] = "No flight time"

        start = ctx.contact_index if ctx.test_type is TestType.DJ else 0
        start = start or 0
        height = jump_height_from_impulse(ctx.forces, bw, takeoff, rate, start_index=start, gravity=self.gravity)
        values['jump_height_impulse_cm'] = height
        values['takeoff_velocity'] = float(np.sqrt(2 * self.gravity * height / 100.0))
        values['takeoff_net_impulse'] = impulse(ctx.forces[start:takeoff], rate, bw)

        # Drop jumps land with momentum from the box, so impulse height is not meaningful there
        if ctx.test_type is TestType.DJ:
            if 'jump_height_flight_cm' not in values:
                raise MetricUnavailable("Drop jump height needs a measurable flight time")
            values['jump_height_cm'] = values['jump_height_flight_cm']
        else:
            values['jump_height_cm'] = height
        return values, errors

    def _power_metrics(self, ctx):
        takeoff = ctx.takeoff_index
        if takeoff is None:
            raise MetricUnavailable("No takeoff detected")
        start = ctx.movement_start
        if start is None or takeoff - start < 2:
            raise MetricUnavailable("No movement before takeoff")
        velocity, power = velocity_power(ctx.forces[start:takeoff + 1], ctx.body_weight,
                                         ctx.trial.sample_rate, self.gravity)
        peak = float(np.max(power))
        return {
            'peak_velocity': float(np.max(velocity)),
            'peak_power': peak,
            'mean_power': float(np.mean(power)),
            'relative_peak_power': peak / ctx.mass,
        }, {}

    def _jump_rfd_metrics(self, ctx):
        end = ctx.takeoff_index if ctx.takeoff_index is not None else len(ctx.forces)
        start = ctx.movement_start
        if start is None:
            raise MetricUnavailable("No movement detected")
        segment = ctx.forces[start:end]
        if len(segment) < 2:
            raise MetricUnavailable("No samples between movement onset and takeoff")
        peak_idx = int(np.argmax(segment))
        rate = ctx.trial.sample_rate
        values = {
            'peak_propulsive_force': float(segment[peak_idx]),
            'time_to_peak_ms': peak_idx * 1000.0 / rate,
        }
        errors = {}
        try:
            values['peak_rfd'] = peak_rfd(segment, rate)
        except MetricUnavailable as e:
            errors['peak_rfd'] = str(e)
        if peak_idx > 0:
            values['average_rfd'] = float((segment[peak_idx] - segment[0]) / (peak_idx / rate))
        else:
            errors['average_rfd'] = "Peak force at movement onset"
        return values, errors

    def _landing_metrics(self, ctx):
        landing = ctx.landing_index
        if landing is None:
            raise MetricUnavailable("No landing detected")
        after = ctx.forces[landing:]
        return {
            'peak_landing_force': float(np.max(after)),
            'relative_landing_force': float(np.max(after)) / ctx.body_weight,
        }, {}

    def _reactive_strength_metrics(self, ctx):
        contact, takeoff = ctx.contact_index, ctx.takeoff_index
        if contact is None or takeoff is None or takeoff <= contact:
            raise MetricUnavailable("No measurable ground contact")
        contact_ms = (takeoff - contact) * 1000.0 / ctx.trial.sample_rate
        values = {'contact_time_ms': contact_ms}
        errors = {}
        height = ctx.values.get('jump_height_cm')
        if height is None:
            errors['rsi'] = "No jump height"
        else:
            values['rsi'] = rsi(height, contact_ms)
        flight_ms = ctx.values.get('flight_time_ms')
        if flight_ms is None:
            errors['rsi_modified'] = "No flight time"
        else:
            values['rsi_modified'] = rsi_modified(flight_ms, contact_ms)
        return values, errors

    def _isometric_metrics(self, ctx):
        forces, bw, rate = ctx.forces, ctx.body_weight, ctx.trial.sample_rate
        above = np.flatnonzero(forces > bw * config.FORCE_ONSET_THRESHOLD_BW)
        if not above.size:
            raise MetricUnavailable("Force never exceeded the isometric onset threshold")
        onset = int(above[0])
        peak_idx = int(np.argmax(forces))
        values = {
            'force_onset_ms': onset * 1000.0 / rate,
            'time_to_peak_ms': max(0, peak_idx - onset) * 1000.0 / rate,
            'peak_net_force': float(forces[peak_idx]) - bw,
        }
        errors = {}
        try:
            values['peak_rfd'] = peak_rfd(forces[onset:], rate)
        except MetricUnavailable as e:
            errors['peak_rfd'] = str(e)

        for start_ms, end_ms in config.ISOMETRIC_RFD_WINDOWS_MS:
            name = f'rfd_{start_ms}_{end_ms}ms'
            first = onset + int(round(start_ms * rate / 1000.0))
            try:
                values[name] = rate_of_force_development(forces, rate, first, end_ms - start_ms)
            except MetricUnavailable as e:
                errors[name] = str(e)

        for t_ms in config.ISOMETRIC_FORCE_TIMES_MS:
            idx = onset + int(round(t_ms * rate / 1000.0))
            if idx < len(forces):
                values[f'force_at_{t_ms}ms'] = float(forces[idx])
            else:
                errors[f'force_at_{t_ms}ms'] = "Beyond the end of the trial"

        for t_ms in config.ISOMETRIC_IMPULSE_TIMES_MS:
            idx = onset + int(round(t_ms * rate / 1000.0))
            if idx < len(forces):
                values[f'impulse_{t_ms}ms'] = impulse(forces[onset:idx + 1], rate, bw)
            else:
                errors[f'impulse_{t_ms}ms'] = "Beyond the end of the trial"
        return values, errors

    def _phase_metrics(self, ctx):
        phases = ctx.phases
        durations = phases.durations_ms()
        rate, bw = ctx.trial.sample_rate, ctx.body_weight
        n = len(ctx.forces)
        values = {
            'unloading_duration_ms': durations.get(JumpPhase.UNLOADING, 0.0),
            'braking_duration_ms': durations.get(JumpPhase.BRAKING, 0.0),
            'propulsion_duration_ms': durations.get(JumpPhase.PROPULSION, 0.0),
            'phase_confidence': phases.confidence,
        }
        errors = {}
        unloading = values['unloading_duration_ms']
        propulsion = values['propulsion_duration_ms']
        if unloading + propulsion == 0:
            values['jump_strategy'] = 0.5
        else:
            values['jump_strategy'] = propulsion / (unloading + propulsion)

        for phase, name in ((JumpPhase.BRAKING, 'braking_impulse'), (JumpPhase.PROPULSION, 'propulsion_impulse')):
            segment = phases.first(phase)
            segment = segment.clamped(n) if segment is not None else None
            if segment is None:
                errors[name] = f"No {phase.value} phase"
                continue
            values[name] = impulse(ctx.forces[segment.start_index:segment.end_index + 1], rate, bw)
        return values, errors

    def _cop_metrics(self, ctx):
        cop = ctx.trial.cop
        if cop is None:
            raise MetricUnavailable("No centre-of-pressure data")
        return cop_metrics(cop, ctx.trial.sample_rate), {}


class _TrialContext:
    """Lazily derived events shared by the metric groups of one run."""

    def __init__(self, trial, forces, body_weight, test_type, phases, gravity):
        self.trial = trial
        self.forces = forces
        self.body_weight = body_weight
        self.test_type = test_type
        self.phases = phases
        self.mass = body_weight / gravity
        self.values = {}
        self.contact_index = None
        if test_type is TestType.DJ:
            self.contact_index = find_contact_index(forces, body_weight)
        search_from = self.contact_index if self.contact_index is not None else 0
        self.takeoff_index = find_takeoff_index(forces, body_weight, search_from)
        self.landing_index = find_landing_index(forces, body_weight, self.takeoff_index)

    @property
    def movement_start(self):
        if self.test_type is TestType.DJ:
            return self.contact_index
        return find_movement_onset(self.forces, self.body_weight)
