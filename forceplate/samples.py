"""
Value types for dual-platform force data.

A ForceSample is one timestamped observation of the left and right vertical
forces. A ForceTrial is an ordered, immutable run of samples at a fixed rate
and exposes the numpy views the analysis modules work on.
"""
from dataclasses import dataclass
from functools import cached_property
from typing import Optional, Tuple

import numpy as np

import config

CopPoint = Tuple[float, float]  # (x_ml, y_ap) in mm


@dataclass(frozen=True)
class ForceSample:
    """One observation from both platforms. Forces in N, timestamp in ms."""
    timestamp_ms: float
    left_force: float
    right_force: float
    left_cop: Optional[CopPoint] = None
    right_cop: Optional[CopPoint] = None

    @property
    def total_force(self) -> float:
        return self.left_force + self.right_force

    @property
    def asymmetry_index(self) -> float:
        """|L - R| / total as a fraction in [0, 1]; 0 when nothing is loaded."""
        total = self.total_force
        if total == 0:
            return 0.0
        return min(1.0, abs(self.left_force - self.right_force) / abs(total))

    @property
    def stability_index(self) -> float:
        return min(1.0, max(0.0, 1.0 - self.asymmetry_index))

    @property
    def left_load_percent(self) -> float:
        total = self.total_force
        return self.left_force / total * 100.0 if total != 0 else 50.0

    @property
    def right_load_percent(self) -> float:
        return 100.0 - self.left_load_percent

    @property
    def combined_cop(self) -> Optional[CopPoint]:
        """Force-weighted average of the two platform COPs."""
        if self.left_cop is None and self.right_cop is None:
            return None
        if self.left_cop is None:
            return self.right_cop
        if self.right_cop is None:
            return self.left_cop
        total = self.total_force
        if total <= 0:
            return ((self.left_cop[0] + self.right_cop[0]) / 2.0,
                    (self.left_cop[1] + self.right_cop[1]) / 2.0)
        wl = self.left_force / total
        wr = self.right_force / total
        return (self.left_cop[0] * wl + self.right_cop[0] * wr,
                self.left_cop[1] * wl + self.right_cop[1] * wr)


@dataclass(frozen=True)
class ForceTrial:
    """
    One test attempt: contiguous samples with a constant declared sample rate.

    Raises:
        ValueError: if the sample rate is not positive or timestamps are not
            strictly increasing.
    """
    samples: Tuple[ForceSample, ...]
    sample_rate: float = config.SAMPLE_RATE

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if not isinstance(self.samples, tuple):
            object.__setattr__(self, 'samples', tuple(self.samples))
        if len(self.samples) > 1 and np.any(np.diff(self.timestamps) <= 0):
            raise ValueError("Sample timestamps must be strictly increasing")

    @classmethod
    def from_arrays(cls, left, right, sample_rate=config.SAMPLE_RATE, start_ms=0.0,
                    timestamps=None, left_cop=None, right_cop=None):
        """
        Build a trial from per-platform force arrays.

        Args:
            left: 1D array of left-platform forces (N)
            right: 1D array of right-platform forces (N)
            sample_rate: Sampling rate in Hz
            start_ms: Timestamp of the first sample when timestamps are generated
            timestamps: Optional explicit timestamps (ms)
            left_cop: Optional [n, 2] array of left COP coordinates (mm)
            right_cop: Optional [n, 2] array of right COP coordinates (mm)
        """
        left = np.asarray(left, dtype=float)
        right = np.asarray(right, dtype=float)
        if left.shape != right.shape:
            raise ValueError(f"Left/right length mismatch: {left.shape} vs {right.shape}")
        if timestamps is None:
            timestamps = start_ms + np.arange(len(left)) * (1000.0 / sample_rate)
        samples = []
        for i in range(len(left)):
            samples.append(ForceSample(
                timestamp_ms=float(timestamps[i]),
                left_force=float(left[i]),
                right_force=float(right[i]),
                left_cop=tuple(map(float, left_cop[i])) if left_cop is not None else None,
                right_cop=tuple(map(float, right_cop[i])) if right_cop is not None else None,
            ))
        return cls(tuple(samples), sample_rate)

    def __len__(self):
        return len(self.samples)

    @cached_property
    def timestamps(self) -> np.ndarray:
        return np.array([s.timestamp_ms for s in self.samples], dtype=float)

    @cached_property
    def left(self) -> np.ndarray:
        return np.array([s.left_force for s in self.samples], dtype=float)

    @cached_property
    def right(self) -> np.ndarray:
        return np.array([s.right_force for s in self.samples], dtype=float)

    @cached_property
    def total(self) -> np.ndarray:
        return self.left + self.right

    @cached_property
    def asymmetry(self) -> np.ndarray:
        """Per-sample asymmetry fraction, 0 where total force is 0."""
        total = np.abs(self.total)
        diff = np.abs(self.left - self.right)
        out = np.zeros_like(total)
        np.divide(diff, total, out=out, where=total > 0)
        return np.clip(out, 0.0, 1.0)

    @cached_property
    def cop(self) -> Optional[np.ndarray]:
        """[n, 2] combined COP, or None if any sample lacks COP data."""
        points = [s.combined_cop for s in self.samples]
        if not points or any(p is None for p in points):
            return None
        return np.array(points, dtype=float)

    @property
    def dt(self) -> float:
        """Nominal sample interval in seconds."""
        return 1.0 / self.sample_rate

    @property
    def duration_ms(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        return self.samples[-1].timestamp_ms - self.samples[0].timestamp_ms

    def ms_to_samples(self, duration_ms) -> int:
        return int(round(duration_ms * self.sample_rate / 1000.0))

    def window(self, start, end) -> 'ForceTrial':
        """Sub-trial over sample indices [start, end), clamped to the trial bounds."""
        start = max(0, min(int(start), len(self.samples)))
        end = max(start, min(int(end), len(self.samples)))
        return ForceTrial(self.samples[start:end], self.sample_rate)

