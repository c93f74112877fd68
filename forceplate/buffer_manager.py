"""
Memory-bounded sample buffer for streaming force plate data.
Uses a circular buffer so long sessions at 1 kHz never grow without limit.
"""
import logging

import numpy as np
from collections import deque

import config
from .samples import ForceSample, ForceTrial

logger = logging.getLogger(__name__)


class SampleBuffer:
    """
    Time-ordered ring of ForceSamples with bounded memory usage.
    The oldest samples are evicted once the buffer is full.
    """

    def __init__(self, sample_rate=config.SAMPLE_RATE, max_duration_seconds=config.CONTINUOUS_BUFFER_SECONDS,
                 max_samples=None):
        """
        Initialize the sample buffer.

        Args:
            sample_rate: Nominal sampling rate in Hz
            max_duration_seconds: Buffer duration in seconds (default 10)
            max_samples: Explicit capacity, overrides max_duration_seconds
        """
        self.sample_rate = sample_rate
        self.max_samples = int(max_samples) if max_samples is not None else int(sample_rate * max_duration_seconds)
        if self.max_samples <= 0:
            raise ValueError(f"Buffer capacity must be positive, got {self.max_samples}")

        self._samples = deque(maxlen=self.max_samples)
        self._evicted = 0

    def reset(self):
        """Clear the buffer."""
        self._samples.clear()
        self._evicted = 0

    def append(self, sample: ForceSample):
        """
        Append one sample.

        Raises:
            ValueError: if the timestamp does not advance past the newest sample
        """
        if self._samples and sample.timestamp_ms <= self._samples[-1].timestamp_ms:
            raise ValueError(
                f"Out-of-order sample: {sample.timestamp_ms}ms after {self._samples[-1].timestamp_ms}ms"
            )
        if len(self._samples) == self.max_samples:
            self._evicted += 1
        self._samples.append(sample)

    def extend(self, samples):
        for sample in samples:
            self.append(sample)

    def __len__(self):
        return len(self._samples)

    def get_buffer_size(self):
        """Get current number of samples in the buffer."""
        return len(self._samples)

    @property
    def evicted_count(self):
        """Number of samples dropped on overflow since the last reset."""
        return self._evicted

    @property
    def latest(self):
        return self._samples[-1] if self._samples else None

    @property
    def earliest(self):
        return self._samples[0] if self._samples else None

    def get_recent_samples(self, num_samples):
        """Most recent num_samples samples, oldest first (fewer if the buffer is short)."""
        if num_samples <= 0 or not self._samples:
            return []
        num_samples = min(int(num_samples), len(self._samples))
        # deque has no slicing; walk from the right end
        out = [self._samples[-i] for i in range(num_samples, 0, -1)]
        return out

    def get_recent_window(self, duration_ms):
        """Samples whose timestamp lies within duration_ms of the newest sample."""
        if not self._samples:
            return []
        cutoff = self._samples[-1].timestamp_ms - duration_ms
        out = []
        for sample in reversed(self._samples):
            if sample.timestamp_ms < cutoff:
                break
            out.append(sample)
        out.reverse()
        return out

    def get_force_window(self, duration_ms):
        """
        Recent total force as arrays.

        Returns:
            tuple: (timestamps, total forces) for the samples within duration_ms of the newest
        """
        window = self.get_recent_window(duration_ms)
        timestamps = np.fromiter((s.timestamp_ms for s in window), dtype=float, count=len(window))
        forces = np.fromiter((s.total_force for s in window), dtype=float, count=len(window))
        return timestamps, forces

    def to_trial(self, num_samples=None):
        """Snapshot the buffer (or its most recent num_samples) as an immutable ForceTrial."""
        if num_samples is None:
            samples = tuple(self._samples)
        else:
            samples = tuple(self.get_recent_samples(num_samples))
        return ForceTrial(samples, self.sample_rate)
