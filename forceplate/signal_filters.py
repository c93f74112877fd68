"""
Smoothing and filtering helpers for force traces.
"""
import numpy as np
from scipy.signal import butter, filtfilt

import config


def centered_moving_average(data, window):
    """
    Centered moving average; windows are truncated at the edges.

    Sample i averages data[i - window//2 : i + window//2 + 1].
    """
    data = np.asarray(data, dtype=float)
    window = int(window)
    if window <= 0:
        raise ValueError(f"Smoothing window must be positive, got {window}")
    n = len(data)
    if n == 0 or window == 1:
        return data.copy()

    half = window // 2
    csum = np.concatenate(([0.0], np.cumsum(data)))
    idx = np.arange(n)
    lo = np.maximum(0, idx - half)
    hi = np.minimum(n, idx + half + 1)
    return (csum[hi] - csum[lo]) / (hi - lo)


def trailing_moving_average(data, window):
    """Mean of the last `window` values (all values if fewer)."""
    data = np.asarray(data, dtype=float)
    if len(data) == 0:
        return 0.0
    return float(np.mean(data[-int(window):]))


def lowpass_filter(data, sample_rate, cutoff=config.FILTER_CUTOFF, order=config.FILTER_ORDER):
    """
    Zero-phase Butterworth low-pass.

    Traces too short for filtfilt padding are returned unfiltered.
    """
    data = np.asarray(data, dtype=float)
    nyquist = sample_rate / 2.0
    fc = min(cutoff, nyquist * 0.99)
    b, a = butter(order, fc, btype='low', analog=False, fs=sample_rate)
    padlen = 3 * max(len(a), len(b))
    if len(data) <= padlen:
        return data.copy()
    return filtfilt(b, a, data)


def mean_abs_difference(data):
    """Mean absolute sample-to-sample difference (short-term noise)."""
    data = np.asarray(data, dtype=float)
    if len(data) < 2:
        return 0.0
    return float(np.mean(np.abs(np.diff(data))))
