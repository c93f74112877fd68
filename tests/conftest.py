"""
Shared fixtures and synthetic force traces.

All traces are piecewise-linear total-force curves at 1000 Hz for a 700 N
athlete, split between the platforms with a small left bias. Knot times are
in ms, knot forces in N.
"""
import numpy as np
import pytest

from forceplate.samples import ForceTrial

SAMPLE_RATE = 1000
BODY_WEIGHT = 700.0
LEFT_SHARE = 0.52

# Quiet -> dip to 70% BW -> 250% BW -> zero-force flight -> 300% BW landing -> quiet
CMJ_KNOTS = (
    (0, 1000, 1200, 1450, 1550, 1900, 1950, 2100, 3000),
    (700, 700, 490, 1750, 0, 0, 2100, 700, 700),
)
# Slow push from a held squat, no dip before the push
SJ_KNOTS = (
    (0, 1000, 1500, 1550, 1900, 1950, 2100, 2600),
    (700, 700, 1540, 0, 0, 2100, 700, 700),
)
# Off the plates, 250 ms contact peaking at 4.5 BW, flight, landing
DJ_KNOTS = (
    (0, 1000, 1050, 1250, 1650, 1700, 1850, 3000),
    (0, 0, 3150, 0, 0, 2100, 700, 700),
)
# Sustained pull at 3 BW, no flight
IMTP_KNOTS = (
    (0, 1000, 1300, 4000, 4300, 5000),
    (700, 700, 2100, 2100, 700, 700),
)


def piecewise_force(knots, n_samples=None):
    """Total force sampled every ms along the knot polyline."""
    times, forces = knots
    n = n_samples if n_samples is not None else int(times[-1]) + 1
    return np.interp(np.arange(n, dtype=float), times, forces)


def trial_from_total(total, left_share=LEFT_SHARE, sample_rate=SAMPLE_RATE, start_ms=0.0, **kwargs):
    total = np.asarray(total, dtype=float)
    return ForceTrial.from_arrays(total * left_share, total * (1.0 - left_share),
                                  sample_rate=sample_rate, start_ms=start_ms, **kwargs)


@pytest.fixture
def body_weight():
    return BODY_WEIGHT


@pytest.fixture
def cmj_force():
    return piecewise_force(CMJ_KNOTS)


@pytest.fixture
def cmj_trial(cmj_force):
    return trial_from_total(cmj_force)


@pytest.fixture
def sj_trial():
    return trial_from_total(piecewise_force(SJ_KNOTS))


@pytest.fixture
def dj_trial():
    return trial_from_total(piecewise_force(DJ_KNOTS))


@pytest.fixture
def imtp_trial():
    return trial_from_total(piecewise_force(IMTP_KNOTS))


@pytest.fixture
def quiet_trial():
    return trial_from_total(np.full(2000, BODY_WEIGHT))
