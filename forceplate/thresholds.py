"""
Per-test phase thresholds and their adaptation to the athlete.

All force levels are multipliers of bodyweight. Base tables are keyed by
TestType; the calculator scales them for age, athlete level and sport
category, and re-tunes them from the confidence of earlier trials.
"""
import logging
import math
from collections import namedtuple
from dataclasses import dataclass, replace
from enum import Enum

from .movement_classifier import TestType

logger = logging.getLogger(__name__)


class AthleteLevel(Enum):
    RECREATIONAL = "recreational"
    AMATEUR = "amateur"
    SEMI_PROFESSIONAL = "semi_professional"
    PROFESSIONAL = "professional"
    ELITE = "elite"


class SportCategory(Enum):
    POWER = "power"
    AESTHETIC = "aesthetic"
    GENERAL = "general"

    @classmethod
    def from_sport(cls, sport):
        """Map a free-text sport name onto a coarse category."""
        if not sport:
            return cls.GENERAL
        name = sport.lower()
        if any(key in name for key in _POWER_SPORT_KEYWORDS):
            return cls.POWER
        if any(key in name for key in _AESTHETIC_SPORT_KEYWORDS):
            return cls.AESTHETIC
        return cls.GENERAL


_POWER_SPORT_KEYWORDS = ('weightlifting', 'powerlifting', 'wrestling', 'throw', 'shot put')
_AESTHETIC_SPORT_KEYWORDS = ('gymnastic', 'dance', 'figure skating', 'diving', 'cheer')


ForceLevels = namedtuple(
    'ForceLevels',
    ['quiet_low', 'quiet_high', 'unloading', 'braking', 'propulsion', 'takeoff', 'landing'],
)


@dataclass(frozen=True)
class PhaseThresholds:
    quiet_band: float  # +/- fraction of BW counted as standing still
    unloading: float
    braking: float
    propulsion: float
    takeoff: float
    landing: float
    min_phase_duration_s: float
    smoothing_window: int
    has_unloading: bool = True

    def force_levels(self, body_weight):
        """Absolute thresholds in N for the given bodyweight."""
        return ForceLevels(
            quiet_low=body_weight * (1.0 - self.quiet_band),
            quiet_high=body_weight * (1.0 + self.quiet_band),
            unloading=body_weight * self.unloading,
            braking=body_weight * self.braking,
            propulsion=body_weight * self.propulsion,
            takeoff=body_weight * self.takeoff,
            landing=body_weight * self.landing,
        )

    def min_phase_samples(self, sample_rate):
        return max(1, int(math.ceil(self.min_phase_duration_s * sample_rate - 1e-9)))


BASE_THRESHOLDS = {
    TestType.CMJ: PhaseThresholds(0.02, 0.9, 1.1, 1.2, 0.1, 0.5, 0.05, 5, has_unloading=True),
    TestType.SJ: PhaseThresholds(0.02, 0.95, 1.1, 1.15, 0.1, 0.5, 0.03, 3, has_unloading=False),
    TestType.DJ: PhaseThresholds(0.02, 0.8, 1.5, 1.3, 0.1, 0.8, 0.02, 3, has_unloading=True),
    # Isometric pulls never unload; SJ-like levels keep the quiet->braking edge usable
    TestType.IMTP: PhaseThresholds(0.02, 0.95, 1.1, 1.15, 0.1, 0.5, 0.03, 3, has_unloading=False),
}


def base_thresholds(test_type):
    return BASE_THRESHOLDS.get(test_type, BASE_THRESHOLDS[TestType.CMJ])


class AdaptiveThresholdCalculator:
    """Derives and re-tunes phase thresholds per athlete."""

    MIN_HISTORY = 3

    @staticmethod
    def adapt_for_athlete(thresholds, age=None, level=None, sport=None):
        """
        Scale thresholds for athlete demographics.

        Younger athletes get a tighter quiet band and shorter phases; masters
        get looser ones. Recreational athletes get more smoothing and longer
        minimum phases, elite athletes less of both. Power sports raise the
        braking and propulsion levels; aesthetic sports shorten phases and
        smooth less.
        """
        params = thresholds

        if age is not None:
            if age < 18:
                params = replace(params,
                                 quiet_band=params.quiet_band * 0.8,
                                 min_phase_duration_s=params.min_phase_duration_s * 0.8)
            elif age > 35:
                params = replace(params,
                                 quiet_band=params.quiet_band * 1.2,
                                 min_phase_duration_s=params.min_phase_duration_s * 1.2)

        if level is AthleteLevel.RECREATIONAL:
            params = replace(params,
                             smoothing_window=params.smoothing_window + 2,
                             min_phase_duration_s=params.min_phase_duration_s * 1.5)
        elif level is AthleteLevel.ELITE:
            params = replace(params,
                             smoothing_window=max(3, params.smoothing_window - 1),
                             min_phase_duration_s=params.min_phase_duration_s * 0.7)

        category = sport if isinstance(sport, SportCategory) else SportCategory.from_sport(sport)
        if category is SportCategory.POWER:
            params = replace(params,
                             braking=params.braking * 1.2,
                             propulsion=params.propulsion * 1.2)
        elif category is SportCategory.AESTHETIC:
            params = replace(params,
                             min_phase_duration_s=params.min_phase_duration_s * 0.6,
                             smoothing_window=max(3, params.smoothing_window - 2))

        return params

    @classmethod
    def get_initial_thresholds(cls, test_type, age=None, level=None, sport=None):
        """Base table for the test type adapted to the athlete."""
        return cls.adapt_for_athlete(base_thresholds(test_type), age=age, level=level, sport=sport)

    @classmethod
    def update_thresholds(cls, thresholds, previous_results, target_confidence=0.8):
        """
        Re-tune thresholds from earlier trials.

        Args:
            thresholds: Current PhaseThresholds
            previous_results: Earlier results exposing a `confidence` attribute
            target_confidence: Desired average detection confidence

        Returns:
            PhaseThresholds, unchanged when fewer than 3 results are given or
            the average confidence is within the target band
        """
        previous_results = list(previous_results)
        if len(previous_results) < cls.MIN_HISTORY:
            return thresholds

        avg_confidence = sum(r.confidence for r in previous_results) / len(previous_results)

        if avg_confidence < target_confidence:
            logger.debug("Relaxing thresholds (avg confidence %.2f)", avg_confidence)
            return replace(thresholds,
                           quiet_band=thresholds.quiet_band * 1.1,
                           min_phase_duration_s=thresholds.min_phase_duration_s * 1.1,
                           smoothing_window=thresholds.smoothing_window + 1)

        if avg_confidence > target_confidence + 0.1:
            logger.debug("Tightening thresholds (avg confidence %.2f)", avg_confidence)
            return replace(thresholds,
                           quiet_band=thresholds.quiet_band * 0.9,
                           min_phase_duration_s=thresholds.min_phase_duration_s * 0.95,
                           smoothing_window=max(3, thresholds.smoothing_window - 1))

        return thresholds
