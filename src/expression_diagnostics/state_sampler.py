"""Random raw-state generation for Monte Carlo sampling.

Each call to ``RandomStateGenerator.generate`` produces one independent
``SampledState``: current and previous mood/sexual axes plus affect traits,
all on their raw integer component scales.

Two sampling modes:

* ``static`` (default) — current and previous are drawn independently, which
  tests whether an expression is logically reachable at all.
* ``dynamic`` — current is previous plus a gaussian delta, which tests
  reachability under a fixed transition model.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from expression_diagnostics.config import DISTRIBUTIONS, SAMPLING_MODES

# ---------------------------------------------------------------------------
# Axis definitions
# ---------------------------------------------------------------------------

MOOD_AXES: tuple[str, ...] = (
    "valence",
    "arousal",
    "agency_control",
    "threat",
    "engagement",
    "future_expectancy",
    "self_evaluation",
    "affiliation",
)

TRAIT_AXES: tuple[str, ...] = ("affective_empathy", "cognitive_empathy", "harm_aversion")

MOOD_RANGE: tuple[int, int] = (-100, 100)
TRAIT_RANGE: tuple[int, int] = (0, 100)

SEXUAL_AXIS_RANGES: dict[str, tuple[int, int]] = {
    "sex_excitation": (0, 100),
    "sex_inhibition": (0, 100),
    "baseline_libido": (-50, 50),
}

# Gaussian delta sigmas for dynamic mode
MOOD_DELTA_SIGMA = 15.0
SEXUAL_DELTA_SIGMA = 12.0
LIBIDO_DELTA_SIGMA = 8.0


# ---------------------------------------------------------------------------
# State records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AxisState:
    """Mood and sexual axes for one moment in time."""

    mood: dict[str, float] = field(default_factory=dict)
    sexual: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict[str, dict[str, float]]:
        return {"mood": dict(self.mood), "sexual": dict(self.sexual)}


@dataclass(frozen=True, slots=True)
class SampledState:
    """One Monte Carlo draw."""

    current: AxisState
    previous: AxisState
    affect_traits: dict[str, float] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "current": self.current.as_dict(),
            "previous": self.previous.as_dict(),
            "affect_traits": dict(self.affect_traits) if self.affect_traits is not None else None,
        }


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class RandomStateGenerator:
    """Draws raw states from a private ``numpy.random.Generator``."""

    def __init__(self, seed: int | None = None, *, rng: np.random.Generator | None = None) -> None:
        self._rng = rng if rng is not None else np.random.default_rng(seed)

    def generate(self, distribution: str = "uniform", sampling_mode: str = "static") -> SampledState:
        if distribution not in DISTRIBUTIONS:
            raise ValueError(f"Unknown distribution: {distribution!r}")
        if sampling_mode not in SAMPLING_MODES:
            raise ValueError(f"Unknown sampling mode: {sampling_mode!r}")

        previous_mood = {axis: self._sample_int(distribution, *MOOD_RANGE) for axis in MOOD_AXES}
        previous_sexual = {
            axis: self._sample_int(distribution, lo, hi)
            for axis, (lo, hi) in SEXUAL_AXIS_RANGES.items()
        }
        # Traits are personality, shared by current and previous
        traits = {axis: self._sample_int(distribution, *TRAIT_RANGE) for axis in TRAIT_AXES}

        if sampling_mode == "static":
            current_mood = {axis: self._sample_int(distribution, *MOOD_RANGE) for axis in MOOD_AXES}
            current_sexual = {
                axis: self._sample_int(distribution, lo, hi)
                for axis, (lo, hi) in SEXUAL_AXIS_RANGES.items()
            }
        else:
            current_mood = {
                axis: self._step(value, MOOD_DELTA_SIGMA, *MOOD_RANGE)
                for axis, value in previous_mood.items()
            }
            current_sexual = {}
            for axis, value in previous_sexual.items():
                sigma = LIBIDO_DELTA_SIGMA if axis == "baseline_libido" else SEXUAL_DELTA_SIGMA
                current_sexual[axis] = self._step(value, sigma, *SEXUAL_AXIS_RANGES[axis])

        return SampledState(
            current=AxisState(mood=current_mood, sexual=current_sexual),
            previous=AxisState(mood=previous_mood, sexual=previous_sexual),
            affect_traits=traits,
        )

    def sample_value(self, distribution: str, low: float, high: float) -> float:
        """Draw one continuous value in ``[low, high]``."""
        if distribution == "gaussian":
            mid = (low + high) / 2.0
            spread = (high - low) / 6.0  # 99.7% inside the range before clamping
            value = float(self._rng.normal(mid, spread))
            return max(low, min(high, value))
        return low + float(self._rng.random()) * (high - low)

    def _sample_int(self, distribution: str, low: int, high: int) -> int:
        return int(round(self.sample_value(distribution, low, high)))

    def _step(self, value: float, sigma: float, low: int, high: int) -> int:
        raw = value + float(self._rng.normal(0.0, sigma))
        return int(round(max(low, min(high, raw))))
