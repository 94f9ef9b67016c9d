"""Binomial confidence helpers for trigger-rate estimates.

Exposes:
- two-sided z critical values for any confidence level
- the Wilson score interval (well-behaved at rates near 0/1 and small N)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from statistics import NormalDist


@dataclass(frozen=True, slots=True)
class ConfidenceInterval:
    low: float
    high: float

    @property
    def width(self) -> float:
        return self.high - self.low

    def as_dict(self) -> dict[str, float]:
        return {"low": self.low, "high": self.high}


def _bounded(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def z_score(level: float) -> float:
    """Two-sided standard-normal critical value, e.g. 0.95 -> 1.959964."""
    if not 0.0 < level < 1.0:
        raise ValueError(f"confidence level must be in (0, 1), got {level}")
    return NormalDist().inv_cdf((1.0 + level) / 2.0)


def wilson_interval(successes: int, n: int, level: float = 0.95) -> ConfidenceInterval:
    """Wilson score interval for ``successes`` out of ``n`` trials."""
    if n <= 0:
        return ConfidenceInterval(low=0.0, high=1.0)
    if not 0 <= successes <= n:
        raise ValueError(f"successes must be in [0, {n}], got {successes}")
    rate = successes / n
    z = z_score(level)
    z2 = z * z
    denominator = 1.0 + z2 / n
    center = rate + z2 / (2.0 * n)
    margin = z * math.sqrt((rate * (1.0 - rate) + z2 / (4.0 * n)) / n)
    low = _bounded((center - margin) / denominator)
    high = _bounded((center + margin) / denominator)
    # Guard the rate against float rounding at the extremes
    return ConfidenceInterval(low=min(low, rate), high=max(high, rate))
