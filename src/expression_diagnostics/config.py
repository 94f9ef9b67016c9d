"""Run configuration for Monte Carlo expression simulation.

``SimulationConfig`` is immutable and validated on construction. The near-miss
epsilon table is a plain mapping so callers can override individual
namespaces per run without touching the defaults.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

DISTRIBUTIONS: frozenset[str] = frozenset({"uniform", "gaussian"})
SAMPLING_MODES: frozenset[str] = frozenset({"static", "dynamic"})

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_NEAR_MISS_EPSILON = 0.05

# Root namespace -> near-miss epsilon. [0,1] domains use 0.05; the raw
# [-100,100] mood scale and [0,100] trait scale use 5 points.
DEFAULT_NEAR_MISS_EPSILONS: Mapping[str, float] = MappingProxyType({
    "emotions": 0.05,
    "previousEmotions": 0.05,
    "sexualStates": 0.05,
    "previousSexualStates": 0.05,
    "sexualArousal": 0.05,
    "previousSexualArousal": 0.05,
    "moodAxes": 5.0,
    "mood": 5.0,
    "previousMoodAxes": 5.0,
    "affectTraits": 5.0,
})


def epsilon_for_path(
    path: str,
    table: Mapping[str, float] | None = None,
) -> float:
    """Return the near-miss epsilon for a variable path's root namespace."""
    epsilons = DEFAULT_NEAR_MISS_EPSILONS if table is None else table
    root = path.split(".", 1)[0]
    if root in epsilons:
        return float(epsilons[root])
    return DEFAULT_NEAR_MISS_EPSILON


@dataclass(frozen=True, slots=True)
class SamplingCoverageConfig:
    """Per-variable histogram settings."""

    enabled: bool = True
    bin_count: int = 10

    def __post_init__(self) -> None:
        if self.bin_count < 1:
            raise ValueError(f"bin_count must be >= 1, got {self.bin_count}")


@dataclass(frozen=True, slots=True)
class SimulationConfig:
    """Options for a single ``MonteCarloSimulator.simulate`` call."""

    sample_count: int = 10000
    distribution: str = "uniform"
    confidence_level: float = 0.95
    track_clauses: bool = True
    max_witnesses: int = 5
    validate_var_paths: bool = True
    fail_on_unseeded_vars: bool = False
    sampling_coverage: SamplingCoverageConfig = field(default_factory=SamplingCoverageConfig)
    on_progress: Callable[[int, int], None] | None = None
    sampling_mode: str = "static"
    store_samples_for_sensitivity: bool = False
    sensitivity_sample_limit: int = 10000
    near_miss_epsilons: Mapping[str, float] = field(default_factory=lambda: DEFAULT_NEAR_MISS_EPSILONS)
    seed: int | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.sample_count < 1:
            raise ValueError(f"sample_count must be >= 1, got {self.sample_count}")
        if self.distribution not in DISTRIBUTIONS:
            raise ValueError(
                f"distribution must be one of {sorted(DISTRIBUTIONS)}, got {self.distribution!r}"
            )
        if self.sampling_mode not in SAMPLING_MODES:
            raise ValueError(
                f"sampling_mode must be one of {sorted(SAMPLING_MODES)}, got {self.sampling_mode!r}"
            )
        if not 0.0 < self.confidence_level < 1.0:
            raise ValueError(
                f"confidence_level must be in (0, 1), got {self.confidence_level}"
            )
        if self.max_witnesses < 1:
            raise ValueError(f"max_witnesses must be >= 1, got {self.max_witnesses}")
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.sensitivity_sample_limit < 0:
            raise ValueError(
                f"sensitivity_sample_limit must be >= 0, got {self.sensitivity_sample_limit}"
            )
