"""Per-variable sampling coverage histograms.

Answers "did the sampler actually explore the range this expression cares
about?" For every referenced in-scope numeric variable the accumulator keeps a
fixed-width histogram over the variable's documented domain; finalization
reports range/bin/tail coverage and a coarse rating, plus a per-domain
summary.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np

from expression_diagnostics.logic_ast import Resolver, is_number

TAIL_PERCENT = 0.1
GOOD_COVERAGE = 0.75
PARTIAL_COVERAGE = 0.4

# Root namespace -> (domain label, low, high)
COVERAGE_DOMAINS: dict[str, tuple[str, float, float]] = {
    "mood": ("moodAxes", -100.0, 100.0),
    "moodAxes": ("moodAxes", -100.0, 100.0),
    "previousMoodAxes": ("previousMoodAxes", -100.0, 100.0),
    "emotions": ("emotions", 0.0, 1.0),
    "previousEmotions": ("previousEmotions", 0.0, 1.0),
    "sexualStates": ("sexualStates", 0.0, 1.0),
    "previousSexualStates": ("previousSexualStates", 0.0, 1.0),
    "sexualArousal": ("sexualArousal", 0.0, 1.0),
    "previousSexualArousal": ("previousSexualArousal", 0.0, 1.0),
}


def coverage_domain(path: str) -> tuple[str, float, float] | None:
    """Domain for *path*, or ``None`` when it is out of scope (e.g. affect traits)."""
    parts = path.split(".")
    root = parts[0]
    if root not in COVERAGE_DOMAINS:
        return None
    scalar = root in ("sexualArousal", "previousSexualArousal")
    if len(parts) != (1 if scalar else 2):
        return None
    return COVERAGE_DOMAINS[root]


def rate_coverage(bin_coverage: float) -> str:
    if bin_coverage >= GOOD_COVERAGE:
        return "good"
    if bin_coverage >= PARTIAL_COVERAGE:
        return "partial"
    return "poor"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class VariableCoverage:
    variable_path: str
    domain: str
    sample_count: int
    min: float | None
    max: float | None
    range_coverage: float
    bin_counts: tuple[int, ...]
    bin_coverage: float
    tail_low: float
    tail_high: float
    zero_rate: float
    rating: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "variable_path": self.variable_path,
            "domain": self.domain,
            "sample_count": self.sample_count,
            "min": self.min,
            "max": self.max,
            "range_coverage": self.range_coverage,
            "bin_counts": list(self.bin_counts),
            "bin_coverage": self.bin_coverage,
            "tail_coverage": {"low": self.tail_low, "high": self.tail_high},
            "zero_rate": self.zero_rate,
            "rating": self.rating,
        }


@dataclass(frozen=True, slots=True)
class DomainCoverageSummary:
    domain: str
    variable_count: int
    range_coverage_avg: float
    bin_coverage_avg: float
    tail_low_avg: float
    tail_high_avg: float
    zero_rate_avg: float
    rating: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "variable_count": self.variable_count,
            "range_coverage_avg": self.range_coverage_avg,
            "bin_coverage_avg": self.bin_coverage_avg,
            "tail_coverage_avg": {"low": self.tail_low_avg, "high": self.tail_high_avg},
            "zero_rate_avg": self.zero_rate_avg,
            "rating": self.rating,
        }


@dataclass(frozen=True, slots=True)
class SamplingCoverage:
    bin_count: int
    variables: tuple[VariableCoverage, ...]
    summary_by_domain: tuple[DomainCoverageSummary, ...]

    def variable(self, path: str) -> VariableCoverage | None:
        return next((v for v in self.variables if v.variable_path == path), None)

    def as_dict(self) -> dict[str, Any]:
        return {
            "config": {"bin_count": self.bin_count, "tail_percent": TAIL_PERCENT},
            "variables": [v.as_dict() for v in self.variables],
            "summary_by_domain": [s.as_dict() for s in self.summary_by_domain],
        }


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------

class _VariableHistogram:
    __slots__ = ("path", "domain", "low", "high", "counts", "n", "zeros", "tail_low", "tail_high", "min", "max")

    def __init__(self, path: str, domain: str, low: float, high: float, bin_count: int) -> None:
        self.path = path
        self.domain = domain
        self.low = low
        self.high = high
        self.counts = np.zeros(bin_count, dtype=np.int64)
        self.n = 0
        self.zeros = 0
        self.tail_low = 0
        self.tail_high = 0
        self.min: float | None = None
        self.max: float | None = None

    def add(self, value: float) -> None:
        width = self.high - self.low
        clamped = max(self.low, min(self.high, value))
        bins = len(self.counts)
        index = min(bins - 1, int((clamped - self.low) / width * bins))
        self.counts[index] += 1
        self.n += 1
        if value == 0:
            self.zeros += 1
        if clamped <= self.low + TAIL_PERCENT * width:
            self.tail_low += 1
        if clamped >= self.high - TAIL_PERCENT * width:
            self.tail_high += 1
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    def finalize(self) -> VariableCoverage:
        n = self.n
        occupied = int(np.count_nonzero(self.counts))
        bin_coverage = occupied / len(self.counts)
        if self.min is None or self.max is None:
            range_coverage = 0.0
        else:
            range_coverage = max(0.0, min(1.0, (self.max - self.min) / (self.high - self.low)))
        return VariableCoverage(
            variable_path=self.path,
            domain=self.domain,
            sample_count=n,
            min=self.min,
            max=self.max,
            range_coverage=range_coverage,
            bin_counts=tuple(int(c) for c in self.counts),
            bin_coverage=bin_coverage,
            tail_low=self.tail_low / n if n else 0.0,
            tail_high=self.tail_high / n if n else 0.0,
            zero_rate=self.zeros / n if n else 0.0,
            rating=rate_coverage(bin_coverage),
        )


class SamplingCoverageAccumulator:
    """Histogram state for one run; ``None`` from ``create`` means nothing to track."""

    def __init__(self, histograms: list[_VariableHistogram], bin_count: int) -> None:
        self._histograms = histograms
        self._bin_count = bin_count

    @classmethod
    def create(cls, paths: Iterable[str], bin_count: int = 10) -> SamplingCoverageAccumulator | None:
        histograms: list[_VariableHistogram] = []
        seen: set[str] = set()
        for path in paths:
            if path in seen:
                continue
            seen.add(path)
            domain = coverage_domain(path)
            if domain is None:
                continue
            label, low, high = domain
            histograms.append(_VariableHistogram(path, label, low, high, bin_count))
        if not histograms:
            return None
        return cls(histograms, bin_count)

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(h.path for h in self._histograms)

    def record(self, context: Resolver) -> None:
        for histogram in self._histograms:
            value = context.resolve(histogram.path)
            if is_number(value):
                histogram.add(float(value))

    def finalize(self) -> SamplingCoverage:
        variables = tuple(h.finalize() for h in self._histograms)
        by_domain: dict[str, list[VariableCoverage]] = {}
        for v in variables:
            by_domain.setdefault(v.domain, []).append(v)
        summaries = []
        for domain, items in by_domain.items():
            bin_avg = float(np.mean([v.bin_coverage for v in items]))
            summaries.append(DomainCoverageSummary(
                domain=domain,
                variable_count=len(items),
                range_coverage_avg=float(np.mean([v.range_coverage for v in items])),
                bin_coverage_avg=bin_avg,
                tail_low_avg=float(np.mean([v.tail_low for v in items])),
                tail_high_avg=float(np.mean([v.tail_high for v in items])),
                zero_rate_avg=float(np.mean([v.zero_rate for v in items])),
                rating=rate_coverage(bin_avg),
            ))
        return SamplingCoverage(
            bin_count=self._bin_count,
            variables=variables,
            summary_by_domain=tuple(summaries),
        )
