"""Immutable result records returned by ``MonteCarloSimulator.simulate``."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from expression_diagnostics.clause_stats import ClauseReport
from expression_diagnostics.confidence import ConfidenceInterval
from expression_diagnostics.context_builder import EvaluationContext
from expression_diagnostics.errors import UnseededVarWarning
from expression_diagnostics.gate_compatibility import GateCompatibility
from expression_diagnostics.sampling_coverage import SamplingCoverage
from expression_diagnostics.state_sampler import AxisState, SampledState

SAMPLING_DESCRIPTIONS: dict[str, tuple[str, str]] = {
    "static": (
        "Independent sampling (tests logical feasibility)",
        "Trigger rates reflect logical feasibility, not observed runtime frequency.",
    ),
    "dynamic": (
        "Coupled sampling with Gaussian deltas (tests fixed transition model)",
        "Uses fixed sigma values (mood: 15, sexual: 12, libido: 8).",
    ),
}


@dataclass(frozen=True, slots=True)
class SamplingMetadata:
    mode: str
    description: str
    note: str

    @classmethod
    def for_mode(cls, mode: str) -> SamplingMetadata:
        description, note = SAMPLING_DESCRIPTIONS[mode]
        return cls(mode=mode, description=description, note=note)

    def as_dict(self) -> dict[str, str]:
        return {"mode": self.mode, "description": self.description, "note": self.note}


@dataclass(frozen=True, slots=True)
class Witness:
    """A sampled state on which the full expression fired."""

    current: AxisState
    previous: AxisState
    affect_traits: dict[str, float] | None
    computed_emotions: dict[str, float]
    previous_computed_emotions: dict[str, float]

    def as_dict(self) -> dict[str, Any]:
        return {
            "current": self.current.as_dict(),
            "previous": self.previous.as_dict(),
            "affect_traits": dict(self.affect_traits) if self.affect_traits is not None else None,
            "computed_emotions": dict(self.computed_emotions),
            "previous_computed_emotions": dict(self.previous_computed_emotions),
        }


@dataclass(frozen=True, slots=True)
class FailedLeaf:
    description: str
    actual: float | None
    threshold: float | None
    violation: float | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "actual": self.actual,
            "threshold": self.threshold,
            "violation": self.violation,
        }


@dataclass(frozen=True, slots=True)
class NearestMiss:
    """The non-firing sample with the fewest failing leaves."""

    sample: SampledState
    failed_leaf_count: int
    failed_leaves: tuple[FailedLeaf, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "sample": self.sample.as_dict(),
            "failed_leaf_count": self.failed_leaf_count,
            "failed_leaves": [leaf.as_dict() for leaf in self.failed_leaves],
        }


@dataclass(frozen=True, slots=True)
class WitnessAnalysis:
    witnesses: tuple[Witness, ...] = ()
    nearest_miss: NearestMiss | None = None

    @property
    def best_witness(self) -> Witness | None:
        return self.witnesses[0] if self.witnesses else None

    def as_dict(self) -> dict[str, Any]:
        best = self.best_witness
        return {
            "witnesses": [w.as_dict() for w in self.witnesses],
            "best_witness": best.as_dict() if best is not None else None,
            "nearest_miss": self.nearest_miss.as_dict() if self.nearest_miss is not None else None,
        }


@dataclass(frozen=True, slots=True)
class SimulationResult:
    expression_id: str
    trigger_rate: float
    trigger_count: int
    sample_count: int
    confidence_interval: ConfidenceInterval
    distribution: str
    sampling_mode: str
    sampling_metadata: SamplingMetadata
    clause_failures: tuple[ClauseReport, ...]
    witness_analysis: WitnessAnalysis
    gate_compatibility: GateCompatibility
    unseeded_var_warnings: tuple[UnseededVarWarning, ...] = ()
    sampling_coverage: SamplingCoverage | None = None
    stored_contexts: tuple[EvaluationContext, ...] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "expression_id": self.expression_id,
            "trigger_rate": self.trigger_rate,
            "trigger_count": self.trigger_count,
            "sample_count": self.sample_count,
            "confidence_interval": self.confidence_interval.as_dict(),
            "distribution": self.distribution,
            "sampling_mode": self.sampling_mode,
            "sampling_metadata": self.sampling_metadata.as_dict(),
            "clause_failures": [c.as_dict() for c in self.clause_failures],
            "sampling_coverage": (
                self.sampling_coverage.as_dict() if self.sampling_coverage is not None else None
            ),
            "witness_analysis": self.witness_analysis.as_dict(),
            "gate_compatibility": self.gate_compatibility.as_dict(),
            "unseeded_var_warnings": [w.as_dict() for w in self.unseeded_var_warnings],
            "stored_context_count": (
                len(self.stored_contexts) if self.stored_contexts is not None else None
            ),
        }
