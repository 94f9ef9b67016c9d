"""Structural check of prototype gates against an expression's own constraints.

If an expression requires ``moodAxes.valence >= 50`` and also references
``emotions.melancholy`` whose gate is ``valence <= -0.50``, melancholy is
clamped to 0 on every sample that can satisfy the rest of the expression.
This module finds such conflicts without sampling by intersecting each gate
with the interval the expression implies on the same axis.

Only comparisons in top-level clauses or nested under AND count as
constraints; OR/NOT branches are optional and are ignored. Axis values are
compared on the gate scale: mood axes and traits divided by 100,
``sexualArousal`` as is. ``previous*`` values are checked against
``previousMoodAxes`` constraints.
"""
from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from expression_diagnostics.context_builder import EmotionCalculator
from expression_diagnostics.logic_ast import And, Compare, LogicNode, iter_var_paths
from expression_diagnostics.prototypes import GateConstraint
from expression_diagnostics.state_sampler import MOOD_AXES, TRAIT_AXES

GATED_NAMESPACES: dict[str, str] = {
    "emotions": "current",
    "sexualStates": "current",
    "previousEmotions": "previous",
    "previousSexualStates": "previous",
}

# Constraint root -> (scope, scale divisor)
_CONSTRAINT_ROOTS: dict[str, tuple[str, float]] = {
    "mood": ("current", 100.0),
    "moodAxes": ("current", 100.0),
    "previousMoodAxes": ("previous", 100.0),
    "affectTraits": ("traits", 100.0),
}

_MOOD_AXIS_SET = frozenset(MOOD_AXES)
_TRAIT_AXIS_SET = frozenset(TRAIT_AXES)


@dataclass(slots=True)
class Interval:
    """Real interval with open/closed ends."""

    low: float = -math.inf
    high: float = math.inf
    low_inclusive: bool = True
    high_inclusive: bool = True

    @classmethod
    def from_comparison(cls, op: str, value: float) -> Interval:
        if op == ">=":
            return cls(low=value)
        if op == ">":
            return cls(low=value, low_inclusive=False)
        if op == "<=":
            return cls(high=value)
        if op == "<":
            return cls(high=value, high_inclusive=False)
        return cls(low=value, high=value)

    def intersect(self, other: Interval) -> Interval:
        out = Interval(self.low, self.high, self.low_inclusive, self.high_inclusive)
        if other.low > out.low or (other.low == out.low and not other.low_inclusive):
            out.low, out.low_inclusive = other.low, other.low_inclusive
        if other.high < out.high or (other.high == out.high and not other.high_inclusive):
            out.high, out.high_inclusive = other.high, other.high_inclusive
        return out

    @property
    def is_empty(self) -> bool:
        if self.low > self.high:
            return True
        return self.low == self.high and not (self.low_inclusive and self.high_inclusive)


@dataclass(frozen=True, slots=True)
class GateVerdict:
    compatible: bool
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"compatible": self.compatible, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class GateCompatibility:
    emotions: dict[str, GateVerdict] = field(default_factory=dict)
    sexual_states: dict[str, GateVerdict] = field(default_factory=dict)
    previous_emotions: dict[str, GateVerdict] = field(default_factory=dict)
    previous_sexual_states: dict[str, GateVerdict] = field(default_factory=dict)

    def by_namespace(self) -> dict[str, dict[str, GateVerdict]]:
        return {
            "emotions": self.emotions,
            "sexualStates": self.sexual_states,
            "previousEmotions": self.previous_emotions,
            "previousSexualStates": self.previous_sexual_states,
        }

    def incompatible(self) -> list[tuple[str, str, GateVerdict]]:
        return [
            (namespace, name, verdict)
            for namespace, verdicts in self.by_namespace().items()
            for name, verdict in verdicts.items()
            if not verdict.compatible
        ]

    def as_dict(self) -> dict[str, Any]:
        return {
            namespace: {name: verdict.as_dict() for name, verdict in verdicts.items()}
            for namespace, verdicts in self.by_namespace().items()
        }


@dataclass(slots=True)
class _AxisConstraint:
    interval: Interval = field(default_factory=Interval)
    sources: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Constraint extraction
# ---------------------------------------------------------------------------

def _required_comparisons(node: LogicNode) -> Iterator[Compare]:
    if isinstance(node, Compare):
        yield node
    elif isinstance(node, And):
        for child in node.children:
            yield from _required_comparisons(child)


def _constraint_key(path: str) -> tuple[tuple[str, str], float] | None:
    parts = path.split(".")
    if len(parts) == 1 and parts[0] in ("sexualArousal", "previousSexualArousal"):
        scope = "current" if parts[0] == "sexualArousal" else "previous"
        return (scope, "sexual_arousal"), 1.0
    if len(parts) != 2 or parts[0] not in _CONSTRAINT_ROOTS:
        return None
    scope, scale = _CONSTRAINT_ROOTS[parts[0]]
    return (scope, parts[1]), scale


def collect_axis_constraints(clauses: Sequence[LogicNode]) -> dict[tuple[str, str], _AxisConstraint]:
    """Intervals implied by required comparisons, keyed by ``(scope, axis)``."""
    constraints: dict[tuple[str, str], _AxisConstraint] = {}
    for clause in clauses:
        for cmp in _required_comparisons(clause):
            if cmp.variable_path is None or cmp.threshold_value is None:
                continue
            keyed = _constraint_key(cmp.variable_path)
            if keyed is None:
                continue
            key, scale = keyed
            entry = constraints.setdefault(key, _AxisConstraint())
            entry.interval = entry.interval.intersect(
                Interval.from_comparison(cmp.operator, cmp.threshold_value / scale)
            )
            entry.sources.append(f"{cmp.variable_path} {cmp.operator} {cmp.threshold_value:g}")
    return constraints


def _gate_key(gate: GateConstraint, scope: str) -> tuple[str, str] | None:
    axis = gate.axis
    if axis in ("sexual_arousal", "SA"):
        return (scope, "sexual_arousal")
    if axis in _TRAIT_AXIS_SET:
        return ("traits", axis)
    if axis in _MOOD_AXIS_SET:
        return (scope, axis)
    return None


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def analyze_gate_compatibility(
    clauses: Sequence[LogicNode],
    calculator: EmotionCalculator,
) -> GateCompatibility:
    """Verdict per referenced gated emotion/sexual-state value."""
    constraints = collect_axis_constraints(clauses)
    result = GateCompatibility()
    targets = result.by_namespace()

    seen: set[str] = set()
    for clause in clauses:
        for path in iter_var_paths(clause):
            if path in seen:
                continue
            seen.add(path)
            parts = path.split(".")
            if len(parts) != 2 or parts[0] not in GATED_NAMESPACES:
                continue
            namespace, name = parts
            prototype = calculator.prototype_for(namespace, name)
            if prototype is None or not prototype.is_gated:
                continue
            targets[namespace][name] = _check_gates(
                name, prototype.gates, GATED_NAMESPACES[namespace], constraints
            )
    return result


def _check_gates(
    name: str,
    gates: Sequence[GateConstraint],
    scope: str,
    constraints: dict[tuple[str, str], _AxisConstraint],
) -> GateVerdict:
    for gate in gates:
        key = _gate_key(gate, scope)
        constraint = constraints.get(key) if key is not None else None
        if constraint is None:
            continue
        gate_interval = Interval.from_comparison(gate.operator, gate.value)
        if constraint.interval.intersect(gate_interval).is_empty:
            return GateVerdict(
                compatible=False,
                reason=(
                    f'{name} gate "{gate}" can never pass while the expression requires '
                    f'{" and ".join(constraint.sources)}'
                ),
            )
    return GateVerdict(compatible=True)
