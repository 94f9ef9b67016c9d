"""Per-clause statistics tree.

``build_stats_tree`` mirrors a parsed clause one node per logical node; the
simulator feeds each sample's ``NodeOutcome`` tree into ``record`` and, at
the end of the run, ``finalize_clause_reports`` freezes everything into
``ClauseReport``/``NodeReport`` value objects.

Counters per node:

* evaluation/failure counts, violation sum and a violation reservoir
* observed min/max/mean and a reservoir for ``observed_p99``
* near-miss count (``|observed - threshold| <= epsilon``)
* in-regime counts (samples where every other top-level clause passed)
* gate counts for leaves whose value comes from a gated prototype
* last-mile counts (root nodes only)
* sibling-conditioned fail counts for children of AND/OR nodes
* OR contribution counts (first passing alternative gets credit)
"""
from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from expression_diagnostics.config import epsilon_for_path
from expression_diagnostics.logic_ast import (
    And,
    Compare,
    LogicNode,
    Not,
    NodeOutcome,
    Or,
    children_of,
    describe,
)

DEFAULT_RESERVOIR_CAPACITY = 4096

TUNING_DIRECTIONS: dict[str, dict[str, str]] = {
    ">=": {"loosen": "threshold_down", "tighten": "threshold_up"},
    ">": {"loosen": "threshold_down", "tighten": "threshold_up"},
    "<=": {"loosen": "threshold_up", "tighten": "threshold_down"},
    "<": {"loosen": "threshold_up", "tighten": "threshold_down"},
}


# ---------------------------------------------------------------------------
# Streaming percentile
# ---------------------------------------------------------------------------

class StreamingPercentile:
    """Uniform reservoir sample with numpy percentile queries.

    Exact while fewer than ``capacity`` values were added; afterwards each
    value is kept with probability ``capacity / count`` (Algorithm R).
    """

    __slots__ = ("_capacity", "_values", "_count", "_rng")

    def __init__(self, capacity: int = DEFAULT_RESERVOIR_CAPACITY, *, seed: int = 0) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._values: list[float] = []
        self._count = 0
        self._rng = np.random.default_rng(seed)

    @property
    def count(self) -> int:
        return self._count

    def add(self, value: float) -> None:
        self._count += 1
        if len(self._values) < self._capacity:
            self._values.append(value)
            return
        slot = int(self._rng.integers(0, self._count))
        if slot < self._capacity:
            self._values[slot] = value

    def percentile(self, q: float) -> float | None:
        if not self._values:
            return None
        return float(np.percentile(np.asarray(self._values, dtype=float), q))


# ---------------------------------------------------------------------------
# Mutable tree
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class ClauseStatsNode:
    """Running counters for one logical node of one clause."""

    id: str
    node_type: str
    description: str
    variable_path: str | None = None
    comparison_operator: str | None = None
    threshold_value: float | None = None
    near_miss_epsilon: float | None = None
    gated: bool = False
    is_single_clause: bool = False
    children: list[ClauseStatsNode] = field(default_factory=list)

    evaluation_count: int = 0
    failure_count: int = 0
    violation_sum: float = 0.0
    violations: StreamingPercentile = field(default_factory=StreamingPercentile)

    observed: StreamingPercentile = field(default_factory=StreamingPercentile)
    observed_sum: float = 0.0
    max_observed_value: float | None = None
    min_observed_value: float | None = None
    near_miss_count: int = 0

    in_regime_evaluation_count: int = 0
    in_regime_failure_count: int = 0
    in_regime_min: float | None = None
    in_regime_max: float | None = None

    gate_pass_in_regime_count: int = 0
    gate_fail_in_regime_count: int = 0
    gate_pass_and_clause_pass_in_regime_count: int = 0
    gate_pass_and_clause_fail_in_regime_count: int = 0

    others_passed_count: int = 0
    last_mile_fail_count: int = 0
    siblings_passed_count: int = 0
    sibling_conditioned_fail_count: int = 0
    or_success_count: int = 0
    or_contribution_count: int = 0

    @property
    def is_compound(self) -> bool:
        return self.node_type != "leaf"

    # -- recording ---------------------------------------------------------

    def record(self, outcome: NodeOutcome, *, in_regime: bool) -> None:
        """Fold one sample's outcome into this node and its descendants."""
        passed = outcome.passed
        self.evaluation_count += 1
        if not passed:
            self.failure_count += 1
            if outcome.violation is not None:
                self.violation_sum += outcome.violation
                self.violations.add(outcome.violation)

        observed = outcome.observed_value
        if observed is not None:
            self._record_observed(observed)
            if self.threshold_value is not None and self.near_miss_epsilon is not None:
                if abs(observed - self.threshold_value) <= self.near_miss_epsilon:
                    self.near_miss_count += 1

        if in_regime:
            self.in_regime_evaluation_count += 1
            if not passed:
                self.in_regime_failure_count += 1
            if observed is not None:
                self.in_regime_min = observed if self.in_regime_min is None else min(self.in_regime_min, observed)
                self.in_regime_max = observed if self.in_regime_max is None else max(self.in_regime_max, observed)
            if self.gated and outcome.gate_passed is not None:
                if outcome.gate_passed:
                    self.gate_pass_in_regime_count += 1
                    if passed:
                        self.gate_pass_and_clause_pass_in_regime_count += 1
                    else:
                        self.gate_pass_and_clause_fail_in_regime_count += 1
                else:
                    self.gate_fail_in_regime_count += 1

        if not self.children:
            return
        for child, child_outcome in zip(self.children, outcome.children):
            child.record(child_outcome, in_regime=in_regime)
        if self.node_type in ("and", "or"):
            self._record_siblings(outcome.children)
        if self.node_type == "or" and passed:
            contributed = False
            for child, child_outcome in zip(self.children, outcome.children):
                child.or_success_count += 1
                if child_outcome.passed and not contributed:
                    child.or_contribution_count += 1
                    contributed = True

    def record_last_mile(self, *, passed: bool) -> None:
        """Called on clause roots for samples where every other clause passed."""
        self.others_passed_count += 1
        if not passed:
            self.last_mile_fail_count += 1

    def _record_observed(self, value: float) -> None:
        self.observed.add(value)
        self.observed_sum += value
        if self.max_observed_value is None or value > self.max_observed_value:
            self.max_observed_value = value
        if self.min_observed_value is None or value < self.min_observed_value:
            self.min_observed_value = value

    def _record_siblings(self, outcomes: Sequence[NodeOutcome]) -> None:
        failed = [i for i, o in enumerate(outcomes) if not o.passed]
        if len(failed) > 1:
            return
        for i, child in enumerate(self.children):
            if not failed or failed == [i]:
                child.siblings_passed_count += 1
                if failed == [i]:
                    child.sibling_conditioned_fail_count += 1

    # -- derived -----------------------------------------------------------

    @property
    def failure_rate(self) -> float:
        return self.failure_count / self.evaluation_count if self.evaluation_count else 0.0

    @property
    def observed_p99(self) -> float | None:
        p99 = self.observed.percentile(99)
        if p99 is None or self.max_observed_value is None:
            return p99
        return min(p99, self.max_observed_value)

    @property
    def ceiling_gap(self) -> float | None:
        t = self.threshold_value
        if t is None or self.max_observed_value is None or self.min_observed_value is None:
            return None
        if self.comparison_operator in (">=", ">"):
            return t - self.max_observed_value
        if self.comparison_operator in ("<=", "<"):
            return self.min_observed_value - t
        return None

    @property
    def redundant_in_regime(self) -> bool | None:
        """True when every in-regime observed value already satisfies the comparison."""
        t = self.threshold_value
        lo, hi = self.in_regime_min, self.in_regime_max
        if t is None or lo is None or hi is None:
            return None
        op = self.comparison_operator
        if op == ">=":
            return lo >= t
        if op == ">":
            return lo > t
        if op == "<=":
            return hi <= t
        if op == "<":
            return hi < t
        if op == "==":
            return lo == hi == t
        return None

    def finalize(self) -> NodeReport:
        n = self.evaluation_count
        leaf = not self.is_compound
        gated = leaf and self.gated
        gate_total = self.gate_pass_in_regime_count + self.gate_fail_in_regime_count
        gate_pass_rate = self.gate_pass_in_regime_count / gate_total if gated and gate_total else None

        return NodeReport(
            id=self.id,
            node_type=self.node_type,
            description=self.description,
            is_compound=self.is_compound,
            variable_path=self.variable_path,
            comparison_operator=self.comparison_operator,
            threshold_value=self.threshold_value,
            evaluation_count=n,
            failure_count=self.failure_count,
            failure_rate=self.failure_rate,
            average_violation=self.violation_sum / self.failure_count if self.failure_count else 0.0,
            violation_p50=self.violations.percentile(50),
            violation_p90=self.violations.percentile(90),
            violation_sample_count=self.violations.count,
            max_observed_value=self.max_observed_value,
            min_observed_value=self.min_observed_value,
            observed_p99=self.observed_p99,
            observed_mean=self.observed_sum / self.observed.count if self.observed.count else None,
            ceiling_gap=self.ceiling_gap,
            near_miss_count=self.near_miss_count,
            near_miss_rate=self.near_miss_count / n if n else 0.0,
            near_miss_epsilon=self.near_miss_epsilon,
            in_regime_evaluation_count=self.in_regime_evaluation_count,
            in_regime_failure_count=self.in_regime_failure_count,
            in_regime_failure_rate=(
                self.in_regime_failure_count / self.in_regime_evaluation_count
                if self.in_regime_evaluation_count else None
            ),
            achievable_range=_range(self.min_observed_value, self.max_observed_value),
            in_regime_achievable_range=_range(self.in_regime_min, self.in_regime_max),
            redundant_in_regime=self.redundant_in_regime,
            tuning_direction=_tuning_direction(self.comparison_operator),
            gate_pass_in_regime_count=self.gate_pass_in_regime_count if gated else None,
            gate_fail_in_regime_count=self.gate_fail_in_regime_count if gated else None,
            gate_pass_and_clause_pass_in_regime_count=(
                self.gate_pass_and_clause_pass_in_regime_count if gated else None
            ),
            gate_pass_and_clause_fail_in_regime_count=(
                self.gate_pass_and_clause_fail_in_regime_count if gated else None
            ),
            gate_pass_rate_in_regime=gate_pass_rate,
            gate_clamp_rate_in_regime=None if gate_pass_rate is None else 1.0 - gate_pass_rate,
            pass_rate_given_gate_in_regime=(
                self.gate_pass_and_clause_pass_in_regime_count / self.gate_pass_in_regime_count
                if gated and self.gate_pass_in_regime_count else None
            ),
            others_passed_count=self.others_passed_count,
            last_mile_fail_count=self.last_mile_fail_count,
            last_mile_fail_rate=(
                self.last_mile_fail_count / self.others_passed_count if self.others_passed_count else None
            ),
            is_single_clause=self.is_single_clause,
            siblings_passed_count=self.siblings_passed_count,
            sibling_conditioned_fail_count=self.sibling_conditioned_fail_count,
            sibling_conditioned_fail_rate=(
                self.sibling_conditioned_fail_count / self.siblings_passed_count
                if self.siblings_passed_count else None
            ),
            or_success_count=self.or_success_count,
            or_contribution_count=self.or_contribution_count,
            or_contribution_rate=(
                self.or_contribution_count / self.or_success_count if self.or_success_count else None
            ),
            children=tuple(child.finalize() for child in self.children),
        )


def _range(lo: float | None, hi: float | None) -> tuple[float, float] | None:
    if lo is None or hi is None:
        return None
    return (lo, hi)


def _tuning_direction(op: str | None) -> dict[str, str] | None:
    if op is None or op not in TUNING_DIRECTIONS:
        return None
    return dict(TUNING_DIRECTIONS[op])


def build_stats_tree(
    node: LogicNode,
    *,
    node_id: str = "0",
    epsilons: Mapping[str, float] | None = None,
    is_gated: Callable[[str], bool] | None = None,
) -> ClauseStatsNode:
    """Create a fresh stats tree shaped like *node*."""
    children = [
        build_stats_tree(child, node_id=f"{node_id}.{i}", epsilons=epsilons, is_gated=is_gated)
        for i, child in enumerate(children_of(node))
    ]
    if isinstance(node, And):
        node_type = "and"
    elif isinstance(node, Or):
        node_type = "or"
    elif isinstance(node, Not):
        node_type = "not"
    else:
        node_type = "leaf"

    path = threshold = op = epsilon = None
    gated = False
    if isinstance(node, Compare):
        path, threshold = node.variable_path, node.threshold_value
        op = node.operator
        if path is not None and threshold is not None:
            epsilon = epsilon_for_path(path, epsilons)
        if path is not None and is_gated is not None:
            gated = is_gated(path)

    return ClauseStatsNode(
        id=node_id,
        node_type=node_type,
        description=describe(node),
        variable_path=path,
        comparison_operator=op,
        threshold_value=threshold,
        near_miss_epsilon=epsilon,
        gated=gated,
        children=children,
    )


# ---------------------------------------------------------------------------
# Immutable reports
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class NodeReport:
    """Finalized statistics for one node; rates are ``None`` without data."""

    id: str
    node_type: str
    description: str
    is_compound: bool
    variable_path: str | None
    comparison_operator: str | None
    threshold_value: float | None
    evaluation_count: int
    failure_count: int
    failure_rate: float
    average_violation: float
    violation_p50: float | None
    violation_p90: float | None
    violation_sample_count: int
    max_observed_value: float | None
    min_observed_value: float | None
    observed_p99: float | None
    observed_mean: float | None
    ceiling_gap: float | None
    near_miss_count: int
    near_miss_rate: float
    near_miss_epsilon: float | None
    in_regime_evaluation_count: int
    in_regime_failure_count: int
    in_regime_failure_rate: float | None
    achievable_range: tuple[float, float] | None
    in_regime_achievable_range: tuple[float, float] | None
    redundant_in_regime: bool | None
    tuning_direction: dict[str, str] | None
    gate_pass_in_regime_count: int | None
    gate_fail_in_regime_count: int | None
    gate_pass_and_clause_pass_in_regime_count: int | None
    gate_pass_and_clause_fail_in_regime_count: int | None
    gate_pass_rate_in_regime: float | None
    gate_clamp_rate_in_regime: float | None
    pass_rate_given_gate_in_regime: float | None
    others_passed_count: int
    last_mile_fail_count: int
    last_mile_fail_rate: float | None
    is_single_clause: bool
    siblings_passed_count: int
    sibling_conditioned_fail_count: int
    sibling_conditioned_fail_rate: float | None
    or_success_count: int
    or_contribution_count: int
    or_contribution_rate: float | None
    children: tuple[NodeReport, ...] = ()

    def leaves(self) -> list[NodeReport]:
        if not self.children:
            return [self]
        out: list[NodeReport] = []
        for child in self.children:
            out.extend(child.leaves())
        return out

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if name == "children":
                value = [child.as_dict() for child in value]
            elif isinstance(value, tuple):
                value = list(value)
            d[name] = value
        return d


@dataclass(frozen=True, slots=True)
class ClauseReport:
    """Summary of one top-level clause plus its full node breakdown."""

    clause_index: int
    clause_description: str
    sample_count: int
    failure_count: int
    failure_rate: float
    average_violation: float
    violation_p50: float | None
    violation_p90: float | None
    near_miss_rate: float | None
    near_miss_epsilon: float | None
    in_regime_failure_rate: float | None
    last_mile_fail_rate: float | None
    last_mile_fail_count: int
    others_passed_count: int
    is_single_clause: bool
    ceiling_gap: float | None
    max_observed_value: float | None
    observed_p99: float | None
    threshold_value: float | None
    breakdown: NodeReport

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            d[name] = value.as_dict() if name == "breakdown" else value
        return d


def worst_ceiling_leaf(report: NodeReport) -> NodeReport | None:
    """Leaf with the largest defined ``ceiling_gap``."""
    candidates = [leaf for leaf in report.leaves() if leaf.ceiling_gap is not None]
    if not candidates:
        return None
    return max(candidates, key=lambda leaf: leaf.ceiling_gap)  # type: ignore[arg-type, return-value]


def finalize_clause_reports(
    roots: Sequence[ClauseStatsNode],
    sample_count: int,
) -> list[ClauseReport]:
    """Freeze every clause tree and sort by failure rate, highest first."""
    reports: list[ClauseReport] = []
    for index, root in enumerate(roots):
        node = root.finalize()
        ceiling = worst_ceiling_leaf(node)
        reports.append(ClauseReport(
            clause_index=index,
            clause_description=node.description,
            sample_count=sample_count,
            failure_count=node.failure_count,
            failure_rate=node.failure_count / sample_count if sample_count else 0.0,
            average_violation=node.average_violation,
            violation_p50=node.violation_p50,
            violation_p90=node.violation_p90,
            near_miss_rate=node.near_miss_rate if node.near_miss_epsilon is not None else None,
            near_miss_epsilon=node.near_miss_epsilon,
            in_regime_failure_rate=node.in_regime_failure_rate,
            last_mile_fail_rate=node.last_mile_fail_rate,
            last_mile_fail_count=node.last_mile_fail_count,
            others_passed_count=node.others_passed_count,
            is_single_clause=node.is_single_clause,
            ceiling_gap=ceiling.ceiling_gap if ceiling is not None else None,
            max_observed_value=node.max_observed_value,
            observed_p99=node.observed_p99,
            threshold_value=node.threshold_value,
            breakdown=node,
        ))
    reports.sort(key=lambda r: r.failure_rate, reverse=True)
    return reports
