"""Monte Carlo trigger simulation.

``MonteCarloSimulator.simulate`` samples random character states, evaluates
an expression's clauses against each one and reports how often it fires,
with a Wilson confidence interval, per-clause failure breakdowns, witnesses
(or the nearest miss when nothing fires), sampling coverage and a structural
gate-compatibility check.

Every call owns its accumulators; the only suspension point is an
``asyncio.sleep(0)`` between fixed-size chunks, so concurrent runs on one
event loop never share state.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import replace
from typing import Any, Protocol

from expression_diagnostics.clause_stats import (
    ClauseStatsNode,
    build_stats_tree,
    finalize_clause_reports,
)
from expression_diagnostics.config import SimulationConfig
from expression_diagnostics.confidence import wilson_interval
from expression_diagnostics.context_builder import (
    ContextBuilder,
    EmotionCalculator,
    EvaluationContext,
)
from expression_diagnostics.errors import UnseededVariablesError, UnseededVarWarning
from expression_diagnostics.expression import Expression
from expression_diagnostics.gate_compatibility import analyze_gate_compatibility
from expression_diagnostics.logic_ast import (
    LogicNode,
    NodeOutcome,
    children_of,
    describe,
    evaluate,
    iter_var_paths,
)
from expression_diagnostics.prototypes import DataRegistry
from expression_diagnostics.results import (
    FailedLeaf,
    NearestMiss,
    SamplingMetadata,
    SimulationResult,
    Witness,
    WitnessAnalysis,
)
from expression_diagnostics.sampling_coverage import SamplingCoverageAccumulator
from expression_diagnostics.state_sampler import RandomStateGenerator, SampledState
from expression_diagnostics.var_paths import KnownContextKeys, validate_expression_var_paths

MAX_NEAREST_MISS_LEAVES = 5


class StateGenerator(Protocol):
    def generate(self, distribution: str = "uniform", sampling_mode: str = "static") -> SampledState: ...


class MonteCarloSimulator:
    """Estimates trigger rates for expressions over randomized states."""

    def __init__(
        self,
        registry: DataRegistry,
        *,
        calculator: EmotionCalculator | None = None,
        state_generator: StateGenerator | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._registry = registry
        self._calculator = calculator if calculator is not None else EmotionCalculator(registry)
        self._state_generator = state_generator
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate_expression(
        self, expression: Expression | Mapping[str, Any]
    ) -> tuple[UnseededVarWarning, ...]:
        """Unseeded-variable warnings for *expression*, deduplicated by path."""
        expr = Expression.coerce(expression)
        known = KnownContextKeys.from_registry(self._registry)
        return validate_expression_var_paths(expr.logics, known)

    def run_simulation(
        self,
        expression: Expression | Mapping[str, Any],
        config: SimulationConfig | None = None,
        **overrides: Any,
    ) -> SimulationResult:
        """Synchronous wrapper around ``simulate`` for callers without a loop."""
        return asyncio.run(self.simulate(expression, config, **overrides))

    async def simulate(
        self,
        expression: Expression | Mapping[str, Any],
        config: SimulationConfig | None = None,
        **overrides: Any,
    ) -> SimulationResult:
        """Run one simulation; keyword overrides replace fields of *config*."""
        cfg = config if config is not None else SimulationConfig()
        if overrides:
            cfg = replace(cfg, **overrides)
        expr = Expression.coerce(expression)
        nodes = expr.nodes

        warnings: tuple[UnseededVarWarning, ...] = ()
        if cfg.validate_var_paths:
            warnings = self.validate_expression(expr)
            for warning in warnings:
                self._logger.warning(
                    'Unseeded var "%s" (%s): %s', warning.path, warning.reason, warning.suggestion
                )
            if cfg.fail_on_unseeded_vars and warnings:
                raise UnseededVariablesError(expr.id, warnings)

        paths = [path for node in nodes for path in iter_var_paths(node)]
        emotions = _names_in(paths, ("emotions", "previousEmotions"))
        sexual = _names_in(paths, ("sexualStates", "previousSexualStates"))
        builder = ContextBuilder(self._calculator, emotion_filter=emotions, sexual_state_filter=sexual)
        generator = (
            self._state_generator
            if self._state_generator is not None
            else RandomStateGenerator(cfg.seed)
        )

        trees = self._build_trees(nodes, cfg) if cfg.track_clauses else None
        coverage = (
            SamplingCoverageAccumulator.create(paths, cfg.sampling_coverage.bin_count)
            if cfg.sampling_coverage.enabled
            else None
        )
        stored: list[EvaluationContext] | None = [] if cfg.store_samples_for_sensitivity else None

        total = cfg.sample_count
        trigger_count = 0
        witnesses: list[Witness] = []
        nearest_miss: NearestMiss | None = None
        processed = 0
        while processed < total:
            chunk_end = min(processed + cfg.chunk_size, total)
            for _ in range(processed, chunk_end):
                state = generator.generate(cfg.distribution, cfg.sampling_mode)
                context = builder.build(state)
                if stored is not None and len(stored) < cfg.sensitivity_sample_limit:
                    stored.append(context)
                if coverage is not None:
                    coverage.record(context)

                outcomes = [evaluate(node, context) for node in nodes]
                fired = all(o.passed for o in outcomes)
                if trees is not None:
                    _record_clauses(trees, outcomes)

                if fired:
                    trigger_count += 1
                    if len(witnesses) < cfg.max_witnesses:
                        witnesses.append(_witness(state, context))
                elif trigger_count == 0:
                    failed = list(_failed_leaves(nodes, outcomes))
                    if nearest_miss is None or len(failed) < nearest_miss.failed_leaf_count:
                        nearest_miss = NearestMiss(
                            sample=state,
                            failed_leaf_count=len(failed),
                            failed_leaves=tuple(failed[:MAX_NEAREST_MISS_LEAVES]),
                        )
            processed = chunk_end
            if processed < total:
                await asyncio.sleep(0)
                if cfg.on_progress is not None:
                    cfg.on_progress(processed, total)
        if cfg.on_progress is not None:
            cfg.on_progress(total, total)

        trigger_rate = trigger_count / total
        interval = wilson_interval(trigger_count, total, cfg.confidence_level)
        self._logger.debug(
            "%s triggerRate=%.4f (%d/%d, %s)",
            expr.id, trigger_rate, trigger_count, total, cfg.distribution,
        )

        return SimulationResult(
            expression_id=expr.id,
            trigger_rate=trigger_rate,
            trigger_count=trigger_count,
            sample_count=total,
            confidence_interval=interval,
            distribution=cfg.distribution,
            sampling_mode=cfg.sampling_mode,
            sampling_metadata=SamplingMetadata.for_mode(cfg.sampling_mode),
            clause_failures=tuple(finalize_clause_reports(trees, total)) if trees is not None else (),
            witness_analysis=WitnessAnalysis(
                witnesses=tuple(witnesses),
                nearest_miss=None if witnesses else nearest_miss,
            ),
            gate_compatibility=analyze_gate_compatibility(nodes, self._calculator),
            unseeded_var_warnings=warnings,
            sampling_coverage=coverage.finalize() if coverage is not None else None,
            stored_contexts=tuple(stored) if stored is not None else None,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_trees(self, nodes: Sequence[LogicNode], cfg: SimulationConfig) -> list[ClauseStatsNode]:
        trees = [
            build_stats_tree(
                node,
                node_id=str(i),
                epsilons=cfg.near_miss_epsilons,
                is_gated=self._is_gated,
            )
            for i, node in enumerate(nodes)
        ]
        for tree in trees:
            tree.is_single_clause = len(trees) == 1
        return trees

    def _is_gated(self, path: str) -> bool:
        parts = path.split(".")
        if len(parts) != 2:
            return False
        prototype = self._calculator.prototype_for(parts[0], parts[1])
        return prototype is not None and prototype.is_gated


def _names_in(paths: Sequence[str], roots: tuple[str, ...]) -> list[str]:
    names: list[str] = []
    for path in paths:
        parts = path.split(".")
        if len(parts) >= 2 and parts[0] in roots and parts[1] not in names:
            names.append(parts[1])
    return names


def _record_clauses(trees: Sequence[ClauseStatsNode], outcomes: Sequence[NodeOutcome]) -> None:
    failures = sum(1 for o in outcomes if not o.passed)
    for tree, outcome in zip(trees, outcomes):
        others_passed = failures == 0 or (failures == 1 and not outcome.passed)
        tree.record(outcome, in_regime=others_passed)
        if others_passed:
            tree.record_last_mile(passed=outcome.passed)


def _witness(state: SampledState, context: EvaluationContext) -> Witness:
    return Witness(
        current=state.current,
        previous=state.previous,
        affect_traits=state.affect_traits,
        computed_emotions=dict(context.emotions),
        previous_computed_emotions=dict(context.previous_emotions),
    )


def _failed_leaves(nodes: Sequence[LogicNode], outcomes: Sequence[NodeOutcome]) -> Iterator[FailedLeaf]:
    for node, outcome in zip(nodes, outcomes):
        yield from _walk_failed(node, outcome)


def _walk_failed(node: LogicNode, outcome: NodeOutcome) -> Iterator[FailedLeaf]:
    if outcome.passed:
        return
    found = False
    for child, child_outcome in zip(children_of(node), outcome.children):
        for leaf in _walk_failed(child, child_outcome):
            found = True
            yield leaf
    # A failing NOT over passing leaves is itself the blocker
    if not found:
        yield FailedLeaf(
            description=describe(node),
            actual=outcome.observed_value,
            threshold=outcome.threshold_value,
            violation=outcome.violation,
        )
