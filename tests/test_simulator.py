"""Tests for expression_diagnostics.simulator — end-to-end Monte Carlo runs."""
from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from expression_diagnostics.config import SamplingCoverageConfig, SimulationConfig
from expression_diagnostics.errors import UnseededVariablesError
from expression_diagnostics.expression import Expression
from expression_diagnostics.prototypes import InMemoryDataRegistry
from expression_diagnostics.sensitivity import compute_threshold_sensitivity
from expression_diagnostics.simulator import MonteCarloSimulator
from expression_diagnostics.state_sampler import MOOD_AXES, AxisState, SampledState

EMOTIONS = {
    "joy": {"weights": {"valence": 1.0, "arousal": 0.5}, "gates": ["valence >= 0.35"]},
    "melancholy": {"weights": {"valence": -1.0}, "gates": ["valence <= -0.50"]},
    "fear": {"weights": {"threat": 1.0, "agency_control": -0.5}},
}
SEXUAL = {
    "aroused": {"weights": {"sexual_arousal": 1.0}, "gates": ["sexual_arousal >= 0.30"]},
}


def _make_registry() -> InMemoryDataRegistry:
    return InMemoryDataRegistry.with_prototypes(emotions=EMOTIONS, sexual=SEXUAL)


def _state(valence: int, arousal: int) -> SampledState:
    mood = {axis: 0 for axis in MOOD_AXES}
    mood.update(valence=valence, arousal=arousal)
    sexual = {"sex_excitation": 0, "sex_inhibition": 0, "baseline_libido": 0}
    snapshot = AxisState(mood=mood, sexual=sexual)
    return SampledState(current=snapshot, previous=snapshot, affect_traits=None)


class _ScriptedGenerator:
    """Replays a fixed list of states in a loop."""

    def __init__(self, states: list[SampledState]) -> None:
        self._states = states
        self.calls = 0

    def generate(self, distribution: str = "uniform", sampling_mode: str = "static") -> SampledState:
        state = self._states[self.calls % len(self._states)]
        self.calls += 1
        return state


def _expression(*logics: dict[str, Any], expression_id: str = "test:expr") -> dict[str, Any]:
    return {"id": expression_id, "prerequisites": [{"logic": logic} for logic in logics]}


def _make_simulator(states: list[SampledState] | None = None, **kwargs: Any) -> MonteCarloSimulator:
    generator = _ScriptedGenerator(states) if states is not None else None
    return MonteCarloSimulator(_make_registry(), state_generator=generator, **kwargs)


VALENCE_AROUSAL = _expression(
    {">=": [{"var": "moodAxes.valence"}, 0]},
    {">=": [{"var": "moodAxes.arousal"}, -50]},
)


# ───────────────────────────── Trigger rate / CI ─────────────────────────────


class TestTriggerRate:
    @pytest.mark.asyncio
    async def test_rate_and_interval_bounds(self) -> None:
        result = await _make_simulator().simulate(VALENCE_AROUSAL, sample_count=2000, seed=1)
        assert 0.0 <= result.trigger_rate <= 1.0
        assert result.trigger_rate == result.trigger_count / result.sample_count
        ci = result.confidence_interval
        assert 0.0 <= ci.low <= result.trigger_rate <= ci.high <= 1.0
        # uniform: P(valence >= 0) * P(arousal >= -50) is about 0.38
        assert 0.1 <= result.trigger_rate <= 0.6

    @pytest.mark.asyncio
    async def test_no_prerequisites_always_fires(self) -> None:
        result = await _make_simulator().simulate({"id": "always"}, sample_count=50, seed=0)
        assert result.trigger_rate == 1.0
        assert result.trigger_count == 50
        assert result.clause_failures == ()
        assert result.sampling_coverage is None

    @pytest.mark.asyncio
    async def test_interval_narrows_with_samples(self) -> None:
        sim = _make_simulator()
        small = await sim.simulate(VALENCE_AROUSAL, sample_count=200, seed=3)
        large = await sim.simulate(VALENCE_AROUSAL, sample_count=5000, seed=3)
        assert large.confidence_interval.width < small.confidence_interval.width

    @pytest.mark.asyncio
    async def test_seed_reproduces_run(self) -> None:
        sim = _make_simulator()
        a = await sim.simulate(VALENCE_AROUSAL, sample_count=300, seed=17)
        b = await sim.simulate(VALENCE_AROUSAL, sample_count=300, seed=17)
        assert a.trigger_count == b.trigger_count

    @pytest.mark.asyncio
    async def test_invalid_override_raises(self) -> None:
        with pytest.raises(ValueError, match="distribution"):
            await _make_simulator().simulate(VALENCE_AROUSAL, distribution="poisson")

    def test_run_simulation_without_loop(self) -> None:
        result = _make_simulator().run_simulation(VALENCE_AROUSAL, SimulationConfig(sample_count=100, seed=2))
        assert result.sample_count == 100
        assert result.expression_id == "test:expr"


# ───────────────────────────── Clause tracking ─────────────────────────────


class TestClauseFailures:
    @pytest.mark.asyncio
    async def test_failure_and_percentile_invariants(self) -> None:
        expr = _expression(
            {">=": [{"var": "emotions.joy"}, 0.3]},
            {"or": [{"<": [{"var": "moodAxes.threat"}, 0]}, {">=": [{"var": "emotions.fear"}, 0.4]}]},
        )
        result = await _make_simulator().simulate(expr, sample_count=1000, seed=4)
        assert len(result.clause_failures) == 2
        rates = [c.failure_rate for c in result.clause_failures]
        assert rates == sorted(rates, reverse=True)
        for clause in result.clause_failures:
            assert 0 <= clause.failure_count <= clause.sample_count
            assert 0.0 <= clause.failure_rate <= 1.0
            for leaf in clause.breakdown.leaves():
                assert leaf.failure_count <= leaf.evaluation_count
                if leaf.observed_p99 is not None:
                    assert leaf.max_observed_value is not None
                    assert leaf.observed_p99 <= leaf.max_observed_value

    @pytest.mark.asyncio
    async def test_single_clause_last_mile_equals_failure_rate(self) -> None:
        expr = _expression({">=": [{"var": "emotions.joy"}, 0.55]})
        result = await _make_simulator().simulate(expr, sample_count=500, seed=5)
        (clause,) = result.clause_failures
        assert clause.is_single_clause
        assert clause.others_passed_count == 500
        assert clause.last_mile_fail_count == clause.failure_count
        assert clause.last_mile_fail_rate == pytest.approx(clause.failure_rate)
        assert clause.threshold_value == 0.55
        assert clause.breakdown.comparison_operator == ">="

    @pytest.mark.asyncio
    async def test_reversed_comparison_is_normalized(self) -> None:
        expr = _expression({">=": [0.3, {"var": "emotions.fear"}]})
        result = await _make_simulator().simulate(expr, sample_count=100, seed=6)
        (clause,) = result.clause_failures
        assert clause.threshold_value == 0.3
        assert clause.breakdown.comparison_operator == "<="
        assert clause.breakdown.variable_path == "emotions.fear"

    @pytest.mark.asyncio
    async def test_track_clauses_off(self) -> None:
        result = await _make_simulator().simulate(VALENCE_AROUSAL, sample_count=50, track_clauses=False)
        assert result.clause_failures == ()

    @pytest.mark.asyncio
    async def test_gate_clamp_counters(self) -> None:
        states = [_state(20, 0), _state(40, 0), _state(40, -50), _state(5, 0)]
        expr = _expression(
            {">=": [{"var": "moodAxes.valence"}, 10]},
            {">=": [{"var": "emotions.joy"}, 0.2]},
        )
        result = await _make_simulator(states).simulate(expr, sample_count=4)

        assert result.trigger_count == 1
        joy, valence = result.clause_failures
        assert joy.clause_index == 1
        assert joy.failure_count == 3
        node = joy.breakdown
        assert node.gate_pass_in_regime_count == 2
        assert node.gate_fail_in_regime_count == 1
        assert node.gate_pass_and_clause_pass_in_regime_count == 1
        assert node.gate_pass_and_clause_fail_in_regime_count == 1
        assert node.gate_pass_rate_in_regime == pytest.approx(2 / 3)
        assert node.gate_clamp_rate_in_regime == pytest.approx(1 / 3)
        assert node.pass_rate_given_gate_in_regime == 0.5
        assert joy.others_passed_count == 3
        assert joy.last_mile_fail_count == 2

        assert valence.clause_index == 0
        assert valence.others_passed_count == 1
        assert valence.breakdown.gate_pass_in_regime_count is None
        assert valence.breakdown.gate_clamp_rate_in_regime is None

    @pytest.mark.asyncio
    async def test_unreachable_threshold_reports_ceiling(self) -> None:
        registry = InMemoryDataRegistry.with_prototypes(emotions={
            "joy": {"weights": {"valence": 1, "arousal": 1, "engagement": 1, "future_expectancy": 1}},
        })
        sim = MonteCarloSimulator(registry)
        result = await sim.simulate(_expression({">=": [{"var": "emotions.joy"}, 0.99]}), sample_count=2000, seed=8)
        (clause,) = result.clause_failures
        assert result.trigger_count == 0
        assert clause.max_observed_value is not None
        assert clause.max_observed_value < 0.99
        assert clause.ceiling_gap is not None
        assert clause.ceiling_gap > 0
        assert result.witness_analysis.nearest_miss is not None


# ───────────────────────────── Variable validation ─────────────────────────────


class TestUnseededVariables:
    GENITALS = _expression(
        {"==": [{"var": "hasMaleGenitals"}, True]},
        {"and": [{"var": "hasMaleGenitals"}, {">=": [{"var": "emotions.joy"}, 0.1]}]},
    )

    @pytest.mark.asyncio
    async def test_one_warning_per_path(self) -> None:
        logger = MagicMock()
        sim = _make_simulator(logger=logger)
        result = await sim.simulate(self.GENITALS, sample_count=20, seed=0)
        assert [w.path for w in result.unseeded_var_warnings] == ["hasMaleGenitals"]
        assert logger.warning.call_count == 1
        assert result.trigger_count == 0

    @pytest.mark.asyncio
    async def test_fail_on_unseeded_raises_before_sampling(self) -> None:
        generator = _ScriptedGenerator([_state(0, 0)])
        sim = MonteCarloSimulator(_make_registry(), state_generator=generator, logger=MagicMock())
        with pytest.raises(UnseededVariablesError) as exc_info:
            await sim.simulate(self.GENITALS, fail_on_unseeded_vars=True)
        assert exc_info.value.paths == ("hasMaleGenitals",)
        assert generator.calls == 0

    @pytest.mark.asyncio
    async def test_validation_disabled(self) -> None:
        logger = MagicMock()
        result = await _make_simulator(logger=logger).simulate(
            self.GENITALS, sample_count=10, validate_var_paths=False
        )
        logger.warning.assert_not_called()
        assert result.unseeded_var_warnings == ()

    def test_validate_expression_accepts_dataclass(self) -> None:
        expr = Expression.from_dict(_expression({">=": [{"var": "emotions.jyo"}, 0.1]}))
        (warning,) = _make_simulator().validate_expression(expr)
        assert warning.reason == "unknown_nested_key"


# ───────────────────────────── Witnesses ─────────────────────────────


class TestWitnesses:
    @pytest.mark.asyncio
    async def test_witnesses_capped(self) -> None:
        result = await _make_simulator().simulate({"id": "always"}, sample_count=10, max_witnesses=2)
        assert len(result.witness_analysis.witnesses) == 2
        assert result.witness_analysis.nearest_miss is None

    @pytest.mark.asyncio
    async def test_zero_witnesses_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_witnesses"):
            await _make_simulator().simulate({"id": "always"}, sample_count=20, max_witnesses=0)

    @pytest.mark.asyncio
    async def test_best_witness_is_first_firing_state(self) -> None:
        states = [_state(20, 0), _state(40, 0), _state(40, -50), _state(5, 0)]
        expr = _expression(
            {">=": [{"var": "moodAxes.valence"}, 10]},
            {">=": [{"var": "emotions.joy"}, 0.2]},
        )
        result = await _make_simulator(states).simulate(expr, sample_count=4)
        best = result.witness_analysis.best_witness
        assert best is not None
        assert best.current.mood["valence"] == 40
        assert best.computed_emotions["joy"] == pytest.approx(0.4 / 1.5)
        assert result.witness_analysis.nearest_miss is None

    @pytest.mark.asyncio
    async def test_nearest_miss_has_fewest_failed_leaves(self) -> None:
        states = [_state(20, 0), _state(40, 0)]
        expr = _expression(
            {">=": [{"var": "moodAxes.valence"}, 50]},
            {">=": [{"var": "emotions.joy"}, 0.2]},
        )
        result = await _make_simulator(states).simulate(expr, sample_count=4)
        assert result.trigger_count == 0
        miss = result.witness_analysis.nearest_miss
        assert miss is not None
        assert miss.failed_leaf_count == 1
        assert miss.sample.current.mood["valence"] == 40
        (leaf,) = miss.failed_leaves
        assert leaf.description == "moodAxes.valence >= 50"
        assert leaf.actual == 40.0
        assert leaf.threshold == 50.0
        assert leaf.violation == 10.0


# ───────────────────────────── Progress / storage / coverage ─────────────────────────────


class TestRunOptions:
    @pytest.mark.asyncio
    async def test_progress_reported_per_chunk_and_at_end(self) -> None:
        calls: list[tuple[int, int]] = []
        await _make_simulator().simulate(
            VALENCE_AROUSAL,
            sample_count=25,
            chunk_size=10,
            on_progress=lambda done, total: calls.append((done, total)),
        )
        assert calls == [(10, 25), (20, 25), (25, 25)]

    @pytest.mark.asyncio
    async def test_exact_chunk_multiple_reports_final_once(self) -> None:
        calls: list[tuple[int, int]] = []
        await _make_simulator().simulate(
            VALENCE_AROUSAL,
            sample_count=20,
            chunk_size=10,
            on_progress=lambda done, total: calls.append((done, total)),
        )
        assert calls == [(10, 20), (20, 20)]

    @pytest.mark.asyncio
    async def test_stored_contexts_respect_limit(self) -> None:
        result = await _make_simulator().simulate(
            VALENCE_AROUSAL,
            sample_count=20,
            seed=9,
            store_samples_for_sensitivity=True,
            sensitivity_sample_limit=7,
        )
        assert result.stored_contexts is not None
        assert len(result.stored_contexts) == 7
        assert result.as_dict()["stored_context_count"] == 7
        sweep = compute_threshold_sensitivity(result.stored_contexts, "moodAxes.valence", ">=", 0, step_size=10)
        assert len(sweep.grid) == 9

    @pytest.mark.asyncio
    async def test_contexts_not_stored_by_default(self) -> None:
        result = await _make_simulator().simulate(VALENCE_AROUSAL, sample_count=10)
        assert result.stored_contexts is None

    @pytest.mark.asyncio
    async def test_sampling_coverage_present_for_mood_paths(self) -> None:
        result = await _make_simulator().simulate(VALENCE_AROUSAL, sample_count=500, seed=10)
        assert result.sampling_coverage is not None
        valence = result.sampling_coverage.variable("moodAxes.valence")
        assert valence is not None
        assert valence.sample_count == 500
        assert valence.rating == "good"

    @pytest.mark.asyncio
    async def test_sampling_coverage_disabled(self) -> None:
        result = await _make_simulator().simulate(
            VALENCE_AROUSAL,
            sample_count=10,
            sampling_coverage=SamplingCoverageConfig(enabled=False),
        )
        assert result.sampling_coverage is None

    @pytest.mark.asyncio
    async def test_trait_only_expression_has_no_coverage(self) -> None:
        expr = _expression({">=": [{"var": "affectTraits.harm_aversion"}, 20]})
        result = await _make_simulator().simulate(expr, sample_count=10)
        assert result.sampling_coverage is None

    @pytest.mark.asyncio
    async def test_dynamic_mode_metadata(self) -> None:
        result = await _make_simulator().simulate(
            VALENCE_AROUSAL, sample_count=50, sampling_mode="dynamic", distribution="gaussian"
        )
        assert result.sampling_mode == "dynamic"
        assert result.distribution == "gaussian"
        assert result.sampling_metadata.mode == "dynamic"
        assert "Gaussian" in result.sampling_metadata.description

    @pytest.mark.asyncio
    async def test_gate_compatibility_reported(self) -> None:
        expr = _expression(
            {">=": [{"var": "moodAxes.valence"}, 50]},
            {">=": [{"var": "emotions.melancholy"}, 0.2]},
        )
        result = await _make_simulator().simulate(expr, sample_count=200, seed=11)
        verdict = result.gate_compatibility.emotions["melancholy"]
        assert verdict.compatible is False
        assert result.trigger_count == 0

    @pytest.mark.asyncio
    async def test_result_serializes(self) -> None:
        result = await _make_simulator().simulate(VALENCE_AROUSAL, sample_count=20, seed=12)
        d = result.as_dict()
        assert d["expression_id"] == "test:expr"
        assert set(d["confidence_interval"]) == {"low", "high"}
        assert len(d["clause_failures"]) == 2
        assert d["stored_context_count"] is None
