"""Tests for expression_diagnostics.clause_stats — hierarchical clause counters."""
from __future__ import annotations

from typing import Any

import pytest

from expression_diagnostics.clause_stats import (
    ClauseStatsNode,
    StreamingPercentile,
    build_stats_tree,
    finalize_clause_reports,
)
from expression_diagnostics.logic_ast import evaluate, parse_logic


class _Ctx:
    def __init__(self, values: dict[str, Any], gates: dict[str, bool] | None = None) -> None:
        self._values = values
        self._gates = gates or {}

    def resolve(self, path: str) -> Any:
        return self._values.get(path)

    def gate_passed(self, path: str) -> bool | None:
        return self._gates.get(path)


def _feed(tree: ClauseStatsNode, logic: dict[str, Any], samples: list[dict[str, Any]], *, in_regime: bool = True) -> None:
    node = parse_logic(logic)
    for values in samples:
        tree.record(evaluate(node, _Ctx(values)), in_regime=in_regime)


def _make_tree(logic: dict[str, Any], **kwargs: Any) -> ClauseStatsNode:
    return build_stats_tree(parse_logic(logic), **kwargs)


# ───────────────────────────── Reservoir ─────────────────────────────


class TestStreamingPercentile:
    def test_exact_below_capacity(self) -> None:
        sp = StreamingPercentile(capacity=100)
        for v in range(1, 101):
            sp.add(float(v))
        assert sp.count == 100
        assert sp.percentile(50) == pytest.approx(50.5)

    def test_bounded_memory_past_capacity(self) -> None:
        sp = StreamingPercentile(capacity=50, seed=1)
        for v in range(10_000):
            sp.add(float(v))
        assert sp.count == 10_000
        p50 = sp.percentile(50)
        assert p50 is not None
        assert 2_000 < p50 < 8_000

    def test_empty(self) -> None:
        assert StreamingPercentile().percentile(90) is None

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            StreamingPercentile(capacity=0)


# ───────────────────────────── Tree shape ─────────────────────────────


class TestBuildStatsTree:
    def test_mirrors_logic(self) -> None:
        tree = _make_tree({
            "and": [
                {">=": [{"var": "emotions.joy"}, 0.5]},
                {"or": [{"<": [{"var": "moodAxes.threat"}, 10]}, {"!": {"var": "sexualArousal"}}]},
            ]
        })
        assert tree.node_type == "and"
        assert [c.id for c in tree.children] == ["0.0", "0.1"]
        assert tree.children[1].node_type == "or"
        assert tree.children[1].children[1].node_type == "not"
        assert tree.children[1].children[1].children[0].id == "0.1.1.0"

    def test_leaf_metadata_and_epsilon(self) -> None:
        tree = _make_tree({">=": [0.3, {"var": "moodAxes.valence"}]})
        assert tree.node_type == "leaf"
        assert tree.comparison_operator == "<="
        assert tree.threshold_value == 0.3
        assert tree.near_miss_epsilon == 5.0
        tree = _make_tree({">=": [{"var": "emotions.joy"}, 0.3]}, epsilons={"emotions": 0.1})
        assert tree.near_miss_epsilon == 0.1

    def test_gated_flag_from_callback(self) -> None:
        tree = _make_tree({">=": [{"var": "emotions.joy"}, 0.3]}, is_gated=lambda path: path == "emotions.joy")
        assert tree.gated
        tree = _make_tree({">=": [{"var": "moodAxes.valence"}, 3]}, is_gated=lambda path: False)
        assert not tree.gated


# ───────────────────────────── Recording ─────────────────────────────


class TestRecording:
    def test_failure_counts_and_violation(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.5]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.joy": v} for v in (0.1, 0.3, 0.6, 0.9)])
        report = tree.finalize()
        assert report.evaluation_count == 4
        assert report.failure_count == 2
        assert report.failure_rate == 0.5
        assert report.average_violation == pytest.approx(0.3)
        assert report.violation_sample_count == report.failure_count
        assert report.max_observed_value == 0.9
        assert report.min_observed_value == 0.1
        assert report.observed_mean == pytest.approx(0.475)

    def test_failure_count_bounded_by_evaluations(self) -> None:
        logic = {"and": [{">=": [{"var": "a"}, 0.5]}, {"<": [{"var": "b"}, 0.5]}]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"a": i / 10, "b": (10 - i) / 10} for i in range(11)])
        report = tree.finalize()
        for node in (report, *report.children):
            assert 0 <= node.failure_count <= node.evaluation_count

    def test_observed_p99_never_exceeds_max(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.5]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.joy": i / 100} for i in range(100)])
        report = tree.finalize()
        assert report.observed_p99 is not None
        assert report.max_observed_value is not None
        assert report.observed_p99 <= report.max_observed_value

    def test_near_miss_uses_epsilon(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.5]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.joy": v} for v in (0.46, 0.54, 0.2, 0.9)])
        report = tree.finalize()
        assert report.near_miss_count == 2
        assert report.near_miss_rate == 0.5
        assert report.near_miss_epsilon == 0.05

    def test_in_regime_counts_only_flagged_samples(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.5]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.joy": 0.1}], in_regime=False)
        _feed(tree, logic, [{"emotions.joy": 0.7}, {"emotions.joy": 0.2}], in_regime=True)
        report = tree.finalize()
        assert report.evaluation_count == 3
        assert report.in_regime_evaluation_count == 2
        assert report.in_regime_failure_rate == 0.5
        assert report.in_regime_achievable_range == (0.2, 0.7)
        assert report.achievable_range == (0.1, 0.7)

    def test_sibling_conditioned_failures(self) -> None:
        logic = {"and": [{">=": [{"var": "a"}, 1]}, {">=": [{"var": "b"}, 1]}]}
        tree = _make_tree(logic)
        _feed(tree, logic, [
            {"a": 0, "b": 1},  # only a fails
            {"a": 0, "b": 0},  # both fail, nobody counted
            {"a": 1, "b": 1},  # both pass
            {"a": 1, "b": 0},  # only b fails
        ])
        a, b = tree.finalize().children
        assert a.siblings_passed_count == 2
        assert a.sibling_conditioned_fail_count == 1
        assert a.sibling_conditioned_fail_rate == 0.5
        assert b.siblings_passed_count == 2
        assert b.sibling_conditioned_fail_count == 1

    def test_or_contribution_credits_first_passing_child(self) -> None:
        logic = {"or": [{">=": [{"var": "a"}, 1]}, {">=": [{"var": "b"}, 1]}]}
        tree = _make_tree(logic)
        _feed(tree, logic, [
            {"a": 1, "b": 1},
            {"a": 0, "b": 1},
            {"a": 0, "b": 0},
        ])
        a, b = tree.finalize().children
        assert a.or_success_count == 2
        assert b.or_success_count == 2
        assert a.or_contribution_count == 1
        assert b.or_contribution_count == 1
        assert a.or_contribution_rate == 0.5

    def test_gate_counters_on_gated_leaf(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.2]}
        tree = _make_tree(logic, is_gated=lambda path: True)
        node = parse_logic(logic)
        for value, gate in [(0.5, True), (0.1, True), (0.0, False), (0.0, False)]:
            ctx = _Ctx({"emotions.joy": value}, {"emotions.joy": gate})
            tree.record(evaluate(node, ctx), in_regime=True)
        report = tree.finalize()
        assert report.gate_pass_in_regime_count == 2
        assert report.gate_fail_in_regime_count == 2
        assert report.gate_pass_and_clause_pass_in_regime_count == 1
        assert report.gate_pass_and_clause_fail_in_regime_count == 1
        assert report.gate_pass_rate_in_regime == 0.5
        assert report.gate_clamp_rate_in_regime == 0.5
        assert report.pass_rate_given_gate_in_regime == 0.5

    def test_ungated_leaf_reports_no_gate_fields(self) -> None:
        logic = {">=": [{"var": "moodAxes.valence"}, 10]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"moodAxes.valence": 20}])
        report = tree.finalize()
        assert report.gate_pass_in_regime_count is None
        assert report.gate_pass_rate_in_regime is None
        assert report.pass_rate_given_gate_in_regime is None

    def test_last_mile(self) -> None:
        tree = _make_tree({">=": [{"var": "a"}, 1]})
        tree.record_last_mile(passed=False)
        tree.record_last_mile(passed=True)
        tree.record_last_mile(passed=False)
        report = tree.finalize()
        assert report.others_passed_count == 3
        assert report.last_mile_fail_count == 2
        assert report.last_mile_fail_rate == pytest.approx(2 / 3)

    def test_no_last_mile_data_is_none(self) -> None:
        assert _make_tree({">=": [{"var": "a"}, 1]}).finalize().last_mile_fail_rate is None


# ───────────────────────────── Derived fields ─────────────────────────────


class TestDerived:
    def test_ceiling_gap_for_lower_bound(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.9]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.joy": v} for v in (0.1, 0.6)])
        assert tree.finalize().ceiling_gap == pytest.approx(0.3)

    def test_ceiling_gap_for_upper_bound(self) -> None:
        logic = {"<=": [{"var": "emotions.fear"}, 0.1]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.fear": v} for v in (0.4, 0.8)])
        assert tree.finalize().ceiling_gap == pytest.approx(0.3)

    def test_reachable_threshold_has_non_positive_gap(self) -> None:
        logic = {">=": [{"var": "emotions.joy"}, 0.5]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"emotions.joy": 0.7}])
        gap = tree.finalize().ceiling_gap
        assert gap is not None and gap <= 0

    def test_redundant_in_regime(self) -> None:
        logic = {">=": [{"var": "moodAxes.valence"}, -50]}
        tree = _make_tree(logic)
        _feed(tree, logic, [{"moodAxes.valence": v} for v in (-10, 40, 90)])
        assert tree.finalize().redundant_in_regime is True
        _feed(tree, logic, [{"moodAxes.valence": -80}])
        assert tree.finalize().redundant_in_regime is False

    @pytest.mark.parametrize(
        ("op", "loosen", "tighten"),
        [(">=", "threshold_down", "threshold_up"), ("<", "threshold_up", "threshold_down")],
    )
    def test_tuning_direction(self, op: str, loosen: str, tighten: str) -> None:
        report = _make_tree({op: [{"var": "a"}, 1]}).finalize()
        assert report.tuning_direction == {"loosen": loosen, "tighten": tighten}

    def test_compound_has_no_tuning_direction(self) -> None:
        report = _make_tree({"and": [{">=": [{"var": "a"}, 1]}]}).finalize()
        assert report.tuning_direction is None
        assert report.is_compound


# ───────────────────────────── Clause reports ─────────────────────────────


class TestFinalizeClauseReports:
    def test_sorted_by_failure_rate(self) -> None:
        easy = {">=": [{"var": "a"}, 0]}
        hard = {"and": [{">=": [{"var": "a"}, 5]}, {">=": [{"var": "b"}, 0.9]}]}
        roots = [_make_tree(easy), _make_tree(hard)]
        samples = [{"a": i, "b": i / 10} for i in range(10)]
        _feed(roots[0], easy, samples)
        _feed(roots[1], hard, samples)

        reports = finalize_clause_reports(roots, sample_count=10)

        assert [r.clause_index for r in reports] == [1, 0]
        assert reports[0].failure_rate == 0.9
        assert reports[0].clause_description == "AND of 2 conditions"
        assert reports[1].failure_rate == 0.0
        for r in reports:
            assert 0.0 <= r.failure_rate <= 1.0

    def test_compound_clause_reports_worst_leaf_ceiling(self) -> None:
        logic = {"and": [{">=": [{"var": "a"}, 0.5]}, {">=": [{"var": "b"}, 0.95]}]}
        root = _make_tree(logic)
        _feed(root, logic, [{"a": 0.6, "b": 0.7}, {"a": 0.2, "b": 0.8}])
        (report,) = finalize_clause_reports([root], sample_count=2)
        assert report.ceiling_gap == pytest.approx(0.15)
        assert report.threshold_value is None
        assert report.breakdown.children[1].ceiling_gap == pytest.approx(0.15)

    def test_as_dict_nests_breakdown(self) -> None:
        logic = {"or": [{">=": [{"var": "a"}, 0.5]}, {"<": [{"var": "b"}, 0.1]}]}
        root = _make_tree(logic)
        _feed(root, logic, [{"a": 0.6, "b": 0.7}])
        d = finalize_clause_reports([root], sample_count=1)[0].as_dict()
        assert d["breakdown"]["node_type"] == "or"
        assert len(d["breakdown"]["children"]) == 2
        assert d["breakdown"]["children"][0]["achievable_range"] == [0.6, 0.6]
