"""Post-hoc threshold sweeps over stored evaluation contexts.

Both sweeps reuse the contexts a simulation kept when
``store_samples_for_sensitivity`` was set, so "what if this threshold were
0.05 lower?" costs no new sampling. The grid is centred on the original
threshold: ``steps`` points, ``step_size`` apart.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from expression_diagnostics.logic_ast import (
    And,
    Compare,
    Literal,
    LogicNode,
    Not,
    Or,
    Resolver,
    compare_values,
    evaluate,
    is_number,
    parse_logic,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SensitivityPoint:
    threshold: float
    rate: float
    count: int
    sample_count: int

    def as_dict(self, *, expression_level: bool = False) -> dict[str, Any]:
        if expression_level:
            return {
                "threshold": self.threshold,
                "trigger_rate": self.rate,
                "trigger_count": self.count,
                "sample_count": self.sample_count,
            }
        return {
            "threshold": self.threshold,
            "pass_rate": self.rate,
            "pass_count": self.count,
            "sample_count": self.sample_count,
        }


@dataclass(frozen=True, slots=True)
class SensitivityResult:
    variable_path: str
    operator: str
    original_threshold: float
    grid: tuple[SensitivityPoint, ...]
    is_expression_level: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "variable_path": self.variable_path,
            "operator": self.operator,
            "original_threshold": self.original_threshold,
            "is_expression_level": self.is_expression_level,
            "grid": [p.as_dict(expression_level=self.is_expression_level) for p in self.grid],
        }


def threshold_grid(threshold: float, steps: int = 9, step_size: float = 0.05) -> list[float]:
    if steps < 1:
        raise ValueError(f"steps must be >= 1, got {steps}")
    half = steps // 2
    return [round(threshold + i * step_size, 10) for i in range(-half, half + 1)]


def compute_threshold_sensitivity(
    contexts: Sequence[Resolver],
    variable_path: str,
    operator: str,
    threshold: float,
    *,
    steps: int = 9,
    step_size: float = 0.05,
) -> SensitivityResult:
    """Pass rate of ``variable_path <operator> t`` for each grid threshold ``t``."""
    if not contexts:
        logger.warning("No stored contexts for sensitivity analysis of %s", variable_path)
        return SensitivityResult(variable_path, operator, threshold, ())

    values = [context.resolve(variable_path) for context in contexts]
    numeric = [float(v) for v in values if is_number(v)]
    grid = []
    for t in threshold_grid(threshold, steps, step_size):
        passed = sum(1 for v in numeric if compare_values(operator, v, t))
        grid.append(SensitivityPoint(t, passed / len(contexts), passed, len(contexts)))
    return SensitivityResult(variable_path, operator, threshold, tuple(grid))


def replace_threshold(node: LogicNode, variable_path: str, operator: str, threshold: float) -> LogicNode:
    """Copy of *node* with every matching simple comparison moved to *threshold*."""
    if isinstance(node, Compare):
        if node.variable_path == variable_path and node.operator == operator:
            return replace(node, right=Literal(threshold), threshold_value=float(threshold))
        return node
    if isinstance(node, And):
        return And(tuple(replace_threshold(c, variable_path, operator, threshold) for c in node.children))
    if isinstance(node, Or):
        return Or(tuple(replace_threshold(c, variable_path, operator, threshold) for c in node.children))
    if isinstance(node, Not):
        return Not(replace_threshold(node.child, variable_path, operator, threshold))
    return node


def compute_expression_sensitivity(
    contexts: Sequence[Resolver],
    logic: Any,
    variable_path: str,
    operator: str,
    threshold: float,
    *,
    steps: int = 9,
    step_size: float = 0.05,
) -> SensitivityResult:
    """Trigger rate of the whole expression as one comparison's threshold moves.

    *logic* is raw JSON-logic or an already parsed ``LogicNode``; pass
    ``{"and": [clause, ...]}`` for a multi-clause expression.
    """
    if not contexts:
        logger.warning("No stored contexts for expression sensitivity analysis of %s", variable_path)
        return SensitivityResult(variable_path, operator, threshold, (), is_expression_level=True)
    if logic is None:
        logger.warning("No expression logic for expression sensitivity analysis of %s", variable_path)
        return SensitivityResult(variable_path, operator, threshold, (), is_expression_level=True)

    root = logic if isinstance(logic, LogicNode) else parse_logic(logic)
    grid = []
    for t in threshold_grid(threshold, steps, step_size):
        modified = replace_threshold(root, variable_path, operator, t)
        fired = sum(1 for context in contexts if evaluate(modified, context).passed)
        grid.append(SensitivityPoint(t, fired / len(contexts), fired, len(contexts)))
    return SensitivityResult(variable_path, operator, threshold, tuple(grid), is_expression_level=True)
