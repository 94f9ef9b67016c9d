"""Canonical AST for trigger logic and its per-sample evaluator.

Raw logic is the JSON-logic subset::

    {"var": "emotions.joy"}                 -> Var
    {">=": [a, b]} (also <=, >, <, ==)      -> Compare
    {"and": [...]} / {"or": [...]}          -> And / Or
    {"!": node} or {"!": [node]}            -> Not
    anything else with an operator key      -> Unsupported (always fails)
    scalars / lists                         -> Literal

Parsing happens once per clause. A comparison with a numeric literal on the
left and a variable on the right is rewritten with the operands swapped and
the operator flipped, so every simple comparison reads
``variable_path <op> threshold_value``.

Functions:

* ``parse_logic`` — raw logic → ``LogicNode``.
* ``evaluate`` — ``LogicNode`` × context → ``NodeOutcome`` tree. Faults
  (unsupported operators, type errors, failing reads) become failing leaves.
* ``describe`` — human-readable one-liner for a node.
* ``iter_nodes`` / ``iter_leaves`` — pre-order traversal helpers.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol

import orjson

from expression_diagnostics.errors import UnsupportedOperatorError

COMPARISON_OPERATORS: frozenset[str] = frozenset({">=", "<=", ">", "<", "=="})

FLIPPED_OPERATORS: dict[str, str] = {
    ">=": "<=",
    "<=": ">=",
    ">": "<",
    "<": ">",
    "==": "==",
}

# Added to the distance for failed strict comparisons
STRICT_VIOLATION_PAD = 0.01


# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Var:
    """Reference to a dotted context path."""

    path: str
    default: Any = None


@dataclass(frozen=True, slots=True)
class Literal:
    """Constant operand."""

    value: Any


@dataclass(frozen=True, slots=True)
class Compare:
    """Binary comparison.

    ``variable_path``/``threshold_value`` are set only for the simple
    ``Var <op> numeric Literal`` form.
    """

    operator: str
    left: LogicNode
    right: LogicNode
    variable_path: str | None = None
    threshold_value: float | None = None


@dataclass(frozen=True, slots=True)
class And:
    children: tuple[LogicNode, ...]


@dataclass(frozen=True, slots=True)
class Or:
    children: tuple[LogicNode, ...]


@dataclass(frozen=True, slots=True)
class Not:
    child: LogicNode


@dataclass(frozen=True, slots=True)
class Unsupported:
    """Operator the evaluator does not implement; always fails."""

    operator: str
    payload: Any


LogicNode = Var | Literal | Compare | And | Or | Not | Unsupported

COMPOUND_TYPES = (And, Or, Not)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def is_number(value: Any) -> bool:
    """True for int/float values, excluding bools."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_logic(raw: Any) -> LogicNode:
    """Parse raw JSON-logic into a canonical ``LogicNode``."""
    if not isinstance(raw, dict):
        return Literal(value=raw)
    if len(raw) != 1:
        return Unsupported(operator="<object>", payload=raw)

    ((op, args),) = raw.items()
    if op == "var":
        return _parse_var(args, raw)
    if op in COMPARISON_OPERATORS:
        if not isinstance(args, list) or len(args) != 2:
            return Unsupported(operator=op, payload=raw)
        return make_compare(op, parse_logic(args[0]), parse_logic(args[1]))
    if op in ("and", "or"):
        items = args if isinstance(args, list) else [args]
        children = tuple(parse_logic(item) for item in items)
        return And(children=children) if op == "and" else Or(children=children)
    if op == "!":
        if isinstance(args, list):
            if len(args) != 1:
                return Unsupported(operator=op, payload=raw)
            args = args[0]
        return Not(child=parse_logic(args))
    return Unsupported(operator=str(op), payload=raw)


def _parse_var(args: Any, raw: dict[str, Any]) -> LogicNode:
    if isinstance(args, list):
        if not args or not isinstance(args[0], str):
            return Unsupported(operator="var", payload=raw)
        return Var(path=args[0], default=args[1] if len(args) > 1 else None)
    if isinstance(args, str):
        return Var(path=args)
    return Unsupported(operator="var", payload=raw)


def make_compare(op: str, left: LogicNode, right: LogicNode) -> Compare:
    """Build a ``Compare``, normalizing ``threshold <op> var`` to ``var <flipped> threshold``."""
    if isinstance(left, Var) and isinstance(right, Literal) and is_number(right.value):
        return Compare(op, left, right, variable_path=left.path, threshold_value=float(right.value))
    if isinstance(right, Var) and isinstance(left, Literal) and is_number(left.value):
        flipped = FLIPPED_OPERATORS[op]
        return Compare(flipped, right, left, variable_path=right.path, threshold_value=float(left.value))
    return Compare(op, left, right)


# ---------------------------------------------------------------------------
# Traversal / description
# ---------------------------------------------------------------------------

def children_of(node: LogicNode) -> tuple[LogicNode, ...]:
    if isinstance(node, (And, Or)):
        return node.children
    if isinstance(node, Not):
        return (node.child,)
    return ()


def is_leaf(node: LogicNode) -> bool:
    return not isinstance(node, COMPOUND_TYPES)


def iter_nodes(node: LogicNode) -> Iterator[LogicNode]:
    """Pre-order traversal over logical nodes (comparison operands excluded)."""
    yield node
    for child in children_of(node):
        yield from iter_nodes(child)


def iter_leaves(node: LogicNode) -> Iterator[LogicNode]:
    for n in iter_nodes(node):
        if is_leaf(n):
            yield n


def iter_var_paths(node: LogicNode) -> Iterator[str]:
    """Every ``Var`` path in *node*, comparison operands included."""
    if isinstance(node, Var):
        yield node.path
    elif isinstance(node, Compare):
        yield from iter_var_paths(node.left)
        yield from iter_var_paths(node.right)
    else:
        for child in children_of(node):
            yield from iter_var_paths(child)


def describe(node: LogicNode) -> str:
    if isinstance(node, Compare):
        return f"{_describe_operand(node.left)} {node.operator} {_describe_operand(node.right)}"
    if isinstance(node, And):
        return f"AND of {len(node.children)} conditions"
    if isinstance(node, Or):
        return f"OR of {len(node.children)} conditions"
    if isinstance(node, Not):
        return f"NOT ({describe(node.child)})"
    if isinstance(node, Var):
        return node.path
    if isinstance(node, Literal):
        return _describe_operand(node)
    return orjson.dumps(node.payload, default=str).decode("utf-8")[:60]


def _describe_operand(node: LogicNode) -> str:
    if isinstance(node, Var):
        return node.path
    if isinstance(node, Literal):
        if node.value is None:
            return "null"
        if isinstance(node.value, bool):
            return "true" if node.value else "false"
        if isinstance(node.value, str):
            return f'"{node.value}"'
        return str(node.value)
    return f"({describe(node)})"


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

class Resolver(Protocol):
    def resolve(self, path: str) -> Any: ...

    def gate_passed(self, path: str) -> bool | None: ...


@dataclass(frozen=True, slots=True)
class NodeOutcome:
    """Result of evaluating one node for one sample.

    Compound nodes carry ``None`` in the comparison fields and their
    children's outcomes in ``children``.
    """

    passed: bool
    comparison_operator: str | None = None
    threshold_value: float | None = None
    variable_path: str | None = None
    observed_value: float | None = None
    violation: float | None = None
    gate_passed: bool | None = None
    fault: str | None = None
    children: tuple[NodeOutcome, ...] = ()


def evaluate(node: LogicNode, context: Resolver) -> NodeOutcome:
    """Evaluate *node* against *context*, visiting every child."""
    if isinstance(node, Compare):
        return _evaluate_compare(node, context)
    if isinstance(node, And):
        outcomes = tuple(evaluate(child, context) for child in node.children)
        return NodeOutcome(passed=all(o.passed for o in outcomes), children=outcomes)
    if isinstance(node, Or):
        outcomes = tuple(evaluate(child, context) for child in node.children)
        return NodeOutcome(passed=any(o.passed for o in outcomes), children=outcomes)
    if isinstance(node, Not):
        inner = evaluate(node.child, context)
        # An unevaluable operand fails the negation too
        passed = inner.fault is None and not inner.passed
        return NodeOutcome(passed=passed, fault=inner.fault, children=(inner,))
    if isinstance(node, Unsupported):
        return NodeOutcome(passed=False, fault=str(UnsupportedOperatorError(node.operator)))
    try:
        value = _operand_value(node, context)
    except Exception as exc:  # noqa: BLE001 - any read failure fails the leaf
        return NodeOutcome(passed=False, fault=f"{type(exc).__name__}: {exc}")
    return NodeOutcome(passed=truthy(value))


def _evaluate_compare(node: Compare, context: Resolver) -> NodeOutcome:
    observed: float | None = None
    try:
        left = _operand_value(node.left, context)
        right = _operand_value(node.right, context)
        if isinstance(node.left, Var) and is_number(left):
            observed = float(left)
        elif isinstance(node.right, Var) and is_number(right):
            observed = float(right)
        passed = compare_values(node.operator, left, right)
    except Exception as exc:  # noqa: BLE001 - faults fail the leaf, never the run
        return NodeOutcome(
            passed=False,
            comparison_operator=node.operator,
            threshold_value=node.threshold_value,
            variable_path=node.variable_path,
            observed_value=observed,
            fault=f"{type(exc).__name__}: {exc}",
        )

    violation = None
    gate = None
    if node.variable_path is not None:
        if observed is not None and node.threshold_value is not None:
            violation = 0.0 if passed else violation_amount(node.operator, observed, node.threshold_value)
        try:
            gate = context.gate_passed(node.variable_path)
        except Exception:  # noqa: BLE001
            gate = None
    return NodeOutcome(
        passed=passed,
        comparison_operator=node.operator,
        threshold_value=node.threshold_value,
        variable_path=node.variable_path,
        observed_value=observed,
        violation=violation,
        gate_passed=gate,
    )


def _operand_value(node: LogicNode, context: Resolver) -> Any:
    if isinstance(node, Var):
        value = context.resolve(node.path)
        return node.default if value is None else value
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Unsupported):
        raise UnsupportedOperatorError(node.operator)
    outcome = evaluate(node, context)
    if outcome.fault is not None:
        raise ValueError(outcome.fault)
    return outcome.passed


def compare_values(op: str, left: Any, right: Any) -> bool:
    """Apply a comparison operator; ordering of incomparable types raises ``TypeError``."""
    if op == "==":
        return bool(left == right)
    if left is None or right is None:
        raise TypeError(f"cannot order {left!r} {op} {right!r}")
    if op == ">=":
        return bool(left >= right)
    if op == "<=":
        return bool(left <= right)
    if op == ">":
        return bool(left > right)
    if op == "<":
        return bool(left < right)
    raise UnsupportedOperatorError(op)


def violation_amount(op: str, actual: float, threshold: float) -> float:
    """Distance by which *actual* misses ``actual <op> threshold``."""
    if op == ">=":
        return max(0.0, threshold - actual)
    if op == "<=":
        return max(0.0, actual - threshold)
    if op == ">":
        return threshold - actual + STRICT_VIOLATION_PAD if actual <= threshold else 0.0
    if op == "<":
        return actual - threshold + STRICT_VIOLATION_PAD if actual >= threshold else 0.0
    return abs(actual - threshold)


def truthy(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return bool(value)
