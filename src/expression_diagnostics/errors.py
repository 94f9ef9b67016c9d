"""Exception and warning record types for expression diagnostics."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class UnseededVarWarning:
    """A variable path the evaluation context never seeds.

    ``reason`` is one of ``"unknown_root"``, ``"unknown_nested_key"`` or
    ``"invalid_nesting"``.
    """

    path: str
    reason: str
    suggestion: str

    def as_dict(self) -> dict[str, str]:
        return {"path": self.path, "reason": self.reason, "suggestion": self.suggestion}


class UnseededVariablesError(ValueError):
    """Raised before sampling when ``fail_on_unseeded_vars`` is set and paths are unknown."""

    def __init__(self, expression_id: str, warnings: tuple[UnseededVarWarning, ...]) -> None:
        self.expression_id = expression_id
        self.warnings = warnings
        self.paths = tuple(w.path for w in warnings)
        super().__init__(
            f'Expression "{expression_id}" uses unseeded variables: {", ".join(self.paths)}'
        )


class UnsupportedOperatorError(ValueError):
    """A logic node uses an operator the evaluator does not implement."""

    def __init__(self, operator: str) -> None:
        self.operator = operator
        super().__init__(f"Unsupported logic operator: {operator!r}")
