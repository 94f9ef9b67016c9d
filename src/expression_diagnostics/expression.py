"""Expression and clause input records."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from expression_diagnostics.logic_ast import LogicNode, parse_logic


@dataclass(frozen=True, slots=True)
class Clause:
    """One prerequisite: the raw logic and its parsed tree."""

    logic: Any
    node: LogicNode

    @classmethod
    def from_logic(cls, logic: Any) -> Clause:
        return cls(logic=logic, node=parse_logic(logic))


@dataclass(frozen=True, slots=True)
class Expression:
    """A named trigger; its clauses combine by implicit AND."""

    id: str
    prerequisites: tuple[Clause, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Expression:
        """Build from ``{"id": ..., "prerequisites": [{"logic": ...}, ...]}``."""
        raw = data.get("prerequisites") or ()
        clauses = []
        for prereq in raw:
            logic = prereq.get("logic") if isinstance(prereq, Mapping) else None
            clauses.append(Clause.from_logic(logic))
        return cls(id=str(data.get("id") or "unknown"), prerequisites=tuple(clauses))

    @classmethod
    def coerce(cls, value: Expression | Mapping[str, Any]) -> Expression:
        if isinstance(value, Expression):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise TypeError(f"expected Expression or mapping, got {type(value).__name__}")

    @property
    def logics(self) -> list[Any]:
        return [clause.logic for clause in self.prerequisites]

    @property
    def nodes(self) -> list[LogicNode]:
        return [clause.node for clause in self.prerequisites]
