"""Prototype records, gate parsing and the lookup registry.

A prototype maps raw axes to one named intensity::

    {"weights": {"valence": 1.0, "arousal": 0.5}, "gates": ["valence >= 0.35"]}

Gate strings are ``"<axis> <op> <number>"`` with ``op`` in ``>= <= > < ==``
and are evaluated against normalized axes (mood and traits scaled by 1/100).

Registries expose ``get(category, key)``; prototype sets live under
``("lookups", "core:emotion_prototypes")`` and
``("lookups", "core:sexual_prototypes")`` as ``{"entries": {name: prototype}}``.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from expression_diagnostics.io_utils import load_json

logger = logging.getLogger(__name__)

EMOTION_PROTOTYPES_LOOKUP_ID = "core:emotion_prototypes"
SEXUAL_PROTOTYPES_LOOKUP_ID = "core:sexual_prototypes"
LOOKUP_CATEGORY = "lookups"

GATE_OPERATORS: frozenset[str] = frozenset({">=", "<=", ">", "<", "=="})
GATE_EQUALITY_TOLERANCE = 1e-4

_GATE_RE = re.compile(r"^\s*(\w+)\s*(>=|<=|>|<|==)\s*(-?\d*\.?\d+)\s*$")


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class GateConstraint:
    """A parsed ``"<axis> <op> <value>"`` gate."""

    axis: str
    operator: str
    value: float

    @classmethod
    def parse(cls, gate: str) -> GateConstraint:
        """Parse a gate string; raises ``ValueError`` when malformed."""
        m = _GATE_RE.match(gate) if isinstance(gate, str) else None
        if m is None:
            raise ValueError(f"Invalid gate format: {gate!r}")
        return cls(axis=m.group(1), operator=m.group(2), value=float(m.group(3)))

    def is_satisfied_by(self, axis_value: float) -> bool:
        if self.operator == ">=":
            return axis_value >= self.value
        if self.operator == "<=":
            return axis_value <= self.value
        if self.operator == ">":
            return axis_value > self.value
        if self.operator == "<":
            return axis_value < self.value
        return abs(axis_value - self.value) < GATE_EQUALITY_TOLERANCE

    def __str__(self) -> str:
        return f"{self.axis} {self.operator} {self.value:.2f}"


# ---------------------------------------------------------------------------
# Prototypes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Prototype:
    """Weights plus parsed gates for one emotion or sexual state."""

    name: str
    weights: dict[str, float]
    gates: tuple[GateConstraint, ...] = ()
    raw_gates: tuple[str, ...] = ()

    @property
    def is_gated(self) -> bool:
        return len(self.gates) > 0


def prototype_from_entry(name: str, entry: Mapping[str, Any]) -> Prototype:
    """Build a ``Prototype`` from a lookup entry, skipping malformed gates."""
    raw_weights = entry.get("weights") if isinstance(entry, Mapping) else None
    weights: dict[str, float] = {}
    if isinstance(raw_weights, Mapping):
        for axis, weight in raw_weights.items():
            try:
                weights[str(axis)] = float(weight)
            except (TypeError, ValueError):
                logger.warning("Prototype %s: non-numeric weight for %s: %r", name, axis, weight)

    raw_gates = entry.get("gates") if isinstance(entry, Mapping) else None
    gates: list[GateConstraint] = []
    kept: list[str] = []
    for gate in raw_gates or ():
        try:
            gates.append(GateConstraint.parse(gate))
        except ValueError:
            logger.warning("Prototype %s: invalid gate format: %r", name, gate)
            continue
        kept.append(str(gate))
    return Prototype(name=name, weights=weights, gates=tuple(gates), raw_gates=tuple(kept))


def load_prototypes(registry: DataRegistry, lookup_id: str) -> dict[str, Prototype]:
    """Read a prototype lookup from *registry*; missing data yields ``{}``."""
    lookup = registry.get(LOOKUP_CATEGORY, lookup_id)
    entries = lookup.get("entries") if isinstance(lookup, Mapping) else None
    if not isinstance(entries, Mapping):
        logger.warning("Lookup %s not found or has no entries", lookup_id)
        return {}
    return {str(name): prototype_from_entry(str(name), entry) for name, entry in entries.items()}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class DataRegistry(Protocol):
    def get(self, category: str, key: str) -> Any: ...


class InMemoryDataRegistry:
    """Dict-backed registry: ``{category: {key: payload}}``."""

    def __init__(self, data: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._data: dict[str, dict[str, Any]] = {
            str(cat): dict(items) for cat, items in (data or {}).items()
        }

    def get(self, category: str, key: str) -> Any:
        return self._data.get(category, {}).get(key)

    def register(self, category: str, key: str, payload: Any) -> None:
        self._data.setdefault(category, {})[key] = payload

    @classmethod
    def with_prototypes(
        cls,
        *,
        emotions: Mapping[str, Any] | None = None,
        sexual: Mapping[str, Any] | None = None,
    ) -> InMemoryDataRegistry:
        """Convenience constructor from bare ``{name: entry}`` maps."""
        registry = cls()
        if emotions is not None:
            registry.register(LOOKUP_CATEGORY, EMOTION_PROTOTYPES_LOOKUP_ID, {"entries": dict(emotions)})
        if sexual is not None:
            registry.register(LOOKUP_CATEGORY, SEXUAL_PROTOTYPES_LOOKUP_ID, {"entries": dict(sexual)})
        return registry

    @classmethod
    def from_directory(cls, directory: Path) -> InMemoryDataRegistry:
        """Load every ``*.lookup.json`` under *directory*.

        Each file must carry an ``id`` (e.g. ``"core:emotion_prototypes"``);
        files without one are keyed as ``core:<stem>``.
        """
        registry = cls()
        for path in sorted(directory.glob("*.lookup.json")):
            payload = load_json(path)
            if not isinstance(payload, dict):
                logger.warning("Skipping lookup %s: top level is not an object", path)
                continue
            stem = path.name[: -len(".lookup.json")]
            lookup_id = str(payload.get("id") or f"core:{stem}")
            registry.register(LOOKUP_CATEGORY, lookup_id, payload)
            logger.debug("Loaded lookup %s from %s", lookup_id, path)
        return registry
