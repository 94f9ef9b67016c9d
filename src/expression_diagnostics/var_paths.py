"""Variable-path collection and validation.

Paths are checked against the namespaces an ``EvaluationContext`` actually
seeds. Nested-key sets for emotions and sexual states come from the
registry's prototype lookups, so a typo such as ``emotions.jyo`` is caught
before sampling instead of silently evaluating to ``None`` every sample.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from expression_diagnostics.errors import UnseededVarWarning
from expression_diagnostics.prototypes import (
    EMOTION_PROTOTYPES_LOOKUP_ID,
    LOOKUP_CATEGORY,
    SEXUAL_PROTOTYPES_LOOKUP_ID,
    DataRegistry,
)
from expression_diagnostics.state_sampler import MOOD_AXES, TRAIT_AXES

KNOWN_ROOTS: frozenset[str] = frozenset({
    "mood",
    "moodAxes",
    "emotions",
    "sexualStates",
    "sexualArousal",
    "previousEmotions",
    "previousSexualStates",
    "previousMoodAxes",
    "previousSexualArousal",
    "affectTraits",
})

SCALAR_ROOTS: frozenset[str] = frozenset({"sexualArousal", "previousSexualArousal"})

MAX_LISTED_KEYS = 5


def collect_var_paths(logic: Any, out: list[str] | None = None) -> list[str]:
    """All ``{"var": ...}`` paths in raw logic, in document order (duplicates kept)."""
    paths = [] if out is None else out
    if isinstance(logic, Mapping):
        for op, args in logic.items():
            if op == "var":
                if isinstance(args, str):
                    paths.append(args)
                elif isinstance(args, list) and args and isinstance(args[0], str):
                    paths.append(args[0])
                continue
            collect_var_paths(args, paths)
    elif isinstance(logic, (list, tuple)):
        for item in logic:
            collect_var_paths(item, paths)
    return paths


@dataclass(frozen=True, slots=True)
class KnownContextKeys:
    roots: frozenset[str] = KNOWN_ROOTS
    scalars: frozenset[str] = SCALAR_ROOTS
    nested: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def from_registry(cls, registry: DataRegistry) -> KnownContextKeys:
        mood = frozenset(MOOD_AXES)
        emotions = _entry_keys(registry, EMOTION_PROTOTYPES_LOOKUP_ID)
        sexual = _entry_keys(registry, SEXUAL_PROTOTYPES_LOOKUP_ID)
        return cls(nested={
            "mood": mood,
            "moodAxes": mood,
            "previousMoodAxes": mood,
            "affectTraits": frozenset(TRAIT_AXES),
            "emotions": emotions,
            "previousEmotions": emotions,
            "sexualStates": sexual,
            "previousSexualStates": sexual,
        })


def _entry_keys(registry: DataRegistry, lookup_id: str) -> frozenset[str]:
    lookup = registry.get(LOOKUP_CATEGORY, lookup_id)
    entries = lookup.get("entries") if isinstance(lookup, Mapping) else None
    if not isinstance(entries, Mapping):
        return frozenset()
    return frozenset(str(key) for key in entries)


def validate_var_path(path: str, known: KnownContextKeys) -> UnseededVarWarning | None:
    """Return a warning for *path*, or ``None`` when the context seeds it."""
    parts = path.split(".")
    root = parts[0]
    if root not in known.roots:
        return UnseededVarWarning(
            path=path,
            reason="unknown_root",
            suggestion=f'Unknown root variable "{root}". Valid roots: {", ".join(sorted(known.roots))}',
        )
    if len(parts) > 1 and root in known.scalars:
        return UnseededVarWarning(
            path=path,
            reason="invalid_nesting",
            suggestion=f'"{root}" is a scalar value and cannot have nested properties like "{path}"',
        )
    if len(parts) > 1:
        valid = known.nested.get(root)
        if valid is not None and parts[1] not in valid:
            if valid:
                listed = ", ".join(sorted(valid)[:MAX_LISTED_KEYS])
                if len(valid) > MAX_LISTED_KEYS:
                    listed += "..."
            else:
                listed = "(none available)"
            return UnseededVarWarning(
                path=path,
                reason="unknown_nested_key",
                suggestion=f'Unknown key "{parts[1]}" in "{root}". Known keys: {listed}',
            )
    return None


def validate_expression_var_paths(
    logics: Iterable[Any],
    known: KnownContextKeys,
) -> tuple[UnseededVarWarning, ...]:
    """Validate every path in *logics*; one warning per distinct path, first-seen order."""
    seen: set[str] = set()
    warnings: list[UnseededVarWarning] = []
    for logic in logics:
        for path in collect_var_paths(logic):
            if path in seen:
                continue
            seen.add(path)
            warning = validate_var_path(path, known)
            if warning is not None:
                warnings.append(warning)
    return tuple(warnings)
