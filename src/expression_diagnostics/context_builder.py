"""Emotion/sexual-state calculation and per-sample evaluation contexts.

``EmotionCalculator`` turns raw axes into prototype intensities:

* axes are normalized (mood and traits / 100, sexual axes / 100 clamped to
  ``[0, 1]``, ``sexual_arousal`` as is),
* ``raw = clamp01(sum(weight * axis) / sum(|weight|))``,
* the value is ``raw`` only when every gate holds, otherwise 0 (gate-clamped).

``ContextBuilder`` assembles one ``EvaluationContext`` per sample, computing
only the prototypes the expression references.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from expression_diagnostics.prototypes import (
    EMOTION_PROTOTYPES_LOOKUP_ID,
    SEXUAL_PROTOTYPES_LOOKUP_ID,
    DataRegistry,
    Prototype,
    load_prototypes,
)
from expression_diagnostics.state_sampler import SampledState, TRAIT_AXES

DEFAULT_AFFECT_TRAITS: dict[str, float] = {axis: 50 for axis in TRAIT_AXES}

# Context namespaces whose values come from gated prototypes
EMOTION_NAMESPACES: frozenset[str] = frozenset({"emotions", "previousEmotions"})
SEXUAL_STATE_NAMESPACES: frozenset[str] = frozenset({"sexualStates", "previousSexualStates"})


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


@dataclass(frozen=True, slots=True)
class PrototypeSignal:
    """Raw, gated and final intensity of one prototype for one state."""

    raw: float
    gated: float
    final: float
    gate_pass: bool


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

class EmotionCalculator:
    """Prototype-based intensity calculator backed by a data registry."""

    def __init__(self, registry: DataRegistry) -> None:
        self._registry = registry
        self._emotion_prototypes: dict[str, Prototype] | None = None
        self._sexual_prototypes: dict[str, Prototype] | None = None

    @property
    def emotion_prototypes(self) -> dict[str, Prototype]:
        if self._emotion_prototypes is None:
            self._emotion_prototypes = load_prototypes(self._registry, EMOTION_PROTOTYPES_LOOKUP_ID)
        return self._emotion_prototypes

    @property
    def sexual_prototypes(self) -> dict[str, Prototype]:
        if self._sexual_prototypes is None:
            self._sexual_prototypes = load_prototypes(self._registry, SEXUAL_PROTOTYPES_LOOKUP_ID)
        return self._sexual_prototypes

    def prototype_for(self, namespace: str, name: str) -> Prototype | None:
        """Look up the prototype behind a context value like ``emotions.joy``."""
        if namespace in EMOTION_NAMESPACES:
            return self.emotion_prototypes.get(name)
        if namespace in SEXUAL_STATE_NAMESPACES:
            return self.sexual_prototypes.get(name)
        return None

    # -- scalar ------------------------------------------------------------

    def sexual_arousal(self, sexual_axes: Mapping[str, float] | None) -> float | None:
        """``clamp01((excitation - inhibition + baseline) / 100)``; ``None`` without state."""
        if not sexual_axes:
            return None
        excitation = _number(sexual_axes.get("sex_excitation"))
        inhibition = _number(sexual_axes.get("sex_inhibition"))
        baseline = _number(sexual_axes.get("baseline_libido"))
        return clamp01((excitation - inhibition + baseline) / 100.0)

    # -- emotions ----------------------------------------------------------

    def emotion_traces(
        self,
        mood_axes: Mapping[str, float] | None,
        sexual_axes: Mapping[str, float] | None = None,
        affect_traits: Mapping[str, float] | None = None,
        emotion_filter: Iterable[str] | None = None,
        *,
        sexual_arousal: float | None = None,
    ) -> dict[str, PrototypeSignal]:
        axes = self._normalized_axes(mood_axes, sexual_axes, affect_traits, sexual_arousal)
        return _signals(self.emotion_prototypes, axes, emotion_filter)

    def emotions_filtered(
        self,
        mood_axes: Mapping[str, float] | None,
        sexual_axes: Mapping[str, float] | None = None,
        affect_traits: Mapping[str, float] | None = None,
        emotion_filter: Iterable[str] | None = None,
        *,
        sexual_arousal: float | None = None,
    ) -> dict[str, float]:
        """Emotion intensities in ``[0, 1]``; a ``None`` filter computes all."""
        traces = self.emotion_traces(
            mood_axes, sexual_axes, affect_traits, emotion_filter, sexual_arousal=sexual_arousal
        )
        return {name: signal.final for name, signal in traces.items()}

    # -- sexual states -----------------------------------------------------

    def sexual_state_traces(
        self,
        sexual_axes: Mapping[str, float] | None,
        mood_axes: Mapping[str, float] | None = None,
        sexual_arousal: float | None = None,
        state_filter: Iterable[str] | None = None,
    ) -> dict[str, PrototypeSignal]:
        axes = self._normalized_axes(mood_axes, sexual_axes, None, sexual_arousal)
        return _signals(self.sexual_prototypes, axes, state_filter)

    def sexual_states(
        self,
        sexual_axes: Mapping[str, float] | None,
        mood_axes: Mapping[str, float] | None = None,
        sexual_arousal: float | None = None,
        state_filter: Iterable[str] | None = None,
    ) -> dict[str, float]:
        traces = self.sexual_state_traces(sexual_axes, mood_axes, sexual_arousal, state_filter)
        return {name: signal.final for name, signal in traces.items()}

    # -- normalization -----------------------------------------------------

    def _normalized_axes(
        self,
        mood_axes: Mapping[str, float] | None,
        sexual_axes: Mapping[str, float] | None,
        affect_traits: Mapping[str, float] | None,
        sexual_arousal: float | None,
    ) -> dict[str, float]:
        """Flatten all axes into one lookup; traits shadow sexual shadow mood."""
        axes: dict[str, float] = {}
        for axis, value in (mood_axes or {}).items():
            if _is_number(value):
                axes[axis] = value / 100.0

        arousal = sexual_arousal if sexual_arousal is not None else self.sexual_arousal(sexual_axes)
        axes["sexual_arousal"] = clamp01(arousal or 0.0)
        if sexual_axes:
            inhibition = sexual_axes.get("sex_inhibition", sexual_axes.get("sexual_inhibition"))
            if _is_number(inhibition):
                axes["sex_inhibition"] = clamp01(inhibition / 100.0)
                axes["sexual_inhibition"] = axes["sex_inhibition"]
            excitation = sexual_axes.get("sex_excitation")
            if _is_number(excitation):
                axes["sex_excitation"] = clamp01(excitation / 100.0)

        traits = dict(DEFAULT_AFFECT_TRAITS)
        traits.update({k: v for k, v in (affect_traits or {}).items() if _is_number(v)})
        for trait, value in traits.items():
            axes[trait] = clamp01(value / 100.0)
        axes["SA"] = axes["sexual_arousal"]
        return axes


def _signals(
    prototypes: Mapping[str, Prototype],
    axes: Mapping[str, float],
    names: Iterable[str] | None,
) -> dict[str, PrototypeSignal]:
    selected = prototypes.keys() if names is None else [n for n in names if n in prototypes]
    return {name: compute_signal(prototypes[name], axes) for name in selected}


def compute_signal(prototype: Prototype, axes: Mapping[str, float]) -> PrototypeSignal:
    """Evaluate one prototype against normalized *axes*."""
    raw_sum = 0.0
    max_possible = 0.0
    for axis, weight in prototype.weights.items():
        raw_sum += axes.get(axis, 0.0) * weight
        max_possible += abs(weight)
    raw = 0.0 if max_possible == 0 else clamp01(raw_sum / max_possible)
    gate_pass = all(gate.is_satisfied_by(axes.get(gate.axis, 0.0)) for gate in prototype.gates)
    gated = raw if gate_pass else 0.0
    return PrototypeSignal(raw=raw, gated=gated, final=gated, gate_pass=gate_pass)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(value: Any) -> float:
    return float(value) if _is_number(value) else 0.0


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EvaluationContext:
    """Named values visible to trigger logic for one sample.

    ``gate_passes`` maps a namespace (``"emotions"``, ``"previousSexualStates"``,
    ...) to ``{name: gate held}`` for gated prototypes only.
    """

    mood_axes: Mapping[str, float]
    emotions: Mapping[str, float]
    sexual_states: Mapping[str, float]
    sexual_arousal: float | None
    previous_mood_axes: Mapping[str, float]
    previous_emotions: Mapping[str, float]
    previous_sexual_states: Mapping[str, float]
    previous_sexual_arousal: float | None
    affect_traits: Mapping[str, float]
    gate_passes: Mapping[str, Mapping[str, bool]] = field(default_factory=dict)
    _namespaces: dict[str, Any] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_namespaces", {
            "mood": self.mood_axes,
            "moodAxes": self.mood_axes,
            "emotions": self.emotions,
            "sexualStates": self.sexual_states,
            "sexualArousal": self.sexual_arousal,
            "previousMoodAxes": self.previous_mood_axes,
            "previousEmotions": self.previous_emotions,
            "previousSexualStates": self.previous_sexual_states,
            "previousSexualArousal": self.previous_sexual_arousal,
            "affectTraits": self.affect_traits,
        })

    def resolve(self, path: str) -> Any:
        """Read a dotted path; missing segments resolve to ``None``.

        Exceptions raised by the underlying mappings propagate to the caller.
        """
        value: Any = self._namespaces
        for part in path.split("."):
            if not isinstance(value, Mapping):
                return None
            value = value.get(part)
            if value is None:
                return None
        return value

    def gate_passed(self, path: str) -> bool | None:
        """Gate outcome behind a prototype-backed path, ``None`` when ungated."""
        parts = path.split(".")
        if len(parts) != 2:
            return None
        return self.gate_passes.get(parts[0], {}).get(parts[1])

    def as_dict(self) -> dict[str, Any]:
        return {
            key: dict(value) if isinstance(value, Mapping) else value
            for key, value in self._namespaces.items()
            if key != "mood"
        }


class ContextBuilder:
    """Builds ``EvaluationContext`` objects for a fixed set of referenced names."""

    def __init__(
        self,
        calculator: EmotionCalculator,
        *,
        emotion_filter: Iterable[str] | None = None,
        sexual_state_filter: Iterable[str] | None = None,
    ) -> None:
        self._calculator = calculator
        self._emotion_filter = None if emotion_filter is None else tuple(emotion_filter)
        self._sexual_filter = None if sexual_state_filter is None else tuple(sexual_state_filter)

    def build(self, state: SampledState) -> EvaluationContext:
        calc = self._calculator
        traits = state.affect_traits if state.affect_traits is not None else DEFAULT_AFFECT_TRAITS

        arousal = calc.sexual_arousal(state.current.sexual)
        previous_arousal = calc.sexual_arousal(state.previous.sexual)

        emotions = calc.emotion_traces(
            state.current.mood, state.current.sexual, traits, self._emotion_filter,
            sexual_arousal=arousal,
        )
        previous_emotions = calc.emotion_traces(
            state.previous.mood, state.previous.sexual, traits, self._emotion_filter,
            sexual_arousal=previous_arousal,
        )
        sexual = calc.sexual_state_traces(
            state.current.sexual, state.current.mood, arousal, self._sexual_filter
        )
        previous_sexual = calc.sexual_state_traces(
            state.previous.sexual, state.previous.mood, previous_arousal, self._sexual_filter
        )

        traces = {
            "emotions": (emotions, calc.emotion_prototypes),
            "previousEmotions": (previous_emotions, calc.emotion_prototypes),
            "sexualStates": (sexual, calc.sexual_prototypes),
            "previousSexualStates": (previous_sexual, calc.sexual_prototypes),
        }
        gate_passes = {
            namespace: {
                name: signal.gate_pass
                for name, signal in signals.items()
                if prototypes[name].is_gated
            }
            for namespace, (signals, prototypes) in traces.items()
        }

        return EvaluationContext(
            mood_axes=state.current.mood,
            emotions=_finals(emotions),
            sexual_states=_finals(sexual),
            sexual_arousal=arousal,
            previous_mood_axes=state.previous.mood,
            previous_emotions=_finals(previous_emotions),
            previous_sexual_states=_finals(previous_sexual),
            previous_sexual_arousal=previous_arousal,
            affect_traits=traits,
            gate_passes=gate_passes,
        )


def _finals(signals: Mapping[str, PrototypeSignal]) -> dict[str, float]:
    return {name: signal.final for name, signal in signals.items()}
