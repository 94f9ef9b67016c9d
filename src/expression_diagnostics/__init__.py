"""Monte Carlo trigger diagnostics for emotion/mood expressions."""

from expression_diagnostics.clause_stats import (
    ClauseReport,
    ClauseStatsNode,
    NodeReport,
    StreamingPercentile,
    build_stats_tree,
    finalize_clause_reports,
)
from expression_diagnostics.confidence import ConfidenceInterval, wilson_interval, z_score
from expression_diagnostics.config import (
    DEFAULT_NEAR_MISS_EPSILONS,
    SamplingCoverageConfig,
    SimulationConfig,
    epsilon_for_path,
)
from expression_diagnostics.context_builder import (
    ContextBuilder,
    EmotionCalculator,
    EvaluationContext,
    PrototypeSignal,
)
from expression_diagnostics.errors import (
    UnseededVariablesError,
    UnseededVarWarning,
    UnsupportedOperatorError,
)
from expression_diagnostics.expression import Clause, Expression
from expression_diagnostics.gate_compatibility import (
    GateCompatibility,
    GateVerdict,
    analyze_gate_compatibility,
)
from expression_diagnostics.logic_ast import (
    And,
    Compare,
    Literal,
    LogicNode,
    NodeOutcome,
    Not,
    Or,
    Unsupported,
    Var,
    describe,
    evaluate,
    parse_logic,
)
from expression_diagnostics.prototypes import (
    DataRegistry,
    GateConstraint,
    InMemoryDataRegistry,
    Prototype,
)
from expression_diagnostics.results import (
    FailedLeaf,
    NearestMiss,
    SimulationResult,
    Witness,
    WitnessAnalysis,
)
from expression_diagnostics.sampling_coverage import SamplingCoverage, VariableCoverage
from expression_diagnostics.sensitivity import (
    SensitivityResult,
    compute_expression_sensitivity,
    compute_threshold_sensitivity,
)
from expression_diagnostics.simulator import MonteCarloSimulator
from expression_diagnostics.state_sampler import AxisState, RandomStateGenerator, SampledState
from expression_diagnostics.var_paths import (
    KnownContextKeys,
    collect_var_paths,
    validate_expression_var_paths,
    validate_var_path,
)

__all__ = [
    "And",
    "AxisState",
    "Clause",
    "ClauseReport",
    "ClauseStatsNode",
    "Compare",
    "ConfidenceInterval",
    "ContextBuilder",
    "DEFAULT_NEAR_MISS_EPSILONS",
    "DataRegistry",
    "EmotionCalculator",
    "EvaluationContext",
    "Expression",
    "FailedLeaf",
    "GateCompatibility",
    "GateConstraint",
    "GateVerdict",
    "InMemoryDataRegistry",
    "KnownContextKeys",
    "Literal",
    "LogicNode",
    "MonteCarloSimulator",
    "NearestMiss",
    "NodeOutcome",
    "NodeReport",
    "Not",
    "Or",
    "Prototype",
    "PrototypeSignal",
    "RandomStateGenerator",
    "SampledState",
    "SamplingCoverage",
    "SamplingCoverageConfig",
    "SensitivityResult",
    "SimulationConfig",
    "SimulationResult",
    "StreamingPercentile",
    "UnseededVarWarning",
    "UnseededVariablesError",
    "Unsupported",
    "UnsupportedOperatorError",
    "Var",
    "VariableCoverage",
    "Witness",
    "WitnessAnalysis",
    "analyze_gate_compatibility",
    "build_stats_tree",
    "collect_var_paths",
    "compute_expression_sensitivity",
    "compute_threshold_sensitivity",
    "describe",
    "epsilon_for_path",
    "evaluate",
    "finalize_clause_reports",
    "parse_logic",
    "validate_expression_var_paths",
    "validate_var_path",
    "wilson_interval",
    "z_score",
]
