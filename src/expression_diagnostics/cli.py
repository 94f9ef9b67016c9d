"""Run a Monte Carlo trigger simulation from the command line.

Usage:
    expression-diagnostics expressions/joy_burst.expression.json \
      --lookups data/lookups --samples 20000 --seed 7

Structured JSON output goes to stdout (or ``--output``); human messages go to
stderr.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from expression_diagnostics.config import (
    DISTRIBUTIONS,
    SAMPLING_MODES,
    SamplingCoverageConfig,
    SimulationConfig,
)
from expression_diagnostics.errors import UnseededVariablesError
from expression_diagnostics.expression import Expression
from expression_diagnostics.io_utils import dumps_json, load_json, save_json
from expression_diagnostics.prototypes import InMemoryDataRegistry
from expression_diagnostics.simulator import MonteCarloSimulator

log = logging.getLogger("expression_diagnostics.cli")


def _progress(completed: int, total: int) -> None:
    print(f"  Progress: {completed}/{total}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expression-diagnostics",
        description="Estimate how often a trigger expression fires, and why it does not.",
    )
    parser.add_argument("expression", help="Path to an expression JSON file")
    parser.add_argument(
        "--lookups",
        default=None,
        help="Directory of *.lookup.json files (emotion/sexual prototypes)",
    )
    parser.add_argument("--samples", type=int, default=10000, help="Number of samples (default: 10000)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    parser.add_argument(
        "--distribution",
        choices=sorted(DISTRIBUTIONS),
        default="uniform",
        help="Raw-axis sampling distribution (default: uniform)",
    )
    parser.add_argument(
        "--sampling-mode",
        choices=sorted(SAMPLING_MODES),
        default="static",
        help="static: independent current/previous; dynamic: previous + gaussian delta",
    )
    parser.add_argument("--confidence-level", type=float, default=0.95, help="Interval level (default: 0.95)")
    parser.add_argument("--max-witnesses", type=int, default=5, help="Witnesses to keep (default: 5)")
    parser.add_argument("--bin-count", type=int, default=10, help="Sampling coverage bins (default: 10)")
    parser.add_argument("--no-coverage", action="store_true", help="Skip sampling coverage histograms")
    parser.add_argument("--no-validate", action="store_true", help="Skip variable-path validation")
    parser.add_argument(
        "--fail-on-unseeded",
        action="store_true",
        help="Exit with an error when the expression references unseeded variables",
    )
    parser.add_argument("--progress", action="store_true", help="Report progress on stderr")
    parser.add_argument("--output", "-o", default=None, help="Write JSON here instead of stdout")
    parser.add_argument("--compact", action="store_true", help="Emit single-line JSON")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    return parser


def run(args: argparse.Namespace) -> int:
    registry = (
        InMemoryDataRegistry.from_directory(Path(args.lookups))
        if args.lookups
        else InMemoryDataRegistry()
    )
    expression = Expression.from_dict(load_json(Path(args.expression)))
    print(
        f"Simulating {expression.id}: {len(expression.prerequisites)} clause(s), "
        f"{args.samples} samples ({args.distribution}, {args.sampling_mode})",
        file=sys.stderr,
    )

    config = SimulationConfig(
        sample_count=args.samples,
        distribution=args.distribution,
        sampling_mode=args.sampling_mode,
        confidence_level=args.confidence_level,
        max_witnesses=args.max_witnesses,
        validate_var_paths=not args.no_validate,
        fail_on_unseeded_vars=args.fail_on_unseeded,
        sampling_coverage=SamplingCoverageConfig(enabled=not args.no_coverage, bin_count=args.bin_count),
        on_progress=_progress if args.progress else None,
        seed=args.seed,
    )
    try:
        result = MonteCarloSimulator(registry).run_simulation(expression, config)
    except UnseededVariablesError as exc:
        log.error("%s", exc)
        return 2

    payload = result.as_dict()
    if args.output:
        save_json(payload, Path(args.output), pretty=not args.compact)
        print(f"Wrote {args.output}", file=sys.stderr)
    else:
        sys.stdout.buffer.write(dumps_json(payload, pretty=not args.compact))
        sys.stdout.buffer.write(b"\n")

    ci = result.confidence_interval
    print(
        f"Done: {result.trigger_count}/{result.sample_count} fired "
        f"({result.trigger_rate:.2%}, CI {ci.low:.2%}-{ci.high:.2%})",
        file=sys.stderr,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return run(args)
    except ValueError as exc:
        log.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
