#!/usr/bin/env python3
"""
DECISION GRAPH CHECK - Command-line entry point

Runs the reconciliation pass, tiered validation and the post-normalisation
gate over a graph file, the same sequence a drafting pipeline runs.

Usage:
    python validate_graph.py graph.json
    python validate_graph.py graph.json --constraints constraints.json --json
    python validate_graph.py graph.yaml --no-strp --config config/validator.yaml

Exit codes:
    0  graph is valid
    1  graph has blocking errors
    2  graph or config could not be loaded
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from infrastructure.graph_loader import GraphLoadError, GraphLoader
from validation.config import ConfigError, ReconciliationOptions, load_validator_config
from validation.graph_validator import validate_graph, validate_graph_post_normalisation
from validation.reconciliation import reconcile_structural_truth


logger = logging.getLogger("DecisionGraph.CLI")

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_LOAD_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate a causal decision graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python validate_graph.py graph.json
  python validate_graph.py graph.json --constraints constraints.json
  python validate_graph.py graph.yaml --fill-controllable-data --json
        """
    )
    parser.add_argument(
        "graph",
        help="Graph file (JSON or YAML)"
    )
    parser.add_argument(
        "--constraints",
        help="Goal constraint file (JSON or YAML list)"
    )
    parser.add_argument(
        "--no-strp",
        action="store_true",
        help="Skip the reconciliation pass and validate the graph as drafted"
    )
    parser.add_argument(
        "--fill-controllable-data",
        action="store_true",
        help="Fill missing factor_type/uncertainty_drivers on controllable factors"
    )
    parser.add_argument(
        "--config",
        help="Validator config YAML (default: $DECISION_GRAPH_CONFIG)"
    )
    parser.add_argument(
        "--request-id",
        help="Correlation id included in logs and output"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full result as JSON"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    return parser


def run(argv: Optional[List[str]] = None) -> int:
    """Run the check and return the exit code."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_validator_config(args.config)
        loaded = GraphLoader().load(args.graph, args.constraints)
    except (ConfigError, GraphLoadError) as e:
        logger.error(str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_LOAD_ERROR

    graph = loaded.graph
    mutations = []
    constraints = loaded.goal_constraints
    if not args.no_strp:
        strp = reconcile_structural_truth(graph, ReconciliationOptions(
            fill_controllable_data=args.fill_controllable_data,
            goal_constraints=constraints,
            request_id=args.request_id,
        ))
        mutations = strp.mutations

    result = validate_graph(graph, request_id=args.request_id, config=config)
    post = validate_graph_post_normalisation(graph, request_id=args.request_id)
    valid = result.valid and post.valid

    if args.json:
        payload = result.to_dict()
        payload["valid"] = valid
        payload["errors"].extend(issue.model_dump(mode="json") for issue in post.errors)
        payload["mutations"] = [m.model_dump(mode="json") for m in mutations]
        payload["goal_constraints"] = [c.model_dump(mode="json", exclude_none=True) for c in constraints]
        print(json.dumps(payload, indent=2))
    else:
        _print_report(valid, result.errors + post.errors, result.warnings, mutations)

    return EXIT_VALID if valid else EXIT_INVALID


def _print_report(valid, errors, warnings, mutations) -> None:
    for mutation in mutations:
        target = mutation.node_id or mutation.edge_id or mutation.constraint_id or "-"
        print(f"  FIXED  {mutation.code:<28} {target}: {mutation.field} {mutation.before!r} -> {mutation.after!r}")
    for issue in errors:
        print(f"  ERROR  {issue.code:<28} {issue.message}")
    for issue in warnings:
        print(f"  {issue.severity.upper():<5}  {issue.code:<28} {issue.message}")
    print(f"\n{'VALID' if valid else 'INVALID'}: {len(errors)} errors, {len(warnings)} warnings, {len(mutations)} fixes")


def cli():
    """Command line interface."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s | %(name)-24s | %(levelname)-7s | %(message)s',
        datefmt='%H:%M:%S'
    )
    sys.exit(run())


if __name__ == "__main__":
    cli()
