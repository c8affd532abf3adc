"""
GRAPH VALIDATOR - Entry points for tiered and post-normalisation validation.

Usage:
    result = validate_graph(graph, request_id="req-1")
    if not result.valid:
        for issue in result.errors:
            print(issue.code, issue.path, issue.message)

Both entry points are read-only: they never mutate the graph and never
raise for a DecisionGraph, however malformed its contents.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from core.ontology import EffectDirection, FactorCategory, NodeKind
from core.protocols import DecisionGraph, Edge, ValidationIssue, is_finite_number
from validation.config import ValidatorConfig
from validation.issues import edge_path, make_issue, partition
from validation.tiers import TIER_CHECKS, ValidationContext


logger = logging.getLogger("DecisionGraph.Validator")

GraphInput = Union[DecisionGraph, Mapping[str, Any]]


@dataclass
class GraphValidationResult:
    """Outcome of one validation call. Only errors make a graph invalid."""
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    request_id: Optional[str] = None
    controllability_summary: Optional[Dict[str, Any]] = None

    @property
    def error_codes(self) -> List[str]:
        return [issue.code for issue in self.errors]

    @property
    def warning_codes(self) -> List[str]:
        return [issue.code for issue in self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "valid": self.valid,
            "errors": [issue.model_dump(mode="json") for issue in self.errors],
            "warnings": [issue.model_dump(mode="json") for issue in self.warnings],
        }
        if self.request_id is not None:
            result["request_id"] = self.request_id
        if self.controllability_summary is not None:
            result["controllability_summary"] = self.controllability_summary
        return result


def _coerce_graph(graph: GraphInput) -> DecisionGraph:
    if isinstance(graph, DecisionGraph):
        return graph
    return DecisionGraph.model_validate(graph)


def validate_graph(
    graph: GraphInput,
    request_id: Optional[str] = None,
    config: Optional[ValidatorConfig] = None,
) -> GraphValidationResult:
    """
    Run Tiers 1-6 and the advisory warnings over a graph.

    Every tier runs regardless of what earlier tiers found, so one call
    yields the complete problem list.

    Args:
        graph: A DecisionGraph, or a mapping shape-checked into one
        request_id: Correlation id echoed in logs and the result
        config: Limits and thresholds; defaults when omitted

    Returns:
        GraphValidationResult with errors and non-blocking warnings/info

    Raises:
        pydantic.ValidationError: Only when a mapping fails shape checking
    """
    graph = _coerce_graph(graph)
    config = config or ValidatorConfig()
    started = time.perf_counter()

    logger.info(
        f"Validating graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges"
        f" (request_id={request_id})"
    )

    ctx = ValidationContext.build(graph, config)
    issues: List[ValidationIssue] = []
    for tier, check in TIER_CHECKS:
        found = check(ctx)
        if found:
            logger.debug(f"Tier {tier.value}: {[i.code for i in found]}")
        issues.extend(found)

    errors, warnings = partition(issues)
    result = GraphValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        request_id=request_id,
    )
    if config.include_controllability_summary:
        result.controllability_summary = compute_controllability_summary(ctx)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"Validation complete: valid={result.valid}, {len(errors)} errors,"
        f" {len(warnings)} warnings in {elapsed_ms:.1f}ms (request_id={request_id})"
    )
    return result


def compute_controllability_summary(ctx: ValidationContext) -> Dict[str, Any]:
    """Which outcome/risk nodes have a controllable factor among their ancestors."""
    bridges = ctx.index.nodes_of(NodeKind.OUTCOME) + ctx.index.nodes_of(NodeKind.RISK)
    controllable = {
        node_id for node_id, info in ctx.categories.items()
        if info.category == FactorCategory.CONTROLLABLE.value
    }

    with_controllable = 0
    for node in bridges:
        if ctx.index.ancestors(node.id) & controllable:
            with_controllable += 1

    return {
        "total_outcome_risk_nodes": len(bridges),
        "with_controllable_ancestry": with_controllable,
        "without_controllable_ancestry": len(bridges) - with_controllable,
        "exempt_count": len(ctx.exempt_node_ids),
        "exempt_node_ids": list(ctx.exempt_node_ids),
    }


# =============================================================================
# POST-NORMALISATION
# =============================================================================

def sign_disagrees(edge: Edge) -> bool:
    """True when effect_direction contradicts a nonzero, finite mean."""
    mean = edge.mean
    direction = edge.effect_direction
    if direction is None or not is_finite_number(mean) or mean == 0:
        return False
    if direction == EffectDirection.POSITIVE.value:
        return mean < 0
    if direction == EffectDirection.NEGATIVE.value:
        return mean > 0
    return False


def validate_graph_post_normalisation(
    graph: GraphInput,
    request_id: Optional[str] = None,
) -> GraphValidationResult:
    """
    Final gate after reconciliation: re-check sign consistency only.

    Catches graphs built or repaired outside the reconciliation path.
    """
    graph = _coerce_graph(graph)
    errors = []
    for i, edge in enumerate(graph.edges):
        if sign_disagrees(edge):
            errors.append(make_issue(
                "SIGN_MISMATCH", path=edge_path(i, "effect_direction"),
                edge_id=edge.edge_id, effect_direction=edge.effect_direction,
                strength_mean=edge.mean))

    if errors:
        logger.warning(
            f"Post-normalisation found {len(errors)} sign mismatches"
            f" (request_id={request_id}): {[e.context['edge_id'] for e in errors]}"
        )
    return GraphValidationResult(valid=not errors, errors=errors, request_id=request_id)
