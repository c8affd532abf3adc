"""
TIERED CHECKS - Tiers 1-6 and the advisory warning collector.

Each tier is a plain function over a shared ValidationContext and returns
every issue it finds; no tier stops at the first failure and no tier
depends on another tier having passed. TIER_CHECKS lists them in order.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from core.graph_index import (
    FactorCategoryInfo,
    GraphIndex,
    edge_endpoint_kinds,
    infer_factor_categories,
)
from core.ontology import (
    ALLOWED_EDGES,
    CANONICAL_EDGE,
    GOAL_NUMBER_PATTERNS,
    GOAL_REFERENCE_EXCLUSIONS,
    STRUCTURAL_EDGE_PAIRS,
    FactorCategory,
    NodeKind,
    Tier,
)
from core.protocols import (
    BLANK_IS_MISSING_KEYS,
    CONTROLLABLE_REQUIRED_KEYS,
    OBSERVABLE_FORBIDDEN_KEYS,
    OBSERVABLE_REQUIRED_KEYS,
    DecisionGraph,
    Edge,
    ValidationIssue,
    is_finite_number,
    is_non_finite_number,
    payload_get,
    payload_keys,
)
from validation.config import ValidatorConfig
from validation.issues import edge_path, make_issue, node_path


@dataclass
class ValidationContext:
    """Everything the tiers share for one validation call."""
    graph: DecisionGraph
    config: ValidatorConfig
    index: GraphIndex
    categories: Dict[str, FactorCategoryInfo]
    decision_id: Optional[str] = None
    goal_id: Optional[str] = None
    reachable_from_decision: Set[str] = field(default_factory=set)
    can_reach_goal: Set[str] = field(default_factory=set)
    exempt_node_ids: List[str] = field(default_factory=list)

    @classmethod
    def build(cls, graph: DecisionGraph, config: ValidatorConfig) -> "ValidationContext":
        index = GraphIndex(graph)
        ctx = cls(
            graph=graph,
            config=config,
            index=index,
            categories=infer_factor_categories(index),
        )
        decision = index.first(NodeKind.DECISION)
        goal = index.first(NodeKind.GOAL)
        if decision is not None:
            ctx.decision_id = decision.id
            ctx.reachable_from_decision = index.descendants(decision.id) | {decision.id}
        if goal is not None:
            ctx.goal_id = goal.id
            ctx.can_reach_goal = index.ancestors(goal.id) | {goal.id}
        return ctx

    def category_of(self, node_id: str) -> Optional[str]:
        info = self.categories.get(node_id)
        return info.category if info else None


# =============================================================================
# TIER 1: STRUCTURAL
# =============================================================================

def check_structural(ctx: ValidationContext) -> List[ValidationIssue]:
    issues = []
    index, config = ctx.index, ctx.config

    goals = index.nodes_of(NodeKind.GOAL)
    if len(goals) != 1:
        issues.append(make_issue(
            "MISSING_GOAL", goal_count=len(goals), goal_ids=[n.id for n in goals]))

    decisions = index.nodes_of(NodeKind.DECISION)
    if len(decisions) != 1:
        issues.append(make_issue(
            "MISSING_DECISION", decision_count=len(decisions),
            decision_ids=[n.id for n in decisions]))

    options = index.nodes_of(NodeKind.OPTION)
    if not config.min_options <= len(options) <= config.max_options:
        issues.append(make_issue(
            "INSUFFICIENT_OPTIONS", option_count=len(options),
            min=config.min_options, max=config.max_options,
            option_ids=[n.id for n in options]))

    if not index.nodes_of(NodeKind.OUTCOME) and not index.nodes_of(NodeKind.RISK):
        issues.append(make_issue("MISSING_BRIDGE"))

    if len(ctx.graph.nodes) > config.node_limit:
        issues.append(make_issue(
            "NODE_LIMIT_EXCEEDED", node_count=len(ctx.graph.nodes), limit=config.node_limit))

    if len(ctx.graph.edges) > config.edge_limit:
        issues.append(make_issue(
            "EDGE_LIMIT_EXCEEDED", edge_count=len(ctx.graph.edges), limit=config.edge_limit))

    for i, edge in enumerate(ctx.graph.edges):
        for endpoint, node_id in (("from", edge.from_), ("to", edge.to)):
            if node_id not in index.by_id:
                issues.append(make_issue(
                    "INVALID_EDGE_REF", path=edge_path(i, endpoint),
                    edge_id=edge.edge_id, field=endpoint, node_id=node_id))

    return issues


# =============================================================================
# TIER 2: TOPOLOGY
# =============================================================================

def _type_label(kind: Optional[str], category: Optional[str]) -> str:
    return f"{kind}({category})" if category else str(kind)


def is_allowed_edge(edge: Edge, ctx: ValidationContext) -> bool:
    from_kind, to_kind, from_category, to_category = edge_endpoint_kinds(
        edge, ctx.index, ctx.categories)
    return any(
        rule.matches(from_kind, to_kind, from_category, to_category)
        for rule in ALLOWED_EDGES
    )


def check_topology(ctx: ValidationContext) -> List[ValidationIssue]:
    issues = []
    index = ctx.index

    for goal in index.nodes_of(NodeKind.GOAL):
        targets = index.forward.get(goal.id, [])
        if targets:
            issues.append(make_issue(
                "GOAL_HAS_OUTGOING", path=node_path(goal.id),
                node_id=goal.id, targets=list(targets)))

    for decision in index.nodes_of(NodeKind.DECISION):
        sources = index.reverse.get(decision.id, [])
        if sources:
            issues.append(make_issue(
                "DECISION_HAS_INCOMING", path=node_path(decision.id),
                node_id=decision.id, sources=list(sources)))

    for i, edge in enumerate(ctx.graph.edges):
        if edge.from_ not in index.by_id or edge.to not in index.by_id:
            continue  # Tier 1 reports dangling references
        if is_allowed_edge(edge, ctx):
            continue
        from_kind, to_kind, from_category, to_category = edge_endpoint_kinds(
            edge, index, ctx.categories)
        issues.append(make_issue(
            "INVALID_EDGE_TYPE", path=edge_path(i),
            from_id=edge.from_, to_id=edge.to,
            from_type=_type_label(from_kind, from_category),
            to_type=_type_label(to_kind, to_category),
            from_kind=from_kind, to_kind=to_kind,
            from_category=from_category, to_category=to_category))

    cycle = index.find_cycle()
    if cycle is not None:
        witness, on_cycle = cycle
        issues.append(make_issue(
            "CYCLE_DETECTED", cycle=witness, node_ids=on_cycle,
            cycle_path=" -> ".join(witness)))

    return issues


# =============================================================================
# TIER 3: REACHABILITY
# =============================================================================

_EXOGENOUS_CATEGORIES = {FactorCategory.OBSERVABLE.value, FactorCategory.EXTERNAL.value}
_BRIDGE_KINDS = {NodeKind.OUTCOME.value, NodeKind.RISK.value}


def check_reachability(ctx: ValidationContext) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if ctx.decision_id is None or ctx.goal_id is None:
        return issues
    index = ctx.index

    for node in ctx.graph.nodes:
        kind = node.kind.value
        if node.kind in (NodeKind.DECISION, NodeKind.GOAL):
            continue
        if node.id in ctx.reachable_from_decision:
            continue
        reaches_goal = node.id in ctx.can_reach_goal

        # Exogenous roots are legitimate drivers as long as they feed the goal
        info = ctx.categories.get(node.id)
        if info and info.category in _EXOGENOUS_CATEGORIES and reaches_goal:
            continue

        if ctx.config.exempt_unreachable_outcome_risk and kind in _BRIDGE_KINDS and reaches_goal:
            reason = "exogenous" if index.reverse.get(node.id) else "isolated"
            ctx.exempt_node_ids.append(node.id)
            issues.append(make_issue(
                "EXEMPT_UNREACHABLE_OUTCOME_RISK", path=node_path(node.id),
                node_id=node.id, kind=kind, label=node.display_label, reason=reason))
            continue

        issues.append(make_issue(
            "UNREACHABLE_FROM_DECISION", path=node_path(node.id),
            node_id=node.id, kind=kind))

    for node in ctx.graph.nodes:
        if node.kind == NodeKind.DECISION or node.id == ctx.goal_id:
            continue
        if node.id not in ctx.can_reach_goal:
            issues.append(make_issue(
                "NO_PATH_TO_GOAL", path=node_path(node.id),
                node_id=node.id, kind=node.kind.value))

    return issues


# =============================================================================
# TIER 4: FACTOR DATA CONSISTENCY
# =============================================================================

def is_missing(data: Any, key: str) -> bool:
    value = payload_get(data, key)
    if value is None:
        return True
    return key in BLANK_IS_MISSING_KEYS and value == ""


def check_factor_data(ctx: ValidationContext) -> List[ValidationIssue]:
    issues = []

    for node in ctx.index.nodes_of(NodeKind.FACTOR):
        info = ctx.categories.get(node.id)
        if info is None:
            continue
        data = node.data
        category = info.category

        if category == FactorCategory.CONTROLLABLE.value:
            missing = [k for k in CONTROLLABLE_REQUIRED_KEYS if is_missing(data, k)]
            if missing:
                issues.append(make_issue(
                    "CONTROLLABLE_MISSING_DATA", path=node_path(node.id, "data"),
                    node_id=node.id, missing=missing, missing_list=", ".join(missing)))

        elif category == FactorCategory.OBSERVABLE.value:
            missing = [k for k in OBSERVABLE_REQUIRED_KEYS if is_missing(data, k)]
            if missing:
                issues.append(make_issue(
                    "OBSERVABLE_MISSING_DATA", path=node_path(node.id, "data"),
                    node_id=node.id, missing=missing, missing_list=", ".join(missing)))
            extra = [k for k in OBSERVABLE_FORBIDDEN_KEYS if payload_get(data, k) is not None]
            if extra:
                issues.append(make_issue(
                    "OBSERVABLE_EXTRA_DATA", path=node_path(node.id, "data"),
                    node_id=node.id, extra=extra, extra_list=", ".join(extra)))

        else:
            keys = payload_keys(data)
            if keys:
                issues.append(make_issue(
                    "EXTERNAL_HAS_DATA", path=node_path(node.id, "data"),
                    node_id=node.id, extra=keys, extra_list=", ".join(keys)))

        # Reconciliation normally settles this before validation runs
        if node.category is not None and node.category != category:
            issues.append(make_issue(
                "CATEGORY_MISMATCH", path=node_path(node.id, "category"),
                node_id=node.id, declared=node.category, inferred=category))

    return issues


# =============================================================================
# TIER 5: SEMANTIC INTEGRITY
# =============================================================================

def is_goal_number_label(label: str) -> bool:
    """True when a label looks like the goal's own target value."""
    if any(p.search(label) for p in GOAL_REFERENCE_EXCLUSIONS):
        return False
    return any(p.search(label) for p in GOAL_NUMBER_PATTERNS)


def intervention_signature(interventions: Dict[str, Any]) -> Tuple[Tuple[str, Any], ...]:
    """Order-independent signature; values compared to 4 decimal places."""
    def normalise(value: Any) -> Any:
        if is_finite_number(value):
            return round(float(value), 4) + 0.0
        return repr(value)
    return tuple(sorted(((k, normalise(v)) for k, v in interventions.items()), key=lambda kv: kv[0]))


def is_canonical_option_edge(edge: Edge) -> bool:
    return (
        edge.mean == CANONICAL_EDGE.mean
        and edge.strength_std == CANONICAL_EDGE.std
        and edge.existence == CANONICAL_EDGE.belief_exists
        and edge.effect_direction == CANONICAL_EDGE.direction.value
    )


def _edge_values(edge: Edge) -> Dict[str, Any]:
    return {
        "mean": edge.mean,
        "std": edge.strength_std,
        "belief_exists": edge.existence,
        "direction": edge.effect_direction,
    }


def check_semantic(ctx: ValidationContext) -> List[ValidationIssue]:
    issues = []
    index = ctx.index
    options = index.nodes_of(NodeKind.OPTION)

    if ctx.goal_id is not None:
        for option in options:
            targets = index.option_targets(option)
            effective = [
                t for t in targets
                if ctx.category_of(t) == FactorCategory.CONTROLLABLE.value and t in ctx.can_reach_goal
            ]
            if not effective:
                issues.append(make_issue(
                    "NO_EFFECT_PATH", path=node_path(option.id),
                    node_id=option.id, targets=targets))

    signatures: Dict[Tuple, List[str]] = {}
    for option in options:
        interventions = payload_get(option.data, "interventions")
        if not isinstance(interventions, dict):
            continue
        signatures.setdefault(intervention_signature(interventions), []).append(option.id)
    for signature, option_ids in signatures.items():
        if len(option_ids) > 1:
            issues.append(make_issue(
                "OPTIONS_IDENTICAL", option_ids=option_ids,
                option_list=", ".join(option_ids),
                signature=[list(pair) for pair in signature]))

    for option in options:
        for factor_id in option.interventions:
            target_kind = index.kind_of(factor_id)
            if target_kind == NodeKind.FACTOR.value:
                continue
            context = {"node_id": option.id, "factor_id": factor_id}
            if target_kind is None:
                context["problem"] = "non-existent node"
            else:
                context["problem"] = "non-factor node"
                context["actual_kind"] = target_kind
            issues.append(make_issue(
                "INVALID_INTERVENTION_REF",
                path=node_path(option.id, "data", "interventions", factor_id), **context))

    for factor in index.nodes_of(NodeKind.FACTOR):
        label = factor.display_label
        if not is_goal_number_label(label):
            continue
        info = ctx.categories.get(factor.id)
        has_option_edge = info.has_option_edge if info else False
        # An explicit controllable declaration is always trusted
        if has_option_edge or factor.category == FactorCategory.CONTROLLABLE.value:
            continue
        issues.append(make_issue(
            "GOAL_NUMBER_AS_FACTOR", path=node_path(factor.id),
            label=label, factor_id=factor.id,
            has_option_edge=has_option_edge, category=factor.category))

    for i, edge in enumerate(ctx.graph.edges):
        if index.kind_of(edge.from_) != NodeKind.OPTION.value:
            continue
        if index.kind_of(edge.to) != NodeKind.FACTOR.value:
            continue
        if not is_canonical_option_edge(edge):
            issues.append(make_issue(
                "STRUCTURAL_EDGE_NOT_CANONICAL_ERROR", path=edge_path(i),
                edge_id=edge.edge_id, **{"from": edge.from_, "to": edge.to},
                expected=CANONICAL_EDGE.model_dump(mode="json", exclude={"std_tolerance"}),
                actual=_edge_values(edge)))

    return issues


# =============================================================================
# TIER 6: NUMERIC
# =============================================================================

_NODE_NUMERIC_FIELDS = ("value", "baseline")
_EDGE_NUMERIC_FIELDS = ("strength_mean", "strength_std", "belief_exists", "weight", "belief")


def check_numeric(ctx: ValidationContext) -> List[ValidationIssue]:
    issues = []

    for node in ctx.graph.nodes:
        owner = f'Node "{node.id}"'
        for name in _NODE_NUMERIC_FIELDS:
            value = payload_get(node.data, name)
            if is_non_finite_number(value):
                issues.append(make_issue(
                    "NAN_VALUE", path=node_path(node.id, "data", name),
                    owner=owner, node_id=node.id, field=name, value=str(value)))
        for factor_id, value in node.interventions.items():
            if is_non_finite_number(value):
                issues.append(make_issue(
                    "NAN_VALUE", path=node_path(node.id, "data", "interventions", factor_id),
                    owner=owner, node_id=node.id, field=f"interventions.{factor_id}",
                    value=str(value)))

    for i, edge in enumerate(ctx.graph.edges):
        owner = f"Edge {edge.edge_id}"
        for name in _EDGE_NUMERIC_FIELDS:
            value = getattr(edge, name)
            if is_non_finite_number(value):
                issues.append(make_issue(
                    "NAN_VALUE", path=edge_path(i, name),
                    owner=owner, edge_id=edge.edge_id, field=name, value=str(value)))

    return issues


# =============================================================================
# ADVISORY WARNINGS
# =============================================================================

def collect_warnings(ctx: ValidationContext) -> List[ValidationIssue]:
    warnings = []
    index, config = ctx.index, ctx.config

    for i, edge in enumerate(ctx.graph.edges):
        from_kind = index.kind_of(edge.from_)
        to_kind = index.kind_of(edge.to)
        if from_kind is None or to_kind is None:
            continue
        path = edge_path(i)
        mean = edge.mean
        belief = edge.existence
        edge_id = edge.edge_id

        if mean is not None and (mean < -1 or mean > 1):
            warnings.append(make_issue(
                "STRENGTH_OUT_OF_RANGE", path=path, edge_id=edge_id, value=mean))

        if belief is not None and (belief < 0 or belief > 1):
            warnings.append(make_issue(
                "PROBABILITY_OUT_OF_RANGE", path=path, edge_id=edge_id, value=belief))

        if to_kind == NodeKind.GOAL.value and mean is not None:
            if from_kind == NodeKind.OUTCOME.value and mean < 0:
                warnings.append(make_issue(
                    "OUTCOME_NEGATIVE_POLARITY", path=path, edge_id=edge_id,
                    value=mean, **{"from": edge.from_, "to": edge.to}))
            elif from_kind == NodeKind.RISK.value and mean > 0:
                warnings.append(make_issue(
                    "RISK_POSITIVE_POLARITY", path=path, edge_id=edge_id,
                    value=mean, **{"from": edge.from_, "to": edge.to}))

        if belief is not None and belief < config.low_confidence_threshold:
            warnings.append(make_issue(
                "LOW_EDGE_CONFIDENCE", path=path, edge_id=edge_id, value=belief))

        if (from_kind, to_kind) in STRUCTURAL_EDGE_PAIRS:
            # option->factor deviations are Tier 5 errors
            if from_kind == NodeKind.DECISION.value and not _is_tolerable_decision_edge(edge, config):
                warnings.append(make_issue(
                    "STRUCTURAL_EDGE_NOT_CANONICAL", path=path, edge_id=edge_id,
                    from_kind=from_kind, to_kind=to_kind, actual=_edge_values(edge)))
        else:
            std = edge.strength_std
            if std is not None and std < config.min_causal_std:
                warnings.append(make_issue(
                    "LOW_STD_NON_STRUCTURAL", path=path, edge_id=edge_id,
                    std=std, threshold=config.min_causal_std,
                    **{"from": edge.from_, "to": edge.to}))

    for factor in index.nodes_of(NodeKind.FACTOR):
        if ctx.category_of(factor.id) != FactorCategory.CONTROLLABLE.value:
            continue
        drivers = payload_get(factor.data, "uncertainty_drivers")
        if isinstance(drivers, list) and not drivers:
            warnings.append(make_issue(
                "EMPTY_UNCERTAINTY_DRIVERS",
                path=node_path(factor.id, "data", "uncertainty_drivers"), node_id=factor.id))

    return warnings


def _is_tolerable_decision_edge(edge: Edge, config: ValidatorConfig) -> bool:
    std = edge.strength_std
    direction = edge.effect_direction
    return (
        edge.mean == CANONICAL_EDGE.mean
        and (std is None or std <= config.structural_std_tolerance)
        and edge.existence == CANONICAL_EDGE.belief_exists
        and (direction is None or direction == CANONICAL_EDGE.direction.value)
    )


# =============================================================================
# TIER TABLE
# =============================================================================

TierCheck = Callable[[ValidationContext], List[ValidationIssue]]

TIER_CHECKS: List[Tuple[Tier, TierCheck]] = [
    (Tier.STRUCTURAL, check_structural),
    (Tier.TOPOLOGY, check_topology),
    (Tier.REACHABILITY, check_reachability),
    (Tier.FACTOR_DATA, check_factor_data),
    (Tier.SEMANTIC, check_semantic),
    (Tier.NUMERIC, check_numeric),
    (Tier.ADVISORY, collect_warnings),
]
