"""
STRUCTURAL TRUTH RECONCILIATION PASS (STRP)

Resolves disagreements between what a graph declares and what its
structure says, before validation. Rules run in a fixed order:

1. Category override      - declared factor category -> inferred category
2. Enum validation        - out-of-vocabulary enum values -> safe defaults
3. Constraint target      - remap/drop goal constraints naming missing nodes
4. Sign reconciliation    - effect_direction follows the sign of strength_mean
5. Controllable data      - fill factor_type/uncertainty_drivers (opt-in)

The graph is mutated IN PLACE and every change is recorded as a Mutation.
A second pass with the same options records no mutations.
"""
import copy
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.graph_index import FactorCategoryInfo, GraphIndex, infer_factor_categories
from core.ontology import (
    DEFAULT_UNCERTAINTY_DRIVERS,
    EFFECT_DIRECTION_DEFAULT,
    EXTRACTION_TYPE_DEFAULT,
    FACTOR_TYPE_DEFAULT,
    ISSUE_CATALOG,
    VALID_EFFECT_DIRECTIONS,
    VALID_EXTRACTION_TYPES,
    VALID_FACTOR_TYPES,
    EffectDirection,
    FactorCategory,
    NodeKind,
    Severity,
)
from core.protocols import (
    DecisionGraph,
    FactorData,
    Mutation,
    Node,
    is_finite_number,
    payload_get,
    payload_remove,
    payload_set,
)
from validation.config import ReconciliationOptions
from validation.constraints import normalise_constraint_targets
from validation.issues import render_message
from validation.tiers import is_missing


logger = logging.getLogger("DecisionGraph.STRP")

RULE_CATEGORY_OVERRIDE = "category_override"
RULE_ENUM_VALIDATION = "enum_validation"
RULE_CONSTRAINT_TARGET = "constraint_target"
RULE_SIGN_RECONCILIATION = "sign_reconciliation"
RULE_CONTROLLABLE_DATA = "controllable_data_completeness"


@dataclass
class STRPResult:
    """Result of a reconciliation pass. `graph` is the object passed in."""
    graph: DecisionGraph
    mutations: List[Mutation] = field(default_factory=list)
    goal_constraints: Optional[List[Any]] = None

    @property
    def rules_triggered(self) -> List[str]:
        return list(dict.fromkeys(m.rule for m in self.mutations))


def _catalog_severity(code: str) -> Severity:
    return Severity(ISSUE_CATALOG[code].severity)


def _default_drivers() -> List[str]:
    return list(DEFAULT_UNCERTAINTY_DRIVERS)


def _ensure_factor_data(node: Node) -> Any:
    if node.data is None:
        node.data = FactorData()
    return node.data


# =============================================================================
# RULE 1: CATEGORY OVERRIDE
# =============================================================================

def category_override_rule(
    graph: DecisionGraph,
    index: GraphIndex,
    categories: Dict[str, FactorCategoryInfo],
) -> List[Mutation]:
    mutations = []

    for node in index.nodes_of(NodeKind.FACTOR):
        info = categories.get(node.id)
        if info is None:
            continue
        declared = node.category
        inferred = info.category
        if declared == inferred:
            continue

        node.category = inferred
        adjusted = []

        if inferred == FactorCategory.CONTROLLABLE.value:
            if is_missing(node.data, "factor_type"):
                payload_set(_ensure_factor_data(node), "factor_type", FACTOR_TYPE_DEFAULT)
                adjusted.append("filled factor_type")
            if payload_get(node.data, "uncertainty_drivers") is None:
                payload_set(_ensure_factor_data(node), "uncertainty_drivers", _default_drivers())
                adjusted.append("filled uncertainty_drivers")
        else:
            for key in ("factor_type", "uncertainty_drivers"):
                if payload_remove(node.data, key):
                    adjusted.append(f"stripped {key}")

        reason = f"Structural inference: {info.basis}"
        if adjusted:
            reason += f" ({', '.join(adjusted)})"
        mutations.append(Mutation(
            rule=RULE_CATEGORY_OVERRIDE,
            code="CATEGORY_OVERRIDE",
            node_id=node.id,
            field="category",
            before=declared,
            after=inferred,
            reason=reason,
            severity=_catalog_severity("CATEGORY_OVERRIDE"),
        ))

    return mutations


# =============================================================================
# RULE 2: ENUM VALIDATION
# =============================================================================

_FACTOR_ENUM_FIELDS = (
    ("factor_type", VALID_FACTOR_TYPES, FACTOR_TYPE_DEFAULT),
    ("extractionType", VALID_EXTRACTION_TYPES, EXTRACTION_TYPE_DEFAULT),
)


def _enum_mutation(field_name: str, before: Any, after: str, valid: Any, **ref: Any) -> Mutation:
    valid_values = ", ".join(sorted(valid))
    return Mutation(
        rule=RULE_ENUM_VALIDATION,
        code="ENUM_VALUE_CORRECTED",
        field=field_name,
        before=before,
        after=after,
        reason=render_message("ENUM_VALUE_CORRECTED", {
            "field": field_name, "before": before, "after": after, "valid_values": valid_values,
        }),
        severity=_catalog_severity("ENUM_VALUE_CORRECTED"),
        **ref,
    )


def enum_validation_rule(graph: DecisionGraph, index: GraphIndex) -> List[Mutation]:
    """Coerce present-but-invalid enum values. Absent fields are left alone."""
    mutations = []

    for node in index.nodes_of(NodeKind.FACTOR):
        for key, valid, default in _FACTOR_ENUM_FIELDS:
            value = payload_get(node.data, key)
            if value is None or value in valid:
                continue
            payload_set(node.data, key, default)
            mutations.append(_enum_mutation(f"data.{key}", value, default, valid, node_id=node.id))

    for edge in graph.edges:
        value = edge.effect_direction
        if value is None or value in VALID_EFFECT_DIRECTIONS:
            continue
        edge.effect_direction = EFFECT_DIRECTION_DEFAULT
        mutations.append(_enum_mutation(
            "effect_direction", value, EFFECT_DIRECTION_DEFAULT, VALID_EFFECT_DIRECTIONS,
            edge_id=edge.edge_id))

    return mutations


# =============================================================================
# RULE 3: CONSTRAINT TARGET
# =============================================================================

def constraint_target_rule(
    graph: DecisionGraph,
    goal_constraints: List[Any],
    node_labels: Optional[Dict[str, str]] = None,
    request_id: Optional[str] = None,
) -> List[Mutation]:
    """
    Normalise the caller's constraint list in place.

    Remapped entries are replaced by copies carrying the new node_id and
    dropped entries are removed from the list.
    """
    if node_labels is None:
        node_labels = {node.id: node.label for node in graph.nodes if node.label}
    normalised = normalise_constraint_targets(
        goal_constraints, [node.id for node in graph.nodes], node_labels, request_id)

    mutations = []
    for issue in normalised.issues:
        context = issue.context
        before = context.get("original_node_id")
        if issue.code == "CONSTRAINT_NODE_REMAPPED":
            code, after = "CONSTRAINT_REMAPPED", context.get("remapped_node_id")
        else:
            code, after = "CONSTRAINT_DROPPED", None
        mutations.append(Mutation(
            rule=RULE_CONSTRAINT_TARGET,
            code=code,
            constraint_id=context.get("constraint_id"),
            field="node_id",
            before=before,
            after=after,
            reason=render_message(code, {
                "before": before, "after": after,
                "stage": context.get("stage"), "why": context.get("reason"),
            }),
            severity=_catalog_severity(code),
        ))

    goal_constraints[:] = normalised.constraints
    return mutations


# =============================================================================
# RULE 4: SIGN RECONCILIATION
# =============================================================================

def sign_reconciliation_rule(graph: DecisionGraph) -> List[Mutation]:
    mutations = []

    for edge in graph.edges:
        mean = edge.mean
        before = edge.effect_direction
        if before is None or not is_finite_number(mean) or mean == 0:
            continue
        after = EffectDirection.POSITIVE.value if mean > 0 else EffectDirection.NEGATIVE.value
        if before == after:
            continue
        edge.effect_direction = after
        mutations.append(Mutation(
            rule=RULE_SIGN_RECONCILIATION,
            code="SIGN_CORRECTED",
            edge_id=edge.edge_id,
            field="effect_direction",
            before=before,
            after=after,
            reason=render_message("SIGN_CORRECTED", {"before": before, "strength_mean": mean}),
            severity=_catalog_severity("SIGN_CORRECTED"),
        ))

    return mutations


# =============================================================================
# RULE 5: CONTROLLABLE DATA COMPLETENESS
# =============================================================================

def controllable_data_rule(
    index: GraphIndex,
    categories: Dict[str, FactorCategoryInfo],
) -> List[Mutation]:
    """Fill missing factor_type/uncertainty_drivers on controllable factors. Additive only."""
    mutations = []

    for node in index.nodes_of(NodeKind.FACTOR):
        info = categories.get(node.id)
        if info is None or info.category != FactorCategory.CONTROLLABLE.value:
            continue

        fills = []
        if is_missing(node.data, "factor_type"):
            fills.append(("factor_type", FACTOR_TYPE_DEFAULT))
        if payload_get(node.data, "uncertainty_drivers") is None:
            fills.append(("uncertainty_drivers", _default_drivers()))

        for key, value in fills:
            payload_set(_ensure_factor_data(node), key, value)
            mutations.append(Mutation(
                rule=RULE_CONTROLLABLE_DATA,
                code="CONTROLLABLE_DATA_FILLED",
                node_id=node.id,
                field=f"data.{key}",
                before=None,
                after=copy.copy(value),
                reason=render_message("CONTROLLABLE_DATA_FILLED", {"field": key}),
                severity=_catalog_severity("CONTROLLABLE_DATA_FILLED"),
            ))

    return mutations


# =============================================================================
# ENTRY POINTS
# =============================================================================

def reconcile_structural_truth(
    graph: DecisionGraph,
    options: Optional[ReconciliationOptions] = None,
) -> STRPResult:
    """
    Run the reconciliation rules over a graph, mutating it in place.

    Args:
        graph: The graph to reconcile; the same object is returned
        options: Goal constraints, label overrides, Rule 5 flag

    Returns:
        STRPResult whose graph is `graph` itself, with the mutation log
        and (when constraints were supplied) the normalised constraint list
    """
    options = options or ReconciliationOptions()
    request_id = options.request_id
    started = time.perf_counter()

    # Rules never change structure, so one index serves every rule
    index = GraphIndex(graph)
    categories = infer_factor_categories(index)

    mutations: List[Mutation] = []
    mutations.extend(category_override_rule(graph, index, categories))
    mutations.extend(enum_validation_rule(graph, index))
    if options.goal_constraints:
        mutations.extend(constraint_target_rule(
            graph, options.goal_constraints, options.node_labels, request_id))
    mutations.extend(sign_reconciliation_rule(graph))
    if options.fill_controllable_data:
        mutations.extend(controllable_data_rule(index, categories))

    result = STRPResult(graph=graph, mutations=mutations, goal_constraints=options.goal_constraints)

    elapsed_ms = (time.perf_counter() - started) * 1000
    if mutations:
        logger.info(
            f"STRP: {len(mutations)} mutation(s) applied, rules={result.rules_triggered}"
            f" in {elapsed_ms:.1f}ms (request_id={request_id})"
        )
    else:
        logger.debug(f"STRP: no mutations in {elapsed_ms:.1f}ms (request_id={request_id})")
    return result


def reconcile_structural_truth_copy(
    graph: DecisionGraph,
    options: Optional[ReconciliationOptions] = None,
) -> STRPResult:
    """Reconcile a deep copy, leaving `graph` and the caller's constraints untouched."""
    options = options or ReconciliationOptions()
    if options.goal_constraints is not None:
        options = dataclasses.replace(options, goal_constraints=copy.deepcopy(options.goal_constraints))
    return reconcile_structural_truth(graph.model_copy(deep=True), options)
