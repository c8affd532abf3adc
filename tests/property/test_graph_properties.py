"""
Property-based tests for the validator and the reconciliation pass.

Property tests verify invariants over arbitrary (shape-valid) graphs:
- Validation and reconciliation never raise
- Any cycle is reported
- A second reconciliation pass records no mutations
- Reconciliation mutates in place and leaves no sign mismatch behind
- Constraint matching never crosses id prefixes
"""
import json

import networkx as nx
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from core.protocols import DecisionGraph
from validation.config import ReconciliationOptions, ValidatorConfig
from validation.constraints import resolve_target
from validation.graph_validator import validate_graph, validate_graph_post_normalisation
from validation.reconciliation import reconcile_structural_truth


# Strategies
ID_POOL = [
    "decision_1", "opt_a", "opt_b", "opt_c",
    "fac_price", "fac_cost", "fac_demand", "fac_market_size",
    "out_revenue", "risk_churn", "goal_1",
]

node_ids = st.sampled_from(ID_POOL)
edge_ids = st.one_of(node_ids, st.just("ghost_node"))

numbers = st.one_of(
    st.none(),
    st.floats(allow_nan=True, allow_infinity=True),
    st.floats(min_value=-2, max_value=2),
)

factor_data = st.one_of(
    st.none(),
    st.fixed_dictionaries({}, optional={
        "value": numbers,
        "baseline": numbers,
        "extractionType": st.sampled_from(["explicit", "inferred", "guessed", ""]),
        "factor_type": st.sampled_from(["price", "cost", "other", "banana", ""]),
        "uncertainty_drivers": st.one_of(st.none(), st.lists(st.text(max_size=10), max_size=2)),
    }),
)

option_data = st.one_of(
    st.none(),
    st.fixed_dictionaries({}, optional={
        "interventions": st.dictionaries(edge_ids, st.floats(allow_nan=True), max_size=3),
    }),
)

labels = st.one_of(
    st.none(),
    st.sampled_from(["Price", "£20k MRR", "Customer retention", "Market size", "share of £20k target"]),
)
categories = st.sampled_from([None, "controllable", "observable", "external", "semi"])


@st.composite
def nodes(draw):
    kind = draw(st.sampled_from(["decision", "option", "factor", "outcome", "risk", "goal"]))
    node = {"id": draw(node_ids), "kind": kind, "label": draw(labels)}
    if kind == "factor":
        node["category"] = draw(categories)
        node["data"] = draw(factor_data)
    elif kind == "option":
        node["data"] = draw(option_data)
    return node


edges = st.fixed_dictionaries(
    {"from": edge_ids, "to": edge_ids},
    optional={
        "strength_mean": numbers,
        "strength_std": numbers,
        "belief_exists": numbers,
        "weight": numbers,
        "effect_direction": st.sampled_from([None, "positive", "negative", "sideways"]),
    },
)

graphs = st.builds(
    lambda n, e: DecisionGraph.model_validate({"nodes": n, "edges": e}),
    st.lists(nodes(), max_size=12),
    st.lists(edges, max_size=20),
)

constraints = st.lists(
    st.fixed_dictionaries({"node_id": st.one_of(
        node_ids,
        st.sampled_from(["fac_pricing", "fac_market", "fac_abc", "out_rev", "risk_churn_rate"]),
    )}),
    max_size=4,
)

PROPERTY_SETTINGS = settings(max_examples=75, deadline=None,
                             suppress_health_check=[HealthCheck.too_slow])


def snapshot(graph):
    return json.dumps(graph.to_dict(), sort_keys=True, default=str)


class TestValidatorProperties:

    @PROPERTY_SETTINGS
    @given(graph=graphs, exempt=st.booleans())
    def test_never_raises_and_partitions_by_severity(self, graph, exempt):
        result = validate_graph(graph, config=ValidatorConfig(exempt_unreachable_outcome_risk=exempt))
        assert result.valid == (not result.errors)
        assert all(issue.severity == "error" for issue in result.errors)
        assert all(issue.severity != "error" for issue in result.warnings)

    @PROPERTY_SETTINGS
    @given(graph=graphs)
    def test_is_read_only(self, graph):
        before = snapshot(graph)
        validate_graph(graph)
        validate_graph_post_normalisation(graph)
        assert snapshot(graph) == before

    @PROPERTY_SETTINGS
    @given(graph=graphs)
    def test_every_cycle_is_reported(self, graph):
        digraph = nx.DiGraph([(e.from_, e.to) for e in graph.edges])
        has_cycle = not nx.is_directed_acyclic_graph(digraph)
        assert has_cycle == ("CYCLE_DETECTED" in validate_graph(graph).error_codes)


class TestReconciliationProperties:

    @PROPERTY_SETTINGS
    @given(graph=graphs, goal_constraints=constraints, fill=st.booleans())
    def test_second_pass_is_a_no_op(self, graph, goal_constraints, fill):
        options = ReconciliationOptions(fill_controllable_data=fill, goal_constraints=goal_constraints)
        first = reconcile_structural_truth(graph, options)
        assert first.graph is graph
        after_first = snapshot(graph)

        second = reconcile_structural_truth(graph, options)
        assert second.mutations == []
        assert snapshot(graph) == after_first

    @PROPERTY_SETTINGS
    @given(graph=graphs)
    def test_leaves_no_sign_mismatch_or_category_mismatch(self, graph):
        reconcile_structural_truth(graph)
        assert validate_graph_post_normalisation(graph).valid
        assert "CATEGORY_MISMATCH" not in validate_graph(graph).error_codes


class TestConstraintProperties:

    @given(
        stem=st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=4, max_size=12),
        suffix=st.text(alphabet="abcdefghijklmnopqrstuvwxyz", max_size=6),
    )
    def test_never_crosses_prefixes(self, stem, suffix):
        other_prefixes = [f"out_{stem}", f"risk_{stem}{suffix}", f"out_{suffix}{stem}"]
        ids = other_prefixes + ["fac_zz"]
        node_labels = {node_id: stem.replace("_", " ") for node_id in other_prefixes}
        resolution = resolve_target(f"fac_{stem}", ids, node_labels)
        assert resolution.target is None
