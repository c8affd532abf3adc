"""
Graph Index & Category Inference Tests
"""
import math

import pytest

from core.graph_index import GraphIndex, infer_factor_categories
from core.ontology import NodeKind
from core.protocols import DecisionGraph, FactorData, OptionData
from graph_factories import make_graph, minimal_valid_graph, rich_valid_graph, with_node


class TestGraphIndex:
    """Lookups and adjacency built in one pass."""

    def test_lookups(self):
        index = GraphIndex(make_graph())
        assert set(index.by_id) == {"decision_1", "opt_a", "opt_b", "fac_price", "outcome_1", "goal_1"}
        assert [n.id for n in index.nodes_of(NodeKind.OPTION)] == ["opt_a", "opt_b"]
        assert index.first(NodeKind.GOAL).id == "goal_1"
        assert index.kind_of("fac_price") == "factor"
        assert index.kind_of("missing") is None

    def test_adjacency(self):
        index = GraphIndex(make_graph())
        assert index.forward["decision_1"] == ["opt_a", "opt_b"]
        assert index.reverse["fac_price"] == ["opt_a", "opt_b"]
        assert index.forward.get("goal_1", []) == []

    def test_duplicate_ids_keep_first(self):
        payload = minimal_valid_graph()
        payload["nodes"].append({"id": "fac_price", "kind": "outcome", "label": "Duplicate"})
        index = GraphIndex(make_graph(payload))
        assert index.by_id["fac_price"].kind == NodeKind.FACTOR
        assert len(index.nodes_of(NodeKind.OUTCOME)) == 2

    def test_dangling_edges_do_not_break_traversal(self):
        payload = minimal_valid_graph()
        payload["edges"].append({"from": "ghost", "to": "goal_1", "strength_mean": 0.5})
        index = GraphIndex(make_graph(payload))
        assert "ghost" in index.ancestors("goal_1")
        assert index.descendants("not_there") == set()

    def test_option_targets_union_edges_and_interventions(self):
        payload = minimal_valid_graph()
        with_node(payload, "opt_a")["data"]["interventions"]["fac_other"] = 3
        index = GraphIndex(make_graph(payload))
        assert index.option_targets(index.by_id["opt_a"]) == ["fac_price", "fac_other"]

    def test_empty_graph(self):
        index = GraphIndex(DecisionGraph())
        assert index.first(NodeKind.DECISION) is None
        assert index.find_cycle() is None


class TestCycleFinder:
    """Cycles over all edges, structural and causal."""

    def test_dag_has_no_cycle(self):
        assert GraphIndex(make_graph(rich_valid_graph())).find_cycle() is None

    def test_cycle_witness_and_members(self):
        payload = minimal_valid_graph()
        payload["edges"].append({"from": "outcome_1", "to": "fac_price", "strength_mean": 0.3})
        witness, on_cycle = GraphIndex(make_graph(payload)).find_cycle()
        assert witness[0] == witness[-1]
        assert set(witness) == {"fac_price", "outcome_1"}
        assert on_cycle == ["fac_price", "outcome_1"]

    def test_self_loop_is_a_cycle(self):
        payload = minimal_valid_graph()
        payload["edges"].append({"from": "outcome_1", "to": "outcome_1", "strength_mean": 0.3})
        witness, on_cycle = GraphIndex(make_graph(payload)).find_cycle()
        assert witness == ["outcome_1", "outcome_1"]
        assert on_cycle == ["outcome_1"]

    def test_deep_chain_does_not_recurse(self):
        nodes = [{"id": f"fac_{i}", "kind": "factor"} for i in range(5000)]
        edges = [{"from": f"fac_{i}", "to": f"fac_{i + 1}", "strength_mean": 0.5} for i in range(4999)]
        edges.append({"from": "fac_4999", "to": "fac_0", "strength_mean": 0.5})
        witness, on_cycle = GraphIndex(DecisionGraph.model_validate({"nodes": nodes, "edges": edges})).find_cycle()
        assert len(on_cycle) == 5000
        assert len(witness) == 5001


class TestCategoryInference:
    """Category from structure alone, never from the declared label."""

    def test_option_edge_makes_controllable(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["category"] = "external"
        categories = infer_factor_categories(GraphIndex(make_graph(payload)))
        info = categories["fac_price"]
        assert info.category == "controllable"
        assert info.has_option_edge
        assert info.declared_category == "external"

    def test_value_makes_observable_and_absence_external(self):
        categories = infer_factor_categories(GraphIndex(make_graph(rich_valid_graph())))
        assert categories["fac_demand"].category == "observable"
        assert categories["fac_market"].category == "external"
        assert categories["fac_market"].basis == "no option edge, no value -> external"

    @pytest.mark.parametrize("value", [math.nan, math.inf, None])
    def test_non_finite_value_is_not_a_value(self, value):
        payload = rich_valid_graph()
        with_node(payload, "fac_demand")["data"]["value"] = value
        categories = infer_factor_categories(GraphIndex(make_graph(payload)))
        assert categories["fac_demand"].category == "external"

    def test_inference_is_repeatable(self):
        graph = make_graph(rich_valid_graph())
        first = infer_factor_categories(GraphIndex(graph))
        second = infer_factor_categories(GraphIndex(graph))
        assert {k: v.category for k, v in first.items()} == {k: v.category for k, v in second.items()}


class TestPayloadParsing:
    """Node data parsed per kind."""

    def test_factor_and_option_payloads(self):
        graph = make_graph()
        by_id = {n.id: n for n in graph.nodes}
        assert isinstance(by_id["fac_price"].data, FactorData)
        assert isinstance(by_id["opt_a"].data, OptionData)
        assert by_id["opt_a"].interventions == {"fac_price": 100.0}

    def test_unknown_fields_survive_round_trip(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["data"]["source_quote"] = "priced at £150"
        with_node(payload, "goal_1")["position"] = {"x": 1}
        dumped = make_graph(payload).to_dict()
        assert with_node(dumped, "fac_price")["data"]["source_quote"] == "priced at £150"
        assert with_node(dumped, "goal_1")["position"] == {"x": 1}
        assert dumped["edges"][0]["from"] == "decision_1"

    def test_legacy_edge_fields(self):
        graph = DecisionGraph.model_validate({
            "nodes": [], "edges": [{"from": "a", "to": "b", "weight": 0.4, "belief": 0.7}],
        })
        edge = graph.edges[0]
        assert edge.mean == 0.4
        assert edge.existence == 0.7
        assert edge.edge_id == "a::b"
