"""
GRAPH INDEX - Lookup structures and structural category inference.

Built once per call from the raw node/edge lists; never cached across
calls, so it always reflects the graph state it was built from.

The networkx view includes every node id plus any id an edge mentions,
so traversal never fails on dangling references (those are reported by
Tier 1, not by a crash here).
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import networkx as nx

from core.ontology import FactorCategory, NodeKind
from core.protocols import DecisionGraph, Edge, Node, is_finite_number, payload_get


logger = logging.getLogger("DecisionGraph.Index")


@dataclass
class FactorCategoryInfo:
    """Inferred category of one factor, with the evidence behind it."""
    node_id: str
    category: str
    has_option_edge: bool
    has_value: bool
    declared_category: Optional[str] = None

    @property
    def basis(self) -> str:
        if self.has_option_edge:
            return "has option edge -> controllable"
        if self.has_value:
            return "has value -> observable"
        return "no option edge, no value -> external"


class GraphIndex:
    """
    O(1) lookups over a DecisionGraph.

    Duplicate node ids keep their first occurrence in by_id.
    """

    def __init__(self, graph: DecisionGraph):
        self.graph = graph
        self.by_id: Dict[str, Node] = {}
        self.by_kind: Dict[str, List[Node]] = defaultdict(list)
        self.forward: Dict[str, List[str]] = defaultdict(list)
        self.reverse: Dict[str, List[str]] = defaultdict(list)
        self.digraph = nx.DiGraph()

        for node in graph.nodes:
            if node.id not in self.by_id:
                self.by_id[node.id] = node
            self.by_kind[_kind_value(node)].append(node)
            self.digraph.add_node(node.id)

        for edge in graph.edges:
            self.forward[edge.from_].append(edge.to)
            self.reverse[edge.to].append(edge.from_)
            self.digraph.add_edge(edge.from_, edge.to)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def nodes_of(self, kind: NodeKind) -> List[Node]:
        return self.by_kind.get(kind.value, [])

    def first(self, kind: NodeKind) -> Optional[Node]:
        nodes = self.nodes_of(kind)
        return nodes[0] if nodes else None

    def kind_of(self, node_id: str) -> Optional[str]:
        node = self.by_id.get(node_id)
        return _kind_value(node) if node is not None else None

    def option_sourced_ids(self) -> Set[str]:
        """Targets of any edge leaving an option node."""
        return {
            edge.to for edge in self.graph.edges
            if self.kind_of(edge.from_) == NodeKind.OPTION.value
        }

    def option_targets(self, option: Node) -> List[str]:
        """Outgoing-edge targets plus intervention keys, in first-seen order."""
        targets = list(self.forward.get(option.id, []))
        targets.extend(option.interventions.keys())
        return list(dict.fromkeys(targets))

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    def descendants(self, node_id: str) -> Set[str]:
        if node_id not in self.digraph:
            return set()
        return nx.descendants(self.digraph, node_id)

    def ancestors(self, node_id: str) -> Set[str]:
        if node_id not in self.digraph:
            return set()
        return nx.ancestors(self.digraph, node_id)

    def find_cycle(self) -> Optional[Tuple[List[str], List[str]]]:
        """
        Find a cycle over all edges, structural and causal.

        Returns:
            (witness, on_cycle) where witness is one closed path
            (first node repeated at the end) and on_cycle lists every node
            that sits on any cycle; None for a DAG.
        """
        try:
            cycle_edges = nx.find_cycle(self.digraph)
        except nx.NetworkXNoCycle:
            return None

        witness = [u for u, _ in cycle_edges]
        witness.append(cycle_edges[-1][1])

        on_cycle: Set[str] = set(nx.nodes_with_selfloops(self.digraph))
        for component in nx.strongly_connected_components(self.digraph):
            if len(component) > 1:
                on_cycle.update(component)

        logger.debug(f"Cycle found: {' -> '.join(witness)}")
        return witness, sorted(on_cycle)


def _kind_value(node: Node) -> str:
    kind = node.kind
    return kind.value if isinstance(kind, NodeKind) else str(kind)


# =============================================================================
# CATEGORY INFERENCE
# =============================================================================

def infer_factor_category(node: Node, has_option_edge: bool) -> FactorCategoryInfo:
    """
    Derive a factor's true category from structure alone.

    An option edge makes it controllable; otherwise a finite numeric
    data.value makes it observable; otherwise it is external. The
    declared category is recorded but never consulted.
    """
    has_value = is_finite_number(payload_get(node.data, "value"))
    if has_option_edge:
        category = FactorCategory.CONTROLLABLE
    elif has_value:
        category = FactorCategory.OBSERVABLE
    else:
        category = FactorCategory.EXTERNAL
    return FactorCategoryInfo(
        node_id=node.id,
        category=category.value,
        has_option_edge=has_option_edge,
        has_value=has_value,
        declared_category=node.category,
    )


def infer_factor_categories(index: GraphIndex) -> Dict[str, FactorCategoryInfo]:
    """Inferred category for every factor node, keyed by id."""
    option_sourced = index.option_sourced_ids()
    categories: Dict[str, FactorCategoryInfo] = {}
    for node in index.nodes_of(NodeKind.FACTOR):
        if node.id in categories:
            continue
        categories[node.id] = infer_factor_category(node, node.id in option_sourced)
    return categories


def edge_endpoint_kinds(
    edge: Edge,
    index: GraphIndex,
    categories: Dict[str, FactorCategoryInfo],
) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
    """(from_kind, to_kind, from_category, to_category) for an edge."""
    from_kind = index.kind_of(edge.from_)
    to_kind = index.kind_of(edge.to)
    from_info = categories.get(edge.from_)
    to_info = categories.get(edge.to)
    return (
        from_kind,
        to_kind,
        from_info.category if from_info else None,
        to_info.category if to_info else None,
    )
