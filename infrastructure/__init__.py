"""
Decision Graph Infrastructure Layer
"""
from infrastructure.graph_loader import GraphLoader, GraphLoadError, LoadedGraph, load_graph

__all__ = [
    'GraphLoader',
    'GraphLoadError',
    'LoadedGraph',
    'load_graph',
]
