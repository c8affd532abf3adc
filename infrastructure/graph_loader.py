"""
GRAPH LOADER
Reads decision graphs and goal constraints from JSON or YAML files.

Accepted document shapes:
    {"nodes": [...], "edges": [...], "meta": {...}}
    {"graph": {...}, "goal_constraints": [...]}
"""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from core.protocols import DecisionGraph, GoalConstraint
from validation.config import DecisionGraphError

logger = logging.getLogger("DecisionGraph.Loader")

YAML_EXTENSIONS = (".yaml", ".yml")


class GraphLoadError(DecisionGraphError):
    """Raised when a graph or constraint file cannot be read or shape-checked."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


@dataclass
class LoadedGraph:
    graph: DecisionGraph
    goal_constraints: List[GoalConstraint] = field(default_factory=list)
    source: Optional[str] = None


class GraphLoader:
    """
    Loads graph documents from disk into DecisionGraph models.
    JSON NaN/Infinity literals are kept so numeric validation can report them.
    """

    def __init__(self):
        self.loaded_files: List[str] = []

    def load(self, file_path: str, constraints_path: Optional[str] = None) -> LoadedGraph:
        """
        Load a graph, plus constraints embedded in it or in a separate file.

        Args:
            file_path: Graph document (JSON or YAML)
            constraints_path: Optional document holding a constraint list

        Raises:
            GraphLoadError: Missing file, unparseable content or a shape error
        """
        document = self._read_document(file_path)
        if not isinstance(document, dict):
            raise GraphLoadError("Graph document must be an object", file_path)

        graph_doc = document.get("graph", document)
        constraints_doc = document.get("goal_constraints") or []
        if constraints_path:
            constraints_doc = self._read_document(constraints_path)
            if isinstance(constraints_doc, dict):
                constraints_doc = constraints_doc.get("goal_constraints", [])

        try:
            graph = DecisionGraph.model_validate(graph_doc)
        except ValidationError as e:
            raise GraphLoadError(f"Graph failed shape check: {e}", file_path)

        constraints = self._parse_constraints(constraints_doc, constraints_path or file_path)

        logger.info(
            f"Loaded {file_path}: {len(graph.nodes)} nodes, {len(graph.edges)} edges,"
            f" {len(constraints)} constraints"
        )
        return LoadedGraph(graph=graph, goal_constraints=constraints, source=os.path.abspath(file_path))

    def _parse_constraints(self, raw: Any, source: str) -> List[GoalConstraint]:
        if not isinstance(raw, list):
            raise GraphLoadError("goal_constraints must be a list", source)
        try:
            return [GoalConstraint.model_validate(item) for item in raw]
        except ValidationError as e:
            raise GraphLoadError(f"Constraint failed shape check: {e}", source)

    def _read_document(self, file_path: str) -> Any:
        if not os.path.exists(file_path):
            logger.error(f"File not found: {file_path}")
            raise GraphLoadError("File not found", file_path)

        abs_path = os.path.abspath(file_path)
        file_ext = os.path.splitext(file_path)[1].lower()
        try:
            with open(abs_path, "r") as f:
                if file_ext in YAML_EXTENSIONS:
                    document = yaml.safe_load(f)
                else:
                    document = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise GraphLoadError(f"Could not parse: {e}", file_path)

        self.loaded_files.append(abs_path)
        return document

    def get_loaded_summary(self) -> Dict[str, Any]:
        """Get summary of all loaded files."""
        return {
            "total_files": len(self.loaded_files),
            "files": self.loaded_files
        }


def load_graph(file_path: str, constraints_path: Optional[str] = None) -> LoadedGraph:
    return GraphLoader().load(file_path, constraints_path)
