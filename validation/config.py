"""
Validator and reconciliation configuration.

Limits are explicit values passed into each call; nothing here is
module-level mutable state. A YAML file may override the defaults:

    node_limit: 80
    exempt_unreachable_outcome_risk: true

Environment Variables:
    DECISION_GRAPH_CONFIG: Path to the YAML file used when none is given
"""
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from core.ontology import (
    CANONICAL_EDGE,
    EDGE_LIMIT,
    LOW_CONFIDENCE_THRESHOLD,
    MAX_OPTIONS,
    MIN_CAUSAL_STD,
    MIN_OPTIONS,
    NODE_LIMIT,
)
from core.protocols import GoalConstraint


logger = logging.getLogger("DecisionGraph.Config")

CONFIG_ENV_VAR = "DECISION_GRAPH_CONFIG"


class DecisionGraphError(Exception):
    """Base class for errors raised around (never inside) the validation core."""


class ConfigError(DecisionGraphError):
    """Raised when a configuration file is unreadable or malformed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


@dataclass
class ValidatorConfig:
    """Tunable limits for validate_graph."""
    node_limit: int = NODE_LIMIT
    edge_limit: int = EDGE_LIMIT
    min_options: int = MIN_OPTIONS
    max_options: int = MAX_OPTIONS
    low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD
    min_causal_std: float = MIN_CAUSAL_STD
    structural_std_tolerance: float = CANONICAL_EDGE.std_tolerance
    # Report outcome/risk nodes with no decision path as info instead of error
    exempt_unreachable_outcome_risk: bool = False
    include_controllability_summary: bool = True

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], path: Optional[str] = None) -> "ValidatorConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"Unknown validator config keys: {', '.join(unknown)}", path)
        config = cls(**dict(raw))
        if config.min_options > config.max_options:
            raise ConfigError(
                f"min_options ({config.min_options}) exceeds max_options ({config.max_options})", path
            )
        return config


@dataclass
class ReconciliationOptions:
    """Options for reconcile_structural_truth."""
    # Rule 5 is only safe once enrichment/repair can no longer overwrite data
    fill_controllable_data: bool = False
    goal_constraints: Optional[List[Union[GoalConstraint, Dict[str, Any]]]] = None
    node_labels: Optional[Dict[str, str]] = None
    request_id: Optional[str] = None


def load_validator_config(path: Optional[str] = None) -> ValidatorConfig:
    """
    Load a ValidatorConfig from YAML.

    Args:
        path: YAML file; falls back to $DECISION_GRAPH_CONFIG, then defaults

    Raises:
        ConfigError: If the file is not a mapping or names unknown keys
    """
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        return ValidatorConfig()

    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Config not found: {path}. Using defaults.")
        return ValidatorConfig()
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", path)

    if raw is None:
        return ValidatorConfig()
    if not isinstance(raw, dict):
        raise ConfigError("Validator config must be a mapping", path)

    config = ValidatorConfig.from_mapping(raw, path)
    logger.info(f"Loaded validator config from {path}")
    return config
