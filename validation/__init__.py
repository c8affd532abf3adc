"""
Decision Graph Validation Layer
"""
from core.ontology import (
    CANONICAL_EDGE,
    EDGE_LIMIT,
    MAX_OPTIONS,
    MIN_FUZZY_STEM_LENGTH,
    MIN_OPTIONS,
    NODE_LIMIT,
)
from validation.config import (
    ConfigError,
    DecisionGraphError,
    ReconciliationOptions,
    ValidatorConfig,
    load_validator_config,
)
from validation.constraints import ConstraintNormalisationResult, normalise_constraint_targets
from validation.graph_validator import (
    GraphValidationResult,
    validate_graph,
    validate_graph_post_normalisation,
)
from validation.reconciliation import (
    STRPResult,
    reconcile_structural_truth,
    reconcile_structural_truth_copy,
)

__all__ = [
    'CANONICAL_EDGE',
    'EDGE_LIMIT',
    'MAX_OPTIONS',
    'MIN_FUZZY_STEM_LENGTH',
    'MIN_OPTIONS',
    'NODE_LIMIT',
    'ConfigError',
    'DecisionGraphError',
    'ReconciliationOptions',
    'ValidatorConfig',
    'load_validator_config',
    'ConstraintNormalisationResult',
    'normalise_constraint_targets',
    'GraphValidationResult',
    'validate_graph',
    'validate_graph_post_normalisation',
    'STRPResult',
    'reconcile_structural_truth',
    'reconcile_structural_truth_copy',
]
