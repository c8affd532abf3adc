"""
DECISION GRAPH ONTOLOGY - The Physics of the Validator

This module defines the declarative schema that governs every check.
The validator and the reconciliation pass CONSULT these tables; they do
not contain their own copies of the rules.

Key Principles:
1. ALLOWED_EDGES is the SINGLE SOURCE OF TRUTH for which edges may exist
2. ISSUE_CATALOG owns the tier, severity and message of every code
3. Factor categories are derived from structure, never trusted from labels
4. Adding a rule = adding a row, not a branch

Tables are validated on module load.
"""
import re
import string
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS (Closed vocabularies)
# =============================================================================

class NodeKind(str, Enum):
    """Kinds of nodes in a decision graph."""
    DECISION = "decision"    # The single choice being made (pure source)
    OPTION = "option"        # One alternative; sets controllable factors
    FACTOR = "factor"        # A quantity in the causal model
    OUTCOME = "outcome"      # A good consequence rolling up into the goal
    RISK = "risk"            # A bad consequence rolling up into the goal
    GOAL = "goal"            # What the decision optimises (terminal sink)


class FactorCategory(str, Enum):
    """Structural class of a factor. Always re-derivable from the graph."""
    CONTROLLABLE = "controllable"  # Has an incoming option edge
    OBSERVABLE = "observable"      # No option edge, known baseline value
    EXTERNAL = "external"          # No option edge, no known value


class EffectDirection(str, Enum):
    """Redundant sign label carried by edges; must agree with strength_mean."""
    POSITIVE = "positive"
    NEGATIVE = "negative"


class FactorType(str, Enum):
    """Canonical type mapping for controllable factors."""
    COST = "cost"
    PRICE = "price"
    TIME = "time"
    PROBABILITY = "probability"
    REVENUE = "revenue"
    DEMAND = "demand"
    QUALITY = "quality"
    OTHER = "other"


class ExtractionType(str, Enum):
    """How a factor's value was obtained from the brief."""
    EXPLICIT = "explicit"
    INFERRED = "inferred"


class Severity(str, Enum):
    """Issue severity. Only ERROR blocks a graph."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"


class Tier(str, Enum):
    """Rule groups, in the order the validator applies them."""
    STRUCTURAL = "structural"            # Tier 1
    TOPOLOGY = "topology"                # Tier 2
    REACHABILITY = "reachability"        # Tier 3
    FACTOR_DATA = "factor_data"          # Tier 4
    SEMANTIC = "semantic"                # Tier 5
    NUMERIC = "numeric"                  # Tier 6
    ADVISORY = "advisory"                # Non-blocking warnings
    POST_NORMALISATION = "post_normalisation"
    RECONCILIATION = "reconciliation"    # STRP mutation codes


# =============================================================================
# LIMITS
# =============================================================================

# Node cap matches the platform standard. Edges and options diverge from it:
# causal graphs are denser than typical platform graphs, and every option
# carries a full intervention bundle, so more than six stops adding value.
NODE_LIMIT = 50
EDGE_LIMIT = 200
MIN_OPTIONS = 2
MAX_OPTIONS = 6

# Causal edges below this std look like accidental copies of structural defaults
MIN_CAUSAL_STD = 0.05
LOW_CONFIDENCE_THRESHOLD = 0.3

# Shortest id stem / label that fuzzy constraint matching will consider
MIN_FUZZY_STEM_LENGTH = 4
CONSTRAINT_NODE_PREFIXES: Tuple[str, ...] = ("fac_", "out_", "risk_")


# =============================================================================
# STRUCTURAL EDGES (Scaffolding, not causal claims)
# =============================================================================

class CanonicalEdge(BaseModel):
    """Fixed parameters every structural edge must carry."""
    model_config = ConfigDict(frozen=True)

    mean: float = 1.0
    std: float = 0.01
    belief_exists: float = 1.0
    direction: EffectDirection = EffectDirection.POSITIVE
    # decision->option edges are only warned about, and tolerate std up to this
    std_tolerance: float = 0.05


CANONICAL_EDGE = CanonicalEdge()

STRUCTURAL_EDGE_PAIRS: FrozenSet[Tuple[str, str]] = frozenset({
    (NodeKind.DECISION.value, NodeKind.OPTION.value),
    (NodeKind.OPTION.value, NodeKind.FACTOR.value),
})


# =============================================================================
# ALLOWED EDGE MATRIX
# =============================================================================

class AllowedEdgeRule(BaseModel):
    """
    One permitted (source, target) pairing.

    Factor endpoints are matched on their INFERRED category; a rule that
    names no category accepts any factor.
    """
    from_kind: NodeKind
    to_kind: NodeKind
    from_category: Optional[FactorCategory] = None
    to_category: Optional[FactorCategory] = None

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    def matches(
        self,
        from_kind: str,
        to_kind: str,
        from_category: Optional[str] = None,
        to_category: Optional[str] = None,
    ) -> bool:
        if self.from_kind != from_kind or self.to_kind != to_kind:
            return False
        if self.from_category and self.from_category != from_category:
            return False
        if self.to_category and self.to_category != to_category:
            return False
        return True


# Anything not listed here is rejected: edges out of goal, edges into
# decision, option->outcome/goal shortcuts, factor->goal shortcuts, and
# chains among outcomes and risks.
ALLOWED_EDGES: List[AllowedEdgeRule] = [
    AllowedEdgeRule(from_kind=NodeKind.DECISION, to_kind=NodeKind.OPTION),
    AllowedEdgeRule(from_kind=NodeKind.OPTION, to_kind=NodeKind.FACTOR,
                    to_category=FactorCategory.CONTROLLABLE),
    AllowedEdgeRule(from_kind=NodeKind.FACTOR, to_kind=NodeKind.FACTOR,
                    to_category=FactorCategory.OBSERVABLE),
    AllowedEdgeRule(from_kind=NodeKind.FACTOR, to_kind=NodeKind.FACTOR,
                    to_category=FactorCategory.EXTERNAL),
    AllowedEdgeRule(from_kind=NodeKind.FACTOR, to_kind=NodeKind.OUTCOME),
    AllowedEdgeRule(from_kind=NodeKind.FACTOR, to_kind=NodeKind.RISK),
    AllowedEdgeRule(from_kind=NodeKind.OUTCOME, to_kind=NodeKind.GOAL),
    AllowedEdgeRule(from_kind=NodeKind.RISK, to_kind=NodeKind.GOAL),
]


# =============================================================================
# RECONCILIATION DEFAULTS
# =============================================================================

# Safe defaults: the most generic member of each vocabulary
FACTOR_TYPE_DEFAULT = FactorType.OTHER.value
EXTRACTION_TYPE_DEFAULT = ExtractionType.INFERRED.value
EFFECT_DIRECTION_DEFAULT = EffectDirection.POSITIVE.value
DEFAULT_UNCERTAINTY_DRIVERS: Tuple[str, ...] = ("Estimation uncertainty",)

VALID_FACTOR_TYPES: FrozenSet[str] = frozenset(t.value for t in FactorType)
VALID_EXTRACTION_TYPES: FrozenSet[str] = frozenset(t.value for t in ExtractionType)
VALID_EFFECT_DIRECTIONS: FrozenSet[str] = frozenset(d.value for d in EffectDirection)


# =============================================================================
# GOAL-NUMBER DETECTION
# =============================================================================

# Factor labels that look like the goal's own target value ("£20k MRR",
# "$50k revenue target", "reach 30% market share"). Every pattern needs a
# currency/percentage/number token AND a goal-ish or financial word, so
# "target customer segments" or "objective function weight" never match.
GOAL_NUMBER_PATTERNS: List[Pattern[str]] = [
    re.compile(r"goal of (?:reaching |achieving )?[£$€]?[\d,]+[kKmM]?", re.I),
    re.compile(r"target (?:of )?[£$€][\d,]+[kKmM]?", re.I),
    re.compile(r"(?:revenue|sales|MRR|ARR)\s*target\s*(?:of\s*)?[\d,]+[kKmM]?", re.I),
    re.compile(r"target\s*(?:of\s*)?[\d,]+[kKmM]?\s*(?:revenue|sales|MRR|ARR)", re.I),
    re.compile(r"^[£$€][\d,]+[kKmM]?\s*(?:MRR|ARR|revenue|sales)?$", re.I),
    re.compile(r"^\d+[kKmM]\s*(?:MRR|ARR|revenue|sales|target|goal)", re.I),
    re.compile(r"[£$€]\d+[kKmM]?\s*(?:revenue|sales)?\s*target", re.I),
    re.compile(r"\breach(?:ing)?\s+[£$€]?[\d,.]+\s*(?:[kKmM]\b|%)", re.I),
    re.compile(r"[\d.]+\s*%\s*(?:\w+\s+)?(?:target|goal)\b", re.I),
    re.compile(r"\b(?:target|goal)\s+(?:of\s+)?[\d.]+\s*%", re.I),
]

# Labels that REFERENCE a target rather than being one ("share of £20k target")
GOAL_REFERENCE_EXCLUSIONS: List[Pattern[str]] = [
    re.compile(r"(?:share|fraction|portion|percentage|%)\s+of\s+[£$€]?[\d,]+[kKmM]?\s*(?:target|goal)?", re.I),
    re.compile(r"progress\s+(?:toward|towards|to)\s+[£$€]?[\d,]+[kKmM]?", re.I),
    re.compile(r"\([\d.]+[-–][\d.]+,?\s*(?:share|fraction|portion)\s+of\s+[£$€]?[\d,]+[kKmM]?\s*(?:target|goal)?\)", re.I),
    re.compile(r"(?:relative|compared)\s+to\s+[£$€]?[\d,]+[kKmM]?\s*(?:target|goal)?", re.I),
    re.compile(r"as\s+(?:%|percent|percentage|fraction|share)\s+of\s+[£$€]?[\d,]+[kKmM]?", re.I),
]


# =============================================================================
# ISSUE CATALOG (Severity and messages as data)
# =============================================================================

class IssueRule(BaseModel):
    """Catalogue entry for one issue or mutation code."""
    tier: Tier
    severity: Severity
    template: str = Field(description="str.format template over the issue context")

    model_config = ConfigDict(frozen=True, use_enum_values=True)


def _rule(tier: Tier, severity: Severity, template: str) -> IssueRule:
    return IssueRule(tier=tier, severity=severity, template=template)


ISSUE_CATALOG: Dict[str, IssueRule] = {
    # =========================================================================
    # Tier 1: Structural
    # =========================================================================
    "MISSING_GOAL": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Graph must have exactly 1 goal node, found {goal_count}"),
    "MISSING_DECISION": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Graph must have exactly 1 decision node, found {decision_count}"),
    "INSUFFICIENT_OPTIONS": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Graph must have between {min} and {max} options, found {option_count}"),
    "MISSING_BRIDGE": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Graph must have at least 1 outcome or risk node"),
    "NODE_LIMIT_EXCEEDED": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Graph exceeds node limit of {limit}, found {node_count}"),
    "EDGE_LIMIT_EXCEEDED": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Graph exceeds edge limit of {limit}, found {edge_count}"),
    "INVALID_EDGE_REF": _rule(
        Tier.STRUCTURAL, Severity.ERROR,
        "Edge {edge_id} references non-existent node in '{field}': {node_id}"),

    # =========================================================================
    # Tier 2: Topology
    # =========================================================================
    "GOAL_HAS_OUTGOING": _rule(
        Tier.TOPOLOGY, Severity.ERROR,
        'Goal node "{node_id}" must not have outgoing edges'),
    "DECISION_HAS_INCOMING": _rule(
        Tier.TOPOLOGY, Severity.ERROR,
        'Decision node "{node_id}" must not have incoming edges'),
    "INVALID_EDGE_TYPE": _rule(
        Tier.TOPOLOGY, Severity.ERROR,
        "Invalid edge from {from_type} to {to_type} ({from_id} -> {to_id})"),
    "CYCLE_DETECTED": _rule(
        Tier.TOPOLOGY, Severity.ERROR,
        "Graph contains a cycle; must be a DAG ({cycle_path})"),

    # =========================================================================
    # Tier 3: Reachability
    # =========================================================================
    "UNREACHABLE_FROM_DECISION": _rule(
        Tier.REACHABILITY, Severity.ERROR,
        'Node "{node_id}" ({kind}) is not reachable from decision'),
    "NO_PATH_TO_GOAL": _rule(
        Tier.REACHABILITY, Severity.ERROR,
        'Node "{node_id}" ({kind}) has no path to goal'),
    "EXEMPT_UNREACHABLE_OUTCOME_RISK": _rule(
        Tier.REACHABILITY, Severity.INFO,
        'Outcome/risk "{label}" has no controllable path from decision; decision influence is limited'),

    # =========================================================================
    # Tier 4: Factor data consistency
    # =========================================================================
    "CONTROLLABLE_MISSING_DATA": _rule(
        Tier.FACTOR_DATA, Severity.ERROR,
        'Controllable factor "{node_id}" missing required data: {missing_list}'),
    "OBSERVABLE_MISSING_DATA": _rule(
        Tier.FACTOR_DATA, Severity.ERROR,
        'Observable factor "{node_id}" missing required data: {missing_list}'),
    "OBSERVABLE_EXTRA_DATA": _rule(
        Tier.FACTOR_DATA, Severity.ERROR,
        'Observable factor "{node_id}" should not have: {extra_list}'),
    "EXTERNAL_HAS_DATA": _rule(
        Tier.FACTOR_DATA, Severity.ERROR,
        'External factor "{node_id}" should not carry data (found: {extra_list})'),
    "CATEGORY_MISMATCH": _rule(
        Tier.FACTOR_DATA, Severity.ERROR,
        'Factor "{node_id}" declares category "{declared}" but structure indicates "{inferred}"'),

    # =========================================================================
    # Tier 5: Semantic integrity
    # =========================================================================
    "NO_EFFECT_PATH": _rule(
        Tier.SEMANTIC, Severity.ERROR,
        'Option "{node_id}" has no controllable factor with a path to goal'),
    "OPTIONS_IDENTICAL": _rule(
        Tier.SEMANTIC, Severity.ERROR,
        "Options have identical intervention signatures: {option_list}"),
    "INVALID_INTERVENTION_REF": _rule(
        Tier.SEMANTIC, Severity.ERROR,
        'Option "{node_id}" intervention references {problem}: {factor_id}'),
    "GOAL_NUMBER_AS_FACTOR": _rule(
        Tier.SEMANTIC, Severity.ERROR,
        'Factor "{label}" appears to be a goal target value, not a causal factor'),
    "STRUCTURAL_EDGE_NOT_CANONICAL_ERROR": _rule(
        Tier.SEMANTIC, Severity.ERROR,
        "Option->factor structural edge {edge_id} must be canonical "
        "(mean=1, std=0.01, belief_exists=1, direction=positive)"),

    # =========================================================================
    # Tier 6: Numeric
    # =========================================================================
    "NAN_VALUE": _rule(
        Tier.NUMERIC, Severity.ERROR,
        "{owner} has non-finite {field}: {value}"),

    # =========================================================================
    # Advisory warnings (never block)
    # =========================================================================
    "STRENGTH_OUT_OF_RANGE": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Edge {edge_id} strength_mean {value} outside [-1, +1]"),
    "PROBABILITY_OUT_OF_RANGE": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Edge {edge_id} belief_exists {value} outside [0, 1]"),
    "OUTCOME_NEGATIVE_POLARITY": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Outcome->goal edge {edge_id} has negative strength_mean ({value})"),
    "RISK_POSITIVE_POLARITY": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Risk->goal edge {edge_id} has positive strength_mean ({value})"),
    "LOW_EDGE_CONFIDENCE": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Edge {edge_id} has low confidence (belief_exists: {value})"),
    "EMPTY_UNCERTAINTY_DRIVERS": _rule(
        Tier.ADVISORY, Severity.WARN,
        'Controllable factor "{node_id}" has empty uncertainty_drivers'),
    "STRUCTURAL_EDGE_NOT_CANONICAL": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Structural edge {from_kind}->{to_kind} {edge_id} is not canonical"),
    "LOW_STD_NON_STRUCTURAL": _rule(
        Tier.ADVISORY, Severity.WARN,
        "Causal edge {edge_id} has low std ({std}); causal edges should have std >= {threshold}"),

    # =========================================================================
    # Post-normalisation
    # =========================================================================
    "SIGN_MISMATCH": _rule(
        Tier.POST_NORMALISATION, Severity.ERROR,
        'Edge {edge_id} effect_direction "{effect_direction}" contradicts strength_mean sign ({strength_mean})'),

    # =========================================================================
    # Reconciliation (STRP mutation and constraint codes)
    # =========================================================================
    "CATEGORY_OVERRIDE": _rule(
        Tier.RECONCILIATION, Severity.INFO,
        'Factor "{node_id}" category overridden: "{before}" -> "{after}" ({basis})'),
    "ENUM_VALUE_CORRECTED": _rule(
        Tier.RECONCILIATION, Severity.WARN,
        'Invalid {field} "{before}" replaced with "{after}"; valid: {valid_values}'),
    "CONSTRAINT_REMAPPED": _rule(
        Tier.RECONCILIATION, Severity.INFO,
        'Constraint node_id "{before}" remapped to "{after}" (matched on {stage})'),
    "CONSTRAINT_DROPPED": _rule(
        Tier.RECONCILIATION, Severity.INFO,
        'Constraint with node_id "{before}" dropped: {why}'),
    "SIGN_CORRECTED": _rule(
        Tier.RECONCILIATION, Severity.WARN,
        'effect_direction "{before}" contradicts strength_mean sign ({strength_mean})'),
    "CONTROLLABLE_DATA_FILLED": _rule(
        Tier.RECONCILIATION, Severity.INFO,
        "Controllable factor missing required {field}; filled with default"),
    "CONSTRAINT_NODE_REMAPPED": _rule(
        Tier.RECONCILIATION, Severity.INFO,
        'Constraint node_id "{original_node_id}" remapped to "{remapped_node_id}"'),
    "CONSTRAINT_DROPPED_NO_TARGET": _rule(
        Tier.RECONCILIATION, Severity.INFO,
        'Constraint with node_id "{original_node_id}" dropped: no unambiguous matching node'),
}


# =============================================================================
# VALIDATION
# =============================================================================

_CODE_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")


def validate_ontology() -> List[str]:
    """
    Validate that the rule tables are internally consistent.

    Returns list of errors (empty if valid).
    """
    errors = []
    formatter = string.Formatter()

    for code, rule in ISSUE_CATALOG.items():
        if not _CODE_PATTERN.match(code):
            errors.append(f"Issue code '{code}' is not UPPER_SNAKE_CASE")
        try:
            list(formatter.parse(rule.template))
        except ValueError as e:
            errors.append(f"Issue code '{code}' has a malformed template: {e}")
        if rule.tier == Tier.ADVISORY.value and rule.severity == Severity.ERROR.value:
            errors.append(f"Advisory code '{code}' must not be an error")

    for rule in ALLOWED_EDGES:
        if rule.to_category and rule.to_kind != NodeKind.FACTOR.value:
            errors.append(f"Allowed edge {rule.from_kind}->{rule.to_kind} constrains a non-factor target")
        if rule.from_category and rule.from_kind != NodeKind.FACTOR.value:
            errors.append(f"Allowed edge {rule.from_kind}->{rule.to_kind} constrains a non-factor source")
        if rule.to_kind == NodeKind.DECISION.value or rule.from_kind == NodeKind.GOAL.value:
            errors.append(f"Allowed edge {rule.from_kind}->{rule.to_kind} breaks source/sink topology")

    if not MIN_OPTIONS <= MAX_OPTIONS:
        errors.append(f"MIN_OPTIONS ({MIN_OPTIONS}) exceeds MAX_OPTIONS ({MAX_OPTIONS})")

    return errors


# Run validation on module load
_validation_errors = validate_ontology()
if _validation_errors:
    import warnings
    for err in _validation_errors:
        warnings.warn(f"Ontology validation: {err}")
