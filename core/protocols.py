"""
DECISION GRAPH PROTOCOLS

Typed contracts for the graph IR exchanged with drafting and repair
collaborators, plus the two audit records this core emits (issues and
mutations).

These Pydantic models serve dual purposes:
1. Shape checking - a producer's JSON is parsed into DecisionGraph before
   any rule runs; fields this core does not know about survive untouched
2. Typed payloads - factor and option data are parsed per node kind, so
   Tier 4's required/forbidden key tables derive from the models

Usage:
    graph = DecisionGraph.model_validate(payload)
    graph.to_dict()    # back to producer JSON (aliases, no None fields)
"""
import math
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from core.ontology import NodeKind, Severity


# =============================================================================
# NODE PAYLOADS
# =============================================================================

class FactorData(BaseModel):
    """
    Data carried by a factor node, as produced.

    Enum-like fields are plain strings so out-of-vocabulary values reach
    reconciliation instead of failing shape checks.
    """
    model_config = ConfigDict(extra="allow")

    value: Optional[float] = None
    baseline: Optional[float] = None
    extractionType: Optional[str] = None
    factor_type: Optional[str] = None
    uncertainty_drivers: Optional[List[str]] = None


class ControllableFactorData(BaseModel):
    """Complete payload for a factor an option sets."""
    model_config = ConfigDict(extra="forbid")

    value: float
    extractionType: str
    factor_type: str
    uncertainty_drivers: List[str]


class ObservableFactorData(BaseModel):
    """Complete payload for a factor with a known baseline the user cannot set."""
    model_config = ConfigDict(extra="forbid")

    value: float
    extractionType: str


class OptionData(BaseModel):
    """Data carried by an option node: factor id -> value the option sets."""
    model_config = ConfigDict(extra="allow")

    interventions: Optional[Dict[str, float]] = None


# Derived from the strict payload variants so the key tables cannot drift
CONTROLLABLE_REQUIRED_KEYS: List[str] = list(ControllableFactorData.model_fields)
OBSERVABLE_REQUIRED_KEYS: List[str] = list(ObservableFactorData.model_fields)
OBSERVABLE_FORBIDDEN_KEYS: List[str] = [
    key for key in CONTROLLABLE_REQUIRED_KEYS if key not in ObservableFactorData.model_fields
]
# Empty strings count as missing for these keys
BLANK_IS_MISSING_KEYS: FrozenSet[str] = frozenset({"factor_type", "extractionType"})


# =============================================================================
# PAYLOAD ACCESS
# =============================================================================
# Payloads arrive as typed models when parsed, but producers that build
# graphs in code may assign plain dicts. These helpers accept either.

def payload_get(data: Any, key: str, default: Any = None) -> Any:
    if data is None:
        return default
    if isinstance(data, dict):
        return data.get(key, default)
    if isinstance(data, BaseModel):
        value = getattr(data, key, None)
        if value is None and data.model_extra:
            value = data.model_extra.get(key)
        return default if value is None else value
    return default


def payload_set(data: Any, key: str, value: Any) -> None:
    if isinstance(data, dict):
        data[key] = value
    elif isinstance(data, BaseModel):
        setattr(data, key, value)


def payload_remove(data: Any, key: str) -> bool:
    """Remove a key from a payload. Returns True if a value was present."""
    if isinstance(data, dict):
        if data.get(key) is None:
            data.pop(key, None)
            return False
        del data[key]
        return True
    if isinstance(data, BaseModel):
        if key in type(data).model_fields:
            present = getattr(data, key) is not None
            setattr(data, key, None)
            return present
        if data.model_extra and key in data.model_extra:
            present = data.model_extra[key] is not None
            del data.model_extra[key]
            return present
    return False


def payload_keys(data: Any) -> List[str]:
    """Keys that carry a non-None value, in declaration order."""
    if isinstance(data, dict):
        return [k for k, v in data.items() if v is not None]
    if isinstance(data, BaseModel):
        keys = [k for k in type(data).model_fields if getattr(data, k) is not None]
        keys.extend(k for k, v in (data.model_extra or {}).items() if v is not None)
        return keys
    return []


def is_finite_number(value: Any) -> bool:
    """A real, finite number. Booleans are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_non_finite_number(value: Any) -> bool:
    """NaN or +/-inf."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isfinite(value)


# =============================================================================
# GRAPH IR
# =============================================================================

class Node(BaseModel):
    """One node of a decision graph."""
    model_config = ConfigDict(extra="allow")

    id: str
    kind: NodeKind
    label: Optional[str] = None
    category: Optional[str] = Field(
        default=None,
        description="Declared factor category; may disagree with structure"
    )
    data: Any = None

    @field_validator("data", mode="before")
    @classmethod
    def parse_payload(cls, value: Any, info: ValidationInfo) -> Any:
        """Parse data into the payload model for this node's kind."""
        if value is None:
            return None
        kind = info.data.get("kind")
        if isinstance(value, (ControllableFactorData, ObservableFactorData)):
            value = value.model_dump()
        if kind == NodeKind.FACTOR:
            payload_cls = FactorData
        elif kind == NodeKind.OPTION:
            payload_cls = OptionData
        else:
            return value
        if isinstance(value, payload_cls):
            return value
        if not isinstance(value, dict):
            raise ValueError(f"{kind.value} data must be an object")
        return payload_cls.model_validate(value)

    @property
    def interventions(self) -> Dict[str, Any]:
        interventions = payload_get(self.data, "interventions")
        return interventions if isinstance(interventions, dict) else {}

    @property
    def display_label(self) -> str:
        return self.label or self.id


class Edge(BaseModel):
    """
    One directed edge.

    `weight` and `belief` are legacy spellings of strength_mean and
    belief_exists; the canonical field wins when both are present.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    strength_mean: Optional[float] = None
    strength_std: Optional[float] = None
    belief_exists: Optional[float] = None
    effect_direction: Optional[str] = None
    weight: Optional[float] = None
    belief: Optional[float] = None

    @property
    def edge_id(self) -> str:
        return f"{self.from_}::{self.to}"

    @property
    def mean(self) -> Optional[float]:
        return self.strength_mean if self.strength_mean is not None else self.weight

    @property
    def existence(self) -> Optional[float]:
        return self.belief_exists if self.belief_exists is not None else self.belief


class DecisionGraph(BaseModel):
    """A decision graph: nodes, edges and opaque producer metadata."""
    model_config = ConfigDict(extra="allow")

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GoalConstraint(BaseModel):
    """A bound on a node's value, supplied alongside the graph."""
    model_config = ConfigDict(extra="allow")

    node_id: str
    constraint_id: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[float] = None
    label: Optional[str] = None


# =============================================================================
# AUDIT RECORDS
# =============================================================================

class ValidationIssue(BaseModel):
    """The universal output unit: one defect, warning or note."""
    code: str
    severity: Severity
    message: str
    path: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(use_enum_values=True)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR.value


class Mutation(BaseModel):
    """One in-place change made by the reconciliation pass."""
    rule: str
    code: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    constraint_id: Optional[str] = None
    field: str
    before: Any = None
    after: Any = None
    reason: str = ""
    severity: Severity = Severity.INFO

    model_config = ConfigDict(use_enum_values=True)
