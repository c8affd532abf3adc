"""
Goal-constraint target normalisation.

Constraints arrive from an extractor that guesses node ids from the
brief ("fac_customer_retention"), while the drafted graph may name the
node differently ("fac_retention_rate", labelled "Customer Retention
Rate"). Resolution order:

1. Exact id -> keep
2. Id stem substring match among same-prefix nodes
3. Normalised label substring match among same-prefix nodes

A stage with more than one candidate drops the constraint instead of
falling through, and nothing ever matches across id prefixes.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.ontology import CONSTRAINT_NODE_PREFIXES, MIN_FUZZY_STEM_LENGTH
from core.protocols import ValidationIssue, payload_get
from validation.issues import make_issue


logger = logging.getLogger("DecisionGraph.Constraints")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
CONSTRAINT_PATH = "goal_constraints[].node_id"


@dataclass
class TargetResolution:
    """Where one constraint's node_id ended up."""
    original: Optional[str]
    target: Optional[str] = None
    stage: Optional[str] = None     # "exact" | "id_stem" | "label"
    reason: str = ""

    @property
    def remapped(self) -> bool:
        return self.target is not None and self.stage != "exact"


@dataclass
class ConstraintNormalisationResult:
    constraints: List[Any] = field(default_factory=list)
    issues: List[ValidationIssue] = field(default_factory=list)
    resolutions: List[TargetResolution] = field(default_factory=list)
    total: int = 0
    valid: int = 0
    remapped: int = 0
    dropped: int = 0


def normalise_label(text: str) -> str:
    """Lower-case, collapse runs of non-alphanumerics to '_', trim."""
    return _NON_ALNUM.sub("_", text.lower()).strip("_")


def split_prefix(node_id: str) -> Tuple[str, str]:
    """('fac_', 'price') for 'fac_price'; ('', id) when no known prefix."""
    for prefix in CONSTRAINT_NODE_PREFIXES:
        if node_id.startswith(prefix):
            return prefix, node_id[len(prefix):]
    return "", node_id


def _overlaps(a: str, b: str) -> bool:
    return a in b or b in a


def resolve_target(
    node_id: Optional[str],
    node_ids: Iterable[str],
    node_labels: Optional[Dict[str, str]] = None,
) -> TargetResolution:
    """Resolve a constraint node_id against the graph's node ids."""
    node_ids = list(dict.fromkeys(node_ids))
    if not isinstance(node_id, str) or not node_id:
        return TargetResolution(original=node_id, reason="constraint has no node_id")
    if node_id in node_ids:
        return TargetResolution(original=node_id, target=node_id, stage="exact")

    prefix, stem = split_prefix(node_id)
    stem = stem.lower()
    if len(stem) < MIN_FUZZY_STEM_LENGTH:
        return TargetResolution(
            original=node_id, reason=f"id stem shorter than {MIN_FUZZY_STEM_LENGTH} characters")

    candidates = [nid for nid in node_ids if split_prefix(nid)[0] == prefix]

    stem_matches = []
    for candidate in candidates:
        candidate_stem = split_prefix(candidate)[1].lower()
        if len(candidate_stem) >= MIN_FUZZY_STEM_LENGTH and _overlaps(stem, candidate_stem):
            stem_matches.append(candidate)
    if len(stem_matches) == 1:
        return TargetResolution(original=node_id, target=stem_matches[0], stage="id_stem")
    if stem_matches:
        return TargetResolution(
            original=node_id, reason=f"ambiguous id match: {', '.join(stem_matches)}")

    wanted = normalise_label(stem)
    if len(wanted) < MIN_FUZZY_STEM_LENGTH:
        return TargetResolution(
            original=node_id,
            reason=f"normalised id stem shorter than {MIN_FUZZY_STEM_LENGTH} characters")

    labels = node_labels or {}
    label_matches = []
    for candidate in candidates:
        label = labels.get(candidate)
        if not label:
            continue
        normalised = normalise_label(label)
        if len(normalised) >= MIN_FUZZY_STEM_LENGTH and _overlaps(wanted, normalised):
            label_matches.append(candidate)
    if len(label_matches) == 1:
        return TargetResolution(original=node_id, target=label_matches[0], stage="label")
    if label_matches:
        return TargetResolution(
            original=node_id, reason=f"ambiguous label match: {', '.join(label_matches)}")

    return TargetResolution(original=node_id, reason="no matching node")


def _with_node_id(constraint: Any, node_id: str) -> Any:
    if isinstance(constraint, dict):
        return {**constraint, "node_id": node_id}
    return constraint.model_copy(update={"node_id": node_id})


def normalise_constraint_targets(
    constraints: List[Any],
    node_ids: Iterable[str],
    node_labels: Optional[Dict[str, str]] = None,
    request_id: Optional[str] = None,
) -> ConstraintNormalisationResult:
    """
    Normalise constraint node_ids against the graph's nodes.

    Does not modify the input list; remapped constraints are copies.

    Args:
        constraints: GoalConstraint models or plain dicts with a node_id
        node_ids: Ids of the graph's nodes
        node_labels: id -> label, for the label fallback stage

    Returns:
        ConstraintNormalisationResult with the surviving constraints, one
        info issue per remap or drop, and counts
    """
    node_ids = list(node_ids)
    result = ConstraintNormalisationResult(total=len(constraints))

    for constraint in constraints:
        original = payload_get(constraint, "node_id")
        constraint_id = payload_get(constraint, "constraint_id")
        resolution = resolve_target(original, node_ids, node_labels)
        result.resolutions.append(resolution)

        if resolution.stage == "exact":
            result.constraints.append(constraint)
            result.valid += 1
        elif resolution.target is not None:
            result.constraints.append(_with_node_id(constraint, resolution.target))
            result.remapped += 1
            result.issues.append(make_issue(
                "CONSTRAINT_NODE_REMAPPED", path=CONSTRAINT_PATH,
                original_node_id=original, remapped_node_id=resolution.target,
                constraint_id=constraint_id, stage=resolution.stage))
        else:
            result.dropped += 1
            result.issues.append(make_issue(
                "CONSTRAINT_DROPPED_NO_TARGET", path=CONSTRAINT_PATH,
                original_node_id=original, constraint_id=constraint_id,
                reason=resolution.reason))

    if result.issues:
        logger.info(
            f"Constraint normalisation: {result.total} total, {result.valid} valid,"
            f" {result.remapped} remapped, {result.dropped} dropped (request_id={request_id})"
        )
    return result
