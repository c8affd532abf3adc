"""
Issue construction from ISSUE_CATALOG.

Every issue the validator or reconciliation pass emits is built here, so
codes, severities and message templates stay in the ontology tables.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.ontology import ISSUE_CATALOG, Severity
from core.protocols import ValidationIssue


class _SafeContext(dict):
    """format_map mapping that renders missing keys as '?'."""

    def __missing__(self, key: str) -> str:
        return "?"


def render_message(code: str, context: Dict[str, Any]) -> str:
    rule = ISSUE_CATALOG.get(code)
    if rule is None:
        return code
    try:
        return rule.template.format_map(_SafeContext(context))
    except (ValueError, IndexError, AttributeError):
        return f"{code}: {context}"


def make_issue(
    code: str,
    path: Optional[str] = None,
    severity: Optional[Severity] = None,
    message: Optional[str] = None,
    **context: Any,
) -> ValidationIssue:
    """Build a ValidationIssue; severity defaults to the catalogue's."""
    rule = ISSUE_CATALOG.get(code)
    if severity is None:
        severity = Severity(rule.severity) if rule else Severity.ERROR
    return ValidationIssue(
        code=code,
        severity=severity,
        message=message or render_message(code, context),
        path=path,
        context=context,
    )


def partition(issues: Iterable[ValidationIssue]) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
    """Split into (errors, non-errors), preserving order."""
    errors: List[ValidationIssue] = []
    others: List[ValidationIssue] = []
    for issue in issues:
        (errors if issue.is_error else others).append(issue)
    return errors, others


def node_path(node_id: str, *parts: str) -> str:
    return ".".join(("nodesById", node_id) + parts)


def edge_path(index: int, *parts: str) -> str:
    return ".".join((f"edges[{index}]",) + parts)
