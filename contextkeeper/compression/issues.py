"""Helpers for reading issue-like records out of arbitrary tool output.

Linters, analyzers and optimizers all report findings slightly differently.
These helpers try the common field names in a fixed order and fall back to
policy defaults instead of failing.
"""

from __future__ import annotations

from typing import Any

from contextkeeper.severity import Severity

# Top-level fields that usually hold the findings array
ISSUE_FIELDS = (
    "issues",
    "findings",
    "violations",
    "warnings",
    "errors",
    "recommendations",
    "results",
    "diagnostics",
    "failures",
)

ISSUE_MARKER_FIELDS = ("severity", "code", "message", "rule", "level")
SEVERITY_FIELDS = ("severity", "level", "priority", "type")
CODE_FIELDS = ("code", "rule", "rule_id", "type", "check", "id")
FILE_FIELDS = ("file", "path", "filename", "location", "source")
MESSAGE_FIELDS = ("message", "msg", "description", "text", "detail")
FIX_FIELDS = ("fix", "suggestion", "recommendation")

MESSAGE_CODE_PREFIX_CHARS = 30


def is_issue_like(value: Any) -> bool:
    """Check if a value looks like an issue/finding."""
    return isinstance(value, dict) and any(key in value for key in ISSUE_MARKER_FIELDS)


def extract_issues(output: Any) -> list[Any]:
    """Extract the issues/findings array from various output formats.

    Tries the known field names, then the output itself if it is a list,
    then the first nested list whose first element looks like an issue.
    """
    if isinstance(output, dict):
        for name in ISSUE_FIELDS:
            value = output.get(name)
            if isinstance(value, list):
                return list(value)

    if isinstance(output, list):
        return list(output)

    if isinstance(output, dict):
        for value in output.values():
            if isinstance(value, list) and value and is_issue_like(value[0]):
                return list(value)

    return []


def _string_field(issue: Any, fields: tuple[str, ...]) -> str | None:
    if not isinstance(issue, dict):
        return None
    for name in fields:
        value = issue.get(name)
        if isinstance(value, str):
            return value
    return None


def get_severity(issue: Any) -> Severity:
    """Classify an issue, defaulting to MEDIUM."""
    declared = _string_field(issue, SEVERITY_FIELDS)
    if declared is not None:
        return Severity.parse(declared)

    code = _string_field(issue, ("code",))
    if code is not None:
        lowered = code.lower()
        if "error" in lowered:
            return Severity.CRITICAL
        if "warn" in lowered:
            return Severity.HIGH

    return Severity.MEDIUM


def get_issue_code(issue: Any) -> str:
    """Get the code used to group an issue during deduplication."""
    code = _string_field(issue, CODE_FIELDS)
    if code is not None:
        return code

    message = _string_field(issue, ("message",))
    if message is None and isinstance(issue, str):
        message = issue
    if message is not None:
        return f"msg:{message[:MESSAGE_CODE_PREFIX_CHARS]}"

    return "unknown"


def get_issue_file(issue: Any) -> str | None:
    """Get the file path an issue points at, following nested location objects."""
    if not isinstance(issue, dict):
        return None
    for name in FILE_FIELDS:
        value = issue.get(name)
        if isinstance(value, str):
            return value
        if isinstance(value, dict) and isinstance(value.get("file"), str):
            return value["file"]
    return None


def get_issue_message(issue: Any) -> str:
    if isinstance(issue, str):
        return issue
    return _string_field(issue, MESSAGE_FIELDS) or "No message"


def get_fix_template(issue: Any) -> str | None:
    return _string_field(issue, FIX_FIELDS)


def classify_by_severity(issues: list[Any]) -> dict[Severity, list[Any]]:
    """Partition issues into one bucket per severity, preserving order."""
    buckets: dict[Severity, list[Any]] = {severity: [] for severity in Severity}
    for issue in issues:
        buckets[get_severity(issue)].append(issue)
    return buckets
