"""Importance-weighted compression of verbose tool output.

Compression happens in layers:
1. Size gate: small outputs pass through byte-for-byte
2. Escrow: the full output is stored and replaced by a reference ID
3. Importance weighting: critical findings in full, high findings in full up
   to a cap, everything else folded into deduplicated patterns
4. Session registry: every compressed result ends with the listing of all
   retrievable outputs
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any

from pydantic import BaseModel

from contextkeeper.compression.config import CompressionConfig
from contextkeeper.compression.issues import (
    classify_by_severity,
    extract_issues,
    get_fix_template,
    get_issue_code,
    get_issue_file,
    get_issue_message,
    get_severity,
)
from contextkeeper.compression.models import (
    CompressedOutput,
    DeduplicatedPattern,
    SeveritySummary,
)
from contextkeeper.compression.output_store import OutputStore, serialize_payload
from contextkeeper.severity import Severity

logger = logging.getLogger(__name__)

STATUS_CRITICAL = "CRITICAL_ISSUES_FOUND"
STATUS_HIGH = "HIGH_ISSUES_FOUND"
STATUS_ISSUES = "ISSUES_FOUND"
STATUS_CLEAN = "CLEAN"
STATUS_NO_ISSUES = "NO_ISSUES"
STATUS_ANALYSIS_COMPLETE = "ANALYSIS_COMPLETE"

ANALYZE_PROJECT_TOOL = "analyze_project"

# Short descriptions shown in the session registry
TOOL_CONTENTS: dict[str, str] = {
    "kubelint": "Kubernetes manifest lint issues (security, best practices)",
    "k8s_optimize": "K8s resource optimization recommendations",
    "analyze": "Project analysis (languages, frameworks, dependencies)",
}
DEFAULT_TOOL_CONTENTS = "Tool analysis results"
ANALYSIS_CONTENTS = "Full project analysis (languages, frameworks, dependencies)"

# Summary fields kept when compressing project analysis output
ANALYSIS_FIELDS = (
    "name",
    "project_name",
    "root_path",
    "project_root",
    "project_type",
    "architecture_type",
    "is_monorepo",
    "languages",
    "frameworks",
    "technologies",
    "build_tools",
    "package_managers",
    "services",
    "entry_points",
    "ports",
)
DEPENDENCY_FIELDS = ("dependencies", "dependency_graph")
STRUCTURE_FIELDS = ("structure", "directory_structure", "file_tree", "directories")
NAME_FIELDS = ("name", "path", "id", "title")
MAX_PROJECTS = 20


def deduplicate_to_patterns(issues: list[Any], config: CompressionConfig | None = None) -> list[DeduplicatedPattern]:
    """Fold issues sharing a code into one pattern each.

    Args:
        issues: Issues to fold.
        config: Compression configuration. If None, uses defaults.

    Returns:
        Patterns ordered by severity (critical first), then by count.
    """
    config = config or CompressionConfig()
    groups: dict[str, list[Any]] = {}
    for issue in issues:
        groups.setdefault(get_issue_code(issue), []).append(issue)

    patterns = []
    for code, group in groups.items():
        first = group[0]

        files: list[str] = []
        for issue in group:
            path = get_issue_file(issue)
            if path is not None and path not in files:
                files.append(path)
        if len(files) > config.max_files_per_pattern:
            hidden = len(files) - config.max_files_per_pattern
            files = files[: config.max_files_per_pattern] + [f"...+{hidden} more"]

        patterns.append(
            DeduplicatedPattern(
                code=code,
                count=len(group),
                severity=get_severity(first),
                message=get_issue_message(first),
                affected_files=files,
                example=first if len(group) > 1 else None,
                fix_template=get_fix_template(first),
            )
        )

    # Stable sort keeps first-seen order among equal patterns
    patterns.sort(key=lambda p: (p.severity, p.count), reverse=True)
    return patterns


def derive_status(summary: SeveritySummary) -> str:
    """Derive the overall status from the highest severity present."""
    if summary.critical > 0:
        return STATUS_CRITICAL
    if summary.high > 0:
        return STATUS_HIGH
    if summary.total > 0:
        return STATUS_ISSUES
    return STATUS_CLEAN


def _render(document: Any) -> str:
    """Render a compressed document as pretty JSON, degrading instead of failing.

    Unknown values are stringified, then unsupported keys (e.g. tuples) are
    skipped; if even that fails (e.g. circular references) the document's
    ``str()`` is returned.
    """
    if isinstance(document, BaseModel):
        try:
            document = document.model_dump()
        except ValueError as e:
            logger.warning(f"Compressed document could not be dumped ({e}), falling back to str()")
            return str(document)
    try:
        return json.dumps(document, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as e:
        logger.warning(f"Compressed document is not plain JSON ({e}), skipping unsupported keys")
    try:
        return json.dumps(document, indent=2, ensure_ascii=False, default=str, skipkeys=True)
    except (TypeError, ValueError) as e:
        logger.warning(f"Compressed document could not be serialized ({e}), falling back to str()")
        return str(document)


class OutputCompressor:
    """Compresses oversized tool outputs and escrows the originals.

    Args:
        store: Output store that receives the full payloads.
        config: Compression configuration. If None, uses defaults.

    Example:
        ```python
        store = OutputStore()
        compressor = OutputCompressor(store)
        text = compressor.compress(lint_report, "kubelint")
        ```
    """

    def __init__(self, store: OutputStore, config: CompressionConfig | None = None) -> None:
        self.store = store
        self.config = config or CompressionConfig()

    def _escrow(
        self,
        payload: Any,
        tool_name: str,
        config: CompressionConfig,
        serialized: str | None,
    ) -> tuple[str, str | None, int]:
        """Serialize a payload and escrow it if it is over the size gate.

        Text the tool already serialized is gated and escrowed verbatim.

        Returns:
            The serialization, the reference ID (None on passthrough), and the
            serialized size in bytes.
        """
        raw = serialized if serialized is not None else serialize_payload(payload)
        size_bytes = len(raw.encode("utf-8"))
        if size_bytes <= config.target_size_bytes:
            return raw, None, size_bytes

        ref_id = self.store.store_serialized(raw, tool_name)
        logger.info(
            f"Escrowed {tool_name} output as {ref_id} "
            f"({size_bytes:,} bytes > {config.target_size_bytes:,})"
        )
        return raw, ref_id, size_bytes

    def compress(
        self,
        payload: Any,
        tool_name: str,
        config: CompressionConfig | None = None,
        *,
        serialized: str | None = None,
    ) -> str:
        """Compress a tool's output for the model's context.

        Args:
            payload: The tool's structured output.
            tool_name: Name of the tool (e.g. "kubelint", "k8s_optimize").
            config: Per-call configuration. If None, uses the compressor's.
            serialized: The tool's own serialization of ``payload``, escrowed
                as-is instead of re-serializing.

        Returns:
            The unchanged serialization if it fits the target size, otherwise
            the compressed JSON document followed by the session registry.
        """
        config = config or self.config
        raw, ref_id, size_bytes = self._escrow(payload, tool_name, config, serialized)
        if ref_id is None:
            return raw

        issues = extract_issues(payload)
        if not issues:
            self.store.register(ref_id, tool_name, f"{tool_name} analysis data (no issues)", "0 issues", size_bytes)
            document = {
                "tool": tool_name,
                "status": STATUS_NO_ISSUES,
                "summary": {"total": 0},
                "full_data_ref": ref_id,
                "retrieval_hint": f"Use retrieve_output('{ref_id}') for full analysis data",
            }
            return _render(document) + self.store.render_registry()

        buckets = classify_by_severity(issues)
        high = buckets[Severity.HIGH]
        summary = SeveritySummary(
            total=len(issues),
            critical=len(buckets[Severity.CRITICAL]),
            high=len(high),
            medium=len(buckets[Severity.MEDIUM]),
            low=len(buckets[Severity.LOW]),
            info=len(buckets[Severity.INFO]),
        )

        folded = (
            buckets[Severity.MEDIUM]
            + buckets[Severity.LOW]
            + buckets[Severity.INFO]
            + high[config.max_high_full :]
        )
        compressed = CompressedOutput(
            tool=tool_name,
            status=derive_status(summary),
            summary=summary,
            critical_issues=buckets[Severity.CRITICAL],
            high_issues=high[: config.max_high_full],
            patterns=deduplicate_to_patterns(folded, config),
            full_data_ref=ref_id,
            retrieval_hint=(
                f"Use retrieve_output('{ref_id}', query) to get full details. "
                "Query options: 'severity:critical', 'file:path', 'code:DL3008'"
            ),
        )

        self.store.register(
            ref_id,
            tool_name,
            TOOL_CONTENTS.get(tool_name, DEFAULT_TOOL_CONTENTS),
            f"{summary.total} issues: {summary.critical} critical, {summary.high} high, {summary.medium} medium",
            size_bytes,
        )
        logger.debug(
            f"Compressed {tool_name}: {summary.total} issues into "
            f"{len(compressed.critical_issues) + len(compressed.high_issues)} full + "
            f"{len(compressed.patterns)} patterns"
        )
        return _render(compressed) + self.store.render_registry()

    def compress_analysis(
        self,
        payload: Any,
        config: CompressionConfig | None = None,
        *,
        serialized: str | None = None,
    ) -> str:
        """Compress project analysis output to its summary fields.

        Handles both single-project analysis (languages, technologies at the
        top level) and monorepo analysis (a ``projects`` array).

        Args:
            payload: The analysis output.
            config: Per-call configuration. If None, uses the compressor's.
            serialized: The tool's own serialization of ``payload``.

        Returns:
            The unchanged serialization if it fits the target size, otherwise
            a minimal projection followed by the session registry.
        """
        config = config or self.config
        raw, ref_id, size_bytes = self._escrow(payload, ANALYZE_PROJECT_TOOL, config, serialized)
        if ref_id is None:
            return raw

        document: dict[str, Any] = {
            "tool": ANALYZE_PROJECT_TOOL,
            "status": STATUS_ANALYSIS_COMPLETE,
            "full_data_ref": ref_id,
        }
        project_count = 1
        if isinstance(payload, dict):
            document.update(_project_analysis(payload, config.analysis_array_limit))
            projects = payload.get("projects")
            if isinstance(projects, list):
                project_count = len(projects)
        document["retrieval_hint"] = (
            f"Full analysis stored. Use retrieve_output('{ref_id}') for complete details, "
            f"or retrieve_output('{ref_id}', '<text>') to search it"
        )

        self.store.register(
            ref_id,
            ANALYZE_PROJECT_TOOL,
            ANALYSIS_CONTENTS,
            f"{project_count} project(s), {size_bytes:,} bytes stored",
            size_bytes,
        )
        return _render(document) + self.store.render_registry()


def _project_analysis(analysis: dict[str, Any], limit: int) -> dict[str, Any]:
    """Project one analysis object onto the allow-listed summary fields."""
    projected: dict[str, Any] = {}

    for name in ANALYSIS_FIELDS:
        if name not in analysis:
            continue
        value = analysis[name]
        if isinstance(value, dict):
            value = list(value)
        if isinstance(value, list):
            names = [_entry_name(entry) for entry in value]
            projected[name] = names[:limit]
            if len(names) > limit:
                projected[f"{name}_note"] = f"showing {limit} of {len(names)}"
        else:
            projected[name] = value

    for name in DEPENDENCY_FIELDS:
        if name in analysis:
            projected[f"{name}_by_language"] = _count_dependencies(analysis[name])
            break

    for name in STRUCTURE_FIELDS:
        if name in analysis:
            projected["top_level_directories"] = _top_level_names(analysis[name])
            break

    projects = analysis.get("projects")
    if isinstance(projects, list):
        projected["project_count"] = len(projects)
        projected["projects"] = [_project_overview(p, limit) for p in projects[:MAX_PROJECTS]]
        if len(projects) > MAX_PROJECTS:
            projected["projects_note"] = f"showing {MAX_PROJECTS} of {len(projects)}"

    return projected


def _entry_name(entry: Any) -> Any:
    """Reduce a list entry to its name, if it has one."""
    if isinstance(entry, dict):
        for name in NAME_FIELDS:
            if isinstance(entry.get(name), str):
                return entry[name]
    return entry


def _count_dependencies(dependencies: Any) -> dict[str, int]:
    """Collapse a dependency listing to counts per language."""
    if isinstance(dependencies, dict):
        return {
            language: len(deps) if isinstance(deps, (list, dict)) else 1
            for language, deps in dependencies.items()
        }
    if isinstance(dependencies, list):
        counts: Counter[str] = Counter()
        for dep in dependencies:
            language = dep.get("language") if isinstance(dep, dict) else None
            counts[language if isinstance(language, str) else "unknown"] += 1
        return dict(counts)
    return {}


def _top_level_names(structure: Any) -> list[str]:
    """Collapse a nested directory structure to its top-level names."""
    if isinstance(structure, dict):
        children = structure.get("children")
        if isinstance(children, list):
            return _top_level_names(children)
        return [str(name) for name in structure]
    if isinstance(structure, list):
        names: list[str] = []
        for entry in structure:
            name = _entry_name(entry)
            if not isinstance(name, str):
                continue
            top = name.strip("/").split("/", 1)[0]
            if top and top not in names:
                names.append(top)
        return names
    return []


def _project_overview(project: Any, limit: int) -> Any:
    """Reduce one monorepo project to its name and detected stack."""
    if not isinstance(project, dict):
        return _entry_name(project)
    analysis = project.get("analysis") if isinstance(project.get("analysis"), dict) else project
    overview: dict[str, Any] = {"name": _entry_name(project)}
    for name in ("languages", "frameworks"):
        value = analysis.get(name)
        if isinstance(value, dict):
            value = list(value)
        if isinstance(value, list):
            overview[name] = [_entry_name(entry) for entry in value][:limit]
    return overview
