"""OutputStore for escrowing full tool outputs.

Compressed tool results carry a reference ID instead of their full detail.
The store keeps the full, pre-compression serialization under that ID for the
lifetime of the session, and a session registry lists everything that can be
retrieved so the agent is always reminded of what is available.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from contextkeeper.compression.issues import extract_issues
from contextkeeper.compression.models import SessionRef, StoredOutput

logger = logging.getLogger(__name__)

REGISTRY_RULE = "─" * 33
QUERY_EXAMPLES = 'Query examples: "severity:critical", "file:deployment.yaml", "code:DL3008"'


def serialize_payload(payload: Any) -> str:
    """Serialize a tool payload to JSON, degrading instead of failing.

    Non-JSON values are stringified; if even that fails (e.g. circular
    references) the payload's ``str()`` is returned.
    """
    try:
        return json.dumps(payload)
    except (TypeError, ValueError) as e:
        logger.warning(f"Payload is not plain JSON ({e}), stringifying unknown values")
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError) as e:
        logger.warning(f"Payload could not be serialized ({e}), falling back to str()")
        return str(payload)


class OutputStore:
    """In-memory escrow of full tool outputs plus the session registry.

    Safe to share between concurrently running tools: every write happens
    under a single lock, and registry lines appear in the order their writes
    complete.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outputs: dict[str, StoredOutput] = {}
        self._registry: list[SessionRef] = []

    def _generate_ref_id(self, tool_name: str) -> str:
        """Generate a reference ID not used before in this store (lock held)."""
        while True:
            ref_id = f"{tool_name}_{uuid.uuid4().hex[:12]}"
            if ref_id not in self._outputs:
                return ref_id

    def store(self, payload: Any, tool_name: str) -> str:
        """Store a full payload and return its reference ID."""
        return self.store_serialized(serialize_payload(payload), tool_name)

    def store_serialized(self, raw: str, tool_name: str) -> str:
        """Store an already serialized payload verbatim and return its reference ID."""
        size_bytes = len(raw.encode("utf-8"))
        with self._lock:
            ref_id = self._generate_ref_id(tool_name)
            self._outputs[ref_id] = StoredOutput(
                ref_id=ref_id,
                tool_name=tool_name,
                raw_payload=raw,
                size_bytes=size_bytes,
            )
        logger.debug(f"Stored output {ref_id}: {size_bytes:,} bytes")
        return ref_id

    def register(
        self,
        ref_id: str,
        tool_name: str,
        contains: str,
        summary: str,
        size_bytes: int,
    ) -> None:
        """Append a line to the session registry.

        Args:
            ref_id: Reference ID returned by ``store``.
            tool_name: Tool that produced the output.
            contains: Brief description of what the output contains.
            summary: Summary counts for the output.
            size_bytes: Size of the full output.
        """
        entry = SessionRef(
            ref_id=ref_id,
            tool=tool_name,
            contains=contains,
            summary=summary,
            size_bytes=size_bytes,
        )
        with self._lock:
            self._registry.append(entry)

    def get_session_refs(self) -> list[SessionRef]:
        """Get every registry line, in registration order."""
        with self._lock:
            return list(self._registry)

    def render_registry(self) -> str:
        """Render the full session registry for the agent.

        Returns:
            The listing of every registered output, or an empty string if
            nothing has been registered yet.
        """
        refs = self.get_session_refs()
        if not refs:
            return ""

        now = datetime.now(timezone.utc)
        lines = ["", "AVAILABLE DATA FOR RETRIEVAL:", REGISTRY_RULE]
        for ref in refs:
            age = max(int((now - ref.created_at).total_seconds()), 0)
            age_str = f"{age}s ago" if age < 60 else f"{age // 60}m ago"
            lines.extend([
                "",
                f"• {ref.ref_id} [{age_str}]",
                f"  Contains: {ref.contains}",
                f"  Summary: {ref.summary}",
                f'  Retrieve: retrieve_output("{ref.ref_id}") or with query',
            ])
        lines.extend(["", REGISTRY_RULE, QUERY_EXAMPLES, ""])
        return "\n".join(lines)

    def get_raw(self, ref_id: str) -> str | None:
        """Get the exact serialized payload stored under a reference ID."""
        with self._lock:
            stored = self._outputs.get(ref_id)
        return stored.raw_payload if stored is not None else None

    def retrieve(self, ref_id: str, query: str | None = None) -> Any | None:
        """Retrieve a stored output, optionally filtered by a query.

        Args:
            ref_id: Reference ID returned by ``store``.
            query: Optional filter such as ``severity:critical``,
                ``file:deployment.yaml`` or ``code:DL3008``. A query without
                a ``type:`` prefix matches anywhere in the issue.

        Returns:
            The full payload, a ``{query, total_matches, results}`` view when
            a query is given, or None if the reference is unknown.
        """
        raw = self.get_raw(ref_id)
        if raw is None:
            logger.warning(f"Output not found: {ref_id}")
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = raw

        if not query:
            return data

        filter_type, filter_value = parse_query(query)
        matches = [issue for issue in extract_issues(data) if matches_filter(issue, filter_type, filter_value)]
        return {"query": query, "total_matches": len(matches), "results": matches}

    def list_outputs(self, *, tool_name: str | None = None) -> list[StoredOutput]:
        """List stored outputs (oldest first), optionally for one tool."""
        with self._lock:
            outputs = list(self._outputs.values())
        if tool_name:
            outputs = [o for o in outputs if o.tool_name == tool_name]
        return outputs

    def get_output_count(self) -> int:
        """Get the total number of stored outputs."""
        with self._lock:
            return len(self._outputs)

    def get_total_bytes(self) -> int:
        """Get the total bytes stored across all outputs."""
        with self._lock:
            return sum(o.size_bytes for o in self._outputs.values())


def parse_query(query: str) -> tuple[str, str]:
    """Split ``type:value`` into its parts; bare terms search everything."""
    if ":" in query:
        filter_type, filter_value = query.split(":", 1)
        return filter_type.strip().lower(), filter_value.strip()
    return "any", query.strip()


_FILTER_FIELDS: dict[str, tuple[str, ...]] = {
    "severity": ("severity", "level"),
    "level": ("severity", "level"),
    "file": ("file", "path", "filename"),
    "path": ("file", "path", "filename"),
    "code": ("code", "rule", "rule_id"),
    "rule": ("code", "rule", "rule_id"),
    "container": ("container", "resource", "name"),
    "resource": ("container", "resource", "name"),
}


def matches_filter(issue: Any, filter_type: str, filter_value: str) -> bool:
    """Check if an issue matches a parsed query (case-insensitive substring)."""
    needle = filter_value.lower()
    fields = _FILTER_FIELDS.get(filter_type)
    if fields is None:
        return needle in json.dumps(issue, default=str).lower()

    if not isinstance(issue, dict):
        return False
    for name in fields:
        value = issue.get(name)
        if isinstance(value, str):
            return needle in value.lower()
    return False
