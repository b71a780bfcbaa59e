"""Data models for tool output compression and the output store.

All models use Pydantic for validation and serialization.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from contextkeeper.severity import Severity


def _utcnow() -> datetime:
    """Get current UTC time in a timezone-aware manner."""
    return datetime.now(timezone.utc)


class DeduplicatedPattern(BaseModel):
    """One issue code standing in for every folded issue that shares it."""

    code: str = Field(..., description="Issue code/type (e.g. 'no-resource-limits', 'DL3008')")
    count: int = Field(..., description="Number of occurrences")
    severity: Severity = Field(Severity.MEDIUM, description="Severity of the first occurrence")
    message: str = Field(..., description="Message of the first occurrence")
    affected_files: list[str] = Field(default_factory=list, description="Unique files, truncated")
    example: Any | None = Field(None, description="One full occurrence, only when count > 1")
    fix_template: str | None = Field(None, description="Suggested fix, if the tool gave one")

    @field_serializer("severity")
    def _serialize_severity(self, severity: Severity) -> str:
        return severity.label


class SeveritySummary(BaseModel):
    """Issue counts by severity level."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0


class CompressedOutput(BaseModel):
    """Compressed tool output ready for the model's context."""

    tool: str = Field(..., description="Tool that generated this output")
    status: str = Field(..., description="Overall status derived from the highest severity")
    summary: SeveritySummary
    critical_issues: list[Any] = Field(default_factory=list, description="Always shown in full")
    high_issues: list[Any] = Field(default_factory=list, description="Shown in full up to a cap")
    patterns: list[DeduplicatedPattern] = Field(default_factory=list)
    full_data_ref: str = Field(..., description="Reference ID for retrieving the full data")
    retrieval_hint: str = Field(..., description="How to retrieve more details")


class StoredOutput(BaseModel):
    """A full, pre-compression tool output held in escrow."""

    ref_id: str = Field(..., description="Unique, never reused reference ID")
    tool_name: str = Field(..., description="Tool that produced the output")
    raw_payload: str = Field(..., description="Serialized output, byte-identical to the compressor input")
    size_bytes: int = Field(..., description="UTF-8 size of the serialized output")
    created_at: datetime = Field(default_factory=_utcnow)


class SessionRef(BaseModel):
    """Session registry line describing one retrievable output."""

    ref_id: str
    tool: str
    contains: str = Field(..., description="What the output contains")
    summary: str = Field(..., description="Summary counts, e.g. '47 issues: 3 critical, 12 high'")
    size_bytes: int
    created_at: datetime = Field(default_factory=_utcnow)
