"""Configuration for tool output compression."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CompressionConfig:
    """Configuration for compression behavior.

    Attributes:
        max_high_full: High-severity issues shown in full before the rest are
            folded into deduplicated patterns.
        max_files_per_pattern: Affected files listed per pattern before a
            "+N more" sentinel.
        target_size_bytes: Serialized outputs at or below this size are
            passed through untouched.
        analysis_array_limit: Entries kept per array field when compressing
            project analysis output.
    """

    max_high_full: int = 10
    max_files_per_pattern: int = 5
    target_size_bytes: int = 15_000
    analysis_array_limit: int = 5

    def __post_init__(self) -> None:
        for name in ("max_high_full", "max_files_per_pattern", "target_size_bytes", "analysis_array_limit"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
