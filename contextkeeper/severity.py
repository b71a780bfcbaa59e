"""Severity ladder shared by the history compactor and the output compressor."""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class Severity(IntEnum):
    """Importance of a finding.

    Higher values = more important, less likely to be folded away.
    """

    INFO = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        """Lowercase name used in serialized output."""
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> Severity:
        """Parse a free-form severity string.

        Matching is case-insensitive. Anything unrecognised (including
        non-string values) falls back to MEDIUM.
        """
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            return cls.MEDIUM
        return _SEVERITY_ALIASES.get(value.strip().lower(), cls.MEDIUM)


_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "error": Severity.CRITICAL,
    "fatal": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
    "high": Severity.HIGH,
    "warning": Severity.HIGH,
    "warn": Severity.HIGH,
    "major": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "hint": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.INFO,
    "information": Severity.INFO,
    "note": Severity.INFO,
    "style": Severity.INFO,
}
