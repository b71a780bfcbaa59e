"""Configuration for conversation history compaction.

Defines when compaction is triggered and how much history a single pass may
evict.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contextkeeper.compaction.history import ConversationHistory

# Rough estimate: ~4 characters per token for English text
CHARS_PER_TOKEN = 4

# Default values for compaction
DEFAULT_RETENTION_WINDOW = 10
DEFAULT_EVICTION_WINDOW = 0.6
DEFAULT_TOKEN_THRESHOLD = 80_000
DEFAULT_TURN_THRESHOLD = 20
DEFAULT_MESSAGE_THRESHOLD = 50


def estimate_tokens(text: str) -> int:
    """Estimate token count for text (rough approximation, not a tokenizer)."""
    return len(text) // CHARS_PER_TOKEN


@dataclass
class CompactThresholds:
    """Thresholds that trigger automatic compaction.

    Each threshold is independent; a threshold left as ``None`` never triggers.

    Attributes:
        token_threshold: Trigger when estimated tokens exceed this count.
        turn_threshold: Trigger when user turns exceed this count.
        message_threshold: Trigger when total messages exceed this count.
        on_turn_end: Optional hook called with the history after every
            completed turn.
    """

    token_threshold: int | None = DEFAULT_TOKEN_THRESHOLD
    turn_threshold: int | None = DEFAULT_TURN_THRESHOLD
    message_threshold: int | None = DEFAULT_MESSAGE_THRESHOLD
    on_turn_end: Callable[[ConversationHistory], None] | None = None

    @classmethod
    def aggressive(cls) -> CompactThresholds:
        """Minimal thresholds for small context windows."""
        return cls(token_threshold=40_000, turn_threshold=10, message_threshold=25)

    @classmethod
    def relaxed(cls) -> CompactThresholds:
        """Generous thresholds for large context windows."""
        return cls(token_threshold=150_000, turn_threshold=50, message_threshold=100)

    @classmethod
    def disabled(cls) -> CompactThresholds:
        """No automatic triggers (manual compaction only)."""
        return cls(token_threshold=None, turn_threshold=None, message_threshold=None)

    def exceeded(self, token_count: int, turn_count: int, message_count: int) -> list[str]:
        """Describe every threshold the given counts exceed.

        Returns:
            One human-readable line per tripped threshold, empty if none.
        """
        reasons: list[str] = []
        if self.token_threshold is not None and token_count > self.token_threshold:
            reasons.append(f"token count ({token_count}) > threshold ({self.token_threshold})")
        if self.turn_threshold is not None and turn_count > self.turn_threshold:
            reasons.append(f"turn count ({turn_count}) > threshold ({self.turn_threshold})")
        if self.message_threshold is not None and message_count > self.message_threshold:
            reasons.append(f"message count ({message_count}) > threshold ({self.message_threshold})")
        return reasons


@dataclass
class CompactConfig:
    """Complete compaction configuration.

    Attributes:
        retention_window: Number of most recent turns always protected from
            eviction.
        eviction_window: Maximum share of messages (0.0-1.0) one compaction
            pass may evict. Higher = more aggressive.
        thresholds: Thresholds that trigger automatic compaction.
    """

    retention_window: int = DEFAULT_RETENTION_WINDOW
    eviction_window: float = DEFAULT_EVICTION_WINDOW
    thresholds: CompactThresholds = field(default_factory=CompactThresholds)

    def __post_init__(self) -> None:
        if self.retention_window < 0:
            raise ValueError(f"retention_window must be >= 0, got {self.retention_window}")
        if not 0.0 <= self.eviction_window <= 1.0:
            raise ValueError(f"eviction_window must be within [0, 1], got {self.eviction_window}")

    @classmethod
    def aggressive(cls) -> CompactConfig:
        """Small retention, large evictions, low thresholds."""
        return cls(retention_window=5, eviction_window=0.8, thresholds=CompactThresholds.aggressive())

    @classmethod
    def relaxed(cls) -> CompactConfig:
        """Large retention, small evictions, high thresholds."""
        return cls(retention_window=20, eviction_window=0.4, thresholds=CompactThresholds.relaxed())

    @classmethod
    def manual(cls) -> CompactConfig:
        """Default windows with every automatic trigger disabled."""
        return cls(thresholds=CompactThresholds.disabled())

    @classmethod
    def emergency(cls) -> CompactConfig:
        """Config swapped in when the model rejects a request as too long."""
        return cls(
            retention_window=1,
            eviction_window=0.9,
            thresholds=CompactThresholds(token_threshold=10_000, turn_threshold=5, message_threshold=10),
        )

    @property
    def message_retention(self) -> int:
        """Retention window expressed in messages (user + assistant per turn)."""
        return self.retention_window * 2

    def should_compact(self, token_count: int, turn_count: int, message_count: int) -> bool:
        """Check if any configured threshold is exceeded."""
        return bool(self.thresholds.exceeded(token_count, turn_count, message_count))

    def compaction_reason(self, token_count: int, turn_count: int, message_count: int) -> str | None:
        """Get the reason why compaction would be triggered, if any."""
        reasons = self.thresholds.exceeded(token_count, turn_count, message_count)
        return "; ".join(reasons) if reasons else None
