"""Compaction strategy - decides what to evict.

Implements eviction that:
1. Preserves a retention window of recent messages
2. Never splits a tool call from its result
3. Reports droppable messages so callers can skip summarizing them
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

# How far past the cut to look for the result matching an evicted tool call
TOOL_RESULT_LOOKAHEAD = 5


class MessageRole(str, Enum):
    """Role of a message in the conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class MessageMeta:
    """Metadata about a message for eviction decisions."""

    index: int
    role: MessageRole
    droppable: bool = False
    has_tool_call: bool = False
    is_tool_result: bool = False
    tool_id: str | None = None
    token_count: int = 0


@dataclass(frozen=True)
class EvictionRange:
    """Half-open range ``[start, end)`` of messages to evict."""

    start: int
    end: int

    def __len__(self) -> int:
        return max(self.end - self.start, 0)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def to_turn_range(self) -> tuple[int, int]:
        """Map a message range onto turns of two messages each.

        The end rounds up so a turn is never split between evicted and
        retained messages.
        """
        return self.start // 2, math.ceil(self.end / 2)


class CompactionStrategy(ABC):
    """Strategy for choosing how many of the oldest messages to evict."""

    @abstractmethod
    def raw_end(self, total: int, retention_window: int) -> int:
        """Exclusive end index before any safety adjustment."""

    def calculate_eviction_range(
        self,
        messages: list[MessageMeta],
        retention_window: int,
    ) -> EvictionRange | None:
        """Calculate a safe, contiguous, oldest-first eviction range.

        Args:
            messages: Metadata about all messages, oldest first.
            retention_window: Minimum number of trailing messages to keep.

        Returns:
            The range to evict, or None if nothing can be evicted safely.
        """
        if len(messages) <= retention_window:
            return None

        raw_end = self.raw_end(len(messages), retention_window)
        start = _find_safe_start(messages)
        if start >= raw_end:
            return None

        end = _adjust_end_for_tool_safety(messages, raw_end, retention_window)
        if start >= end:
            return None

        return EvictionRange(start, end)

    @staticmethod
    def filter_droppable(messages: list[MessageMeta], eviction: EvictionRange) -> list[int]:
        """Indices of non-droppable messages within a range (the ones worth summarizing)."""
        return [i for i in range(eviction.start, eviction.end) if not messages[i].droppable]

    @classmethod
    def default(cls, eviction_window: float = 0.6, retention_window: int = 10) -> CompactionStrategy:
        """Evict a share of messages or keep the last N, whichever keeps more."""
        return MinStrategy(EvictStrategy(eviction_window), RetainStrategy(max(retention_window * 2, 10)))


@dataclass(frozen=True)
class EvictStrategy(CompactionStrategy):
    """Evict a fraction of all messages."""

    fraction: float

    def raw_end(self, total: int, retention_window: int) -> int:
        evict_count = math.floor(total * self.fraction)
        return min(max(total - retention_window, 0), evict_count)


@dataclass(frozen=True)
class RetainStrategy(CompactionStrategy):
    """Keep the last ``keep`` messages (never fewer than the retention window)."""

    keep: int

    def raw_end(self, total: int, retention_window: int) -> int:
        return max(total - max(self.keep, retention_window), 0)


@dataclass(frozen=True)
class MinStrategy(CompactionStrategy):
    """The more conservative of two strategies (evicts less)."""

    first: CompactionStrategy
    second: CompactionStrategy

    def raw_end(self, total: int, retention_window: int) -> int:
        return min(self.first.raw_end(total, retention_window), self.second.raw_end(total, retention_window))


@dataclass(frozen=True)
class MaxStrategy(CompactionStrategy):
    """The more aggressive of two strategies (evicts more)."""

    first: CompactionStrategy
    second: CompactionStrategy

    def raw_end(self, total: int, retention_window: int) -> int:
        return max(self.first.raw_end(total, retention_window), self.second.raw_end(total, retention_window))


def _find_safe_start(messages: list[MessageMeta]) -> int:
    """Index of the first assistant message (0 if there is none)."""
    for i, msg in enumerate(messages):
        if msg.role == MessageRole.ASSISTANT:
            return i
    return 0


def _adjust_end_for_tool_safety(messages: list[MessageMeta], end: int, retention_window: int) -> int:
    """Move the cut so no tool call is separated from its result."""
    total = len(messages)
    end = min(end, max(total - retention_window, 0))
    if end == 0 or end >= total:
        return end

    # Evicting a tool call: take its result along if it is close by
    last_evicted = messages[end - 1]
    if last_evicted.has_tool_call and last_evicted.tool_id is not None:
        for i in range(end, min(end + TOOL_RESULT_LOOKAHEAD, total)):
            if messages[i].is_tool_result and messages[i].tool_id == last_evicted.tool_id:
                end = i + 1
                break

    # Keeping a tool result: keep the whole call/result group with it
    if end < total and messages[end].is_tool_result:
        while end > 0 and (messages[end - 1].is_tool_result or messages[end - 1].has_tool_call):
            end -= 1

    while 0 < end < total and messages[end].is_tool_result:
        end -= 1

    return end
