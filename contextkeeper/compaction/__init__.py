"""Conversation history compaction.

Bounds an agent's own conversation memory by evicting the oldest turns into a
running summary that is injected back ahead of the retained turns.

Core components:
- ConversationHistory: Turn ledger with threshold-driven compaction
- CompactConfig / CompactThresholds: Retention, eviction and trigger settings
- CompactionStrategy: Eviction range selection that never splits tool pairs
- SummaryFrame: Rendered text form of all compacted history

Usage:
    from contextkeeper.compaction import CompactConfig, ConversationHistory

    history = ConversationHistory(CompactConfig.aggressive())
    history.add_turn("Fix the build", "Done.", tool_calls=[...])
    if history.needs_compaction():
        history.compact()
"""

from contextkeeper.compaction.config import (
    CHARS_PER_TOKEN,
    CompactConfig,
    CompactThresholds,
    estimate_tokens,
)
from contextkeeper.compaction.history import ConversationHistory
from contextkeeper.compaction.models import (
    ContextSummary,
    ToolCallRecord,
    ToolCallSummary,
    Turn,
    TurnSummary,
)
from contextkeeper.compaction.strategy import (
    CompactionStrategy,
    EvictionRange,
    EvictStrategy,
    MaxStrategy,
    MessageMeta,
    MessageRole,
    MinStrategy,
    RetainStrategy,
)
from contextkeeper.compaction.summary import SummaryFrame

__all__ = [
    # Config
    "CHARS_PER_TOKEN",
    "CompactConfig",
    "CompactThresholds",
    "estimate_tokens",
    # Models
    "ContextSummary",
    "ToolCallRecord",
    "ToolCallSummary",
    "Turn",
    "TurnSummary",
    # Strategy
    "CompactionStrategy",
    "EvictionRange",
    "EvictStrategy",
    "MaxStrategy",
    "MessageMeta",
    "MessageRole",
    "MinStrategy",
    "RetainStrategy",
    # Core components
    "SummaryFrame",
    "ConversationHistory",
]
