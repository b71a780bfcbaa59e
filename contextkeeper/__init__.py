"""contextkeeper package.

Context window management for autonomous coding agents:
- Compaction: Bounded conversation memory with progressive summaries
- Compression: Importance-weighted tool output with escrowed retrieval
"""

from contextkeeper.compaction import (
    CompactConfig,
    CompactThresholds,
    ConversationHistory,
    ToolCallRecord,
    Turn,
)
from contextkeeper.compression import (
    CompressionConfig,
    OutputCompressionMiddleware,
    OutputCompressor,
    OutputStore,
)
from contextkeeper.severity import Severity

__all__ = [
    "CompactConfig",
    "CompactThresholds",
    "CompressionConfig",
    "ConversationHistory",
    "OutputCompressionMiddleware",
    "OutputCompressor",
    "OutputStore",
    "Severity",
    "ToolCallRecord",
    "Turn",
]
