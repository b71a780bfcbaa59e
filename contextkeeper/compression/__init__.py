"""Tool output compression with escrowed retrieval.

Bounds the size of any single tool result: findings are classified by
severity, critical ones kept in full and the rest deduplicated, while the
full output stays retrievable by reference ID.

Core components:
- OutputCompressor: Size gate, importance weighting and deduplication
- OutputStore: In-memory escrow of full outputs plus the session registry
- OutputCompressionMiddleware: Agent middleware with retrieval tools
"""

from contextkeeper.compression.compressor import (
    OutputCompressor,
    deduplicate_to_patterns,
    derive_status,
)
from contextkeeper.compression.config import CompressionConfig
from contextkeeper.compression.issues import (
    classify_by_severity,
    extract_issues,
    get_issue_code,
    get_issue_file,
    get_issue_message,
    get_severity,
    is_issue_like,
)
from contextkeeper.compression.middleware import OutputCompressionMiddleware
from contextkeeper.compression.models import (
    CompressedOutput,
    DeduplicatedPattern,
    SessionRef,
    SeveritySummary,
    StoredOutput,
)
from contextkeeper.compression.output_store import OutputStore

__all__ = [
    # Config
    "CompressionConfig",
    # Models
    "CompressedOutput",
    "DeduplicatedPattern",
    "SessionRef",
    "SeveritySummary",
    "StoredOutput",
    # Issue helpers
    "classify_by_severity",
    "deduplicate_to_patterns",
    "derive_status",
    "extract_issues",
    "get_issue_code",
    "get_issue_file",
    "get_issue_message",
    "get_severity",
    "is_issue_like",
    # Core components
    "OutputStore",
    "OutputCompressor",
    "OutputCompressionMiddleware",
]
