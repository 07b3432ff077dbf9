"""
Knowledge Record Schemas

Chunks, retrieval configuration and retrieval results.
"""

from .records import (
    SourceDocument,
    Chunk,
    KnowledgeConfig,
    ScoredChunk,
    RetrievalResult,
    ScopeLevel,
    SCOPE_PRECEDENCE,
)

__all__ = [
    "SourceDocument",
    "Chunk",
    "KnowledgeConfig",
    "ScoredChunk",
    "RetrievalResult",
    "ScopeLevel",
    "SCOPE_PRECEDENCE",
]
