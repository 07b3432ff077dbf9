"""
Crew Knowledge

Knowledge ingestion and scoped retrieval for agent crews.

Philosophy:
- Chunking is deterministic, so re-ingesting a source is reproducible
- A collection is only ever compared against its own embedding provider
- No relevant knowledge is a normal, empty result, never an error

Usage:
    from knowledge.common import load_config, KnowledgeStore, EmbeddingService
    from knowledge.ingestion import StringKnowledgeSource, KnowledgeIngestor
    from knowledge.retriever import CrewScope, AgentScope, KnowledgeScopeResolver
"""

__version__ = "0.1.0"
