"""
Crew Knowledge Common Module

Shared infrastructure for ingestion and retrieval.
"""

from .config import KnowledgeSettings, load_config
from .embedding_service import (
    EmbeddingProvider,
    EmbeddingService,
    create_embedding_provider,
    get_embedding_service,
    register_embedding_provider,
)
from .errors import ConfigurationError, KnowledgeError, ProviderError, SourceError
from .knowledge_store import KnowledgeStore
from .llm_client import LLMClient, TextGenerator

__all__ = [
    "KnowledgeSettings",
    "load_config",
    "EmbeddingProvider",
    "EmbeddingService",
    "create_embedding_provider",
    "get_embedding_service",
    "register_embedding_provider",
    "ConfigurationError",
    "KnowledgeError",
    "ProviderError",
    "SourceError",
    "KnowledgeStore",
    "LLMClient",
    "TextGenerator",
]
