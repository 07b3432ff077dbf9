"""
Error taxonomy for the knowledge pipeline.

- ConfigurationError: invalid or missing parameters, unknown providers,
  provider/dimension mismatch. Never retried.
- SourceError: a file or remote document could not be loaded.
- ProviderError: an embedding or LLM provider call failed.
"""

from typing import Optional


class KnowledgeError(Exception):
    """Base class for all knowledge pipeline errors"""


class ConfigurationError(KnowledgeError, ValueError):
    """Invalid configuration or incompatible collection/provider setup"""


class SourceError(KnowledgeError):
    """Failure while loading a knowledge source"""

    def __init__(self, message: str, source_id: Optional[str] = None):
        super().__init__(message)
        self.source_id = source_id


class ProviderError(KnowledgeError):
    """Failure of an embedding or language-model provider call"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
