"""
Knowledge Record Schemas

Chunks are the unit of storage and retrieval. Every chunk keeps its span in
the normalized text of the document it came from, so a source can always be
reconstructed from its chunks.
"""

from typing import Any, Dict, Iterator, List, Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import RetrievalConfig
from ..errors import ConfigurationError


# ============================================================================
# Enums
# ============================================================================

class ScopeLevel(str, Enum):
    """Which scope a retrieved chunk came from.

    Declaration order is merge precedence: agent-level results win ties.
    """
    AGENT = "agent"
    CREW = "crew"


SCOPE_PRECEDENCE = {ScopeLevel.AGENT: 0, ScopeLevel.CREW: 1}


# ============================================================================
# Source / Chunk models
# ============================================================================

class SourceDocument(BaseModel):
    """One loaded unit of a knowledge source (a string, a file, a URL)"""
    identifier: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Chunk(BaseModel):
    """A bounded, overlap-aware text segment of one source document"""
    model_config = ConfigDict(frozen=True)

    text: str
    index: int = Field(..., ge=0, description="Sequence index within the source")
    start: int = Field(..., ge=0, description="Start offset in the normalized document text")
    end: int = Field(..., ge=0, description="End offset (exclusive)")
    source_id: str = ""
    document_id: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    collection_name: Optional[str] = None

    @property
    def length(self) -> int:
        return self.end - self.start


# ============================================================================
# Retrieval models
# ============================================================================

class KnowledgeConfig(BaseModel):
    """Per-scope retrieval parameters"""
    model_config = ConfigDict(frozen=True)

    results_limit: int = Field(default=3, ge=1)
    score_threshold: float = Field(default=0.35, ge=0.0, le=1.0)

    @classmethod
    def create(cls, **kwargs: Any) -> "KnowledgeConfig":
        """Build a config, raising ConfigurationError on invalid values."""
        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid knowledge config: {e}") from e

    @classmethod
    def from_settings(cls, retrieval: RetrievalConfig) -> "KnowledgeConfig":
        """Build the default per-scope config from the retrieval settings."""
        return cls.create(
            results_limit=retrieval.results_limit,
            score_threshold=retrieval.score_threshold,
        )


class ScoredChunk(BaseModel):
    """A retrieved chunk with its similarity score"""
    chunk: Chunk
    score: float = Field(..., ge=0.0, le=1.0, description="Cosine similarity (0-1)")
    scope: ScopeLevel = ScopeLevel.CREW
    record_id: int = Field(default=0, description="Store insertion order")

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source(self) -> str:
        return self.chunk.metadata.get("source") or self.chunk.source_id


class RetrievalResult(BaseModel):
    """Ordered retrieval output, score-descending"""
    items: List[ScoredChunk] = Field(default_factory=list)
    query: str = ""
    rewrite_fallback: bool = False

    @field_validator("items")
    @classmethod
    def _sorted_descending(cls, items: List[ScoredChunk]) -> List[ScoredChunk]:
        for prev, cur in zip(items, items[1:]):
            if cur.score > prev.score:
                raise ValueError("retrieval items must be sorted by score, descending")
        return items

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[ScoredChunk]:  # type: ignore[override]
        return iter(self.items)

    def __getitem__(self, idx: int) -> ScoredChunk:
        return self.items[idx]

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def texts(self) -> List[str]:
        return [item.chunk.text for item in self.items]

    @property
    def scores(self) -> List[float]:
        return [item.score for item in self.items]
