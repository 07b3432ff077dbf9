"""
Knowledge Scope Resolver

Retrieves passages for a task from the crew-level collection and, when the
task has an agent, that agent's own collection. Each scope is queried with
its own KnowledgeConfig and the results are merged into one ranked list.

Pipeline:
1. Rewrite the task text into a search query (falls back to the raw text)
2. Embed the query once, reused across scopes
3. Query each scope's collection (agent first, then crew)
4. Merge: score descending, agent before crew on ties, then insertion order
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..common.config import DEFAULT_COLLECTION_NAME, KnowledgeSettings
from ..common.embedding_service import EmbeddingService, get_embedding_service
from ..common.errors import ConfigurationError, ProviderError
from ..common.knowledge_store import KnowledgeStore
from ..common.schemas import SCOPE_PRECEDENCE, KnowledgeConfig, RetrievalResult, ScopeLevel, ScoredChunk
from .query_rewriter import QueryRewriter, normalize_whitespace

logger = logging.getLogger("knowledge.retriever.scope_resolver")

_INVALID_COLLECTION_CHARS = re.compile(r"[^a-z0-9_\-]+")
MAX_COLLECTION_NAME_LENGTH = 63


def sanitize_collection_name(name: str) -> str:
    """Lowercase, replace anything outside [a-z0-9_-] with "_", cap the length."""
    cleaned = _INVALID_COLLECTION_CHARS.sub("_", (name or "").strip().lower()).strip("_-")
    cleaned = cleaned[:MAX_COLLECTION_NAME_LENGTH].rstrip("_-")
    if not cleaned:
        raise ConfigurationError(f"Cannot derive a collection name from {name!r}")
    return cleaned


@dataclass
class CrewScope:
    """Crew-level knowledge: shared by every agent of the crew"""
    collection_name: str = DEFAULT_COLLECTION_NAME
    config: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    sources: list = field(default_factory=list)

    level = ScopeLevel.CREW

    def __post_init__(self):
        if not self.collection_name:
            raise ConfigurationError("CrewScope requires a collection_name")

    @classmethod
    def from_settings(cls, settings: KnowledgeSettings, sources=()) -> "CrewScope":
        return cls(
            collection_name=settings.storage.collection_name,
            config=KnowledgeConfig.from_settings(settings.retrieval),
            sources=list(sources),
        )


@dataclass
class AgentScope:
    """Agent-level knowledge; config falls back to the crew's when unset"""
    name: str
    collection_name: Optional[str] = None
    config: Optional[KnowledgeConfig] = None
    sources: list = field(default_factory=list)

    level = ScopeLevel.AGENT

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ConfigurationError("AgentScope requires a name")
        if self.collection_name is None:
            self.collection_name = sanitize_collection_name(f"agent_{self.name}")

    def effective_config(self, crew: Optional[CrewScope]) -> KnowledgeConfig:
        if self.config is not None:
            return self.config
        if crew is not None:
            return crew.config
        return KnowledgeConfig()


class KnowledgeScopeResolver:
    """
    Scoped retrieval over a KnowledgeStore.

    Scopes are passed in per call; the resolver holds no knowledge state of
    its own beyond its collaborators.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingService,
        rewriter: Optional[QueryRewriter] = None,
    ):
        """
        Initialize resolver.

        Args:
            store: Knowledge store holding the scope collections
            embedder: Must be the provider the collections were built with
            rewriter: Query rewriter (None retrieves with the raw task text)
        """
        self._store = store
        self._embedder = embedder
        self._rewriter = rewriter

    @classmethod
    def from_config(
        cls,
        settings: KnowledgeSettings,
        store: Optional[KnowledgeStore] = None,
    ) -> "KnowledgeScopeResolver":
        rewriter = None
        if settings.retrieval.rewrite_queries:
            rewriter = QueryRewriter.from_config(settings.llm, settings.retrieval)
        return cls(
            store or KnowledgeStore(settings.storage.db_path),
            get_embedding_service(settings.embedding),
            rewriter=rewriter,
        )

    def retrieve(
        self,
        task_text: str,
        crew: Optional[CrewScope] = None,
        agent: Optional[AgentScope] = None,
        rewrite: bool = True,
    ) -> RetrievalResult:
        """
        Retrieve ranked passages for a task.

        Args:
            task_text: The task's raw instruction text
            crew: Crew-level scope, if the crew has knowledge
            agent: The executing agent's scope, if it has knowledge
            rewrite: Rewrite the task text into a search query first

        Returns:
            RetrievalResult (possibly empty) with the query that was used
        """
        used_fallback = False
        if rewrite and self._rewriter is not None:
            rewritten = self._rewriter.rewrite(task_text)
            query = rewritten.query
            used_fallback = rewritten.used_fallback
        else:
            query = normalize_whitespace(task_text)

        result = self.retrieve_for_query(query, crew=crew, agent=agent)
        return RetrievalResult(items=result.items, query=query, rewrite_fallback=used_fallback)

    def retrieve_for_query(
        self,
        query: str,
        crew: Optional[CrewScope] = None,
        agent: Optional[AgentScope] = None,
    ) -> RetrievalResult:
        """Retrieve ranked passages for an already-formed search query."""
        scopes = self._plan(crew, agent)
        if not scopes or not query or not query.strip():
            return RetrievalResult(query=query or "")

        query_vector: Optional[np.ndarray] = None
        items: List[ScoredChunk] = []
        limits: List[int] = []

        for level, collection_name, config in scopes:
            if not self._store.has_collection(collection_name):
                logger.debug("%s scope %s has no collection, skipped", level.value, collection_name)
                continue

            if query_vector is None:
                try:
                    query_vector = self._embedder.embed_single(query)
                except ProviderError as e:
                    logger.warning("Skipping %s scope %s: query embedding failed: %s", level.value, collection_name, e)
                    continue

            scoped = self._store.query(
                collection_name,
                query_vector,
                limit=config.results_limit,
                score_threshold=config.score_threshold,
                provider=self._embedder.identifier,
                scope=level,
            )
            limits.append(config.results_limit)
            items.extend(scoped.items)
            logger.debug("%s scope %s: %d results", level.value, collection_name, len(scoped))

        if not limits:
            return RetrievalResult(query=query)

        items.sort(key=lambda item: (-item.score, SCOPE_PRECEDENCE[item.scope], item.record_id))
        return RetrievalResult(items=items[: max(limits)], query=query)

    @staticmethod
    def _plan(
        crew: Optional[CrewScope],
        agent: Optional[AgentScope],
    ) -> List[Tuple[ScopeLevel, str, KnowledgeConfig]]:
        """Scopes to query, agent first."""
        scopes = []
        if agent is not None:
            if crew is not None and agent.collection_name == crew.collection_name:
                raise ConfigurationError(
                    f"Agent {agent.name!r} and the crew share collection {crew.collection_name!r}"
                )
            scopes.append((ScopeLevel.AGENT, agent.collection_name, agent.effective_config(crew)))
        if crew is not None:
            scopes.append((ScopeLevel.CREW, crew.collection_name, crew.config))
        return scopes
