"""
Ingestor

Load → chunk → embed → store, once per knowledge source.

Independent sources are ingested concurrently. A failing source is
reported on its IngestionResult and never partially inserted; unrelated
sources carry on unless the caller asks for all-or-nothing.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..common.config import DEFAULT_COLLECTION_NAME, KnowledgeSettings
from ..common.embedding_service import EmbeddingService, get_embedding_service
from ..common.errors import ConfigurationError, KnowledgeError, ProviderError, SourceError
from ..common.knowledge_store import KnowledgeStore
from ..common.schemas import Chunk, SourceDocument
from .sources import KnowledgeSource

logger = logging.getLogger("knowledge.ingestion.ingestor")


@dataclass
class IngestionResult:
    """Outcome of ingesting one source"""
    source_id: str
    collection_name: str
    success: bool
    document_count: int = 0
    chunk_count: int = 0
    record_ids: List[int] = field(default_factory=list)
    error: Optional[KnowledgeError] = None

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


@dataclass
class _PreparedSource:
    """A loaded, chunked and embedded source waiting to be written"""
    source_id: str
    documents: Dict[str, SourceDocument]
    chunks: List[Chunk]
    embeddings: Optional[np.ndarray] = None


class KnowledgeIngestor:
    """
    Ingests knowledge sources into store collections.

    Chunk order within a source is fixed by the chunker and preserved by
    the embedding service, so completion order never affects storage order.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingService,
        max_workers: int = 4,
        all_or_nothing: bool = False,
    ):
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be positive, got {max_workers}")
        self._store = store
        self._embedder = embedder
        self._max_workers = max_workers
        self._all_or_nothing = all_or_nothing

    @classmethod
    def from_config(
        cls,
        settings: KnowledgeSettings,
        store: Optional[KnowledgeStore] = None,
    ) -> "KnowledgeIngestor":
        """Build an ingestor from settings, opening the configured store if none is given."""
        return cls(
            store or KnowledgeStore(settings.storage.db_path),
            get_embedding_service(settings.embedding),
            max_workers=settings.ingestion.max_workers,
            all_or_nothing=settings.ingestion.all_or_nothing,
        )

    @property
    def store(self) -> KnowledgeStore:
        return self._store

    def _prepare(self, source: KnowledgeSource) -> _PreparedSource:
        """Load, chunk and embed a source without touching the store."""
        documents = source.load()
        chunks = source.chunk(documents)
        embeddings = None
        if chunks:
            embeddings = self._embedder.embed([chunk.text for chunk in chunks])
        return _PreparedSource(source.source_id, documents, chunks, embeddings)

    @staticmethod
    def _failed(source_id: str, collection_name: str, error: KnowledgeError) -> IngestionResult:
        logger.warning("Ingestion of %s into %s failed: %s", source_id, collection_name, error)
        return IngestionResult(
            source_id=source_id,
            collection_name=collection_name,
            success=False,
            error=error,
        )

    def _write(self, prepared: Sequence[_PreparedSource], collection_name: str) -> List[IngestionResult]:
        """Insert every prepared source in one store transaction."""
        chunks = [chunk for item in prepared for chunk in item.chunks]
        record_ids: List[int] = []
        if chunks:
            embeddings = np.vstack([item.embeddings for item in prepared if item.chunks])
            record_ids = self._store.insert(
                collection_name,
                chunks,
                embeddings,
                provider=self._embedder.identifier,
            )

        results = []
        offset = 0
        for item in prepared:
            ids = record_ids[offset : offset + len(item.chunks)]
            offset += len(item.chunks)
            if item.chunks:
                logger.info(
                    "Ingested %s into %s: %d documents, %d chunks",
                    item.source_id, collection_name, len(item.documents), len(item.chunks),
                )
            else:
                logger.info("Source %s produced no chunks", item.source_id)
            results.append(
                IngestionResult(
                    source_id=item.source_id,
                    collection_name=collection_name,
                    success=True,
                    document_count=len(item.documents),
                    chunk_count=len(item.chunks),
                    record_ids=ids,
                )
            )
        return results

    def ingest(
        self,
        source: KnowledgeSource,
        collection_name: str = DEFAULT_COLLECTION_NAME,
    ) -> IngestionResult:
        """
        Ingest one source into a collection.

        SourceError and ProviderError are reported on the result.
        ConfigurationError (bad parameters, provider/dimension mismatch with
        the collection) propagates.
        """
        try:
            prepared = self._prepare(source)
        except (SourceError, ProviderError) as e:
            return self._failed(source.source_id, collection_name, e)
        return self._write([prepared], collection_name)[0]

    def ingest_many(
        self,
        sources: Sequence[KnowledgeSource],
        collection_name: str = DEFAULT_COLLECTION_NAME,
        all_or_nothing: Optional[bool] = None,
    ) -> List[IngestionResult]:
        """
        Ingest several sources concurrently.

        Results are returned in input order. With all_or_nothing, every
        source is loaded and embedded before anything is written, and the
        whole batch goes into the store as one transaction. The first failed
        source (in input order) is raised as its own error type, pending
        sources are cancelled and the collection is left untouched.
        """
        if all_or_nothing is None:
            all_or_nothing = self._all_or_nothing
        if not sources:
            return []

        if all_or_nothing:
            return self._write(self._prepare_all(sources), collection_name)

        workers = min(self._max_workers, len(sources))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="knowledge-ingest") as pool:
            futures = [pool.submit(self.ingest, source, collection_name) for source in sources]
            results = [future.result() for future in futures]

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning("%d of %d sources failed to ingest into %s", failed, len(results), collection_name)
        return results

    def _prepare_all(self, sources: Sequence[KnowledgeSource]) -> List[_PreparedSource]:
        workers = min(self._max_workers, len(sources))
        prepared: List[_PreparedSource] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="knowledge-ingest") as pool:
            futures = [pool.submit(self._prepare, source) for source in sources]
            try:
                for source, future in zip(sources, futures):
                    try:
                        prepared.append(future.result())
                    except (SourceError, ProviderError) as e:
                        logger.warning("All-or-nothing batch aborted by %s: %s", source.source_id, e)
                        raise
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return prepared

    def ingest_scope(self, scope) -> List[IngestionResult]:
        """Ingest a crew or agent scope's sources into its collection."""
        return self.ingest_many(list(scope.sources), scope.collection_name)
