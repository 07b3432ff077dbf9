"""
Knowledge Store

SQLite-backed storage for chunk/embedding records, grouped into named
collections. Similarity search is brute-force cosine over the collection's
vectors with numpy.

Each collection remembers the embedding provider and dimension it was built
with; inserting or querying with anything else raises ConfigurationError.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from .errors import ConfigurationError
from .schemas import Chunk, RetrievalResult, ScopeLevel, ScoredChunk

logger = logging.getLogger("knowledge.common.knowledge_store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS collections (
    name TEXT PRIMARY KEY,
    provider TEXT,
    dimension INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    start_offset INTEGER NOT NULL,
    end_offset INTEGER NOT NULL,
    source_id TEXT NOT NULL,
    document_id TEXT NOT NULL,
    text TEXT NOT NULL,
    metadata TEXT NOT NULL,
    embedding BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_records_collection ON records(collection, id);
"""

VectorLike = Union[np.ndarray, Sequence[Sequence[float]]]


def cosine_scores(matrix: np.ndarray, query_vector: np.ndarray) -> np.ndarray:
    """Cosine similarity of each row against the query, clamped to [0, 1]."""
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = float(np.linalg.norm(query_vector))
    denom = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, (matrix @ query_vector) / denom, 0.0)
    return np.clip(scores, 0.0, 1.0)


class KnowledgeStore:
    """
    Collection-scoped vector store.

    One connection guarded by a re-entrant lock; every insert is a single
    transaction, so a concurrent query sees all or none of it.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """
        Open (or create) a knowledge store.

        Args:
            db_path: SQLite database file, or ":memory:" for a private
                in-process store
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._db_path = str(Path(self._db_path).expanduser())

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    @property
    def db_path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _get_collection(self, name: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT * FROM collections WHERE name = ?", (name,)
        ).fetchone()

    def list_collections(self) -> List[str]:
        """Names of all registered collections, sorted."""
        with self._lock:
            rows = self._conn.execute("SELECT name FROM collections ORDER BY name").fetchall()
        return [row["name"] for row in rows]

    def has_collection(self, name: str) -> bool:
        with self._lock:
            return self._get_collection(name) is not None

    def collection_info(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Describe a collection.

        Returns:
            Dict with name/provider/dimension/count/created_at/metadata,
            or None if the collection does not exist
        """
        with self._lock:
            row = self._get_collection(name)
            if row is None:
                return None
            count = self._conn.execute(
                "SELECT COUNT(*) FROM records WHERE collection = ?", (name,)
            ).fetchone()[0]
        return {
            "name": row["name"],
            "provider": row["provider"],
            "dimension": row["dimension"],
            "count": count,
            "created_at": row["created_at"],
            "metadata": json.loads(row["metadata"]),
        }

    def count(self, collection_name: Optional[str] = None) -> int:
        """Number of records in one collection, or in the whole store."""
        with self._lock:
            if collection_name is None:
                return self._conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
            return self._conn.execute(
                "SELECT COUNT(*) FROM records WHERE collection = ?", (collection_name,)
            ).fetchone()[0]

    # ------------------------------------------------------------------
    # Insert / Query
    # ------------------------------------------------------------------

    @staticmethod
    def _as_matrix(embeddings: VectorLike, expected_rows: int) -> np.ndarray:
        try:
            matrix = np.asarray(embeddings, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ConfigurationError("Embeddings must all have the same dimension") from e

        if matrix.ndim != 2:
            raise ConfigurationError(
                f"Embeddings must be a 2-D array of vectors, got shape {matrix.shape}"
            )
        if matrix.shape[0] != expected_rows:
            raise ConfigurationError(
                f"Got {matrix.shape[0]} embeddings for {expected_rows} chunks"
            )
        if matrix.shape[1] == 0:
            raise ConfigurationError("Embeddings must not be empty vectors")
        return matrix

    @staticmethod
    def _check_provider(name: str, stored: Optional[str], provider: Optional[str]) -> None:
        if provider and stored and provider != stored:
            raise ConfigurationError(
                f"Collection '{name}' was built with embedding provider {stored}, "
                f"not {provider}"
            )

    def insert(
        self,
        collection_name: str,
        chunks: Sequence[Chunk],
        embeddings: VectorLike,
        metadata: Optional[Dict[str, Any]] = None,
        provider: Optional[str] = None,
    ) -> List[int]:
        """
        Append chunk/embedding records to a collection.

        The collection is created on first insert and pinned to the
        embedding dimension (and provider, when given). Records are appended
        in sequence order; nothing is deduplicated.

        Args:
            collection_name: Target collection
            chunks: Chunks to store
            embeddings: One vector per chunk, same order
            metadata: Collection-level metadata recorded at creation
            provider: Embedding provider identifier ("femb:BAAI/bge-small-en-v1.5")

        Returns:
            Record ids of the inserted rows, in order

        Raises:
            ConfigurationError: On count, dimension or provider mismatch
        """
        if not collection_name:
            raise ConfigurationError("collection_name is required")
        if not chunks:
            return []

        matrix = self._as_matrix(embeddings, len(chunks))
        dim = int(matrix.shape[1])

        with self._lock:
            row = self._get_collection(collection_name)
            if row is not None:
                if row["dimension"] != dim:
                    raise ConfigurationError(
                        f"Collection '{collection_name}' has dimension {row['dimension']}, "
                        f"got embeddings of dimension {dim}"
                    )
                self._check_provider(collection_name, row["provider"], provider)

            ids = []
            try:
                with self._conn:
                    if row is None:
                        self._conn.execute(
                            "INSERT INTO collections (name, provider, dimension, created_at, metadata) "
                            "VALUES (?, ?, ?, ?, ?)",
                            (
                                collection_name,
                                provider,
                                dim,
                                datetime.now(timezone.utc).isoformat(),
                                json.dumps(metadata or {}),
                            ),
                        )
                        logger.info(
                            "Created collection %s (dim=%d, provider=%s)",
                            collection_name, dim, provider,
                        )
                    elif provider and not row["provider"]:
                        self._conn.execute(
                            "UPDATE collections SET provider = ? WHERE name = ?",
                            (provider, collection_name),
                        )

                    for chunk, vector in zip(chunks, matrix):
                        cursor = self._conn.execute(
                            "INSERT INTO records (collection, chunk_index, start_offset, end_offset, "
                            "source_id, document_id, text, metadata, embedding) "
                            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                            (
                                collection_name,
                                chunk.index,
                                chunk.start,
                                chunk.end,
                                chunk.source_id,
                                chunk.document_id,
                                chunk.text,
                                json.dumps(chunk.metadata, default=str),
                                vector.tobytes(),
                            ),
                        )
                        ids.append(cursor.lastrowid)
            except sqlite3.Error:
                logger.exception("Insert into collection %s rolled back", collection_name)
                raise

        logger.debug("Inserted %d records into %s", len(ids), collection_name)
        return ids

    def query(
        self,
        collection_name: str,
        query_vector: Union[np.ndarray, Sequence[float]],
        limit: int,
        score_threshold: float,
        provider: Optional[str] = None,
        scope: ScopeLevel = ScopeLevel.CREW,
    ) -> RetrievalResult:
        """
        Rank a collection's records against a query vector.

        Keeps records with score >= score_threshold, sorted by score
        descending with earlier-inserted records first on ties, capped at
        ``limit``. A collection that does not exist yields an empty result.

        Raises:
            ConfigurationError: On invalid limit/threshold, or a query vector
                whose dimension or provider does not match the collection
        """
        if limit < 1:
            raise ConfigurationError(f"limit must be >= 1, got {limit}")
        if not 0.0 <= score_threshold <= 1.0:
            raise ConfigurationError(f"score_threshold must be in [0, 1], got {score_threshold}")

        vector = np.asarray(query_vector, dtype=np.float32)
        if vector.ndim != 1:
            raise ConfigurationError(f"Query vector must be 1-D, got shape {vector.shape}")

        with self._lock:
            row = self._get_collection(collection_name)
            if row is None:
                logger.debug("Collection %s does not exist, empty result", collection_name)
                return RetrievalResult()

            if vector.shape[0] != row["dimension"]:
                raise ConfigurationError(
                    f"Collection '{collection_name}' has dimension {row['dimension']}, "
                    f"got query vector of dimension {vector.shape[0]}"
                )
            self._check_provider(collection_name, row["provider"], provider)

            records = self._conn.execute(
                "SELECT * FROM records WHERE collection = ? ORDER BY id", (collection_name,)
            ).fetchall()

        if not records:
            return RetrievalResult()

        dim = row["dimension"]
        matrix = np.frombuffer(b"".join(r["embedding"] for r in records), dtype=np.float32)
        matrix = matrix.reshape(len(records), dim)
        scores = cosine_scores(matrix, vector)

        hits = [
            (float(score), idx)
            for idx, score in enumerate(scores)
            if float(score) >= score_threshold
        ]
        # records are in id order, so the row index breaks ties by insertion
        hits.sort(key=lambda h: (-h[0], h[1]))

        items = []
        for score, idx in hits[:limit]:
            record = records[idx]
            chunk = Chunk(
                text=record["text"],
                index=record["chunk_index"],
                start=record["start_offset"],
                end=record["end_offset"],
                source_id=record["source_id"],
                document_id=record["document_id"],
                metadata=json.loads(record["metadata"]),
                collection_name=collection_name,
            )
            items.append(
                ScoredChunk(chunk=chunk, score=min(score, 1.0), scope=scope, record_id=record["id"])
            )

        logger.debug(
            "Query on %s: %d/%d records above %.2f",
            collection_name, len(hits), len(records), score_threshold,
        )
        return RetrievalResult(items=items)

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def clear(self, collection_name: str) -> int:
        """
        Remove every record of a collection and its registration.

        Returns:
            Number of records removed (0 for an unknown collection)
        """
        with self._lock, self._conn:
            removed = self._conn.execute(
                "DELETE FROM records WHERE collection = ?", (collection_name,)
            ).rowcount
            self._conn.execute("DELETE FROM collections WHERE name = ?", (collection_name,))

        logger.info("Cleared collection %s (%d records)", collection_name, removed)
        return removed

    def clear_all(self) -> int:
        """Remove every collection. Returns the number of records removed."""
        with self._lock, self._conn:
            removed = self._conn.execute("DELETE FROM records").rowcount
            self._conn.execute("DELETE FROM collections")

        logger.info("Cleared all collections (%d records)", removed)
        return removed

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "KnowledgeStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
