"""Tests for the SQLite knowledge store."""

import threading

import numpy as np
import pytest

from knowledge.common.errors import ConfigurationError
from knowledge.common.knowledge_store import KnowledgeStore, cosine_scores
from knowledge.common.schemas import Chunk, ScopeLevel


def make_chunks(*texts, source_id="src"):
    return [
        Chunk(text=t, index=i, start=0, end=len(t), source_id=source_id, document_id=source_id)
        for i, t in enumerate(texts)
    ]


class TestInsert:
    def test_insert_creates_collection(self, store, make_unit_vector):
        ids = store.insert("knowledge", make_chunks("a", "b"), [make_unit_vector(0.9), make_unit_vector(0.1)],
                           provider="table:fixed")
        assert len(ids) == 2 and ids[0] < ids[1]
        info = store.collection_info("knowledge")
        assert info["dimension"] == 2
        assert info["provider"] == "table:fixed"
        assert info["count"] == 2
        assert store.list_collections() == ["knowledge"]

    def test_insert_does_not_deduplicate(self, store):
        store.insert("knowledge", make_chunks("same"), [[1.0, 0.0]])
        store.insert("knowledge", make_chunks("same"), [[1.0, 0.0]])
        assert store.count("knowledge") == 2

    def test_count_mismatch(self, store):
        with pytest.raises(ConfigurationError, match="2 chunks"):
            store.insert("knowledge", make_chunks("a", "b"), [[1.0, 0.0]])

    def test_ragged_embeddings(self, store):
        with pytest.raises(ConfigurationError):
            store.insert("knowledge", make_chunks("a", "b"), [[1.0, 0.0], [1.0]])

    def test_dimension_mismatch_on_insert(self, store):
        store.insert("knowledge", make_chunks("a"), [[1.0, 0.0]])
        with pytest.raises(ConfigurationError, match="dimension"):
            store.insert("knowledge", make_chunks("b"), [[1.0, 0.0, 0.0]])
        assert store.count("knowledge") == 1

    def test_provider_mismatch_on_insert(self, store):
        store.insert("knowledge", make_chunks("a"), [[1.0, 0.0]], provider="femb:small")
        with pytest.raises(ConfigurationError, match="provider"):
            store.insert("knowledge", make_chunks("b"), [[1.0, 0.0]], provider="openai:large")

    def test_empty_insert_is_noop(self, store):
        assert store.insert("knowledge", [], np.zeros((0, 2))) == []
        assert store.list_collections() == []


class TestQuery:
    @pytest.fixture
    def populated(self, store, make_unit_vector):
        scores = [0.2, 0.9, 0.5, 0.9, 0.7]
        store.insert("knowledge", make_chunks(*[f"c{i}" for i in range(5)]),
                     [make_unit_vector(s) for s in scores], provider="table:fixed")
        return store

    def test_limit_threshold_and_order(self, populated):
        result = populated.query("knowledge", [1.0, 0.0], limit=3, score_threshold=0.4)
        assert result.texts == ["c1", "c3", "c4"]
        assert result.scores == pytest.approx([0.9, 0.9, 0.7], abs=1e-5)

    def test_ties_break_by_insertion_order(self, populated):
        result = populated.query("knowledge", [1.0, 0.0], limit=2, score_threshold=0.0)
        assert result.texts == ["c1", "c3"]
        assert result[0].record_id < result[1].record_id

    def test_all_scores_at_or_above_threshold(self, populated):
        result = populated.query("knowledge", [1.0, 0.0], limit=10, score_threshold=0.45)
        assert len(result) == 4
        assert all(s >= 0.45 for s in result.scores)

    def test_results_carry_collection_and_scope(self, populated):
        result = populated.query("knowledge", [1.0, 0.0], limit=1, score_threshold=0.0, scope=ScopeLevel.AGENT)
        assert result[0].chunk.collection_name == "knowledge"
        assert result[0].scope == ScopeLevel.AGENT

    def test_missing_collection_returns_empty(self, store):
        result = store.query("nothing-here", [1.0, 0.0], limit=3, score_threshold=0.35)
        assert result.is_empty

    def test_has_collection(self, populated):
        assert populated.has_collection("knowledge")
        assert not populated.has_collection("nothing-here")

    def test_dimension_mismatch_raises(self, populated):
        with pytest.raises(ConfigurationError, match="dimension"):
            populated.query("knowledge", [1.0, 0.0, 0.0], limit=3, score_threshold=0.0)

    def test_provider_mismatch_raises(self, populated):
        with pytest.raises(ConfigurationError, match="provider"):
            populated.query("knowledge", [1.0, 0.0], limit=3, score_threshold=0.0, provider="other:model")

    @pytest.mark.parametrize("limit,threshold", [(0, 0.5), (3, -0.1), (3, 1.5)])
    def test_invalid_parameters(self, populated, limit, threshold):
        with pytest.raises(ConfigurationError):
            populated.query("knowledge", [1.0, 0.0], limit=limit, score_threshold=threshold)

    def test_opposite_vectors_clamped_to_zero(self, store):
        store.insert("knowledge", make_chunks("neg"), [[-1.0, 0.0]])
        result = store.query("knowledge", [1.0, 0.0], limit=1, score_threshold=0.0)
        assert result.scores == [0.0]


class TestClear:
    def test_clear_then_query_is_empty(self, store):
        store.insert("knowledge", make_chunks("a", "b"), [[1.0, 0.0], [0.0, 1.0]])
        assert store.clear("knowledge") == 2
        assert store.query("knowledge", [1.0, 0.0], limit=3, score_threshold=0.0).is_empty
        assert store.collection_info("knowledge") is None

    def test_clear_allows_new_dimension(self, store):
        store.insert("knowledge", make_chunks("a"), [[1.0, 0.0]])
        store.clear("knowledge")
        store.insert("knowledge", make_chunks("b"), [[1.0, 0.0, 0.0]])
        assert store.collection_info("knowledge")["dimension"] == 3

    def test_clear_leaves_other_collections(self, store):
        store.insert("knowledge", make_chunks("a"), [[1.0, 0.0]])
        store.insert("agent_writer", make_chunks("b"), [[1.0, 0.0]])
        store.clear("knowledge")
        assert store.list_collections() == ["agent_writer"]

    def test_clear_unknown_collection(self, store):
        assert store.clear("missing") == 0

    def test_clear_all(self, store):
        store.insert("knowledge", make_chunks("a"), [[1.0, 0.0]])
        store.insert("agent_writer", make_chunks("b"), [[1.0, 0.0]])
        assert store.clear_all() == 2
        assert store.list_collections() == []
        assert store.count() == 0


class TestPersistence:
    def test_records_survive_reopen(self, tmp_path):
        db = tmp_path / "nested" / "knowledge.db"
        with KnowledgeStore(db) as store:
            store.insert("knowledge", make_chunks("persisted"), [[0.6, 0.8]], provider="table:fixed")

        with KnowledgeStore(db) as store:
            result = store.query("knowledge", [0.6, 0.8], limit=1, score_threshold=0.9)
        assert result.texts == ["persisted"]

    def test_metadata_round_trip(self, store):
        chunk = Chunk(text="t", index=0, start=0, end=1, source_id="s", document_id="d",
                      metadata={"file_name": "notes.md", "page_count": 2})
        store.insert("knowledge", [chunk], [[1.0]])
        result = store.query("knowledge", [1.0], limit=1, score_threshold=0.0)
        assert result[0].chunk.metadata == {"file_name": "notes.md", "page_count": 2}


class TestConcurrency:
    def test_concurrent_inserts_and_queries(self, store):
        errors = []

        def writer(n):
            try:
                store.insert("knowledge", make_chunks(*[f"w{n}-{i}" for i in range(10)]),
                             [[1.0, 0.0]] * 10)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        def reader():
            try:
                for _ in range(20):
                    result = store.query("knowledge", [1.0, 0.0], limit=100, score_threshold=0.0)
                    assert len(result) % 10 == 0
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.count("knowledge") == 50


class TestCosineScores:
    def test_zero_vector_scores_zero(self):
        scores = cosine_scores(np.array([[0.0, 0.0], [1.0, 0.0]], dtype=np.float32),
                               np.array([1.0, 0.0], dtype=np.float32))
        assert scores.tolist() == [0.0, 1.0]
