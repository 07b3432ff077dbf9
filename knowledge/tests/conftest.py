"""Shared fakes for the knowledge test suite (no network, no model downloads)."""

import re
import time
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from knowledge.common.embedding_service import EmbeddingProvider, EmbeddingService
from knowledge.common.knowledge_store import KnowledgeStore


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Bag-of-stems embedder over a fixed vocabulary.

    Each word is reduced to its first four letters; every vocabulary stem is
    one dimension.
    """

    name = "keyword"
    default_model = "vocab-v1"
    VOCAB = ("john", "live", "san", "fran", "year", "old", "pyth", "data", "cat", "dog", "coff", "tea")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[List[str]] = []

    def _vector(self, text: str) -> List[float]:
        vec = [0.0] * len(self.VOCAB)
        for word in re.findall(r"[a-z]+", text.lower()):
            stem = word[:4]
            if stem in self.VOCAB:
                vec[self.VOCAB.index(stem)] += 1.0
        return vec

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]


class TableEmbeddingProvider(EmbeddingProvider):
    """Returns preset vectors by exact text."""

    name = "table"
    default_model = "fixed"

    def __init__(self, table: Dict[str, Sequence[float]], **kwargs):
        super().__init__(**kwargs)
        self.table = table
        self.query_calls = 0

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        return [list(self.table[t]) for t in texts]

    def embed_query(self, text: str) -> List[float]:
        self.query_calls += 1
        return list(self.table[text])


class ScriptedLLM:
    """TextGenerator fake: replays responses, optionally slowly or failing."""

    def __init__(self, response="", delay: float = 0.0, error: Optional[Exception] = None):
        self.response = response
        self.delay = delay
        self.error = error
        self.calls = []

    def generate(self, prompt, *, system=None, max_tokens=512, timeout=30.0):
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


def unit_vector(score: float) -> List[float]:
    """2-D unit vector whose cosine with [1, 0] is ``score``."""
    return [score, float(np.sqrt(1.0 - score * score))]


@pytest.fixture
def store():
    s = KnowledgeStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def keyword_provider():
    return KeywordEmbeddingProvider()


@pytest.fixture
def keyword_embedder(keyword_provider):
    return EmbeddingService(keyword_provider, batch_size=2)


@pytest.fixture
def make_table_embedder():
    def _make(table):
        return EmbeddingService(TableEmbeddingProvider(table))
    return _make


@pytest.fixture
def make_llm():
    return ScriptedLLM


@pytest.fixture
def make_unit_vector():
    return unit_vector
