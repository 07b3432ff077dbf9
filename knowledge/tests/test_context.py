"""Tests for prompt context formatting."""

from knowledge.common.schemas import Chunk, RetrievalResult, ScoredChunk
from knowledge.retriever.context import CONTEXT_HEADER, format_knowledge_context


def result_of(*texts, source="notes.md"):
    items = [
        ScoredChunk(
            chunk=Chunk(text=t, index=i, start=0, end=len(t), metadata={"source": source}),
            score=0.9 - i * 0.1,
        )
        for i, t in enumerate(texts)
    ]
    return RetrievalResult(items=items)


class TestFormatKnowledgeContext:
    def test_empty_result_is_empty_string(self):
        assert format_knowledge_context(RetrievalResult()) == ""

    def test_numbered_passages_with_sources(self):
        text = format_knowledge_context(result_of("John lives in San Francisco.", "He is 30."))
        assert text.startswith(CONTEXT_HEADER)
        assert "[1] (source: notes.md, relevance: 0.90)\nJohn lives in San Francisco." in text
        assert "[2] (source: notes.md, relevance: 0.80)\nHe is 30." in text

    def test_sources_can_be_omitted(self):
        text = format_knowledge_context(result_of("fact"), include_sources=False)
        assert "source:" not in text
        assert "[1]\nfact" in text

    def test_stops_before_exceeding_max_length(self):
        text = format_knowledge_context(result_of("a" * 50, "b" * 50, "c" * 50), max_length=180)
        assert len(text) <= 180
        assert "a" * 50 in text
        assert "c" * 50 not in text

    def test_top_passage_truncated_rather_than_dropped(self):
        text = format_knowledge_context(result_of("x" * 500), max_length=120)
        assert len(text) <= 120
        assert text.endswith("...")
