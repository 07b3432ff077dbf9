"""Tests for QueryRewriter."""

import logging
import time

import pytest
from unittest.mock import patch

from knowledge.common.config import LLMConfig, RetrievalConfig
from knowledge.common.errors import ProviderError
from knowledge.retriever.query_rewriter import REWRITE_SYSTEM_PROMPT, QueryRewriter, normalize_whitespace


TASK = """Answer the following questions about the user: Where does John live?

Expected output: A JSON object with keys "city" and "confidence"."""


class TestRewrite:
    def test_uses_model_answer(self, make_llm):
        llm = make_llm("where does John live")
        result = QueryRewriter(llm).rewrite(TASK)

        assert result.query == "where does John live"
        assert result.original == TASK
        assert not result.used_fallback
        assert result.error is None

    def test_single_call_with_system_instruction(self, make_llm):
        llm = make_llm("john residence")
        QueryRewriter(llm, max_tokens=64).rewrite(TASK)

        assert len(llm.calls) == 1
        assert llm.calls[0]["system"] == REWRITE_SYSTEM_PROMPT
        assert llm.calls[0]["max_tokens"] == 64
        assert "Where does John live?" in llm.calls[0]["prompt"]

    def test_label_and_quotes_stripped(self, make_llm):
        result = QueryRewriter(make_llm('Query: "john home city"')).rewrite(TASK)
        assert result.query == "john home city"

    def test_long_task_truncated_in_prompt(self, make_llm):
        llm = make_llm("q")
        QueryRewriter(llm, max_input_chars=10).rewrite("x" * 100)
        assert "x" * 11 not in llm.calls[0]["prompt"]


class TestFallback:
    def test_timeout_falls_back_to_raw_text(self, make_llm):
        llm = make_llm("too late", delay=1.0)
        started = time.monotonic()
        result = QueryRewriter(llm, timeout=0.1).rewrite(TASK)

        assert time.monotonic() - started < 0.9
        assert result.used_fallback
        assert result.query == normalize_whitespace(TASK)
        assert "timed out" in result.error

    def test_provider_error_falls_back(self, make_llm, caplog):
        llm = make_llm(error=ProviderError("quota", provider="openai"))
        with caplog.at_level(logging.WARNING, logger="knowledge.retriever.query_rewriter"):
            result = QueryRewriter(llm).rewrite(TASK)

        assert result.used_fallback
        assert result.query == normalize_whitespace(TASK)
        assert "quota" in result.error
        assert "fell back" in caplog.text

    def test_empty_answer_falls_back(self, make_llm):
        result = QueryRewriter(make_llm("   ")).rewrite(TASK)
        assert result.used_fallback
        assert result.error == "empty rewrite"

    def test_no_model_falls_back(self):
        result = QueryRewriter(None).rewrite("  Where   does\nJohn live? ")
        assert result.used_fallback
        assert result.query == "Where does John live?"

    def test_empty_task_text(self, make_llm):
        llm = make_llm("anything")
        result = QueryRewriter(llm).rewrite("   ")
        assert result.query == ""
        assert llm.calls == []


class TestFromConfig:
    def test_unavailable_client_means_no_model(self):
        with patch.dict("os.environ", {}, clear=True):
            rewriter = QueryRewriter.from_config(LLMConfig(), RetrievalConfig(rewrite_timeout=3.0))
        assert rewriter.timeout == 3.0
        assert rewriter.rewrite("Where does John live?").used_fallback
