"""
Query Rewriter

Turns a task's raw instruction text into a focused search query with one
language-model call. Any failure (timeout, provider error, empty answer,
no model configured) falls back to the raw text, whitespace-normalized.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional

from ..common.config import LLMConfig, RetrievalConfig
from ..common.llm_client import LLMClient, TextGenerator
from ..common.llm_utils import parse_llm_text

logger = logging.getLogger("knowledge.retriever.query_rewriter")


REWRITE_SYSTEM_PROMPT = """You rewrite task instructions into search queries for a vector knowledge base.

Rules:
1. Keep the information the task actually needs (entities, facts, topics).
2. Drop output-format directives, expected-output descriptions, role-play preambles and other boilerplate.
3. Do not answer the task.
4. Output only the rewritten query on a single line, with no preamble or explanation."""

REWRITE_PROMPT = """Task:
{task}

Search query:"""


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    return re.sub(r"\s+", " ", text or "").strip()


@dataclass
class RewrittenQuery:
    """Outcome of a rewrite"""
    query: str
    original: str
    used_fallback: bool = False
    error: Optional[str] = None


class QueryRewriter:
    """
    Rewrites task text into a retrieval query.

    The language model is passed in explicitly; any object with a
    ``generate(prompt, *, system, max_tokens, timeout)`` method works.
    """

    def __init__(
        self,
        llm: Optional[TextGenerator] = None,
        timeout: float = 15.0,
        max_tokens: int = 256,
        max_input_chars: int = 8000,
    ):
        """
        Initialize query rewriter.

        Args:
            llm: Text generation collaborator (None always falls back)
            timeout: Seconds to wait for the model before falling back
            max_tokens: Completion budget for the rewritten query
            max_input_chars: Task text beyond this is truncated in the prompt
        """
        self._llm = llm
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._max_input_chars = max_input_chars

    @classmethod
    def from_config(cls, llm_config: LLMConfig, retrieval: RetrievalConfig) -> "QueryRewriter":
        client = LLMClient.from_config(llm_config)
        return cls(client if client.is_available else None, timeout=retrieval.rewrite_timeout)

    @property
    def timeout(self) -> float:
        return self._timeout

    def _fallback(self, task_text: str, reason: str) -> RewrittenQuery:
        logger.warning("Query rewrite fell back to raw task text: %s", reason)
        return RewrittenQuery(
            query=normalize_whitespace(task_text),
            original=task_text,
            used_fallback=True,
            error=reason,
        )

    def rewrite(self, task_text: str) -> RewrittenQuery:
        """
        Rewrite task text into a search query.

        Never raises for model failures; check ``used_fallback``.
        """
        if not normalize_whitespace(task_text):
            return RewrittenQuery(query="", original=task_text, used_fallback=True, error="empty task text")

        if self._llm is None:
            return self._fallback(task_text, "no language model configured")

        prompt = REWRITE_PROMPT.format(task=task_text[: self._max_input_chars])

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="knowledge-rewrite")
        try:
            future = executor.submit(
                self._llm.generate,
                prompt,
                system=REWRITE_SYSTEM_PROMPT,
                max_tokens=self._max_tokens,
                timeout=self._timeout,
            )
            raw = future.result(timeout=self._timeout)
        except FutureTimeoutError:
            return self._fallback(task_text, f"timed out after {self._timeout}s")
        except Exception as e:
            return self._fallback(task_text, f"{type(e).__name__}: {e}")
        finally:
            # a timed-out call keeps running in its thread; do not wait for it
            executor.shutdown(wait=False)

        query = normalize_whitespace(parse_llm_text(raw or ""))
        if not query:
            return self._fallback(task_text, "empty rewrite")

        logger.debug("Rewrote query: %r -> %r", normalize_whitespace(task_text)[:80], query)
        return RewrittenQuery(query=query, original=task_text)
