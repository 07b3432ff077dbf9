"""
Knowledge Retriever - Scoped retrieval for tasks

Key Components:
- QueryRewriter: Turns task text into a focused search query
- KnowledgeScopeResolver: Queries agent and crew collections and merges them
- format_knowledge_context: Renders passages for the task prompt

Pipeline:
1. Rewrite the task text (falls back to the raw text)
2. Embed the query
3. Query the agent collection, then the crew collection
4. Merge and rank by score
"""

from .context import format_knowledge_context
from .query_rewriter import QueryRewriter, RewrittenQuery
from .scope_resolver import AgentScope, CrewScope, KnowledgeScopeResolver, sanitize_collection_name

__all__ = [
    "format_knowledge_context",
    "QueryRewriter",
    "RewrittenQuery",
    "AgentScope",
    "CrewScope",
    "KnowledgeScopeResolver",
    "sanitize_collection_name",
]
