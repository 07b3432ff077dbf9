"""
Context formatting

Renders retrieved passages as a block to append to a task prompt.
"""

from typing import List

from ..common.schemas import RetrievalResult

CONTEXT_HEADER = "Additional Information:"


def format_knowledge_context(
    result: RetrievalResult,
    max_length: int = 4000,
    include_sources: bool = True,
) -> str:
    """
    Format retrieved passages for prompt injection.

    Passages keep their ranked order. Once adding a passage would exceed
    ``max_length``, formatting stops; the top passage alone is truncated
    rather than dropped.

    Returns:
        The formatted block, or "" when there is nothing to add
    """
    if result is None or result.is_empty:
        return ""

    lines: List[str] = [CONTEXT_HEADER]
    length = len(CONTEXT_HEADER)

    for num, item in enumerate(result.items, 1):
        heading = f"[{num}]"
        if include_sources and item.source:
            heading += f" (source: {item.source}, relevance: {item.score:.2f})"
        block = f"{heading}\n{item.text.strip()}"

        remaining = max_length - length - 2  # blank-line separator
        if len(block) > remaining:
            if num == 1 and remaining > len(heading) + 4:
                lines.append(block[: remaining - 3].rstrip() + "...")
            break
        lines.append(block)
        length += len(block) + 2

    if len(lines) == 1:
        return ""
    return "\n\n".join(lines)
