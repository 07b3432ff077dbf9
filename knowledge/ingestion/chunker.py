"""
Chunker

Splits normalized text into fixed-size, overlapping character windows.

Window i starts at i * (chunk_size - chunk_overlap) and the last window is
the first one that reaches the end of the text, so the final chunk may be
shorter than chunk_size. The same input and parameters always produce the
same boundaries.
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..common.errors import ConfigurationError
from ..common.schemas import Chunk

DEFAULT_CHUNK_SIZE = 4000
DEFAULT_CHUNK_OVERLAP = 200


def validate_chunking(chunk_size: int, chunk_overlap: int) -> None:
    """Raise ConfigurationError unless 0 <= chunk_overlap < chunk_size."""
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int):
        raise ConfigurationError(f"chunk_size must be an integer, got {chunk_size!r}")
    if isinstance(chunk_overlap, bool) or not isinstance(chunk_overlap, int):
        raise ConfigurationError(f"chunk_overlap must be an integer, got {chunk_overlap!r}")
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ConfigurationError(f"chunk_overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ConfigurationError(
            f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def normalize_text(text: str) -> str:
    """Unify line endings to LF and drop NUL characters."""
    return text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")


def iter_chunks(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    source_id: str = "",
    document_id: str = "",
    metadata: Optional[Dict[str, Any]] = None,
    start_index: int = 0,
) -> Iterator[Chunk]:
    """
    Yield the chunks of ``text`` in order.

    Parameters are validated before the generator is created, so a bad
    configuration fails at the call site rather than on first iteration.

    Args:
        text: Already-normalized text
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared by consecutive chunks
        source_id: Identifier of the originating source
        document_id: Identifier of the document within the source
        metadata: Copied into every chunk
        start_index: Sequence index of the first chunk

    Raises:
        ConfigurationError: If the chunking parameters are invalid
    """
    validate_chunking(chunk_size, chunk_overlap)
    return _windows(text, chunk_size, chunk_overlap, source_id, document_id, metadata or {}, start_index)


def _windows(
    text: str,
    chunk_size: int,
    chunk_overlap: int,
    source_id: str,
    document_id: str,
    metadata: Dict[str, Any],
    start_index: int,
) -> Iterator[Chunk]:
    length = len(text)
    step = chunk_size - chunk_overlap
    start = 0
    index = start_index
    while start < length:
        end = min(start + chunk_size, length)
        yield Chunk(
            text=text[start:end],
            index=index,
            start=start,
            end=end,
            source_id=source_id,
            document_id=document_id,
            metadata=dict(metadata),
        )
        if end == length:
            break
        start += step
        index += 1


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    source_id: str = "",
    document_id: str = "",
    metadata: Optional[Dict[str, Any]] = None,
    start_index: int = 0,
) -> List[Chunk]:
    """List form of :func:`iter_chunks`."""
    return list(
        iter_chunks(
            text,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            source_id=source_id,
            document_id=document_id,
            metadata=metadata,
            start_index=start_index,
        )
    )


def expected_chunk_count(length: int, chunk_size: int, chunk_overlap: int) -> int:
    """Number of chunks :func:`chunk_text` produces for a text of ``length``."""
    validate_chunking(chunk_size, chunk_overlap)
    if length <= 0:
        return 0
    if length <= chunk_size:
        return 1
    step = chunk_size - chunk_overlap
    # ceil((length - chunk_size) / step) windows after the first
    return 1 + -(-(length - chunk_size) // step)


def reconstruct_text(chunks: Sequence[Chunk]) -> str:
    """
    Rebuild the text of one document from its chunks.

    Each chunk contributes the part of its span that lies past the end of
    the previous chunk.
    """
    parts = []
    covered = 0
    for chunk in chunks:
        skip = max(0, covered - chunk.start)
        parts.append(chunk.text[skip:])
        covered = max(covered, chunk.end)
    return "".join(parts)
