"""
Knowledge Ingestion

Key Components:
- Sources: string, file and remote loaders with a per-suffix reader table
- Chunker: deterministic overlapping character windows
- KnowledgeIngestor: load → chunk → embed → store, concurrently per source
"""

from .chunker import chunk_text, iter_chunks, normalize_text, reconstruct_text
from .ingestor import IngestionResult, KnowledgeIngestor
from .sources import (
    CSVKnowledgeSource,
    ExcelKnowledgeSource,
    FileKnowledgeSource,
    JSONKnowledgeSource,
    KnowledgeSource,
    PDFKnowledgeSource,
    RemoteKnowledgeSource,
    StringKnowledgeSource,
    TextFileKnowledgeSource,
    register_file_reader,
)

__all__ = [
    "chunk_text",
    "iter_chunks",
    "normalize_text",
    "reconstruct_text",
    "IngestionResult",
    "KnowledgeIngestor",
    "CSVKnowledgeSource",
    "ExcelKnowledgeSource",
    "FileKnowledgeSource",
    "JSONKnowledgeSource",
    "KnowledgeSource",
    "PDFKnowledgeSource",
    "RemoteKnowledgeSource",
    "StringKnowledgeSource",
    "TextFileKnowledgeSource",
    "register_file_reader",
]
