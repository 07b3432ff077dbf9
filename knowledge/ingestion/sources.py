"""
Knowledge Sources

Turns inline strings, local files and remote documents into normalized
text documents ready for chunking. Format parsing is delegated to pypdf,
openpyxl, BeautifulSoup and the stdlib csv/json modules; their failures
surface as SourceError, never as empty text.
"""

import csv
import hashlib
import io
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx
from bs4 import BeautifulSoup

from ..common.config import DEFAULT_KNOWLEDGE_DIR, KnowledgeSettings
from ..common.errors import ConfigurationError, SourceError
from ..common.schemas import Chunk, SourceDocument
from .chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, iter_chunks, normalize_text, validate_chunking

logger = logging.getLogger("knowledge.ingestion.sources")

PathLike = Union[str, Path]
FileReader = Callable[[Path], Tuple[str, Dict[str, Any]]]


# ============================================================================
# File format readers
# ============================================================================

FILE_READERS: Dict[str, FileReader] = {}


def register_file_reader(*suffixes: str) -> Callable[[FileReader], FileReader]:
    """Register a reader for one or more file suffixes (".pdf")."""

    def decorator(fn: FileReader) -> FileReader:
        for suffix in suffixes:
            FILE_READERS[suffix.lower()] = fn
        return fn

    return decorator


def _pdf_text(stream: Union[str, io.BytesIO]) -> Tuple[str, Dict[str, Any]]:
    from pypdf import PdfReader

    reader = PdfReader(stream)
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(p.strip() for p in pages if p.strip()), {"page_count": len(pages)}


@register_file_reader(".txt", ".md", ".rst", ".text", ".log")
def read_text_file(path: Path) -> Tuple[str, Dict[str, Any]]:
    return path.read_text(encoding="utf-8"), {}


@register_file_reader(".pdf")
def read_pdf_file(path: Path) -> Tuple[str, Dict[str, Any]]:
    return _pdf_text(str(path))


@register_file_reader(".csv")
def read_csv_file(path: Path) -> Tuple[str, Dict[str, Any]]:
    """One line per row, cells joined with ", "."""
    with open(path, newline="", encoding="utf-8") as f:
        rows = [row for row in csv.reader(f) if any(cell.strip() for cell in row)]
    lines = [", ".join(cell.strip() for cell in row) for row in rows]
    return "\n".join(lines), {"row_count": len(rows)}


@register_file_reader(".xlsx", ".xlsm")
def read_excel_file(path: Path) -> Tuple[str, Dict[str, Any]]:
    """Each sheet under a heading, one line per non-empty row."""
    from openpyxl import load_workbook

    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        sections = []
        sheet_names = list(workbook.sheetnames)
        for sheet in workbook.worksheets:
            lines = []
            for row in sheet.iter_rows(values_only=True):
                cells = [str(value) for value in row if value is not None]
                if cells:
                    lines.append(" | ".join(cells))
            if lines:
                sections.append(f"## {sheet.title}\n" + "\n".join(lines))
    finally:
        workbook.close()
    return "\n\n".join(sections), {"sheet_names": sheet_names}


def _json_to_text(value: Any, prefix: str = "") -> List[str]:
    if isinstance(value, dict):
        lines = []
        for key, item in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            lines.extend(_json_to_text(item, path))
        return lines
    if isinstance(value, list):
        lines = []
        for i, item in enumerate(value):
            lines.extend(_json_to_text(item, f"{prefix}[{i}]"))
        return lines
    return [f"{prefix}: {value}" if prefix else str(value)]


@register_file_reader(".json")
def read_json_file(path: Path) -> Tuple[str, Dict[str, Any]]:
    """Flatten JSON into "path.to.key: value" lines."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return "\n".join(_json_to_text(data)), {}


# ============================================================================
# Sources
# ============================================================================

def _digest(parts: Iterable[str]) -> str:
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()[:12]


def _reject_duplicates(values: Sequence[str], label: str) -> None:
    seen = set()
    duplicates = []
    for value in values:
        if value in seen and value not in duplicates:
            duplicates.append(value)
        seen.add(value)
    if duplicates:
        raise ConfigurationError(f"Duplicate {label}: {', '.join(duplicates)}")


class KnowledgeSource:
    """
    Base class for knowledge sources.

    A source is loaded once during ingestion. Chunking parameters are
    validated at construction.
    """

    kind = "source"

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        metadata: Optional[Dict[str, Any]] = None,
        source_id: Optional[str] = None,
    ):
        validate_chunking(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.metadata = dict(metadata or {})
        self._source_id = source_id

    @classmethod
    def _settings_defaults(cls, settings: KnowledgeSettings) -> Dict[str, Any]:
        return {
            "chunk_size": settings.chunking.chunk_size,
            "chunk_overlap": settings.chunking.chunk_overlap,
        }

    @classmethod
    def from_settings(cls, settings: KnowledgeSettings, *args: Any, **kwargs: Any) -> "KnowledgeSource":
        """
        Build a source whose chunking (and, for files, knowledge directory)
        defaults come from settings. Explicit keyword arguments win.
        """
        for key, value in cls._settings_defaults(settings).items():
            kwargs.setdefault(key, value)
        return cls(*args, **kwargs)

    @property
    def source_id(self) -> str:
        if self._source_id is None:
            self._source_id = f"{self.kind}:{_digest(self._identity())}"
        return self._source_id

    def _identity(self) -> List[str]:
        raise NotImplementedError

    def load(self) -> Dict[str, SourceDocument]:
        """
        Load the raw content of the source.

        Returns:
            Mapping of document identifier to SourceDocument

        Raises:
            SourceError: If the content cannot be loaded
        """
        raise NotImplementedError

    def chunk(self, documents: Optional[Dict[str, SourceDocument]] = None) -> List[Chunk]:
        """
        Chunk every document of the source.

        Sequence indexes run across documents in load order.
        """
        if documents is None:
            documents = self.load()

        chunks: List[Chunk] = []
        for doc_id, document in documents.items():
            metadata = {**self.metadata, **document.metadata, "source": doc_id}
            chunks.extend(
                iter_chunks(
                    normalize_text(document.text),
                    chunk_size=self.chunk_size,
                    chunk_overlap=self.chunk_overlap,
                    source_id=self.source_id,
                    document_id=doc_id,
                    metadata=metadata,
                    start_index=len(chunks),
                )
            )
        return chunks

    def __repr__(self) -> str:
        return f"{type(self).__name__}(source_id={self.source_id!r})"


class StringKnowledgeSource(KnowledgeSource):
    """Inline text"""

    kind = "string"

    def __init__(self, content: str, **kwargs: Any):
        if not isinstance(content, str):
            raise ConfigurationError(f"content must be a string, got {type(content).__name__}")
        super().__init__(**kwargs)
        self.content = content

    def _identity(self) -> List[str]:
        return [self.content]

    def load(self) -> Dict[str, SourceDocument]:
        return {
            self.source_id: SourceDocument(
                identifier=self.source_id,
                text=self.content,
                metadata={"type": "string"},
            )
        }


class _MultiDocumentSource(KnowledgeSource):
    """Loads several documents, optionally tolerating individual failures."""

    def __init__(self, tolerate_partial: bool = False, **kwargs: Any):
        super().__init__(**kwargs)
        self.tolerate_partial = tolerate_partial

    def _targets(self) -> Sequence[Any]:
        raise NotImplementedError

    def _load_one(self, target: Any) -> SourceDocument:
        raise NotImplementedError

    def load(self) -> Dict[str, SourceDocument]:
        documents: Dict[str, SourceDocument] = {}
        failures: List[SourceError] = []

        for target in self._targets():
            try:
                document = self._load_one(target)
            except SourceError as e:
                if not self.tolerate_partial:
                    raise
                logger.warning("Skipping %s: %s", target, e)
                failures.append(e)
                continue
            documents[document.identifier] = document

        if failures and not documents:
            raise SourceError(
                f"All {len(failures)} documents of {self.source_id} failed to load",
                source_id=self.source_id,
            ) from failures[-1]
        return documents


class FileKnowledgeSource(_MultiDocumentSource):
    """
    Local files. Relative paths resolve under the knowledge directory.

    The reader is chosen by file suffix from FILE_READERS; subclasses narrow
    the accepted suffixes.
    """

    kind = "file"
    allowed_suffixes: Optional[Tuple[str, ...]] = None

    def __init__(
        self,
        file_paths: Union[PathLike, Sequence[PathLike]],
        knowledge_dir: PathLike = DEFAULT_KNOWLEDGE_DIR,
        **kwargs: Any,
    ):
        if isinstance(file_paths, (str, Path)):
            file_paths = [file_paths]
        if not file_paths:
            raise ConfigurationError("file_paths must name at least one file")

        self.knowledge_dir = Path(knowledge_dir).expanduser()
        self.file_paths = [self._resolve(p) for p in file_paths]
        _reject_duplicates([str(p) for p in self.file_paths], "file path")

        if self.allowed_suffixes is not None:
            for path in self.file_paths:
                if path.suffix.lower() not in self.allowed_suffixes:
                    raise ConfigurationError(
                        f"{type(self).__name__} does not accept {path.name} "
                        f"(expected {', '.join(self.allowed_suffixes)})"
                    )

        super().__init__(**kwargs)

    @classmethod
    def _settings_defaults(cls, settings: KnowledgeSettings) -> Dict[str, Any]:
        return {**super()._settings_defaults(settings), "knowledge_dir": settings.storage.knowledge_dir}

    def _resolve(self, path: PathLike) -> Path:
        path = Path(path).expanduser()
        if not path.is_absolute():
            path = self.knowledge_dir / path
        return path

    def _identity(self) -> List[str]:
        return [str(p) for p in self.file_paths]

    def _targets(self) -> Sequence[Path]:
        return self.file_paths

    def _load_one(self, path: Path) -> SourceDocument:
        suffix = path.suffix.lower()
        reader = FILE_READERS.get(suffix)
        if reader is None:
            raise SourceError(f"Unsupported file type: {path.name}", source_id=self.source_id)
        if not path.is_file():
            raise SourceError(f"File not found: {path}", source_id=self.source_id)

        try:
            text, metadata = reader(path)
        except Exception as e:
            raise SourceError(f"Failed to read {path}: {e}", source_id=self.source_id) from e

        return SourceDocument(
            identifier=str(path),
            text=text,
            metadata={
                "file_name": path.name,
                "file_path": str(path),
                "file_type": suffix.lstrip("."),
                **metadata,
            },
        )


class TextFileKnowledgeSource(FileKnowledgeSource):
    allowed_suffixes = (".txt", ".md", ".rst", ".text", ".log")


class PDFKnowledgeSource(FileKnowledgeSource):
    allowed_suffixes = (".pdf",)


class CSVKnowledgeSource(FileKnowledgeSource):
    allowed_suffixes = (".csv",)


class ExcelKnowledgeSource(FileKnowledgeSource):
    allowed_suffixes = (".xlsx", ".xlsm")


class JSONKnowledgeSource(FileKnowledgeSource):
    allowed_suffixes = (".json",)


class RemoteKnowledgeSource(_MultiDocumentSource):
    """Documents fetched over HTTP(S). HTML is reduced to its visible text."""

    kind = "remote"

    def __init__(
        self,
        urls: Union[str, Sequence[str]],
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        **kwargs: Any,
    ):
        if isinstance(urls, str):
            urls = [urls]
        if not urls:
            raise ConfigurationError("urls must name at least one document")
        for url in urls:
            if not url.startswith(("http://", "https://")):
                raise ConfigurationError(f"Unsupported URL scheme: {url}")

        _reject_duplicates(urls, "URL")
        self.urls = list(urls)
        self.timeout = timeout
        self._client = client
        super().__init__(**kwargs)

    def _identity(self) -> List[str]:
        return self.urls

    def _targets(self) -> Sequence[str]:
        return self.urls

    def load(self) -> Dict[str, SourceDocument]:
        if self._client is not None:
            return super().load()
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            self._client = client
            try:
                return super().load()
            finally:
                self._client = None

    def _load_one(self, url: str) -> SourceDocument:
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceError(
                f"Fetching {url} failed with HTTP {e.response.status_code}",
                source_id=self.source_id,
            ) from e
        except httpx.HTTPError as e:
            raise SourceError(f"Fetching {url} failed: {e}", source_id=self.source_id) from e

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        metadata: Dict[str, Any] = {"url": url, "content_type": content_type}

        try:
            if "html" in content_type:
                soup = BeautifulSoup(response.text, "html.parser")
                for tag in soup(["script", "style", "noscript"]):
                    tag.decompose()
                if soup.title and soup.title.string:
                    metadata["title"] = soup.title.string.strip()
                text = soup.get_text("\n", strip=True)
            elif content_type == "application/pdf" or url.lower().endswith(".pdf"):
                text, pdf_meta = _pdf_text(io.BytesIO(response.content))
                metadata.update(pdf_meta)
            elif content_type.startswith("text/") or content_type in ("application/json", "application/xml"):
                text = response.text
            else:
                raise SourceError(
                    f"Unsupported content type {content_type or 'unknown'} for {url}",
                    source_id=self.source_id,
                )
        except SourceError:
            raise
        except Exception as e:
            raise SourceError(f"Failed to parse {url}: {e}", source_id=self.source_id) from e

        return SourceDocument(identifier=url, text=text, metadata=metadata)
