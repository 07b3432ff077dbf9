"""
Embedding Service

Pluggable embedding providers behind one service interface.
fastembed (on-device) is the default; OpenAI, Google and Ollama are
available through the provider table. Vectors are L2 normalized so cosine
similarity is a dot product.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, Type

import httpx
import numpy as np

from .config import EmbeddingConfig
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger("knowledge.common.embedding_service")


def _l2_normalize(matrix: np.ndarray) -> np.ndarray:
    """L2 normalize each row, leaving zero rows untouched."""
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class EmbeddingProvider:
    """
    Base class for embedding providers.

    Subclasses implement ``embed_documents``; ``embed_query`` defaults to
    embedding the query as a single document.
    """

    name: str = ""
    default_model: str = ""

    def __init__(
        self,
        model: str = "",
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.model = model or self.default_model
        self.api_key = api_key or None
        self.endpoint = endpoint or None
        self.timeout = timeout

    @property
    def identifier(self) -> str:
        return f"{self.name}:{self.model}"

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        raise NotImplementedError

    def embed_query(self, text: str) -> List[float]:
        return self.embed_documents([text])[0]


# Registered provider table
EMBEDDING_PROVIDERS: Dict[str, Type[EmbeddingProvider]] = {}


def register_embedding_provider(name: str) -> Callable[[Type[EmbeddingProvider]], Type[EmbeddingProvider]]:
    """Class decorator adding a provider to the provider table."""

    def decorator(cls: Type[EmbeddingProvider]) -> Type[EmbeddingProvider]:
        cls.name = name
        EMBEDDING_PROVIDERS[name] = cls
        return cls

    return decorator


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """
    Instantiate the provider named in ``config``.

    Raises:
        ConfigurationError: If the provider name is not registered
    """
    name = (config.provider or "").strip().lower()
    provider_cls = EMBEDDING_PROVIDERS.get(name)
    if provider_cls is None:
        known = ", ".join(sorted(EMBEDDING_PROVIDERS))
        raise ConfigurationError(f"Unknown embedding provider: {config.provider!r} (known: {known})")

    return provider_cls(
        model=config.model,
        api_key=config.api_key,
        endpoint=config.endpoint,
        timeout=config.timeout,
    )


@register_embedding_provider("femb")
class FastEmbedProvider(EmbeddingProvider):
    """On-device embeddings via fastembed (no external API calls)."""

    default_model = "BAAI/bge-small-en-v1.5"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._model = None
        self._lock = threading.Lock()

    def _ensure_model(self):
        """Lazily load the model (first call downloads it)"""
        with self._lock:
            if self._model is None:
                try:
                    from fastembed import TextEmbedding
                except ImportError as e:
                    raise ConfigurationError("fastembed package not installed") from e
                self._model = TextEmbedding(model_name=self.model)
        return self._model

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        model = self._ensure_model()
        return [vec.tolist() for vec in model.embed(list(texts))]

    def embed_query(self, text: str) -> List[float]:
        model = self._ensure_model()
        return next(iter(model.query_embed(text))).tolist()


@register_embedding_provider("openai")
class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI text-embedding models."""

    default_model = "text-embedding-3-small"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        try:
            from openai import OpenAI
        except ImportError as e:
            raise ConfigurationError("openai package not installed") from e

        if not self.api_key:
            raise ConfigurationError("openai embedding provider requires an API key")

        client_kwargs = {"api_key": self.api_key, "timeout": self.timeout}
        if self.endpoint:
            client_kwargs["base_url"] = self.endpoint
        self._client = OpenAI(**client_kwargs)

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        response = self._client.embeddings.create(model=self.model, input=list(texts))
        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]


@register_embedding_provider("google")
class GoogleEmbeddingProvider(EmbeddingProvider):
    """Google text-embedding models via google-generativeai."""

    default_model = "text-embedding-004"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        try:
            import google.generativeai as genai
        except ImportError as e:
            raise ConfigurationError("google-generativeai package not installed") from e

        if not self.api_key:
            raise ConfigurationError("google embedding provider requires an API key")

        genai.configure(api_key=self.api_key)
        self._genai = genai

    def _embed(self, content, task_type: str):
        result = self._genai.embed_content(
            model=f"models/{self.model}",
            content=content,
            task_type=task_type,
            request_options={"timeout": self.timeout},
        )
        return result["embedding"]

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        return self._embed(list(texts), "retrieval_document")

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text, "retrieval_query")


@register_embedding_provider("ollama")
class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings from a local Ollama server."""

    default_model = "nomic-embed-text"
    default_endpoint = "http://localhost:11434"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.endpoint = (self.endpoint or self.default_endpoint).rstrip("/")
        self._client = httpx.Client(timeout=self.timeout)

    def __del__(self) -> None:
        """Clean up the HTTP client."""
        if hasattr(self, "_client"):
            self._client.close()

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        url = f"{self.endpoint}/api/embed"
        try:
            response = self._client.post(url, json={"model": self.model, "input": list(texts)})
            response.raise_for_status()
        except httpx.ConnectError as e:
            raise ProviderError(
                f"Cannot connect to Ollama at {self.endpoint}. "
                f"Ensure Ollama is running and the model '{self.model}' is available.",
                provider=self.name,
            ) from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Ollama API error: {e.response.status_code} - {e.response.text}",
                provider=self.name,
            ) from e

        # Ollama returns {"embeddings": [[...vector...], ...]}
        return response.json().get("embeddings", [])


class EmbeddingService:
    """
    Embedding service for the knowledge pipeline.

    Wraps one provider with batching, order preservation, dimension checks,
    a bound on concurrent provider calls, and error translation.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = 64,
        max_concurrent_requests: int = 4,
    ):
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        if max_concurrent_requests < 1:
            raise ConfigurationError(
                f"max_concurrent_requests must be positive, got {max_concurrent_requests}"
            )
        self._provider = provider
        self._batch_size = batch_size
        self._semaphore = threading.BoundedSemaphore(max_concurrent_requests)
        self._dimension: Optional[int] = None

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "EmbeddingService":
        return cls(
            create_embedding_provider(config),
            batch_size=config.batch_size,
            max_concurrent_requests=config.max_concurrent_requests,
        )

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def identifier(self) -> str:
        """Provider/model identifier stored alongside collections"""
        return self._provider.identifier

    @property
    def dimension(self) -> Optional[int]:
        """Vector dimension, known after the first successful call"""
        return self._dimension

    def _call(self, fn, *args):
        """Run a provider call under the rate limit, translating failures."""
        with self._semaphore:
            try:
                return fn(*args)
            except (ConfigurationError, ProviderError):
                raise
            except Exception as e:
                raise ProviderError(
                    f"Embedding provider {self.identifier} failed: {e}",
                    provider=self._provider.name,
                ) from e

    def _check_matrix(self, raw, expected_rows: int) -> np.ndarray:
        try:
            matrix = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ProviderError(
                f"Embedding provider {self.identifier} returned ragged vectors",
                provider=self._provider.name,
            ) from e

        if matrix.ndim != 2 or matrix.shape[0] != expected_rows or matrix.shape[1] == 0:
            raise ProviderError(
                f"Embedding provider {self.identifier} returned shape {matrix.shape}, "
                f"expected ({expected_rows}, dim)",
                provider=self._provider.name,
            )

        dim = int(matrix.shape[1])
        if self._dimension is None:
            self._dimension = dim
        elif dim != self._dimension:
            raise ConfigurationError(
                f"Embedding provider {self.identifier} changed dimension: "
                f"{self._dimension} -> {dim}"
            )
        return _l2_normalize(matrix)

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            float32 array of shape (len(texts), dim), rows in input order,
            L2 normalized
        """
        if not texts:
            return np.zeros((0, self._dimension or 0), dtype=np.float32)

        batches = []
        for i in range(0, len(texts), self._batch_size):
            batch = list(texts[i : i + self._batch_size])
            raw = self._call(self._provider.embed_documents, batch)
            batches.append(self._check_matrix(raw, len(batch)))

        return np.vstack(batches)

    def embed_single(self, text: str) -> np.ndarray:
        """
        Generate a query embedding for a single text.

        Args:
            text: String to embed

        Returns:
            Embedding vector (L2 normalized)
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        raw = self._call(self._provider.embed_query, text)
        return self._check_matrix([raw], 1)[0]


# Module-level service cache
_service_instances: Dict[tuple, EmbeddingService] = {}
_service_lock = threading.Lock()


def get_embedding_service(config: EmbeddingConfig) -> EmbeddingService:
    """
    Get a shared EmbeddingService for the given configuration.

    Services are cached per (provider, model, endpoint) so a model is only
    loaded once per process.
    """
    key = (config.provider, config.model, config.endpoint)
    with _service_lock:
        service = _service_instances.get(key)
        if service is None:
            service = EmbeddingService.from_config(config)
            _service_instances[key] = service
            logger.info("Initialized embedding service %s", service.identifier)
        return service


def reset_embedding_services() -> None:
    """Drop cached services (for testing)."""
    with _service_lock:
        _service_instances.clear()
