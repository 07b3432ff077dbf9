"""
Configuration Management for Crew Knowledge

Loads configuration from ~/.crew_knowledge/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("knowledge.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".crew_knowledge"
CONFIG_PATH = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = CONFIG_DIR / "knowledge.db"

DEFAULT_COLLECTION_NAME = "knowledge"
DEFAULT_KNOWLEDGE_DIR = "knowledge"


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration"""
    provider: str = "femb"  # fastembed (on-device)
    model: str = "BAAI/bge-small-en-v1.5"
    api_key: str = ""
    endpoint: str = ""  # only used by HTTP providers (ollama)
    batch_size: int = 64
    timeout: float = 30.0
    max_concurrent_requests: int = 4


@dataclass
class LLMConfig:
    """LLM provider used for query rewriting"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-haiku-4-5-20251001"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"


@dataclass
class ChunkingConfig:
    """Default chunking parameters for knowledge sources"""
    chunk_size: int = 4000
    chunk_overlap: int = 200


@dataclass
class RetrievalConfig:
    """Default retrieval parameters"""
    results_limit: int = 3
    score_threshold: float = 0.35
    rewrite_queries: bool = True
    rewrite_timeout: float = 15.0


@dataclass
class StorageConfig:
    """Knowledge store configuration"""
    db_path: str = str(DEFAULT_DB_PATH)
    collection_name: str = DEFAULT_COLLECTION_NAME
    knowledge_dir: str = DEFAULT_KNOWLEDGE_DIR


@dataclass
class IngestionConfig:
    """Ingestion concurrency configuration"""
    max_workers: int = 4
    all_or_nothing: bool = False


@dataclass
class KnowledgeSettings:
    """Main configuration"""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    defaults = EmbeddingConfig()
    return EmbeddingConfig(
        provider=embedding_data.get("provider", defaults.provider),
        model=embedding_data.get("model", defaults.model),
        api_key=embedding_data.get("api_key", ""),
        endpoint=embedding_data.get("endpoint", ""),
        batch_size=int(embedding_data.get("batch_size", defaults.batch_size)),
        timeout=float(embedding_data.get("timeout", defaults.timeout)),
        max_concurrent_requests=int(
            embedding_data.get("max_concurrent_requests", defaults.max_concurrent_requests)
        ),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", defaults.anthropic_model),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", defaults.openai_model),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", defaults.google_model),
    )


def _parse_chunking_config(data: dict) -> ChunkingConfig:
    """Parse chunking section from config dict"""
    chunking_data = data.get("chunking", {})
    return ChunkingConfig(
        chunk_size=int(chunking_data.get("chunk_size", 4000)),
        chunk_overlap=int(chunking_data.get("chunk_overlap", 200)),
    )


def _parse_retrieval_config(data: dict) -> RetrievalConfig:
    """Parse retrieval section from config dict"""
    retrieval_data = data.get("retrieval", {})
    return RetrievalConfig(
        results_limit=int(retrieval_data.get("results_limit", 3)),
        score_threshold=float(retrieval_data.get("score_threshold", 0.35)),
        rewrite_queries=bool(retrieval_data.get("rewrite_queries", True)),
        rewrite_timeout=float(retrieval_data.get("rewrite_timeout", 15.0)),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    storage_data = data.get("storage", {})
    return StorageConfig(
        db_path=storage_data.get("db_path", str(DEFAULT_DB_PATH)),
        collection_name=storage_data.get("collection_name", DEFAULT_COLLECTION_NAME),
        knowledge_dir=storage_data.get("knowledge_dir", DEFAULT_KNOWLEDGE_DIR),
    )


def _parse_ingestion_config(data: dict) -> IngestionConfig:
    """Parse ingestion section from config dict"""
    ingestion_data = data.get("ingestion", {})
    return IngestionConfig(
        max_workers=int(ingestion_data.get("max_workers", 4)),
        all_or_nothing=bool(ingestion_data.get("all_or_nothing", False)),
    )


def load_config() -> KnowledgeSettings:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.crew_knowledge/config.json)
    3. Default values
    """
    config = KnowledgeSettings()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.embedding = _parse_embedding_config(data)
            config.llm = _parse_llm_config(data)
            config.chunking = _parse_chunking_config(data)
            config.retrieval = _parse_retrieval_config(data)
            config.storage = _parse_storage_config(data)
            config.ingestion = _parse_ingestion_config(data)
        except (json.JSONDecodeError, IOError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)
            config = KnowledgeSettings()

    # Environment variable overrides
    if os.getenv("KNOWLEDGE_EMBEDDING_PROVIDER"):
        config.embedding.provider = os.getenv("KNOWLEDGE_EMBEDDING_PROVIDER")
    if os.getenv("KNOWLEDGE_EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("KNOWLEDGE_EMBEDDING_MODEL")
    if os.getenv("KNOWLEDGE_EMBEDDING_ENDPOINT"):
        config.embedding.endpoint = os.getenv("KNOWLEDGE_EMBEDDING_ENDPOINT")
    if os.getenv("KNOWLEDGE_EMBEDDING_API_KEY"):
        config.embedding.api_key = os.getenv("KNOWLEDGE_EMBEDDING_API_KEY")
        config._env_sourced_keys.add("embedding.api_key")

    if os.getenv("KNOWLEDGE_DB_PATH"):
        config.storage.db_path = os.getenv("KNOWLEDGE_DB_PATH")
    if os.getenv("KNOWLEDGE_COLLECTION"):
        config.storage.collection_name = os.getenv("KNOWLEDGE_COLLECTION")
    if os.getenv("KNOWLEDGE_DIR"):
        config.storage.knowledge_dir = os.getenv("KNOWLEDGE_DIR")

    if os.getenv("KNOWLEDGE_RESULTS_LIMIT"):
        config.retrieval.results_limit = int(os.getenv("KNOWLEDGE_RESULTS_LIMIT"))
    if os.getenv("KNOWLEDGE_SCORE_THRESHOLD"):
        config.retrieval.score_threshold = float(os.getenv("KNOWLEDGE_SCORE_THRESHOLD"))

    # LLM env var overrides (target config.llm, track env-sourced keys)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "KNOWLEDGE_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    # Hosted embedding providers share the LLM credentials when none is set
    if not config.embedding.api_key:
        if config.embedding.provider == "openai":
            config.embedding.api_key = config.llm.openai_api_key
        elif config.embedding.provider == "google":
            config.embedding.api_key = config.llm.google_api_key

    return config


def save_config(config: KnowledgeSettings) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    embedding_api_key = config.embedding.api_key
    if "embedding.api_key" in env_sourced:
        embedding_api_key = ""
    elif config.embedding.provider == "openai" and "openai_api_key" in env_sourced:
        embedding_api_key = ""
    elif config.embedding.provider == "google" and "google_api_key" in env_sourced:
        embedding_api_key = ""

    data = {
        "embedding": {
            "provider": config.embedding.provider,
            "model": config.embedding.model,
            "api_key": embedding_api_key,
            "endpoint": config.embedding.endpoint,
            "batch_size": config.embedding.batch_size,
            "timeout": config.embedding.timeout,
            "max_concurrent_requests": config.embedding.max_concurrent_requests,
        },
        "llm": llm_section,
        "chunking": {
            "chunk_size": config.chunking.chunk_size,
            "chunk_overlap": config.chunking.chunk_overlap,
        },
        "retrieval": {
            "results_limit": config.retrieval.results_limit,
            "score_threshold": config.retrieval.score_threshold,
            "rewrite_queries": config.retrieval.rewrite_queries,
            "rewrite_timeout": config.retrieval.rewrite_timeout,
        },
        "storage": {
            "db_path": config.storage.db_path,
            "collection_name": config.storage.collection_name,
            "knowledge_dir": config.storage.knowledge_dir,
        },
        "ingestion": {
            "max_workers": config.ingestion.max_workers,
            "all_or_nothing": config.ingestion.all_or_nothing,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
