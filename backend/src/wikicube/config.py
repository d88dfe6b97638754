# backend/src/wikicube/config.py
"""Configuration system for the wikicube backend.

Settings are loaded from environment variables (secrets, provider selection,
data directory) and an optional INI file inside the data directory (tuning
knobs). Every tunable value is declared once in CONFIG_SCHEMA together with
its default and allowed range.
"""

import os
from configparser import ConfigParser
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from wikicube.constants import (
    CALL_TIMEOUT_SECONDS,
    CHAT_MATCH_COUNT,
    CHAT_TEMPERATURE,
    CHUNK_TOKEN_BUDGET,
    DEFAULT_TEMPERATURE,
    EMBEDDING_BACKOFF_MAX_SECONDS,
    EMBEDDING_BACKOFF_MIN_SECONDS,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_CONCURRENCY,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MAX_ATTEMPTS,
    EMBEDDING_MODEL,
    FALLBACK_BODY_CHARS,
    FETCH_CONCURRENCY,
    FUZZY_TITLE_LIMIT,
    FUZZY_TITLE_THRESHOLD,
    JSON_TEMPERATURE,
    MAX_CONTEXT_TOKENS,
    MAX_FILES_PER_TOPIC,
    MAX_TOKENS,
    MAX_TOPICS,
    MIN_SLICE_TOKENS,
    OVERVIEW_CONTEXT_CHARS,
    RUN_TIMEOUT_MINUTES,
    SEARCH_MATCH_COUNT,
    SIMILARITY_THRESHOLD,
    SNIPPET_MAX_LENGTH,
    TOKENIZER_ENCODING,
    TOPIC_CONCURRENCY,
)


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# =============================================================================
# CONFIG_SCHEMA
# =============================================================================

# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "pipeline": {
        "max_topics": (int, MAX_TOPICS, 1, 100, "Topics kept after identification"),
        "max_files_per_topic": (int, MAX_FILES_PER_TOPIC, 1, 500, "Files fetched per topic"),
        "topic_concurrency": (int, TOPIC_CONCURRENCY, 1, 50, "Topics processed concurrently"),
        "fetch_concurrency": (int, FETCH_CONCURRENCY, 1, 100, "Concurrent raw file fetches"),
        "run_timeout_minutes": (int, RUN_TIMEOUT_MINUTES, 1, 240, "Wall-clock ceiling per run"),
        "call_timeout_seconds": (
            float,
            CALL_TIMEOUT_SECONDS,
            1.0,
            1800.0,
            "Ceiling for a single external call",
        ),
    },
    "chunking": {
        "chunk_tokens": (int, CHUNK_TOKEN_BUDGET, 128, 8192, "Token budget per passage"),
        "min_slice_tokens": (int, MIN_SLICE_TOKENS, 1, 1024, "Smallest body slice emitted"),
        "encoding": (str, TOKENIZER_ENCODING, None, None, "tiktoken encoding name"),
    },
    "embedding": {
        "model": (str, EMBEDDING_MODEL, None, None, "Embedding model name"),
        "dimensions": (int, EMBEDDING_DIMENSIONS, 1, 8192, "Embedding vector size"),
        "batch_size": (int, EMBEDDING_BATCH_SIZE, 1, 2048, "Texts per embedding call"),
        "concurrency": (int, EMBEDDING_CONCURRENCY, 1, 50, "Embedding calls in flight"),
        "max_attempts": (int, EMBEDDING_MAX_ATTEMPTS, 1, 10, "Attempts per batch"),
        "backoff_min_seconds": (
            float,
            EMBEDDING_BACKOFF_MIN_SECONDS,
            0.0,
            60.0,
            "Initial retry backoff",
        ),
        "backoff_max_seconds": (
            float,
            EMBEDDING_BACKOFF_MAX_SECONDS,
            0.0,
            600.0,
            "Maximum retry backoff",
        ),
    },
    "retrieval": {
        "search_match_count": (int, SEARCH_MATCH_COUNT, 1, 100, "Semantic hits for search"),
        "chat_match_count": (int, CHAT_MATCH_COUNT, 1, 100, "Semantic hits for chat"),
        "similarity_threshold": (
            float,
            SIMILARITY_THRESHOLD,
            0.0,
            1.0,
            "Minimum cosine similarity",
        ),
        "snippet_max_length": (int, SNIPPET_MAX_LENGTH, 50, 5000, "Search snippet length"),
        "overview_context_chars": (
            int,
            OVERVIEW_CONTEXT_CHARS,
            0,
            50000,
            "Overview characters in chat context",
        ),
        "fallback_body_chars": (int, FALLBACK_BODY_CHARS, 0, 10000, "Topic body per fallback"),
        "max_context_tokens": (int, MAX_CONTEXT_TOKENS, 500, 100000, "Chat context budget"),
        "fuzzy_title_threshold": (
            float,
            FUZZY_TITLE_THRESHOLD,
            0.0,
            1.0,
            "Minimum title match ratio",
        ),
        "fuzzy_title_limit": (int, FUZZY_TITLE_LIMIT, 0, 50, "Title matches returned"),
    },
    "llm": {
        "max_tokens": (int, MAX_TOKENS, 256, 32768, "Max response tokens"),
        "default_temperature": (float, DEFAULT_TEMPERATURE, 0.0, 2.0, "Default LLM temperature"),
        "json_temperature": (float, JSON_TEMPERATURE, 0.0, 1.0, "Temperature for JSON output"),
        "chat_temperature": (float, CHAT_TEMPERATURE, 0.0, 2.0, "Temperature for chat answers"),
    },
    "paths": {
        "db_file": (str, "wikicube.db", None, None, "SQLite database file name"),
        "chroma_dir": (str, "chroma", None, None, "ChromaDB directory name"),
        "logs_dir": (str, "logs", None, None, "Logs directory name"),
    },
}


# =============================================================================
# Section Dataclasses
# =============================================================================


@dataclass(frozen=True)
class PipelineConfig:
    """Analysis pipeline configuration."""

    max_topics: int
    max_files_per_topic: int
    topic_concurrency: int
    fetch_concurrency: int
    run_timeout_minutes: int
    call_timeout_seconds: float


@dataclass(frozen=True)
class ChunkingConfig:
    """Passage chunking configuration."""

    chunk_tokens: int
    min_slice_tokens: int
    encoding: str


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding batcher configuration."""

    model: str
    dimensions: int
    batch_size: int
    concurrency: int
    max_attempts: int
    backoff_min_seconds: float
    backoff_max_seconds: float


@dataclass(frozen=True)
class RetrievalConfig:
    """Search and chat retrieval configuration."""

    search_match_count: int
    chat_match_count: int
    similarity_threshold: float
    snippet_max_length: int
    overview_context_chars: int
    fallback_body_chars: int
    max_context_tokens: int
    fuzzy_title_threshold: float
    fuzzy_title_limit: int


@dataclass(frozen=True)
class LLMConfig:
    """LLM client configuration."""

    max_tokens: int
    default_temperature: float
    json_temperature: float
    chat_temperature: float


@dataclass(frozen=True)
class PathsConfig:
    """Path names inside the data directory."""

    db_file: str
    chroma_dir: str
    logs_dir: str


_SECTION_TYPES: dict[str, type] = {
    "pipeline": PipelineConfig,
    "chunking": ChunkingConfig,
    "embedding": EmbeddingConfig,
    "retrieval": RetrievalConfig,
    "llm": LLMConfig,
    "paths": PathsConfig,
}


def _section_defaults(section: str) -> Any:
    """Build a section dataclass populated with schema defaults."""
    values = {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}
    return _SECTION_TYPES[section](**values)


# =============================================================================
# Config Loader
# =============================================================================


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    return result


def _load_sections(config_path: Optional[Path] = None) -> dict[str, Any]:
    """Load every schema section from an INI file.

    Args:
        config_path: Path to config file. If None, uses defaults from schema.

    Returns:
        Mapping of section name to its populated dataclass.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    sections = {
        name: _SECTION_TYPES[name](**_load_section(parser, name, CONFIG_SCHEMA[name]))
        for name in CONFIG_SCHEMA
    }

    # The two chunking keys are only meaningful together
    chunking = sections["chunking"]
    if chunking.min_slice_tokens >= chunking.chunk_tokens:
        raise ConfigError(
            f"Value for [chunking].min_slice_tokens is {chunking.min_slice_tokens}, "
            f"but it must be below [chunking].chunk_tokens ({chunking.chunk_tokens})"
        )

    return sections


# =============================================================================
# Config Dataclass
# =============================================================================


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path
    active_provider: str = "openai"
    active_model: str = "gpt-4o"
    embedding_provider: str = "openai"
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    github_token: Optional[str] = None
    ollama_endpoint: str = "http://localhost:11434"

    # Section configs; frozen dataclass needs object.__setattr__ in __post_init__
    pipeline: PipelineConfig = None  # type: ignore[assignment]
    chunking: ChunkingConfig = None  # type: ignore[assignment]
    embedding: EmbeddingConfig = None  # type: ignore[assignment]
    retrieval: RetrievalConfig = None  # type: ignore[assignment]
    llm: LLMConfig = None  # type: ignore[assignment]
    paths: PathsConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        for name in _SECTION_TYPES:
            if getattr(self, name) is None:
                object.__setattr__(self, name, _section_defaults(name))

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.data_dir / self.paths.db_file

    @property
    def chroma_path(self) -> Path:
        """Path to ChromaDB vector store directory."""
        return self.data_dir / self.paths.chroma_dir

    @property
    def llm_log_path(self) -> Path:
        """Path to LLM query log file."""
        return self.data_dir / self.paths.logs_dir / "llm-queries.jsonl"

    @property
    def config_file(self) -> Path:
        """Path to the optional INI file."""
        return self.data_dir / "config.ini"

    @property
    def llm_api_key(self) -> Optional[str]:
        """API key for the active LLM provider."""
        return self._key_for(self.active_provider)

    @property
    def embedding_api_key(self) -> Optional[str]:
        """API key for the embedding provider."""
        return self._key_for(self.embedding_provider)

    @property
    def llm_endpoint(self) -> Optional[str]:
        """Endpoint for LLM provider (mainly for Ollama)."""
        if self.active_provider == "ollama":
            return self.ollama_endpoint
        return None

    def _key_for(self, provider: str) -> Optional[str]:
        provider_keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }
        return provider_keys.get(provider)


# =============================================================================
# load_settings
# =============================================================================

PROVIDER_DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "google": "gemini-1.5-pro",
    "ollama": "llama3",
}


def _detect_provider_from_keys() -> tuple[str, str]:
    """Auto-detect provider from available API keys.

    Returns:
        Tuple of (provider, model) based on available keys.
        Falls back to ollama if no keys are found.
    """
    if os.getenv("OPENAI_API_KEY"):
        return ("openai", PROVIDER_DEFAULT_MODELS["openai"])
    if os.getenv("ANTHROPIC_API_KEY"):
        return ("anthropic", PROVIDER_DEFAULT_MODELS["anthropic"])
    if os.getenv("GOOGLE_API_KEY"):
        return ("google", PROVIDER_DEFAULT_MODELS["google"])
    return ("ollama", PROVIDER_DEFAULT_MODELS["ollama"])


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.

    Raises:
        ConfigError: If the config file holds invalid values.
    """
    data_dir_str = os.getenv("WIKICUBE_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".wikicube"

    config_file = data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    sections = _load_sections(config_file if config_exists else None)

    active_provider = os.getenv("ACTIVE_PROVIDER")
    active_model = os.getenv("ACTIVE_MODEL")

    if not active_provider:
        detected_provider, detected_model = _detect_provider_from_keys()
        active_provider = detected_provider
        if not active_model:
            active_model = detected_model
    elif not active_model:
        active_model = PROVIDER_DEFAULT_MODELS.get(active_provider, "llama3")

    embedding_model = os.getenv("EMBEDDING_MODEL")
    if embedding_model:
        sections["embedding"] = replace(sections["embedding"], model=embedding_model)

    return Config(
        data_dir=data_dir,
        active_provider=active_provider,
        active_model=active_model,
        embedding_provider=os.getenv("EMBEDDING_PROVIDER", "openai"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        github_token=os.getenv("GITHUB_TOKEN"),
        ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
        **sections,
    )
