"""
Configuration module for Agent Memory.

Loads engine settings from config.yaml and secrets from environment variables.
"""

import logging
import os
import contextvars
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

from .memory.factory import StoreType
from .memory.types import (
    DEFAULT_CONSOLIDATION_THRESHOLD,
    DEFAULT_DECAY_START_HOURS,
    DEFAULT_MIN_SIMILARITY,
    DEFAULT_RECALL_LIMIT,
    EMBEDDING_DIMENSION,
)

# Load environment variables from .env file
load_dotenv()

# Context variable for owner ID logging
owner_context = contextvars.ContextVar("owner_id", default=None)


class OwnerLogFilter(logging.Filter):
    """Filter to inject the current memory owner into log records."""
    def filter(self, record):
        owner_id = owner_context.get()
        if owner_id is not None:
            record.owner_info = f" [Owner {owner_id}]"
        else:
            record.owner_info = ""
        return True


# Default config file path (AGENT_MEMORY_CONFIG overrides)
CONFIG_FILE = Path(
    os.getenv("AGENT_MEMORY_CONFIG", Path(__file__).parent.parent / "config.yaml")
)


def _load_yaml_config() -> dict:
    """Load configuration from YAML file."""
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE) as f:
            return yaml.safe_load(f) or {}
    return {}


# Load YAML config once at module import
_yaml_config = _load_yaml_config()


def _get_yaml(section: str, key: str, default=None):
    """Get a value from the YAML config."""
    return (_yaml_config.get(section) or {}).get(key, default)


def _get_embedding_api_key() -> str:
    """Embedding key from .env, falling back to the generic OpenAI key."""
    return os.getenv("EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY", "")


@dataclass
class MemoryConfig:
    """Vector memory engine configuration."""
    store_type: str = field(
        default_factory=lambda: _get_yaml("memory", "store_type", StoreType.MEMORY.value)
    )
    # Chroma collection or PostgreSQL table
    collection_name: str = field(
        default_factory=lambda: _get_yaml("memory", "collection_name", "agent_memories")
    )

    # Embeddings
    embedding_provider: str = field(
        default_factory=lambda: _get_yaml("embeddings", "provider", "local")
    )
    embedding_model: str = field(
        default_factory=lambda: _get_yaml("embeddings", "model", "text-embedding-3-small")
    )
    # Any OpenAI-compatible endpoint; empty = api.openai.com
    embedding_base_url: str = field(
        default_factory=lambda: _get_yaml("embeddings", "base_url", "")
    )
    embedding_dimension: int = field(
        default_factory=lambda: _get_yaml("embeddings", "dimension", EMBEDDING_DIMENSION)
    )
    embedding_timeout: float = field(
        default_factory=lambda: _get_yaml("embeddings", "timeout", 10.0)
    )
    # Secret from .env
    embedding_api_key: str = field(default_factory=_get_embedding_api_key)

    # Local ChromaDB
    chroma_path: str = field(
        default_factory=lambda: _get_yaml("chroma", "path", "./memory_store")
    )
    # Remote Chroma server
    chroma_host: str = field(
        default_factory=lambda: _get_yaml("chroma", "host", "localhost")
    )
    chroma_port: int = field(
        default_factory=lambda: _get_yaml("chroma", "port", 8000)
    )
    chroma_ssl: bool = field(
        default_factory=lambda: _get_yaml("chroma", "ssl", False)
    )

    # Secret from .env (contains credentials)
    postgres_url: str = field(default_factory=lambda: os.getenv("POSTGRES_URL", ""))

    # Recall and lifecycle tuning
    min_similarity: float = field(
        default_factory=lambda: _get_yaml("memory", "min_similarity", DEFAULT_MIN_SIMILARITY)
    )
    default_recall_limit: int = field(
        default_factory=lambda: _get_yaml("memory", "default_recall_limit", DEFAULT_RECALL_LIMIT)
    )
    decay_start_hours: float = field(
        default_factory=lambda: _get_yaml("memory", "decay_start_hours", DEFAULT_DECAY_START_HOURS)
    )
    consolidation_threshold: float = field(
        default_factory=lambda: _get_yaml(
            "memory", "consolidation_threshold", DEFAULT_CONSOLIDATION_THRESHOLD
        )
    )


@dataclass
class AppConfig:
    """Application settings from YAML."""
    # Default owner for the maintenance CLI
    default_owner: str = field(
        default_factory=lambda: _get_yaml("app", "default_owner", "")
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: _get_yaml("logging", "level", "INFO")
    )


@dataclass
class Config:
    """Main configuration container."""
    app: AppConfig = field(default_factory=AppConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)

    def setup_logging(self) -> logging.Logger:
        """Configure and return the application logger."""
        # Reset existing handlers to ensure clean configuration
        root = logging.getLogger()
        if root.handlers:
            for handler in list(root.handlers):
                root.removeHandler(handler)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s%(owner_info)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Add filter to the handler created by basicConfig
        for handler in logging.getLogger().handlers:
            handler.addFilter(OwnerLogFilter())

        return logging.getLogger("agent_memory")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of missing/invalid settings.

        Returns:
            List of validation error messages, empty if all valid.
        """
        errors = []
        memory = self.memory

        try:
            store_type = StoreType(memory.store_type)
        except ValueError:
            valid = ", ".join(t.value for t in StoreType)
            errors.append(f"memory.store_type must be one of: {valid} (got {memory.store_type!r})")
            store_type = None

        if store_type == StoreType.PGVECTOR and not memory.postgres_url:
            errors.append("POSTGRES_URL is required when using the pgvector store")

        if memory.embedding_provider not in ("local", "openai"):
            errors.append(
                f"embeddings.provider must be 'local' or 'openai' (got {memory.embedding_provider!r})"
            )

        if not isinstance(memory.embedding_dimension, int) or memory.embedding_dimension <= 0:
            errors.append("embeddings.dimension must be a positive integer")
        if memory.embedding_timeout <= 0:
            errors.append("embeddings.timeout must be positive")
        if not 0 <= memory.min_similarity <= 1:
            errors.append("memory.min_similarity must be between 0 and 1")
        if not 0 < memory.consolidation_threshold <= 1:
            errors.append("memory.consolidation_threshold must be in (0, 1]")
        if memory.decay_start_hours < 0:
            errors.append("memory.decay_start_hours must not be negative")
        if memory.default_recall_limit <= 0:
            errors.append("memory.default_recall_limit must be positive")

        return errors


# Global configuration instance
config = Config()
