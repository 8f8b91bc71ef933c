"""
Vector store selection.

Backends are chosen once, at construction time, from configuration.
Heavy client libraries are only imported for the backend in use.
"""

import logging
from enum import Enum

from .base import VectorStore
from .types import DEFAULT_MIN_SIMILARITY, EMBEDDING_DIMENSION

logger = logging.getLogger("agent_memory.memory.factory")


class StoreType(str, Enum):
    """Available vector store backends."""
    MEMORY = "memory"  # Ephemeral, in-process
    CHROMA = "chroma"  # Local persistent ChromaDB
    CHROMA_HTTP = "chroma_http"  # Remote Chroma server
    PGVECTOR = "pgvector"  # Remote PostgreSQL + pgvector


def create_vector_store(
    store_type: "StoreType | str" = StoreType.MEMORY,
    chroma_path: str = "./memory_store",
    collection_name: str = "agent_memories",
    chroma_host: str = "localhost",
    chroma_port: int = 8000,
    chroma_ssl: bool = False,
    postgres_url: str = "",
    embedding_dimension: int = EMBEDDING_DIMENSION,
    default_min_similarity: float = DEFAULT_MIN_SIMILARITY,
) -> VectorStore:
    """
    Factory function to create a vector store.

    Args:
        store_type: Which backend to build
        chroma_path: Directory for the local ChromaDB store
        collection_name: Chroma collection or PostgreSQL table name
        chroma_host: Remote Chroma server host
        chroma_port: Remote Chroma server port
        chroma_ssl: Use HTTPS for the remote Chroma server
        postgres_url: Required for pgvector store
        embedding_dimension: Vector column size (pgvector)
        default_min_similarity: Threshold used when a search sets none

    Returns:
        An uninitialized VectorStore; call `initialize()` before use
    """
    try:
        store_type = StoreType(store_type)
    except ValueError:
        raise ValueError(f"Unknown store type: {store_type}")

    if store_type == StoreType.MEMORY:
        from .memory_store import InMemoryVectorStore
        return InMemoryVectorStore(default_min_similarity=default_min_similarity)

    if store_type == StoreType.CHROMA:
        from .chroma_store import ChromaVectorStore
        return ChromaVectorStore(
            persist_directory=chroma_path,
            collection_name=collection_name,
            default_min_similarity=default_min_similarity,
        )

    if store_type == StoreType.CHROMA_HTTP:
        from .chroma_store import ChromaHttpVectorStore
        return ChromaHttpVectorStore(
            host=chroma_host,
            port=chroma_port,
            collection_name=collection_name,
            ssl=chroma_ssl,
            default_min_similarity=default_min_similarity,
        )

    if not postgres_url:
        raise ValueError("postgres_url required for pgvector store")
    from .pgvector_store import PgVectorStore
    return PgVectorStore(
        connection_string=postgres_url,
        table_name=collection_name,
        embedding_dimension=embedding_dimension,
        default_min_similarity=default_min_similarity,
    )
