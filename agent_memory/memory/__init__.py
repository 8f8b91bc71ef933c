"""
Vector Memory System for conversational agents.

Stores what an agent has seen and learned as embedded memories, and
recalls them by meaning rather than by keyword. Memories fade with time
unless they are important, permanent or frequently recalled.
"""

from .base import Memory, MemoryMetadata, ScoredMemory, SearchFilter, VectorStore
from .embeddings import (
    EmbeddingService,
    LocalEmbeddingService,
    OpenAIEmbeddingService,
    Vocabulary,
    cosine_similarity,
    create_embedding_service,
)
from .factory import StoreType, create_vector_store
from .memory_manager import (
    ConsolidationResult,
    DecayResult,
    ImportResult,
    MemoryManager,
    MemoryStats,
    clear_all_managers,
    create_memory_manager,
    get_memory_manager,
    remove_memory_manager,
)
from .memory_store import InMemoryVectorStore
from .types import DecayRate, FrozenClock, ImportanceLevel, MemoryType, SystemClock

__all__ = [
    "Memory",
    "MemoryMetadata",
    "ScoredMemory",
    "SearchFilter",
    "VectorStore",
    "EmbeddingService",
    "LocalEmbeddingService",
    "OpenAIEmbeddingService",
    "Vocabulary",
    "cosine_similarity",
    "create_embedding_service",
    "StoreType",
    "create_vector_store",
    "InMemoryVectorStore",
    "ConsolidationResult",
    "DecayResult",
    "ImportResult",
    "MemoryManager",
    "MemoryStats",
    "clear_all_managers",
    "create_memory_manager",
    "get_memory_manager",
    "remove_memory_manager",
    "DecayRate",
    "FrozenClock",
    "ImportanceLevel",
    "MemoryType",
    "SystemClock",
]
