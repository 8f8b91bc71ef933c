"""
In-process vector store.

Fast and dependency-free, but nothing survives the process. Useful
for tests, short-lived agents and as the reference implementation of
the store contract.
"""

import logging
from typing import Any, Optional

from .base import Memory, ScoredMemory, SearchFilter, VectorStore, rank_memories
from .types import DEFAULT_MIN_SIMILARITY

logger = logging.getLogger("agent_memory.memory.in_memory")


class InMemoryVectorStore(VectorStore):
    """Dict-backed store with brute-force cosine search."""

    backend_name = "memory"

    def __init__(self, default_min_similarity: float = DEFAULT_MIN_SIMILARITY):
        super().__init__(default_min_similarity)
        # Insertion-ordered; keeps search ties stable
        self._memories: dict[str, Memory] = {}

    async def add(self, memory: Memory) -> None:
        if not memory or not memory.id:
            raise ValueError("Memory must have an id")
        self._memories[memory.id] = memory.merged({})

    async def update(self, memory_id: str, fields: dict[str, Any]) -> bool:
        memory = self._memories.get(memory_id)
        if memory is None:
            return False
        self._memories[memory_id] = memory.merged(fields)
        return True

    async def get(self, memory_id: str) -> Optional[Memory]:
        memory = self._memories.get(memory_id)
        return memory.merged({}) if memory else None

    async def get_all(self) -> list[Memory]:
        return [memory.merged({}) for memory in self._memories.values()]

    async def delete(self, memory_id: str) -> bool:
        return self._memories.pop(memory_id, None) is not None

    async def search(
        self,
        query_embedding: list[float],
        limit: int = 5,
        search_filter: Optional[SearchFilter] = None,
    ) -> list[ScoredMemory]:
        results = rank_memories(
            self._memories.values(),
            query_embedding,
            limit,
            search_filter,
            default_min_similarity=self.default_min_similarity,
        )
        # Hand out copies so callers cannot mutate stored state
        return [ScoredMemory(memory=r.memory.merged({}), score=r.score) for r in results]

    async def count(self) -> int:
        return len(self._memories)

    async def clear(self) -> None:
        self._memories.clear()
        logger.debug("In-memory store cleared")
