"""
Base interfaces and data structures for vector memory.

Defines the memory record, the structured search filter, and the
abstract contract that every vector store backend must implement.
"""

import dataclasses
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from ..errors import StorageError
from .embeddings import cosine_similarity
from .types import (
    DEFAULT_DECAY_RATE,
    DEFAULT_IMPORTANCE,
    DEFAULT_MIN_SIMILARITY,
    DEFAULT_MEMORY_TYPE,
    MemoryType,
    clamp_importance,
)


def dedupe_tags(tags: Optional[Iterable[str]]) -> list[str]:
    """Deduplicate tags, keeping first-seen order and dropping blanks."""
    seen: dict[str, None] = {}
    for tag in tags or []:
        tag = str(tag).strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


def _first_set(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-None value among `keys`."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


@dataclass
class MemoryMetadata:
    """Categorization and lifecycle parameters of a memory."""
    type: MemoryType = DEFAULT_MEMORY_TYPE
    importance: int = DEFAULT_IMPORTANCE  # 1-10, always clamped
    decay_rate: float = DEFAULT_DECAY_RATE  # (0, 1], 1.0 = permanent
    tags: list[str] = field(default_factory=list)

    # Provenance
    source: Optional[str] = None  # e.g. message ID
    related_entity: Optional[str] = None
    location: Optional[str] = None
    custom: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = MemoryType.parse(self.type)
        self.importance = clamp_importance(self.importance)
        self.decay_rate = float(self.decay_rate)
        self.tags = dedupe_tags(self.tags)

    @property
    def is_permanent(self) -> bool:
        return self.decay_rate >= 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "importance": self.importance,
            "decayRate": self.decay_rate,
            "tags": list(self.tags),
            "source": self.source,
            "relatedEntity": self.related_entity,
            "location": self.location,
            "custom": dict(self.custom),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "MemoryMetadata":
        data = data or {}
        return cls(
            type=data.get("type") or DEFAULT_MEMORY_TYPE,
            importance=_first_set(data, "importance", default=DEFAULT_IMPORTANCE),
            decay_rate=_first_set(data, "decayRate", "decay_rate", default=DEFAULT_DECAY_RATE),
            tags=data.get("tags") or [],
            source=data.get("source"),
            related_entity=_first_set(data, "relatedEntity", "related_entity", "relatedCharacter"),
            location=data.get("location"),
            custom=data.get("custom") or {},
        )


@dataclass
class Memory:
    """
    A single stored memory.

    Content is immutable once stored - edits replace the record.
    Recall bumps `last_accessed` and `access_count`; consolidation and
    decay only touch metadata.
    """
    id: str
    owner_id: str  # Scoping key (character / agent identifier)
    content: str
    embedding: list[float]
    timestamp: int  # Creation time, epoch ms
    last_accessed: int
    access_count: int = 0
    metadata: MemoryMetadata = field(default_factory=MemoryMetadata)

    def merged(self, fields: dict[str, Any]) -> "Memory":
        """
        Return a copy with `fields` merged in.

        A `metadata` entry may be a MemoryMetadata (replaces) or a dict
        (merged key-wise into the current metadata).
        """
        fields = dict(fields)
        metadata = fields.pop("metadata", None)
        unknown = set(fields) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise KeyError(f"Unknown memory fields: {', '.join(sorted(unknown))}")

        updated = dataclasses.replace(self, **fields)
        if isinstance(metadata, MemoryMetadata):
            updated.metadata = dataclasses.replace(metadata)
        elif metadata:
            updated.metadata = dataclasses.replace(self.metadata, **metadata)
        else:
            updated.metadata = dataclasses.replace(self.metadata)
        return updated

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted/exported JSON shape."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "content": self.content,
            "embedding": list(self.embedding),
            "timestamp": self.timestamp,
            "lastAccessed": self.last_accessed,
            "accessCount": self.access_count,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        """Deserialize, also accepting the older `characterId` key."""
        timestamp = int(data["timestamp"])
        return cls(
            id=str(data["id"]),
            owner_id=str(data.get("ownerId", data.get("characterId", ""))),
            content=str(data["content"]),
            embedding=[float(x) for x in data.get("embedding") or []],
            timestamp=timestamp,
            last_accessed=int(data.get("lastAccessed", timestamp)),
            access_count=int(data.get("accessCount", 0)),
            metadata=MemoryMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class ScoredMemory:
    """A search hit: the memory plus its cosine similarity to the query."""
    memory: Memory
    score: float

    @property
    def id(self) -> str:
        return self.memory.id

    @property
    def content(self) -> str:
        return self.memory.content

    @property
    def metadata(self) -> MemoryMetadata:
        return self.memory.metadata

    @property
    def timestamp(self) -> int:
        return self.memory.timestamp

    def to_dict(self) -> dict[str, Any]:
        data = self.memory.to_dict()
        data["score"] = self.score
        return data


@dataclass
class SearchFilter:
    """
    Structured search criteria shared by all vector store backends.

    `min_similarity=None` uses the store's configured default threshold;
    `min_similarity=0` lets every zero-or-better match through, which is
    how unranked full scans are done (with a zero query vector).
    """
    owner_id: Optional[str] = None
    type: Optional[MemoryType] = None
    min_importance: Optional[int] = None
    tags: Optional[list[str]] = None  # ANY-match
    after_timestamp: Optional[int] = None
    before_timestamp: Optional[int] = None
    min_similarity: Optional[float] = None

    def __post_init__(self):
        if self.type is not None:
            self.type = MemoryType.parse(self.type)

    def with_owner(self, owner_id: str) -> "SearchFilter":
        return dataclasses.replace(self, owner_id=owner_id)

    def matches(self, memory: Memory) -> bool:
        """Structured (non-similarity) part of the filter."""
        if self.owner_id is not None and memory.owner_id != self.owner_id:
            return False
        if self.type is not None and memory.metadata.type != self.type:
            return False
        if self.min_importance is not None and memory.metadata.importance < self.min_importance:
            return False
        if self.tags:
            if not set(self.tags) & set(memory.metadata.tags):
                return False
        if self.after_timestamp is not None and memory.timestamp < self.after_timestamp:
            return False
        if self.before_timestamp is not None and memory.timestamp > self.before_timestamp:
            return False
        return True

    def similarity_threshold(self, default: float = DEFAULT_MIN_SIMILARITY) -> float:
        return default if self.min_similarity is None else self.min_similarity


def rank_memories(
    memories: Iterable[Memory],
    query_embedding: list[float],
    limit: int,
    search_filter: Optional[SearchFilter] = None,
    default_min_similarity: float = DEFAULT_MIN_SIMILARITY,
) -> list[ScoredMemory]:
    """
    Brute-force cosine ranking with filtering.

    Sorted by descending score; ties keep the input order.
    """
    search_filter = search_filter or SearchFilter()
    threshold = search_filter.similarity_threshold(default_min_similarity)

    results = []
    for memory in memories:
        if not search_filter.matches(memory):
            continue
        score = cosine_similarity(query_embedding, memory.embedding)
        if score < threshold:
            continue
        results.append(ScoredMemory(memory=memory, score=score))

    results.sort(key=lambda r: r.score, reverse=True)
    return results[:max(0, limit)]


class VectorStore(ABC):
    """
    Abstract interface for vector storage backends.

    Implementations: in-memory (ephemeral), ChromaDB (local persistent
    or remote HTTP), pgvector (remote PostgreSQL). Backends differ in
    durability and latency, never in filter semantics.
    """

    backend_name = "base"

    def __init__(self, default_min_similarity: float = DEFAULT_MIN_SIMILARITY):
        self.default_min_similarity = default_min_similarity

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        """Re-raise backend failures as retryable StorageErrors."""
        try:
            yield
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"{operation} failed: {e}", retryable=True, backend=self.backend_name
            ) from e

    async def initialize(self) -> None:
        """Initialize the vector store (create collections, pools, etc.)."""

    @abstractmethod
    async def add(self, memory: Memory) -> None:
        """Insert or replace a memory (upsert by id)."""
        pass

    @abstractmethod
    async def update(self, memory_id: str, fields: dict[str, Any]) -> bool:
        """
        Merge partial fields into an existing memory.

        Returns:
            False if no memory with that id exists.
        """
        pass

    @abstractmethod
    async def get(self, memory_id: str) -> Optional[Memory]:
        """Get a memory by id, or None."""
        pass

    @abstractmethod
    async def get_all(self) -> list[Memory]:
        """All stored memories, unfiltered."""
        pass

    async def export(self) -> list[Memory]:
        """Full unfiltered record set for backup, consolidation and decay scans."""
        return await self.get_all()

    @abstractmethod
    async def delete(self, memory_id: str) -> bool:
        """Delete a memory. Idempotent; returns whether something was removed."""
        pass

    async def delete_many(self, memory_ids: Iterable[str]) -> int:
        """Delete several memories, returning how many were removed."""
        removed = 0
        for memory_id in memory_ids:
            if await self.delete(memory_id):
                removed += 1
        return removed

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        limit: int = 5,
        search_filter: Optional[SearchFilter] = None,
    ) -> list[ScoredMemory]:
        """
        Search for similar memories.

        Args:
            query_embedding: The embedding to search for
            limit: Maximum number of results
            search_filter: Structured filter and similarity threshold

        Returns:
            Up to `limit` hits ordered by descending cosine similarity
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Total number of stored memories."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every memory."""
        pass

    async def import_records(self, memories: Iterable[Memory]) -> int:
        """Bulk upsert, returning the number of records written."""
        written = 0
        for memory in memories:
            await self.add(memory)
            written += 1
        return written

    async def close(self) -> None:
        """Clean up resources."""
