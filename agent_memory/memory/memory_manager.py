"""
Memory Manager - Orchestrates the vector memory system.

This is the high-level interface that agents use. One manager owns the
memories of one owner (a character or agent) and handles:
- Validating and embedding new memories
- Semantic recall with access bookkeeping
- Consolidation of near-duplicates and importance decay
- Export/import and statistics

All operations on one manager are serialized by an asyncio.Lock, so a
recall never observes a half-applied consolidation pass.
"""

import asyncio
import dataclasses
import logging
import math
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from ..errors import StorageError, ValidationError
from .base import Memory, MemoryMetadata, ScoredMemory, SearchFilter, VectorStore, _first_set
from .embeddings import EmbeddingService, LocalEmbeddingService, cosine_similarity, zero_vector
from .memory_store import InMemoryVectorStore
from .types import (
    DEFAULT_CONSOLIDATION_THRESHOLD,
    DEFAULT_DECAY_RATE,
    DEFAULT_DECAY_START_HOURS,
    DEFAULT_MEMORY_TYPE,
    DEFAULT_MIN_SIMILARITY,
    DEFAULT_RECALL_LIMIT,
    EXPORT_VERSION,
    MAX_IMPORTANCE,
    MS_PER_DAY,
    MS_PER_HOUR,
    DecayRate,
    ImportanceLevel,
    MemoryType,
    SystemClock,
    default_decay_rate_for_type,
    default_importance_for_type,
)

if TYPE_CHECKING:
    from ..config import MemoryConfig

logger = logging.getLogger("agent_memory.memory.manager")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_memory_id(now_ms: int) -> str:
    """Unique-enough id: creation time plus 9 random base36 characters."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"mem_{now_ms}_{suffix}"


@dataclass
class ConsolidationResult:
    merged: int
    remaining: int


@dataclass
class DecayResult:
    decayed: int
    removed: int


@dataclass
class ImportResult:
    imported: int
    skipped: int


@dataclass
class MemoryStats:
    """Aggregate view over one owner's memories."""
    total_count: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_importance: dict[int, int] = field(default_factory=dict)
    average_importance: float = 0.0
    oldest_memory: Optional[Memory] = None
    newest_memory: Optional[Memory] = None
    most_accessed: Optional[Memory] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCount": self.total_count,
            "byType": dict(self.by_type),
            "byImportance": {str(k): v for k, v in sorted(self.by_importance.items())},
            "averageImportance": self.average_importance,
            "oldestMemory": self.oldest_memory.to_dict() if self.oldest_memory else None,
            "newestMemory": self.newest_memory.to_dict() if self.newest_memory else None,
            "mostAccessed": self.most_accessed.to_dict() if self.most_accessed else None,
        }


def select_keeper(first: Memory, second: Memory) -> tuple[Memory, Memory]:
    """
    Decide which of two near-duplicates survives consolidation.

    Preference order: higher importance, more recent access, more
    accesses, newer creation. Returns (keeper, loser).
    """
    if first.metadata.importance != second.metadata.importance:
        return (first, second) if first.metadata.importance > second.metadata.importance else (second, first)
    if first.last_accessed != second.last_accessed:
        return (first, second) if first.last_accessed > second.last_accessed else (second, first)
    if first.access_count != second.access_count:
        return (first, second) if first.access_count > second.access_count else (second, first)
    return (first, second) if first.timestamp > second.timestamp else (second, first)


def merge_duplicate(keeper: Memory, loser: Memory) -> Memory:
    """
    Fold `loser` into `keeper`: sum accesses, boost importance, union tags.

    The +1 importance boost applies per merge, so a keeper that absorbs
    several duplicates gains one point for each (capped at 10).
    """
    return keeper.merged({
        "access_count": keeper.access_count + loser.access_count,
        "metadata": {
            "importance": min(MAX_IMPORTANCE, keeper.metadata.importance + 1),
            "tags": keeper.metadata.tags + loser.metadata.tags,
        },
    })


def decayed_importance(memory: Memory, age_ms: int) -> int:
    """
    Importance after decay.

    decay_factor = decay_rate ^ (days / 30) * (1 + ln(1 + accesses) * 0.1)
    """
    days_since_creation = age_ms / MS_PER_DAY
    access_boost = math.log(1 + memory.access_count)
    decay_rate = memory.metadata.decay_rate or DEFAULT_DECAY_RATE
    decay_factor = math.pow(decay_rate, days_since_creation / 30) * (1 + access_boost * 0.1)
    return max(int(ImportanceLevel.TRIVIAL), math.floor(memory.metadata.importance * decay_factor))


class MemoryManager:
    """
    High-level memory management for one owner.

    Every record the manager writes carries its owner_id, and every read
    is scoped to it, so several managers can share one vector store.
    """

    def __init__(
        self,
        owner_id: str,
        vector_store: VectorStore,
        embedding_service: EmbeddingService,
        clock=None,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        decay_start_hours: float = DEFAULT_DECAY_START_HOURS,
        default_recall_limit: int = DEFAULT_RECALL_LIMIT,
        consolidation_threshold: float = DEFAULT_CONSOLIDATION_THRESHOLD,
    ):
        if not owner_id:
            raise ValidationError("owner_id is required")
        self.owner_id = owner_id
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.clock = clock or SystemClock()
        self.min_similarity = min_similarity
        self.decay_start_hours = decay_start_hours
        self.default_recall_limit = default_recall_limit
        self.consolidation_threshold = consolidation_threshold
        self._lock = asyncio.Lock()
        logger.info(f"MemoryManager created for {owner_id} ({vector_store.backend_name} store)")

    async def initialize(self) -> None:
        """Initialize the store and rebuild term statistics from stored memories."""
        await self.vector_store.initialize()
        async with self._lock:
            memories = await self._owner_memories()
            self.embedding_service.reset_vocabulary()
            for memory in memories:
                self.embedding_service.observe(memory.content)
        logger.info(f"MemoryManager initialized for {self.owner_id} with {len(memories)} stored memories")

    async def close(self) -> None:
        """Clean up resources."""
        await self.vector_store.close()
        logger.info(f"MemoryManager closed for {self.owner_id}")

    async def _owner_memories(self) -> list[Memory]:
        memories = await self.vector_store.export()
        return [m for m in memories if m.owner_id == self.owner_id]

    def _resolve_metadata(self, metadata: "MemoryMetadata | dict | None") -> MemoryMetadata:
        """Fill type-based defaults and validate caller-supplied metadata."""
        if isinstance(metadata, MemoryMetadata):
            data = metadata.to_dict()
        else:
            data = dict(metadata or {})

        try:
            memory_type = MemoryType.parse(data.get("type") or DEFAULT_MEMORY_TYPE)
        except ValueError:
            raise ValidationError(f"Unknown memory type: {data.get('type')!r}")

        importance = _first_set(data, "importance", default=default_importance_for_type(memory_type))
        decay_rate = _first_set(
            data, "decay_rate", "decayRate", default=default_decay_rate_for_type(memory_type)
        )
        try:
            importance = float(importance)
            decay_rate = float(decay_rate)
        except (TypeError, ValueError):
            raise ValidationError("importance and decay_rate must be numeric")
        if math.isnan(importance) or math.isnan(decay_rate):
            raise ValidationError("importance and decay_rate must be numbers")
        if decay_rate <= 0:
            raise ValidationError(f"decay_rate must be positive, got {decay_rate}")

        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [tags]

        return MemoryMetadata(
            type=memory_type,
            importance=importance,
            decay_rate=min(decay_rate, DecayRate.PERMANENT),
            tags=tags,
            source=data.get("source"),
            related_entity=_first_set(data, "related_entity", "relatedEntity", "relatedCharacter"),
            location=data.get("location"),
            custom=dict(data.get("custom") or {}),
        )

    # =========================================================================
    # Storing
    # =========================================================================

    async def add_memory(
        self,
        content: str,
        metadata: "MemoryMetadata | dict | None" = None,
    ) -> Memory:
        """
        Store a new memory.

        Args:
            content: The memory text
            metadata: Type, importance, decay rate, tags and provenance.
                Missing importance/decay rate default by type.

        Returns:
            The stored Memory

        Raises:
            ValidationError: empty content, unknown type or bad decay rate
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Memory content cannot be empty")
        resolved = self._resolve_metadata(metadata)
        content = content.strip()

        async with self._lock:
            embedding = await self.embedding_service.embed(content)
            now = self.clock.now()
            memory = Memory(
                id=generate_memory_id(now),
                owner_id=self.owner_id,
                content=content,
                embedding=embedding,
                timestamp=now,
                last_accessed=now,
                access_count=0,
                metadata=resolved,
            )
            await self.vector_store.add(memory)

        logger.info(f"Added {resolved.type.value} memory for {self.owner_id}: {content[:50]!r}")
        return memory

    async def add_memories(self, items: list[dict[str, Any]]) -> list[Memory]:
        """
        Add several memories, skipping the ones that fail.

        Each item is `{"content": ..., "metadata": {...}}`.
        """
        created = []
        for item in items:
            try:
                created.append(await self.add_memory(item.get("content"), item.get("metadata")))
            except (ValidationError, StorageError) as e:
                logger.warning(f"Failed to add memory: {e}")
        return created

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def recall(
        self,
        query: str,
        limit: Optional[int] = None,
        search_filter: Optional[SearchFilter] = None,
    ) -> list[ScoredMemory]:
        """
        Retrieve the memories most relevant to a query.

        Args:
            query: Free text to match against
            limit: Maximum memories to return (configured default if None)
            search_filter: Extra criteria; the owner is always forced

        Returns:
            Hits sorted by descending similarity, scores in [0, 1]
        """
        if not isinstance(query, str) or not query.strip():
            return []
        if limit is None:
            limit = self.default_recall_limit

        search_filter = (search_filter or SearchFilter()).with_owner(self.owner_id)
        if search_filter.min_similarity is None:
            search_filter = dataclasses.replace(search_filter, min_similarity=self.min_similarity)
        elif search_filter.min_similarity < 0:
            search_filter = dataclasses.replace(search_filter, min_similarity=0.0)

        async with self._lock:
            # Queries must not shift the document statistics
            query_embedding = await self.embedding_service.embed(query, update_vocabulary=False)
            results = await self.vector_store.search(query_embedding, limit, search_filter)

            for result in results:
                accessed = await self._record_access(result.id)
                if accessed is not None:
                    result.memory = accessed

        logger.debug(f"Recalled {len(results)} memories for {self.owner_id}")
        return results

    async def record_access(self, memory_id: str) -> bool:
        """Bump access count and last-access time; False if it could not be recorded."""
        async with self._lock:
            return await self._record_access(memory_id) is not None

    async def _record_access(self, memory_id: str) -> Optional[Memory]:
        try:
            current = await self.vector_store.get(memory_id)
            if current is None or current.owner_id != self.owner_id:
                return None
            fields = {
                "last_accessed": self.clock.now(),
                "access_count": current.access_count + 1,
            }
            if await self.vector_store.update(memory_id, fields):
                return current.merged(fields)
        except StorageError as e:
            logger.debug(f"Failed to record access for {memory_id}: {e}")
        return None

    async def _scan(self, search_filter: SearchFilter) -> list[Memory]:
        """
        Unranked filtered scan: zero query vector, no similarity threshold.

        The limit covers the whole store so callers can sort the full match set.
        """
        search_filter = dataclasses.replace(
            search_filter.with_owner(self.owner_id), min_similarity=0.0
        )
        async with self._lock:
            limit = max(1, await self.vector_store.count())
            results = await self.vector_store.search(
                zero_vector(self.embedding_service.dimension), limit, search_filter
            )
        return [r.memory for r in results]

    async def get_recent_memories(self, hours: float = 24, limit: int = 10) -> list[Memory]:
        """Memories created in the last `hours`, newest first."""
        after = self.clock.now() - int(hours * MS_PER_HOUR)
        memories = await self._scan(SearchFilter(after_timestamp=after))
        memories.sort(key=lambda m: m.timestamp, reverse=True)
        return memories[:limit]

    async def get_memories_by_type(self, memory_type: "MemoryType | str", limit: int = 10) -> list[Memory]:
        """Memories of one type, newest first."""
        try:
            memory_type = MemoryType.parse(memory_type)
        except ValueError:
            raise ValidationError(f"Unknown memory type: {memory_type!r}")
        memories = await self._scan(SearchFilter(type=memory_type))
        memories.sort(key=lambda m: m.timestamp, reverse=True)
        return memories[:limit]

    async def get_important_memories(
        self,
        limit: int = 10,
        min_importance: int = ImportanceLevel.HIGH,
    ) -> list[Memory]:
        """Memories at or above `min_importance`, most important first."""
        memories = await self._scan(SearchFilter(min_importance=min_importance))
        memories.sort(key=lambda m: m.metadata.importance, reverse=True)
        return memories[:limit]

    # =========================================================================
    # Lifecycle jobs
    # =========================================================================

    async def consolidate(self, similarity_threshold: Optional[float] = None) -> ConsolidationResult:
        """
        Merge near-duplicate memories.

        Greedy pairwise pass in creation order. Each merge is applied to a
        working copy of the keeper, so later comparisons see the boosted
        importance and summed access counts.
        """
        threshold = self.consolidation_threshold if similarity_threshold is None else similarity_threshold

        async with self._lock:
            memories = await self._owner_memories()
            if len(memories) < 2:
                return ConsolidationResult(merged=0, remaining=len(memories))

            to_delete: set[str] = set()
            to_update: dict[str, Memory] = {}

            for i in range(len(memories)):
                if memories[i].id in to_delete:
                    continue
                for j in range(i + 1, len(memories)):
                    if memories[j].id in to_delete:
                        continue
                    similarity = cosine_similarity(memories[i].embedding, memories[j].embedding)
                    if similarity < threshold:
                        continue

                    keeper, loser = select_keeper(memories[i], memories[j])
                    merged = merge_duplicate(keeper, loser)
                    to_delete.add(loser.id)
                    to_update[merged.id] = merged
                    if keeper is memories[i]:
                        memories[i] = merged
                    else:
                        memories[j] = merged
                        break

            for memory_id, memory in to_update.items():
                if memory_id in to_delete:
                    continue
                try:
                    await self.vector_store.update(memory_id, {
                        "access_count": memory.access_count,
                        "metadata": {
                            "importance": memory.metadata.importance,
                            "tags": memory.metadata.tags,
                        },
                    })
                except StorageError as e:
                    logger.warning(f"Consolidation could not update {memory_id}: {e}")

            removed = 0
            for memory_id in to_delete:
                try:
                    if await self.vector_store.delete(memory_id):
                        removed += 1
                except StorageError as e:
                    logger.warning(f"Consolidation could not delete {memory_id}: {e}")

        logger.info(f"Consolidated {removed} memories for {self.owner_id}")
        return ConsolidationResult(merged=removed, remaining=len(memories) - removed)

    async def apply_decay(self) -> DecayResult:
        """
        Reduce the importance of old, rarely accessed memories.

        Memories younger than the grace period and permanent memories are
        left alone. A memory whose importance falls to TRIVIAL is deleted.
        """
        decayed = 0
        removed = 0

        async with self._lock:
            memories = await self._owner_memories()
            now = self.clock.now()
            grace_ms = self.decay_start_hours * MS_PER_HOUR

            for memory in memories:
                age = now - memory.timestamp
                if age < grace_ms or memory.metadata.is_permanent:
                    continue

                current = memory.metadata.importance
                new_importance = decayed_importance(memory, age)
                if new_importance >= current:
                    continue

                try:
                    if new_importance <= ImportanceLevel.TRIVIAL:
                        if await self.vector_store.delete(memory.id):
                            removed += 1
                    elif await self.vector_store.update(
                        memory.id, {"metadata": {"importance": new_importance}}
                    ):
                        decayed += 1
                except StorageError as e:
                    logger.warning(f"Decay could not process {memory.id}: {e}")

        logger.info(f"Decay applied for {self.owner_id}: {decayed} decayed, {removed} removed")
        return DecayResult(decayed=decayed, removed=removed)

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_memory(self, memory_id: str) -> bool:
        """Delete one memory. Returns False if it did not exist."""
        async with self._lock:
            existing = await self.vector_store.get(memory_id)
            if existing is None or existing.owner_id != self.owner_id:
                return False
            return await self.vector_store.delete(memory_id)

    async def delete_memories_matching(
        self,
        memory_type: "MemoryType | str | None" = None,
        older_than_days: Optional[float] = None,
        below_importance: Optional[int] = None,
    ) -> int:
        """
        Delete memories meeting ANY of the given criteria.

        Args:
            memory_type: Delete memories of this type
            older_than_days: Delete memories created before now - N days
            below_importance: Delete memories with importance < N

        Returns:
            Number of memories deleted
        """
        if memory_type is not None:
            try:
                memory_type = MemoryType.parse(memory_type)
            except ValueError:
                raise ValidationError(f"Unknown memory type: {memory_type!r}")

        deleted = 0
        async with self._lock:
            memories = await self._owner_memories()
            cutoff = None
            if older_than_days is not None:
                cutoff = self.clock.now() - int(older_than_days * MS_PER_DAY)

            for memory in memories:
                matches = (
                    (memory_type is not None and memory.metadata.type == memory_type)
                    or (cutoff is not None and memory.timestamp < cutoff)
                    or (below_importance is not None and memory.metadata.importance < below_importance)
                )
                if not matches:
                    continue
                try:
                    if await self.vector_store.delete(memory.id):
                        deleted += 1
                except StorageError as e:
                    logger.warning(f"Could not delete {memory.id}: {e}")

        logger.info(f"Deleted {deleted} matching memories for {self.owner_id}")
        return deleted

    async def clear_all_memories(self) -> int:
        """Delete every memory of this owner and reset term statistics."""
        async with self._lock:
            return await self._clear()

    async def _clear(self) -> int:
        memories = await self._owner_memories()
        removed = await self.vector_store.delete_many([m.id for m in memories])
        self.embedding_service.reset_vocabulary()
        logger.info(f"Cleared {removed} memories for {self.owner_id}")
        return removed

    # =========================================================================
    # Backup
    # =========================================================================

    async def export(self) -> dict[str, Any]:
        """Versioned JSON-ready bundle of all this owner's memories."""
        async with self._lock:
            memories = await self._owner_memories()
        export_date = datetime.fromtimestamp(self.clock.now() / 1000, tz=timezone.utc)
        return {
            "version": EXPORT_VERSION,
            "ownerId": self.owner_id,
            "exportDate": export_date.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "memoryCount": len(memories),
            "memories": [m.to_dict() for m in memories],
        }

    async def import_bundle(self, bundle: dict[str, Any], merge: bool = True) -> ImportResult:
        """
        Import memories from an export bundle.

        Args:
            bundle: Output of export()
            merge: Keep existing memories and skip ids already present.
                If False, this owner's memories are replaced.

        Returns:
            Counts of imported and skipped records
        """
        if not isinstance(bundle, dict) or not isinstance(bundle.get("memories"), list):
            raise ValidationError("Invalid import data format")

        source_owner = bundle.get("ownerId", bundle.get("characterId"))
        if source_owner and source_owner != self.owner_id:
            logger.warning(f"Import owner mismatch: {source_owner} vs {self.owner_id}")

        imported = 0
        skipped = 0
        dimension = self.embedding_service.dimension

        async with self._lock:
            if not merge:
                await self._clear()

            for raw in bundle["memories"]:
                try:
                    memory = Memory.from_dict(raw)
                except (KeyError, TypeError, ValueError, OverflowError) as e:
                    logger.warning(f"Skipping malformed memory in import: {e}")
                    skipped += 1
                    continue
                memory.content = memory.content.strip()
                if not memory.content:
                    logger.warning(f"Skipping memory {memory.id} with empty content")
                    skipped += 1
                    continue
                memory.owner_id = self.owner_id

                try:
                    if merge and await self.vector_store.get(memory.id) is not None:
                        skipped += 1
                        continue
                    if len(memory.embedding) != dimension:
                        memory.embedding = await self.embedding_service.embed(memory.content)
                    else:
                        self.embedding_service.observe(memory.content)
                    await self.vector_store.add(memory)
                    imported += 1
                except StorageError as e:
                    logger.warning(f"Failed to import memory {memory.id}: {e}")
                    skipped += 1

        logger.info(f"Imported {imported} memories for {self.owner_id}, skipped {skipped}")
        return ImportResult(imported=imported, skipped=skipped)

    async def get_stats(self) -> MemoryStats:
        """Counts by type and importance plus notable records."""
        async with self._lock:
            memories = await self._owner_memories()

        stats = MemoryStats(total_count=len(memories))
        if not memories:
            return stats

        for memory in memories:
            type_name = memory.metadata.type.value
            stats.by_type[type_name] = stats.by_type.get(type_name, 0) + 1
            importance = memory.metadata.importance
            stats.by_importance[importance] = stats.by_importance.get(importance, 0) + 1

        stats.average_importance = sum(m.metadata.importance for m in memories) / len(memories)
        # First wins on ties
        stats.oldest_memory = min(memories, key=lambda m: m.timestamp)
        stats.newest_memory = max(memories, key=lambda m: m.timestamp)
        most_accessed = max(memories, key=lambda m: m.access_count)
        stats.most_accessed = most_accessed if most_accessed.access_count > 0 else None
        return stats


# =============================================================================
# Per-owner registry
# =============================================================================

_managers: dict[str, MemoryManager] = {}


def get_memory_manager(
    owner_id: str,
    vector_store: Optional[VectorStore] = None,
    embedding_service: Optional[EmbeddingService] = None,
    **options: Any,
) -> MemoryManager:
    """
    Get or create the MemoryManager for an owner.

    A new manager defaults to an in-memory store and local embeddings.
    Arguments are ignored when the owner already has a manager.
    """
    if owner_id not in _managers:
        _managers[owner_id] = MemoryManager(
            owner_id,
            vector_store=vector_store or InMemoryVectorStore(),
            embedding_service=embedding_service or LocalEmbeddingService(),
            **options,
        )
    return _managers[owner_id]


def remove_memory_manager(owner_id: str) -> None:
    _managers.pop(owner_id, None)


def clear_all_managers() -> None:
    _managers.clear()


async def create_memory_manager(
    owner_id: str,
    config: "Optional[MemoryConfig]" = None,
    clock=None,
) -> MemoryManager:
    """
    Factory function to create a configured, initialized MemoryManager.

    Args:
        owner_id: Whose memories the manager holds
        config: Store and embedding settings (defaults if None)
        clock: Time source (wall clock if None)

    Returns:
        Initialized MemoryManager
    """
    from ..config import MemoryConfig
    from .embeddings import create_embedding_service
    from .factory import create_vector_store

    config = config or MemoryConfig()

    embedding_service = create_embedding_service(
        provider=config.embedding_provider,
        api_key=config.embedding_api_key,
        base_url=config.embedding_base_url or None,
        model=config.embedding_model,
        dimension=config.embedding_dimension,
        timeout=config.embedding_timeout,
    )

    vector_store = create_vector_store(
        store_type=config.store_type,
        chroma_path=config.chroma_path,
        collection_name=config.collection_name,
        chroma_host=config.chroma_host,
        chroma_port=config.chroma_port,
        chroma_ssl=config.chroma_ssl,
        postgres_url=config.postgres_url,
        embedding_dimension=embedding_service.dimension,
        default_min_similarity=config.min_similarity,
    )

    manager = MemoryManager(
        owner_id,
        vector_store=vector_store,
        embedding_service=embedding_service,
        clock=clock,
        min_similarity=config.min_similarity,
        decay_start_hours=config.decay_start_hours,
        default_recall_limit=config.default_recall_limit,
        consolidation_threshold=config.consolidation_threshold,
    )

    await manager.initialize()
    return manager
