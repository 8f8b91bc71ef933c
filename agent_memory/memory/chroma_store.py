"""
ChromaDB Vector Store Implementation.

Two flavours share one implementation:
- ChromaVectorStore: embedded PersistentClient in a local directory.
  No server required, survives restarts.
- ChromaHttpVectorStore: the same collection API against a remote
  Chroma server over HTTP.

Chroma metadata only holds scalars, so tags and custom fields are
stored JSON-encoded and None values are left out. Owner, type,
importance and time-range filters are pushed down as a `where`
clause; tag matching and exact cosine scoring happen client-side so
results agree with every other backend.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from .base import (
    Memory,
    MemoryMetadata,
    ScoredMemory,
    SearchFilter,
    VectorStore,
    rank_memories,
)
from .embeddings import vector_norm
from .types import DEFAULT_MIN_SIMILARITY

logger = logging.getLogger("agent_memory.memory.chroma")

_INCLUDE = ["documents", "metadatas", "embeddings"]


def build_where_clause(search_filter: Optional[SearchFilter]) -> Optional[dict]:
    """Translate the structured part of a SearchFilter into a Chroma `where`."""
    if search_filter is None:
        return None

    conditions: list[dict] = []
    if search_filter.owner_id is not None:
        conditions.append({"owner_id": search_filter.owner_id})
    if search_filter.type is not None:
        conditions.append({"type": search_filter.type.value})
    if search_filter.min_importance is not None:
        conditions.append({"importance": {"$gte": int(search_filter.min_importance)}})
    if search_filter.after_timestamp is not None:
        conditions.append({"timestamp": {"$gte": int(search_filter.after_timestamp)}})
    if search_filter.before_timestamp is not None:
        conditions.append({"timestamp": {"$lte": int(search_filter.before_timestamp)}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def _column(results: dict, key: str) -> list:
    # Chroma may hand back numpy arrays, which must not be truth-tested
    column = results.get(key)
    return [] if column is None else list(column)


class ChromaVectorStore(VectorStore):
    """
    ChromaDB implementation of the vector store.

    Stores memories locally with full persistence.
    """

    backend_name = "chroma"

    def __init__(
        self,
        persist_directory: str = "./memory_store",
        collection_name: str = "agent_memories",
        default_min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ):
        super().__init__(default_min_similarity)
        self.persist_directory = Path(persist_directory) if persist_directory else None
        self.collection_name = collection_name
        self._client = None
        self._collection = None
        logger.info(f"ChromaVectorStore configured with directory: {persist_directory}")

    def _create_client(self):
        import chromadb
        from chromadb.config import Settings

        # Create persist directory if needed
        self.persist_directory.mkdir(parents=True, exist_ok=True)

        return chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=Settings(
                anonymized_telemetry=False,
                allow_reset=True,
            ),
        )

    def _open_collection(self):
        return self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={
                "hnsw:space": "cosine",
                "description": "Agent memory store",
            },
        )

    async def initialize(self) -> None:
        """Initialize ChromaDB client and collection."""
        with self._storage_errors("initialize"):
            self._client = self._create_client()
            self._collection = self._open_collection()
            count = self._collection.count()
        logger.info(f"ChromaDB initialized with {count} existing memories")

    def _ensure_initialized(self) -> None:
        """Ensure the store is initialized."""
        if self._collection is None:
            raise RuntimeError(f"{type(self).__name__} not initialized. Call initialize() first.")

    def _memory_to_metadata(self, memory: Memory) -> dict:
        """Convert a Memory to ChromaDB metadata."""
        meta = memory.metadata
        metadata = {
            "owner_id": memory.owner_id,
            "type": meta.type.value,
            "importance": meta.importance,
            "decay_rate": meta.decay_rate,
            "tags": json.dumps(meta.tags),
            "custom": json.dumps(meta.custom),
            "timestamp": memory.timestamp,
            "last_accessed": memory.last_accessed,
            "access_count": memory.access_count,
        }
        for key, value in (
            ("source", meta.source),
            ("related_entity", meta.related_entity),
            ("location", meta.location),
        ):
            if value is not None:
                metadata[key] = value
        return metadata

    def _metadata_to_memory(
        self, id: str, metadata: dict, document: str, embedding: Any
    ) -> Memory:
        """Convert ChromaDB metadata back to a Memory."""
        return Memory(
            id=id,
            owner_id=metadata.get("owner_id", ""),
            content=document or "",
            embedding=[float(x) for x in embedding] if embedding is not None else [],
            timestamp=int(metadata["timestamp"]),
            last_accessed=int(metadata.get("last_accessed", metadata["timestamp"])),
            access_count=int(metadata.get("access_count", 0)),
            metadata=MemoryMetadata(
                type=metadata["type"],
                importance=metadata["importance"],
                decay_rate=metadata["decay_rate"],
                tags=json.loads(metadata.get("tags") or "[]"),
                source=metadata.get("source"),
                related_entity=metadata.get("related_entity"),
                location=metadata.get("location"),
                custom=json.loads(metadata.get("custom") or "{}"),
            ),
        )

    def _rows_to_memories(self, results: dict) -> list[Memory]:
        """Convert a flat `collection.get` result into Memories."""
        ids = _column(results, "ids")
        documents = _column(results, "documents")
        metadatas = _column(results, "metadatas")
        embeddings = _column(results, "embeddings")

        memories = []
        for i, id in enumerate(ids):
            memories.append(self._metadata_to_memory(
                id=id,
                metadata=metadatas[i],
                document=documents[i] if documents else "",
                embedding=embeddings[i] if embeddings else None,
            ))
        # Chroma does not guarantee order; creation order keeps ties stable
        memories.sort(key=lambda m: m.timestamp)
        return memories

    async def add(self, memory: Memory) -> None:
        """Store (or replace) a memory with its embedding."""
        self._ensure_initialized()

        with self._storage_errors("add"):
            self._collection.upsert(
                ids=[memory.id],
                embeddings=[list(memory.embedding)],
                documents=[memory.content],
                metadatas=[self._memory_to_metadata(memory)],
            )
        logger.debug(f"Stored memory: {memory.id}")

    async def update(self, memory_id: str, fields: dict[str, Any]) -> bool:
        existing = await self.get(memory_id)
        if existing is None:
            return False
        await self.add(existing.merged(fields))
        return True

    async def get(self, memory_id: str) -> Optional[Memory]:
        self._ensure_initialized()

        with self._storage_errors("get"):
            results = self._collection.get(ids=[memory_id], include=_INCLUDE)
        memories = self._rows_to_memories(results)
        return memories[0] if memories else None

    async def get_all(self) -> list[Memory]:
        self._ensure_initialized()

        with self._storage_errors("get_all"):
            results = self._collection.get(include=_INCLUDE)
        return self._rows_to_memories(results)

    async def delete(self, memory_id: str) -> bool:
        return await self.delete_many([memory_id]) > 0

    async def delete_many(self, memory_ids) -> int:
        self._ensure_initialized()

        memory_ids = list(dict.fromkeys(memory_ids))
        if not memory_ids:
            return 0

        with self._storage_errors("delete"):
            existing = _column(self._collection.get(ids=memory_ids, include=["metadatas"]), "ids")
            if existing:
                self._collection.delete(ids=existing)
        return len(existing)

    async def search(
        self,
        query_embedding: list[float],
        limit: int = 5,
        search_filter: Optional[SearchFilter] = None,
    ) -> list[ScoredMemory]:
        """Search for similar memories."""
        self._ensure_initialized()
        search_filter = search_filter or SearchFilter()
        where = build_where_clause(search_filter)

        with self._storage_errors("search"):
            total = self._collection.count()
            if total == 0 or limit <= 0:
                return []

            if vector_norm(query_embedding) == 0:
                # Nothing to rank against: unranked scan of the filtered set
                candidates = self._rows_to_memories(
                    self._collection.get(where=where, include=_INCLUDE)
                )
            else:
                # Tag matching is client-side, so over-fetch when it can drop hits
                n_results = total if search_filter.tags else min(total, limit * 4)
                results = self._collection.query(
                    query_embeddings=[list(query_embedding)],
                    n_results=n_results,
                    where=where,
                    include=_INCLUDE,
                )
                candidates = self._rows_to_memories({
                    key: (_column(results, key)[0] if _column(results, key) else [])
                    for key in ("ids", "documents", "metadatas", "embeddings")
                })

        # Exact cosine over the candidates; ANN distances are only used to pick them
        return rank_memories(
            candidates,
            query_embedding,
            limit,
            search_filter,
            default_min_similarity=self.default_min_similarity,
        )

    async def count(self) -> int:
        """Get total number of stored memories."""
        self._ensure_initialized()
        with self._storage_errors("count"):
            return self._collection.count()

    async def clear(self) -> None:
        """Drop and recreate the collection."""
        self._ensure_initialized()
        with self._storage_errors("clear"):
            self._client.delete_collection(self.collection_name)
            self._collection = self._open_collection()
        logger.info(f"Chroma collection cleared: {self.collection_name}")

    async def close(self) -> None:
        """Clean up resources."""
        self._client = None
        self._collection = None
        logger.info("ChromaDB connection closed")


class ChromaHttpVectorStore(ChromaVectorStore):
    """
    Remote Chroma server over HTTP.

    Same contract and data layout as the embedded store; only the client
    differs.
    """

    backend_name = "chroma_http"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8000,
        collection_name: str = "agent_memories",
        ssl: bool = False,
        headers: Optional[dict[str, str]] = None,
        default_min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ):
        super().__init__(
            persist_directory="",
            collection_name=collection_name,
            default_min_similarity=default_min_similarity,
        )
        self.host = host
        self.port = port
        self.ssl = ssl
        self.headers = headers or {}
        logger.info(f"ChromaHttpVectorStore configured for {host}:{port}")

    def _create_client(self):
        import chromadb
        from chromadb.config import Settings

        return chromadb.HttpClient(
            host=self.host,
            port=self.port,
            ssl=self.ssl,
            headers=self.headers,
            settings=Settings(anonymized_telemetry=False),
        )
