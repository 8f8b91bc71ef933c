"""
Unit tests for agent_memory/memory/chroma_store.py

Runs the ChromaDB store against a real PersistentClient in tmp_path.
"""

from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio

from agent_memory.errors import StorageError
from agent_memory.memory.base import SearchFilter
from agent_memory.memory.chroma_store import (
    ChromaHttpVectorStore,
    ChromaVectorStore,
    build_where_clause,
)
from agent_memory.memory.types import MemoryType
from tests.fixtures import make_memories, make_memory, unit_vector


@pytest_asyncio.fixture
async def chroma_store(tmp_path):
    """Initialized ChromaDB store in a temporary directory."""
    store = ChromaVectorStore(persist_directory=str(tmp_path / "chroma"), collection_name="test_memories")
    await store.initialize()
    yield store
    await store.close()


class TestBuildWhereClause:
    """Tests for the Chroma `where` translation."""

    def test_no_filter(self):
        assert build_where_clause(None) is None
        assert build_where_clause(SearchFilter()) is None

    def test_single_condition(self):
        assert build_where_clause(SearchFilter(owner_id="alice")) == {"owner_id": "alice"}

    def test_combined_conditions(self):
        where = build_where_clause(SearchFilter(
            owner_id="alice",
            type=MemoryType.FACT,
            min_importance=7,
            after_timestamp=10,
            before_timestamp=20,
        ))

        assert where == {"$and": [
            {"owner_id": "alice"},
            {"type": "fact"},
            {"importance": {"$gte": 7}},
            {"timestamp": {"$gte": 10}},
            {"timestamp": {"$lte": 20}},
        ]}

    def test_tags_are_not_pushed_down(self):
        assert build_where_clause(SearchFilter(tags=["fire"])) is None


class TestChromaVectorStore:
    """Tests for ChromaVectorStore with a local PersistentClient."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, tmp_path):
        store = ChromaVectorStore(persist_directory=str(tmp_path / "chroma"))

        with pytest.raises(RuntimeError):
            await store.count()

    @pytest.mark.asyncio
    async def test_add_and_get_round_trip(self, chroma_store):
        memory = make_memory(tags=["fire", "castle"], source="msg-1", custom={"mood": "grim"})
        await chroma_store.add(memory)

        stored = await chroma_store.get(memory.id)

        assert stored.content == memory.content
        assert stored.owner_id == "alice"
        assert stored.metadata == memory.metadata
        assert stored.embedding == pytest.approx(memory.embedding)
        assert await chroma_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_update(self, chroma_store):
        await chroma_store.add(make_memory(importance=4))

        assert await chroma_store.update("mem_1", {"access_count": 3, "metadata": {"importance": 8}})
        assert await chroma_store.update("missing", {"access_count": 1}) is False

        stored = await chroma_store.get("mem_1")
        assert stored.access_count == 3
        assert stored.metadata.importance == 8

    @pytest.mark.asyncio
    async def test_delete_and_delete_many(self, chroma_store):
        await chroma_store.import_records(make_memories(count=4))

        assert await chroma_store.delete("mem_0") is True
        assert await chroma_store.delete("mem_0") is False
        assert await chroma_store.delete_many(["mem_1", "mem_2", "missing"]) == 2
        assert await chroma_store.count() == 1

    @pytest.mark.asyncio
    async def test_get_all_sorted_by_creation(self, chroma_store):
        memories = make_memories(count=4)
        await chroma_store.import_records(reversed(memories))

        assert [m.id for m in await chroma_store.get_all()] == [m.id for m in memories]

    @pytest.mark.asyncio
    async def test_search_exact_scores(self, chroma_store):
        await chroma_store.add(make_memory(id="exact", embedding=unit_vector(0)))
        await chroma_store.add(make_memory(id="near", embedding=unit_vector(0, second=1, weight=0.5)))
        await chroma_store.add(make_memory(id="other", embedding=unit_vector(7)))

        results = await chroma_store.search(unit_vector(0), limit=5)

        assert [r.id for r in results] == ["exact", "near"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(1 / (1.25 ** 0.5))

    @pytest.mark.asyncio
    async def test_search_filters_owner_and_tags(self, chroma_store):
        await chroma_store.add(make_memory(id="a", owner_id="alice", tags=["fire"]))
        await chroma_store.add(make_memory(id="b", owner_id="alice", tags=["rain"]))
        await chroma_store.add(make_memory(id="c", owner_id="bob", tags=["fire"]))

        results = await chroma_store.search(
            unit_vector(0), limit=5, search_filter=SearchFilter(owner_id="alice", tags=["fire"])
        )

        assert [r.id for r in results] == ["a"]

    @pytest.mark.asyncio
    async def test_zero_vector_scan(self, chroma_store):
        await chroma_store.import_records(make_memories(count=4))

        results = await chroma_store.search(
            [0.0] * 384,
            limit=100,
            search_filter=SearchFilter(owner_id="alice", min_importance=3, min_similarity=0),
        )

        assert sorted(r.id for r in results) == ["mem_2", "mem_3"]
        assert all(r.score == 0.0 for r in results)

    @pytest.mark.asyncio
    async def test_search_empty_collection(self, chroma_store):
        assert await chroma_store.search(unit_vector(0)) == []

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "chroma")
        store = ChromaVectorStore(persist_directory=path)
        await store.initialize()
        await store.add(make_memory())
        await store.close()

        reopened = ChromaVectorStore(persist_directory=path)
        await reopened.initialize()

        assert await reopened.count() == 1
        await reopened.close()

    @pytest.mark.asyncio
    async def test_clear(self, chroma_store):
        await chroma_store.import_records(make_memories(count=3))
        await chroma_store.clear()

        assert await chroma_store.count() == 0
        # Collection is usable again
        await chroma_store.add(make_memory())
        assert await chroma_store.count() == 1

    @pytest.mark.asyncio
    async def test_backend_errors_become_storage_errors(self, chroma_store):
        chroma_store._collection = MagicMock()
        chroma_store._collection.count.side_effect = ConnectionError("gone")

        with pytest.raises(StorageError) as exc_info:
            await chroma_store.count()

        assert exc_info.value.retryable is True
        assert exc_info.value.backend == "chroma"


class TestChromaHttpVectorStore:
    """Tests for the remote Chroma flavour."""

    @pytest.mark.asyncio
    async def test_uses_http_client(self):
        with patch("chromadb.HttpClient") as mock_http_client:
            mock_client = MagicMock()
            mock_client.get_or_create_collection.return_value.count.return_value = 0
            mock_http_client.return_value = mock_client

            store = ChromaHttpVectorStore(host="chroma.internal", port=8001, collection_name="mem")
            await store.initialize()

        assert store.backend_name == "chroma_http"
        kwargs = mock_http_client.call_args.kwargs
        assert kwargs["host"] == "chroma.internal"
        assert kwargs["port"] == 8001
        mock_client.get_or_create_collection.assert_called_once()
        assert mock_client.get_or_create_collection.call_args.kwargs["name"] == "mem"
