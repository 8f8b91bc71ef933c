"""
Unit tests for agent_memory/memory/factory.py
"""

import pytest

from agent_memory.memory.chroma_store import ChromaHttpVectorStore, ChromaVectorStore
from agent_memory.memory.factory import StoreType, create_vector_store
from agent_memory.memory.memory_store import InMemoryVectorStore
from agent_memory.memory.pgvector_store import PgVectorStore


class TestCreateVectorStore:
    """Tests for backend selection."""

    def test_memory(self):
        store = create_vector_store(StoreType.MEMORY, default_min_similarity=0.5)

        assert isinstance(store, InMemoryVectorStore)
        assert store.default_min_similarity == 0.5

    def test_chroma_from_string(self, tmp_path):
        store = create_vector_store("chroma", chroma_path=str(tmp_path), collection_name="c")

        assert isinstance(store, ChromaVectorStore)
        assert store.collection_name == "c"

    def test_chroma_http(self):
        store = create_vector_store("chroma_http", chroma_host="db", chroma_port=9000)

        assert isinstance(store, ChromaHttpVectorStore)
        assert (store.host, store.port) == ("db", 9000)

    def test_pgvector(self):
        store = create_vector_store(
            StoreType.PGVECTOR, postgres_url="postgresql://x", embedding_dimension=256
        )

        assert isinstance(store, PgVectorStore)
        assert store.embedding_dimension == 256

    def test_pgvector_requires_url(self):
        with pytest.raises(ValueError):
            create_vector_store(StoreType.PGVECTOR)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_vector_store("indexeddb")
