"""
Test fixtures and sample data for agent memory tests.
"""

from typing import Optional

from agent_memory.memory.base import Memory, MemoryMetadata
from agent_memory.memory.types import EMBEDDING_DIMENSION, MemoryType

BASE_TIME = 1_700_000_000_000


def unit_vector(index: int, dimension: int = EMBEDDING_DIMENSION, second: Optional[int] = None,
                weight: float = 0.0) -> list[float]:
    """A unit vector along `index`, optionally tilted towards `second`."""
    vector = [0.0] * dimension
    vector[index] = 1.0
    if second is not None:
        vector[second] = weight
    norm = sum(v * v for v in vector) ** 0.5
    return [v / norm for v in vector]


def make_memory(
    id: str = "mem_1",
    owner_id: str = "alice",
    content: str = "The castle burned down",
    embedding: Optional[list[float]] = None,
    timestamp: int = BASE_TIME,
    last_accessed: Optional[int] = None,
    access_count: int = 0,
    type: MemoryType = MemoryType.EVENT,
    importance: int = 5,
    decay_rate: float = 0.5,
    tags: Optional[list[str]] = None,
    **metadata,
) -> Memory:
    """Create a sample Memory for testing."""
    return Memory(
        id=id,
        owner_id=owner_id,
        content=content,
        embedding=embedding if embedding is not None else unit_vector(0),
        timestamp=timestamp,
        last_accessed=last_accessed if last_accessed is not None else timestamp,
        access_count=access_count,
        metadata=MemoryMetadata(
            type=type,
            importance=importance,
            decay_rate=decay_rate,
            tags=tags or [],
            **metadata,
        ),
    )


def make_memories(count: int = 5, owner_id: str = "alice") -> list[Memory]:
    """Memories with distinct directions, one millisecond apart."""
    return [
        make_memory(
            id=f"mem_{i}",
            owner_id=owner_id,
            content=f"Sample memory number {i}",
            embedding=unit_vector(i),
            timestamp=BASE_TIME + i,
            importance=1 + i % 10,
        )
        for i in range(count)
    ]


SAMPLE_CONTENTS = [
    ("Alex is the player's real name", {"type": "fact", "importance": 8}),
    ("The castle burned down", {"type": "event"}),
    ("The weather was sunny", {"type": "conversation"}),
    ("The player prefers tea over coffee", {"type": "preference", "tags": ["drinks"]}),
    ("Mira distrusts the royal guard", {"type": "relationship", "related_entity": "Mira"}),
]
