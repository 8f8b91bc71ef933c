"""
Memory types, importance levels, decay rates and engine-wide defaults.

Also holds the clock abstraction used for timestamps and decay ages.
All times in the memory engine are integer epoch milliseconds.
"""

import math
import time
from enum import Enum, IntEnum


class MemoryType(str, Enum):
    """Closed set of memory categories."""
    CONVERSATION = "conversation"  # Things said in chat
    FACT = "fact"  # Facts about the player or the world
    EMOTION = "emotion"
    EVENT = "event"  # Story events and plot points
    RELATIONSHIP = "relationship"
    PREFERENCE = "preference"
    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    QUEST = "quest"

    @classmethod
    def parse(cls, value: "str | MemoryType") -> "MemoryType":
        """Resolve a string or enum member, raising ValueError for unknown types."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class ImportanceLevel(IntEnum):
    """Importance scale (1-10). Higher importance = more likely to be recalled."""
    TRIVIAL = 1
    MINOR = 2
    LOW = 3
    BELOW_AVERAGE = 4
    MEDIUM = 5
    ABOVE_AVERAGE = 6
    HIGH = 7
    VERY_HIGH = 8
    ESSENTIAL = 9
    CRITICAL = 10


class DecayRate:
    """How quickly memories fade. Lower = faster, 1.0 = never."""
    FAST = 0.1
    NORMAL = 0.5
    SLOW = 0.8
    PERMANENT = 1.0


MIN_IMPORTANCE = int(ImportanceLevel.TRIVIAL)
MAX_IMPORTANCE = int(ImportanceLevel.CRITICAL)

# Engine defaults (overridable through MemoryConfig)
DEFAULT_MEMORY_TYPE = MemoryType.CONVERSATION
DEFAULT_IMPORTANCE = int(ImportanceLevel.MEDIUM)
DEFAULT_DECAY_RATE = DecayRate.NORMAL
DEFAULT_RECALL_LIMIT = 5
DEFAULT_MIN_SIMILARITY = 0.3
DEFAULT_DECAY_START_HOURS = 24
DEFAULT_CONSOLIDATION_THRESHOLD = 0.85
EMBEDDING_DIMENSION = 384

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR

EXPORT_VERSION = "1.0"


def default_importance_for_type(memory_type: "MemoryType | str") -> int:
    """Default importance level for a memory type."""
    memory_type = MemoryType.parse(memory_type)
    if memory_type in (MemoryType.EVENT, MemoryType.QUEST):
        return int(ImportanceLevel.HIGH)
    if memory_type in (MemoryType.RELATIONSHIP, MemoryType.CHARACTER):
        return int(ImportanceLevel.ABOVE_AVERAGE)
    if memory_type in (MemoryType.FACT, MemoryType.PREFERENCE):
        return int(ImportanceLevel.MEDIUM)
    if memory_type in (MemoryType.EMOTION, MemoryType.LOCATION):
        return int(ImportanceLevel.BELOW_AVERAGE)
    return int(ImportanceLevel.LOW)


def default_decay_rate_for_type(memory_type: "MemoryType | str") -> float:
    """Default decay rate for a memory type."""
    memory_type = MemoryType.parse(memory_type)
    if memory_type in (MemoryType.FACT, MemoryType.CHARACTER):
        return DecayRate.PERMANENT
    if memory_type in (MemoryType.EVENT, MemoryType.QUEST, MemoryType.RELATIONSHIP):
        return DecayRate.SLOW
    if memory_type in (MemoryType.PREFERENCE, MemoryType.LOCATION, MemoryType.ITEM):
        return DecayRate.NORMAL
    return DecayRate.FAST


def clamp_importance(value: float) -> int:
    """Clamp an importance value into [1, 10]. Infinities clamp to the bounds."""
    if math.isinf(value):
        return MAX_IMPORTANCE if value > 0 else MIN_IMPORTANCE
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(round(value))))


class SystemClock:
    """Wall clock in epoch milliseconds."""

    def now(self) -> int:
        return int(time.time() * 1000)


class FrozenClock:
    """
    Manually driven clock.

    Used to keep time-dependent operations (decay, recent-memory windows)
    deterministic.
    """

    def __init__(self, start: int = 1_700_000_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = int(timestamp)

    def advance(self, days: float = 0, hours: float = 0, ms: int = 0) -> int:
        self._now += int(days * MS_PER_DAY + hours * MS_PER_HOUR + ms)
        return self._now
