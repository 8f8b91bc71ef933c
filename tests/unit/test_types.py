"""
Unit tests for agent_memory/memory/types.py

Tests type parsing, per-type defaults, importance clamping and clocks.
"""

import pytest

from agent_memory.memory.types import (
    MS_PER_DAY,
    MS_PER_HOUR,
    DecayRate,
    FrozenClock,
    ImportanceLevel,
    MemoryType,
    SystemClock,
    clamp_importance,
    default_decay_rate_for_type,
    default_importance_for_type,
)


class TestMemoryType:
    """Tests for MemoryType parsing."""

    def test_parse_string(self):
        assert MemoryType.parse("fact") is MemoryType.FACT
        assert MemoryType.parse(" Quest ") is MemoryType.QUEST

    def test_parse_member_passthrough(self):
        assert MemoryType.parse(MemoryType.EMOTION) is MemoryType.EMOTION

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            MemoryType.parse("dream")

    def test_ten_types(self):
        assert len(MemoryType) == 10


class TestTypeDefaults:
    """Tests for default importance and decay rate by type."""

    @pytest.mark.parametrize("memory_type,expected", [
        ("event", ImportanceLevel.HIGH),
        ("quest", ImportanceLevel.HIGH),
        ("relationship", ImportanceLevel.ABOVE_AVERAGE),
        ("character", ImportanceLevel.ABOVE_AVERAGE),
        ("fact", ImportanceLevel.MEDIUM),
        ("preference", ImportanceLevel.MEDIUM),
        ("emotion", ImportanceLevel.BELOW_AVERAGE),
        ("location", ImportanceLevel.BELOW_AVERAGE),
        ("conversation", ImportanceLevel.LOW),
        ("item", ImportanceLevel.LOW),
    ])
    def test_default_importance(self, memory_type, expected):
        assert default_importance_for_type(memory_type) == expected

    @pytest.mark.parametrize("memory_type,expected", [
        ("fact", DecayRate.PERMANENT),
        ("character", DecayRate.PERMANENT),
        ("event", DecayRate.SLOW),
        ("quest", DecayRate.SLOW),
        ("relationship", DecayRate.SLOW),
        ("preference", DecayRate.NORMAL),
        ("location", DecayRate.NORMAL),
        ("item", DecayRate.NORMAL),
        ("conversation", DecayRate.FAST),
        ("emotion", DecayRate.FAST),
    ])
    def test_default_decay_rate(self, memory_type, expected):
        assert default_decay_rate_for_type(memory_type) == expected


class TestClampImportance:
    """Tests for clamp_importance."""

    def test_in_range_unchanged(self):
        assert clamp_importance(7) == 7

    def test_clamps_low_and_high(self):
        assert clamp_importance(0) == 1
        assert clamp_importance(-4) == 1
        assert clamp_importance(42) == 10

    def test_rounds_floats(self):
        assert clamp_importance(6.6) == 7

    def test_infinities_clamp_to_bounds(self):
        assert clamp_importance(float("inf")) == 10
        assert clamp_importance(float("-inf")) == 1


class TestClocks:
    """Tests for SystemClock and FrozenClock."""

    def test_system_clock_is_epoch_ms(self):
        now = SystemClock().now()
        # Sometime after 2020 in milliseconds
        assert now > 1_577_836_800_000

    def test_frozen_clock_advance(self):
        clock = FrozenClock(start=1000)
        assert clock.now() == 1000

        clock.advance(days=1, hours=2, ms=3)
        assert clock.now() == 1000 + MS_PER_DAY + 2 * MS_PER_HOUR + 3

    def test_frozen_clock_set(self):
        clock = FrozenClock()
        clock.set(5)
        assert clock.now() == 5
