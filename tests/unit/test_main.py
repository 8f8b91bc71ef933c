"""
Unit tests for agent_memory/main.py

Tests argument parsing, command dispatch against an in-memory store,
and the process exit codes.
"""

import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_memory.config import AppConfig, Config, MemoryConfig
from agent_memory.main import build_parser, main, run_command
from tests.fixtures import make_memory


@pytest.fixture(autouse=True)
def restore_root_logger():
    """run_command reconfigures the root logger."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def memory_config():
    """Config for the in-memory store with local embeddings."""
    return Config(
        app=AppConfig(default_owner="alice", log_level="WARNING"),
        memory=MemoryConfig(store_type="memory", embedding_provider="local", postgres_url=""),
    )


@pytest.fixture
def bundle_file(tmp_path):
    """An export bundle with two memories for alice."""
    bundle = {
        "version": "1.0",
        "ownerId": "alice",
        "memories": [
            make_memory(id="mem_a", content="The castle burned down", importance=8).to_dict(),
            make_memory(id="mem_b", content="The weather was sunny", importance=3).to_dict(),
        ],
    }
    path = tmp_path / "bundle.json"
    path.write_text(json.dumps(bundle))
    return path


class TestParser:
    """Tests for build_parser."""

    def test_owner_and_command(self):
        args = build_parser().parse_args(["--owner", "bob", "stats"])
        assert args.owner == "bob"
        assert args.command == "stats"

    def test_threshold(self):
        args = build_parser().parse_args(["consolidate", "--threshold", "0.9"])
        assert args.threshold == 0.9
        assert build_parser().parse_args(["maintain"]).threshold is None

    def test_import_flags(self):
        args = build_parser().parse_args(["import", "backup.json", "--replace"])
        assert args.path == "backup.json"
        assert args.replace is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunCommand:
    """Tests for run_command."""

    @pytest.mark.asyncio
    async def test_stats_on_empty_store(self, memory_config, capsys):
        args = build_parser().parse_args(["stats"])

        assert await run_command(args, memory_config) is True
        assert "Memories: 0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_import_reports_counts(self, memory_config, bundle_file, capsys):
        args = build_parser().parse_args(["import", str(bundle_file)])

        assert await run_command(args, memory_config) is True
        assert "Imported 2 memories, skipped 0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_export_writes_bundle(self, memory_config, tmp_path, capsys):
        path = tmp_path / "out" / "backup.json"
        args = build_parser().parse_args(["--owner", "bob", "export", str(path)])

        assert await run_command(args, memory_config) is True

        bundle = json.loads(path.read_text())
        assert bundle["ownerId"] == "bob"
        assert bundle["memoryCount"] == 0
        assert "Exported 0 memories" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_maintain(self, memory_config, capsys):
        args = build_parser().parse_args(["maintain"])

        assert await run_command(args, memory_config) is True

        out = capsys.readouterr().out
        assert "Consolidation: 0 merged, 0 remaining" in out
        assert "Decay: 0 decayed, 0 removed" in out

    @pytest.mark.asyncio
    async def test_unreadable_import_file(self, memory_config, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        args = build_parser().parse_args(["import", str(path)])

        assert await run_command(args, memory_config) is False

    @pytest.mark.asyncio
    async def test_invalid_config(self, memory_config):
        memory_config.memory.store_type = "redis"
        args = build_parser().parse_args(["stats"])

        with patch("agent_memory.main.create_memory_manager") as mock_create:
            assert await run_command(args, memory_config) is False
        mock_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_owner(self, memory_config):
        memory_config.app.default_owner = ""
        args = build_parser().parse_args(["stats"])

        assert await run_command(args, memory_config) is False

    @pytest.mark.asyncio
    async def test_manager_closed_after_command(self, memory_config):
        manager = MagicMock()
        manager.get_stats = AsyncMock(side_effect=RuntimeError("boom"))
        manager.close = AsyncMock()
        args = build_parser().parse_args(["stats"])

        with patch("agent_memory.main.create_memory_manager", AsyncMock(return_value=manager)):
            with pytest.raises(RuntimeError):
                await run_command(args, memory_config)

        manager.close.assert_awaited_once()


class TestMain:
    """Tests for the main entry point exit codes."""

    def test_success_exit_code(self):
        with patch("agent_memory.main.run_command", AsyncMock(return_value=True)):
            with pytest.raises(SystemExit) as exc_info:
                main(["stats"])
        assert exc_info.value.code == 0

    def test_failure_exit_code(self):
        with patch("agent_memory.main.run_command", AsyncMock(return_value=False)):
            with pytest.raises(SystemExit) as exc_info:
                main(["stats"])
        assert exc_info.value.code == 1

    def test_keyboard_interrupt_exit_code(self):
        with patch("agent_memory.main.run_command", MagicMock()), \
                patch("agent_memory.main.asyncio.run", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                main(["stats"])
        assert exc_info.value.code == 130

    def test_unexpected_error_exit_code(self):
        with patch("agent_memory.main.run_command", AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(SystemExit) as exc_info:
                main(["stats"])
        assert exc_info.value.code == 1
