"""
Maintenance CLI for Agent Memory.

Runs the memory lifecycle jobs on demand for one owner:
1. stats: Counts by type and importance
2. consolidate: Merge near-duplicate memories
3. decay: Fade old, rarely recalled memories
4. maintain: consolidate, then decay
5. export / import: JSON backups

SETUP:
1. Copy .env.example to .env and fill in secrets (POSTGRES_URL, EMBEDDING_API_KEY)
2. Copy config.yaml.example to config.yaml and pick a store
3. Install: pip install -e .

Usage:
    agent-memory --owner alice stats
    agent-memory --owner alice maintain
    agent-memory --owner alice export backup.json
    agent-memory --owner alice import backup.json --replace
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import Config, config, owner_context
from .errors import MemoryEngineError, ValidationError
from .memory import MemoryManager, create_memory_manager

logger = logging.getLogger("agent_memory.main")


def _preview(text: str, length: int = 60) -> str:
    return text if len(text) <= length else text[:length - 3] + "..."


async def _cmd_stats(manager: MemoryManager, args: argparse.Namespace) -> None:
    stats = await manager.get_stats()

    print(f"Memories: {stats.total_count}")
    if not stats.total_count:
        return
    print(f"Average importance: {stats.average_importance:.2f}")
    print("By type:")
    for type_name, count in sorted(stats.by_type.items()):
        print(f"  {type_name:<14} {count}")
    print("By importance:")
    for importance, count in sorted(stats.by_importance.items(), reverse=True):
        print(f"  {importance:>2}  {count}")
    print(f"Oldest: {_preview(stats.oldest_memory.content)}")
    print(f"Newest: {_preview(stats.newest_memory.content)}")
    if stats.most_accessed:
        print(
            f"Most accessed ({stats.most_accessed.access_count}x): "
            f"{_preview(stats.most_accessed.content)}"
        )


async def _cmd_consolidate(manager: MemoryManager, args: argparse.Namespace) -> None:
    result = await manager.consolidate(args.threshold)
    print(f"Consolidation: {result.merged} merged, {result.remaining} remaining")


async def _cmd_decay(manager: MemoryManager, args: argparse.Namespace) -> None:
    result = await manager.apply_decay()
    print(f"Decay: {result.decayed} decayed, {result.removed} removed")


async def _cmd_maintain(manager: MemoryManager, args: argparse.Namespace) -> None:
    await _cmd_consolidate(manager, args)
    await _cmd_decay(manager, args)


async def _cmd_export(manager: MemoryManager, args: argparse.Namespace) -> None:
    bundle = await manager.export()
    path = Path(args.path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(bundle, indent=2))
    print(f"Exported {bundle['memoryCount']} memories to {path}")


async def _cmd_import(manager: MemoryManager, args: argparse.Namespace) -> None:
    path = Path(args.path)
    try:
        bundle = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read import file {path}: {e}") from e

    result = await manager.import_bundle(bundle, merge=not args.replace)
    print(f"Imported {result.imported} memories, skipped {result.skipped}")


COMMANDS = {
    "stats": _cmd_stats,
    "consolidate": _cmd_consolidate,
    "decay": _cmd_decay,
    "maintain": _cmd_maintain,
    "export": _cmd_export,
    "import": _cmd_import,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-memory",
        description="Maintenance jobs for an agent's vector memory.",
    )
    parser.add_argument(
        "--owner",
        help="Memory owner (character / agent id); defaults to app.default_owner",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show memory statistics")

    consolidate = subparsers.add_parser("consolidate", help="Merge near-duplicate memories")
    consolidate.add_argument(
        "--threshold", type=float, default=None,
        help="Cosine similarity at which two memories are merged",
    )

    subparsers.add_parser("decay", help="Apply importance decay")

    maintain = subparsers.add_parser("maintain", help="Consolidate, then decay")
    maintain.add_argument("--threshold", type=float, default=None)

    export = subparsers.add_parser("export", help="Write memories to a JSON file")
    export.add_argument("path")

    import_ = subparsers.add_parser("import", help="Load memories from a JSON file")
    import_.add_argument("path")
    import_.add_argument(
        "--replace", action="store_true",
        help="Replace existing memories instead of merging",
    )

    return parser


async def run_command(args: argparse.Namespace, cfg: Optional[Config] = None) -> bool:
    """
    Run one maintenance command.

    Returns:
        True on success, False on configuration or engine errors
    """
    cfg = cfg or config
    logger = cfg.setup_logging()

    errors = cfg.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return False

    owner_id = args.owner or cfg.app.default_owner
    if not owner_id:
        logger.error("No owner given (use --owner or set app.default_owner)")
        return False
    owner_context.set(owner_id)

    manager = None
    try:
        manager = await create_memory_manager(owner_id, cfg.memory)
        await COMMANDS[args.command](manager, args)
        return True

    except MemoryEngineError as e:
        logger.error(f"{args.command} failed: {e}")
        return False

    finally:
        if manager:
            await manager.close()


def main(argv: Optional[list[str]] = None):
    """Entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        success = asyncio.run(run_command(args))
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
