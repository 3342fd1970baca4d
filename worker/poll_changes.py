"""Worker: consume the mission change feed and persist the cursor.

Usage:
    python -m worker.poll_changes
    python -m worker.poll_changes --cursor-file data/change_cursor --reset
"""

import argparse
from pathlib import Path

import structlog

from config import Settings, get_settings
from db.connection import get_session
from missionfactory.services._types import ChangeDict
from missionfactory.services.registry import MissionRegistry
from missionfactory.services.transfers import LedgerTransferGateway

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def read_cursor(path: Path) -> int:
    if not path.exists():
        return 0
    raw: str = path.read_text(encoding="utf-8").strip()
    return int(raw) if raw else 0


def write_cursor(path: Path, seq: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp: Path = path.with_suffix(".tmp")
    tmp.write_text(str(seq), encoding="utf-8")
    tmp.replace(path)


def poll(registry: MissionRegistry, cursor_path: Path) -> list[ChangeDict]:
    """Fetch changes after the stored cursor and advance it."""
    last_seq: int = read_cursor(cursor_path)
    changes: list[ChangeDict] = registry.get_changes_after(last_seq)
    if changes:
        write_cursor(cursor_path, changes[-1]["seq"])
    return changes


def main(argv: list[str] | None = None) -> None:
    settings: Settings = get_settings()
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Poll the mission change feed",
    )
    parser.add_argument(
        "--cursor-file",
        type=Path,
        default=settings.data_dir / "change_cursor",
        help="File holding the last seen sequence number",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Start again from sequence 0 (full reconciliation)",
    )
    args: argparse.Namespace = parser.parse_args(argv)

    if args.reset:
        write_cursor(args.cursor_file, 0)

    with get_session() as session:
        gateway = LedgerTransferGateway(session, settings.missions.contract_addresses)
        registry = MissionRegistry(session, gateway, settings=settings.missions)
        changes: list[ChangeDict] = poll(registry, args.cursor_file)

    for change in changes:
        logger.info(
            "Mission changed",
            mission_id=change["mission_id"],
            seq=change["seq"],
            status=change["status"],
            timestamp=change["timestamp"],
        )
    logger.info("Poll complete", changes=len(changes), cursor=read_cursor(args.cursor_file))


if __name__ == "__main__":
    main()
