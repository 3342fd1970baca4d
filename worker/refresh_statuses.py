"""Worker: arm, fail, pin and refund missions whose status moved with the clock.

Usage:
    python -m worker.refresh_statuses
    python -m worker.refresh_statuses --now 1767225600
"""

import argparse

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Settings, get_settings
from db.connection import get_session
from db.enums import MissionStatus
from db.models import Mission, PlayerRecord
from missionfactory.services._helpers import unix_now
from missionfactory.services.engine import MissionEngine
from missionfactory.services.errors import MissionError
from missionfactory.services.registry import MissionRegistry
from missionfactory.services.transfers import LedgerTransferGateway

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def process_mission(registry: MissionRegistry, mission_id: str, now: int) -> list[str]:
    """Bring one mission up to date. Returns the actions taken."""
    actions: list[str] = []
    engine: MissionEngine = registry.open(mission_id)
    mission: Mission = engine.mission

    if mission.enrollment_end < now < mission.mission_start and not mission.start_checked:
        result = engine.check_start_condition(now)
        actions.append(f"start_checked:{result.status.value}")
        if result.refund is not None:
            actions.append(f"refunded:{len(result.refund.refunded)}")
            return actions

    before: MissionStatus = mission.published_status
    status: MissionStatus = engine.refresh(now)
    if status != before:
        actions.append(f"status:{status.value}")

    if status == MissionStatus.FAILED and any(not p["refunded"] for p in engine.players()):
        refund = engine.refund_all(now)
        actions.append(f"refund:{len(refund.refunded)}/{len(refund.failed)}")
    return actions


def _candidate_ids(session: Session) -> list[str]:
    """Missions whose status is still derived, plus failed missions that owe refunds."""
    unpinned = (
        select(Mission.id).where(Mission.terminal_status.is_(None)).order_by(Mission.seq_no)
    )
    owing = (
        select(PlayerRecord.mission_id)
        .join(Mission, PlayerRecord.mission_id == Mission.id)
        .where(
            Mission.terminal_status == MissionStatus.FAILED,
            PlayerRecord.refunded.is_(False),
        )
        .distinct()
    )
    ids: list[str] = list(session.scalars(unpinned).all()) + list(session.scalars(owing).all())
    return list(dict.fromkeys(ids))


def main(argv: list[str] | None = None) -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Refresh derived mission statuses",
    )
    parser.add_argument(
        "--now",
        type=int,
        default=None,
        help="Evaluate at this unix timestamp instead of the wall clock",
    )
    args: argparse.Namespace = parser.parse_args(argv)
    now: int = args.now if args.now is not None else unix_now()
    settings: Settings = get_settings()

    with get_session() as session:
        mission_ids: list[str] = _candidate_ids(session)

    logger.info("Refreshing missions", count=len(mission_ids), now=now)

    failures: int = 0
    for mission_id in mission_ids:
        try:
            with get_session() as session:
                gateway = LedgerTransferGateway(session, settings.missions.contract_addresses)
                registry = MissionRegistry(session, gateway, settings=settings.missions)
                actions: list[str] = process_mission(registry, mission_id, now)
        except MissionError as e:
            failures += 1
            logger.warning(
                "Mission refresh rejected",
                mission_id=mission_id,
                error=type(e).__name__,
                detail=e.message,
            )
            continue
        logger.info("Mission refreshed", mission_id=mission_id, actions=actions)

    logger.info("Refresh complete", processed=len(mission_ids), failures=failures)


if __name__ == "__main__":
    main()
