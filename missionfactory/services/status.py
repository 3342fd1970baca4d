"""Time-derived mission status.

Status is never stored while a mission is live; it is recomputed from the
counters and timestamps below. The only stored value is ``terminal_status``,
written once a mission reaches Success or Failed.
"""

from typing import Protocol

from db.enums import MissionStatus


class MissionView(Protocol):
    """Read-only mission data the registry and queries rely on."""

    enrollment_start: int
    enrollment_end: int
    mission_start: int
    mission_end: int
    mission_rounds: int
    min_players: int
    players_count: int
    round_count: int
    round_pause_duration: int
    last_round_pause_duration: int
    pause_timestamp: int | None
    terminal_status: MissionStatus | None


def cooldown_for(data: MissionView) -> int:
    """Pause that precedes the next round. The final round has its own length."""
    if data.round_count == data.mission_rounds - 1:
        return data.last_round_pause_duration
    return data.round_pause_duration


def cooldown_remaining(now: int, data: MissionView) -> int:
    if data.pause_timestamp is None:
        return 0
    return max(0, data.pause_timestamp + cooldown_for(data) - now)


def derive_status(now: int, data: MissionView) -> MissionStatus:
    if data.terminal_status is not None:
        return data.terminal_status
    if now < data.enrollment_start:
        return MissionStatus.PENDING
    if now <= data.enrollment_end:
        return MissionStatus.ENROLLING
    if data.players_count < data.min_players:
        return MissionStatus.FAILED
    if now < data.mission_start:
        return MissionStatus.ARMING
    if data.round_count >= data.mission_rounds:
        return MissionStatus.SUCCESS
    if now >= data.mission_end:
        return MissionStatus.FAILED if data.round_count == 0 else MissionStatus.PARTLY_SUCCESS
    if cooldown_remaining(now, data) > 0:
        return MissionStatus.PAUSED
    return MissionStatus.ACTIVE
