"""Typed dicts for service-layer return values.

Keeps route-facing methods explicit about their shape instead of returning bare dicts.
Amounts are rendered as decimal strings; they do not fit in a JSON number.
"""

import sys

if sys.version_info >= (3, 12):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

# -- Enrollment limiter ----------------------------------------------------


class PlayerLimitsDict(TypedDict):
    weekly_count: int
    monthly_count: int
    weekly_limit: int
    monthly_limit: int
    seconds_till_weekly_slot: int
    seconds_till_monthly_slot: int


# -- Change ledger ---------------------------------------------------------


class ChangeDict(TypedDict):
    mission_id: str
    timestamp: int
    seq: int
    status: str


# -- Registry --------------------------------------------------------------


class MissionSummaryDict(TypedDict):
    mission_id: str
    name: str
    mission_type: str
    status: str
    enrollment_end: int
    mission_end: int


class MissionPageDict(TypedDict):
    total: int
    offset: int
    items: list[MissionSummaryDict]


class ParticipationDict(TypedDict):
    mission_id: str
    name: str
    mission_type: str
    status: str
    enrolled_at: int
    amount_won: str
    refunded: bool
    refund_failed: bool


class OwnershipProposalDict(TypedDict):
    new_owner: str | None
    proposer: str | None
    proposed_at: int | None
    seconds_left: int


class FactorySummaryDict(TypedDict):
    owner: str
    pending_owner: str | None
    authorized: list[str]
    total_missions: int
    active_missions: int
    total_successes: int
    total_failures: int
    total_mission_funds: str
    total_owner_earned: str
    platform_balance: str
    weekly_limit: int
    monthly_limit: int
    funds_by_type: dict[str, str]


# -- Mission engine --------------------------------------------------------


class PlayerDict(TypedDict):
    address: str
    enrolled_at: int
    amount_won: str
    won_at: int | None
    refunded: bool
    refund_failed: bool
    refunded_at: int | None


class WinnerDict(TypedDict):
    address: str
    amount: str
    won_at: int | None


class PlayerPageDict(TypedDict):
    total: int
    offset: int
    items: list[PlayerDict]


class RollupDict(TypedDict):
    status: str
    round_count: int
    cro_current: str
    players_count: int
    winners_count: int
    refunded_count: int


class MissionSnapshotDict(TypedDict):
    mission_id: str
    name: str
    mission_type: str
    creator: str | None
    status: str
    enrollment_start: int
    enrollment_end: int
    enrollment_amount: str
    min_players: int
    max_players: int
    mission_start: int
    mission_end: int
    mission_rounds: int
    round_count: int
    round_pause_duration: int
    last_round_pause_duration: int
    cro_initial: str
    cro_start: str
    cro_current: str
    balance: str
    pause_timestamp: int | None
    players_count: int
    owner_share: str
    creator_share: str
    reserve_share: str
    players: list[PlayerDict]
    winners: list[WinnerDict]
    refunded_players: list[str]


# -- Health ----------------------------------------------------------------


class DbInfoDict(TypedDict, total=False):
    backend_type: str
    database_url_or_path: str | None
    tables_present: list[str]
    tables_missing: list[str]
    schema_initialized: bool
    pid: int
    error: str
