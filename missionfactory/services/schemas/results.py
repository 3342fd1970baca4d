"""Result dataclasses returned by service operations."""

from dataclasses import dataclass, field

from db.enums import LimitBreach, MissionStatus, MissionType


@dataclass(frozen=True)
class MissionParams:
    mission_type: MissionType
    enrollment_start: int
    enrollment_end: int
    enrollment_amount: int
    min_players: int
    max_players: int
    mission_start: int
    mission_end: int
    mission_rounds: int
    name: str = ""
    round_pause_duration: int = 300
    last_round_pause_duration: int = 60
    secret_commitment: str | None = None
    initial_pot: int = 0
    fund_from_reserve: bool = True


@dataclass
class LimitCheck:
    allowed: bool
    breach: LimitBreach
    seconds_until_slot: int = 0


@dataclass
class EnrollmentResult:
    mission_id: str
    player: str
    amount: int
    total_players: int
    status: MissionStatus


@dataclass
class RoundResult:
    mission_id: str
    player: str
    round_number: int
    payout: int
    cro_remaining: int
    status: MissionStatus


@dataclass
class SettlementResult:
    mission_id: str
    mission_type: MissionType
    distributable: int
    withheld: int
    owner_share: int
    creator_share: int
    reserve_share: int


@dataclass
class RefundResult:
    mission_id: str
    refunded: list[str]
    failed: list[str]
    amount_refunded: int
    settlement: SettlementResult | None = None


@dataclass
class StartCheckResult:
    mission_id: str
    status: MissionStatus
    refund: RefundResult | None = None
    warnings: list[str] = field(default_factory=list)
