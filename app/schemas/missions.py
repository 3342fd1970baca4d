"""Mission request/response schemas.

Amounts travel as decimal strings in responses; requests accept either a JSON
integer or a decimal string.
"""

from pydantic import Field

from app.schemas.common import CamelModel
from db.enums import MissionType
from missionfactory.services.schemas.results import (
    EnrollmentResult,
    RefundResult,
    RoundResult,
    SettlementResult,
    StartCheckResult,
)

# ---------- requests ----------


class MissionCreate(CamelModel):
    mission_type: MissionType
    name: str = Field("", max_length=128)
    enrollment_start: int
    enrollment_end: int
    enrollment_amount: int = Field(..., gt=0)
    min_players: int = Field(..., ge=1)
    max_players: int = Field(..., ge=1)
    mission_start: int
    mission_end: int
    mission_rounds: int = Field(..., ge=1)
    round_pause_duration: int = 300
    last_round_pause_duration: int = 60
    passphrase: str | None = Field(None, description="Invite-only missions only")
    initial_pot: int = Field(0, ge=0)
    fund_from_reserve: bool = True


class EnrollRequest(CamelModel):
    player: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., ge=0)
    passphrase: str | None = None


class RoundRequest(CamelModel):
    player: str = Field(..., min_length=1, max_length=64)


class SettleRequest(CamelModel):
    force: bool = False


# ---------- responses ----------


class MissionSummaryResponse(CamelModel):
    mission_id: str
    name: str
    mission_type: str
    status: str
    enrollment_end: int
    mission_end: int


class PlayerResponse(CamelModel):
    address: str
    enrolled_at: int
    amount_won: str
    won_at: int | None
    refunded: bool
    refund_failed: bool
    refunded_at: int | None


class WinnerResponse(CamelModel):
    address: str
    amount: str
    won_at: int | None


class RollupResponse(CamelModel):
    status: str
    round_count: int
    cro_current: str
    players_count: int
    winners_count: int
    refunded_count: int


class MissionDetailResponse(CamelModel):
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
    players: list[PlayerResponse]
    winners: list[WinnerResponse]
    refunded_players: list[str]


class ParticipationResponse(CamelModel):
    mission_id: str
    name: str
    mission_type: str
    status: str
    enrolled_at: int
    amount_won: str
    refunded: bool
    refund_failed: bool


class PlayerLimitsResponse(CamelModel):
    weekly_count: int
    monthly_count: int
    weekly_limit: int
    monthly_limit: int
    seconds_till_weekly_slot: int
    seconds_till_monthly_slot: int


class ChangeResponse(CamelModel):
    mission_id: str
    timestamp: int
    seq: int
    status: str


class ChangeFeedResponse(CamelModel):
    last_seq: int
    changes: list[ChangeResponse]


class EnrollmentResponse(CamelModel):
    mission_id: str
    player: str
    amount: str
    total_players: int
    status: str

    @classmethod
    def from_result(cls, r: EnrollmentResult) -> "EnrollmentResponse":
        return cls(
            mission_id=r.mission_id,
            player=r.player,
            amount=str(r.amount),
            total_players=r.total_players,
            status=r.status.value,
        )


class RoundResponse(CamelModel):
    mission_id: str
    player: str
    round_number: int
    payout: str
    cro_remaining: str
    status: str

    @classmethod
    def from_result(cls, r: RoundResult) -> "RoundResponse":
        return cls(
            mission_id=r.mission_id,
            player=r.player,
            round_number=r.round_number,
            payout=str(r.payout),
            cro_remaining=str(r.cro_remaining),
            status=r.status.value,
        )


class SettlementResponse(CamelModel):
    mission_id: str
    mission_type: str
    distributable: str
    withheld: str
    owner_share: str
    creator_share: str
    reserve_share: str

    @classmethod
    def from_result(cls, r: SettlementResult) -> "SettlementResponse":
        return cls(
            mission_id=r.mission_id,
            mission_type=r.mission_type.value,
            distributable=str(r.distributable),
            withheld=str(r.withheld),
            owner_share=str(r.owner_share),
            creator_share=str(r.creator_share),
            reserve_share=str(r.reserve_share),
        )


class RefundResponse(CamelModel):
    mission_id: str
    refunded: list[str]
    failed: list[str]
    amount_refunded: str
    settlement: SettlementResponse | None = None

    @classmethod
    def from_result(cls, r: RefundResult) -> "RefundResponse":
        return cls(
            mission_id=r.mission_id,
            refunded=r.refunded,
            failed=r.failed,
            amount_refunded=str(r.amount_refunded),
            settlement=SettlementResponse.from_result(r.settlement) if r.settlement else None,
        )


class StartCheckResponse(CamelModel):
    mission_id: str
    status: str
    refund: RefundResponse | None = None
    warnings: list[str] = []

    @classmethod
    def from_result(cls, r: StartCheckResult) -> "StartCheckResponse":
        return cls(
            mission_id=r.mission_id,
            status=r.status.value,
            refund=RefundResponse.from_result(r.refund) if r.refund else None,
            warnings=r.warnings,
        )


class StatusResponse(CamelModel):
    mission_id: str
    status: str
