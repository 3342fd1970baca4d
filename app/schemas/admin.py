"""Factory administration schemas."""

from pydantic import Field

from app.schemas.common import CamelModel


class AddressBody(CamelModel):
    address: str = Field(..., min_length=1, max_length=64)


class LimitsBody(CamelModel):
    weekly: int = Field(..., ge=1)
    monthly: int = Field(..., ge=1)


class WithdrawBody(CamelModel):
    amount: int = Field(..., gt=0)


class OwnershipProposeBody(CamelModel):
    new_owner: str = Field(..., min_length=1, max_length=64)


class OwnershipResponse(CamelModel):
    new_owner: str | None
    proposer: str | None
    proposed_at: int | None
    seconds_left: int


class FactorySummaryResponse(CamelModel):
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


class WithdrawResponse(CamelModel):
    withdrawn: str
    platform_balance: str
