"""Factory-level read and administration endpoints."""

from fastapi import APIRouter, Depends

from app.dependencies import get_api_key, get_caller, get_now, get_registry
from app.schemas.admin import (
    AddressBody,
    FactorySummaryResponse,
    LimitsBody,
    OwnershipProposeBody,
    OwnershipResponse,
    WithdrawBody,
    WithdrawResponse,
)
from missionfactory.services._types import FactorySummaryDict, OwnershipProposalDict
from missionfactory.services.registry import MissionRegistry

router: APIRouter = APIRouter(prefix="/api/factory", tags=["factory"])


@router.get("/summary", response_model=FactorySummaryResponse)
def factory_summary(
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> FactorySummaryDict:
    return registry.factory_summary(now)


@router.get("/funds", response_model=dict[str, str])
def funds_by_type(registry: MissionRegistry = Depends(get_registry)) -> dict[str, str]:
    return {k: str(v) for k, v in registry.funds_by_type().items()}


@router.get("/ownership", response_model=OwnershipResponse)
def ownership(
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> OwnershipProposalDict:
    return registry.ownership_proposal(now)


@router.post("/authorized")
def authorize(
    body: AddressBody,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> dict[str, object]:
    added: bool = registry.add_authorized(caller, body.address, now)
    return {"address": body.address.strip().lower(), "added": added}


@router.delete("/authorized/{address}")
def deauthorize(
    address: str,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    _key: str = Depends(get_api_key),
) -> dict[str, object]:
    removed: bool = registry.remove_authorized(caller, address)
    return {"address": address.strip().lower(), "removed": removed}


@router.post("/limits")
def set_limits(
    body: LimitsBody,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    _key: str = Depends(get_api_key),
) -> dict[str, int]:
    registry.set_enrollment_limits(caller, body.weekly, body.monthly)
    return {"weekly": body.weekly, "monthly": body.monthly}


@router.post("/ownership/propose", response_model=OwnershipResponse)
def propose_ownership(
    body: OwnershipProposeBody,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> OwnershipProposalDict:
    registry.propose_ownership(caller, body.new_owner, now)
    return registry.ownership_proposal(now)


@router.post("/ownership/confirm")
def confirm_ownership(
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> dict[str, str]:
    return {"owner": registry.confirm_ownership(caller, now)}


@router.post("/withdraw", response_model=WithdrawResponse)
def withdraw(
    body: WithdrawBody,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> WithdrawResponse:
    remaining: int = registry.withdraw_funds(caller, body.amount, now)
    return WithdrawResponse(withdrawn=str(body.amount), platform_balance=str(remaining))
