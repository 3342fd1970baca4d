"""Player-centric endpoints."""

from fastapi import APIRouter, Depends

from app.dependencies import get_now, get_registry
from app.schemas.missions import ParticipationResponse, PlayerLimitsResponse
from missionfactory.services._types import ParticipationDict, PlayerLimitsDict
from missionfactory.services.registry import MissionRegistry

router: APIRouter = APIRouter(prefix="/api", tags=["players"])


@router.get("/players/{address}/missions", response_model=list[ParticipationResponse])
def player_missions(
    address: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> list[ParticipationDict]:
    return registry.player_participation(address, now)


@router.get("/players/{address}/limits", response_model=PlayerLimitsResponse)
def player_limits(
    address: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> PlayerLimitsDict:
    return registry.player_limits(address, now)
