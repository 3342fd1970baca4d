"""Mission endpoints: thin routes, logic in services."""

from enum import Enum

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_api_key, get_caller, get_now, get_registry
from app.schemas.common import PageResponse
from app.schemas.missions import (
    EnrollmentResponse,
    EnrollRequest,
    MissionCreate,
    MissionDetailResponse,
    MissionSummaryResponse,
    PlayerResponse,
    RefundResponse,
    RollupResponse,
    RoundRequest,
    RoundResponse,
    SettlementResponse,
    SettleRequest,
    StartCheckResponse,
    StatusResponse,
    WinnerResponse,
)
from db.enums import MissionStatus, MissionType
from db.models import Mission
from missionfactory.services._helpers import secret_commitment
from missionfactory.services._types import (
    MissionSnapshotDict,
    MissionSummaryDict,
    PlayerDict,
    PlayerPageDict,
    RollupDict,
    WinnerDict,
)
from missionfactory.services.registry import MissionRegistry
from missionfactory.services.schemas.results import MissionParams

router: APIRouter = APIRouter(prefix="/api", tags=["missions"])


class MissionScope(str, Enum):
    ALL = "all"
    NOT_ENDED = "not-ended"
    ENDED = "ended"
    LATEST = "latest"


@router.get("/missions", response_model=PageResponse[MissionSummaryResponse])
def list_missions(
    scope: MissionScope = Query(MissionScope.ALL),
    status: MissionStatus | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=200),
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> dict[str, object]:
    if scope == MissionScope.ENDED and status is None:
        return dict(registry.missions_ended(now, offset, limit))

    items: list[MissionSummaryDict]
    if status is not None:
        items = registry.missions_by_status(status, now)
    elif scope == MissionScope.NOT_ENDED:
        items = registry.not_ended(now)
    elif scope == MissionScope.LATEST:
        items = registry.latest_missions(limit, now)
    else:
        items = registry.all_missions(now)
    return {"total": len(items), "offset": offset, "items": items[offset : offset + limit]}


@router.get("/missions/{mission_id}", response_model=MissionDetailResponse)
def get_mission(
    mission_id: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> MissionSnapshotDict:
    return registry.open(mission_id).snapshot(now)


@router.get("/missions/{mission_id}/players", response_model=list[PlayerResponse])
def mission_players(
    mission_id: str, registry: MissionRegistry = Depends(get_registry)
) -> list[PlayerDict]:
    return registry.open(mission_id).players()


@router.get("/missions/{mission_id}/winners", response_model=list[WinnerResponse])
def mission_winners(
    mission_id: str, registry: MissionRegistry = Depends(get_registry)
) -> list[WinnerDict]:
    return registry.open(mission_id).winners()


@router.get("/missions/{mission_id}/failed-refunds", response_model=list[str])
def mission_failed_refunds(
    mission_id: str, registry: MissionRegistry = Depends(get_registry)
) -> list[str]:
    return registry.open(mission_id).failed_refunds()


@router.get("/missions/{mission_id}/refunded", response_model=PageResponse[PlayerResponse])
def mission_refunded(
    mission_id: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    registry: MissionRegistry = Depends(get_registry),
) -> PlayerPageDict:
    return registry.open(mission_id).refunded_players(offset, limit)


@router.get("/missions/{mission_id}/rollup", response_model=RollupResponse)
def mission_rollup(
    mission_id: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
) -> RollupDict:
    return registry.open(mission_id).rollup(now)


# ---------- writes ----------


@router.post("/missions", response_model=MissionSummaryResponse, status_code=201)
def create_mission(
    body: MissionCreate,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> MissionSummaryResponse:
    commitment: str | None = None
    if body.mission_type == MissionType.INVITE_ONLY:
        if not body.passphrase:
            raise HTTPException(status_code=400, detail="Invite-only missions need a passphrase")
        commitment = secret_commitment(body.passphrase, body.enrollment_start)

    params = MissionParams(
        mission_type=body.mission_type,
        name=body.name,
        enrollment_start=body.enrollment_start,
        enrollment_end=body.enrollment_end,
        enrollment_amount=body.enrollment_amount,
        min_players=body.min_players,
        max_players=body.max_players,
        mission_start=body.mission_start,
        mission_end=body.mission_end,
        mission_rounds=body.mission_rounds,
        round_pause_duration=body.round_pause_duration,
        last_round_pause_duration=body.last_round_pause_duration,
        secret_commitment=commitment,
        initial_pot=body.initial_pot,
        fund_from_reserve=body.fund_from_reserve,
    )
    mission: Mission = registry.create_mission(caller, params, now)
    return MissionSummaryResponse(
        mission_id=mission.id,
        name=mission.name,
        mission_type=mission.mission_type.value,
        status=MissionStatus.PENDING.value,
        enrollment_end=mission.enrollment_end,
        mission_end=mission.mission_end,
    )


@router.post("/missions/{mission_id}/enroll", response_model=EnrollmentResponse)
def enroll(
    mission_id: str,
    body: EnrollRequest,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> EnrollmentResponse:
    result = registry.open(mission_id).enroll(body.player, body.amount, now, body.passphrase)
    return EnrollmentResponse.from_result(result)


@router.post("/missions/{mission_id}/rounds", response_model=RoundResponse)
def call_round(
    mission_id: str,
    body: RoundRequest,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> RoundResponse:
    return RoundResponse.from_result(registry.open(mission_id).call_round(body.player, now))


@router.post("/missions/{mission_id}/check-start", response_model=StartCheckResponse)
def check_start(
    mission_id: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> StartCheckResponse:
    return StartCheckResponse.from_result(registry.open(mission_id).check_start_condition(now))


@router.post("/missions/{mission_id}/refund", response_model=RefundResponse)
def refund_all(
    mission_id: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> RefundResponse:
    return RefundResponse.from_result(registry.open(mission_id).refund_all(now))


@router.post("/missions/{mission_id}/settle", response_model=SettlementResponse)
def settle(
    mission_id: str,
    body: SettleRequest,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> SettlementResponse:
    result = registry.open(mission_id).settle(caller, body.force, now)
    return SettlementResponse.from_result(result)


@router.post("/missions/{mission_id}/force-finalize", response_model=SettlementResponse)
def force_finalize(
    mission_id: str,
    registry: MissionRegistry = Depends(get_registry),
    caller: str = Depends(get_caller),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> SettlementResponse:
    return SettlementResponse.from_result(registry.open(mission_id).force_finalize(caller, now))


@router.post("/missions/{mission_id}/refresh", response_model=StatusResponse)
def refresh_status(
    mission_id: str,
    registry: MissionRegistry = Depends(get_registry),
    now: int = Depends(get_now),
    _key: str = Depends(get_api_key),
) -> StatusResponse:
    status: MissionStatus = registry.open(mission_id).refresh(now)
    return StatusResponse(mission_id=mission_id, status=status.value)
