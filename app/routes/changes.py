"""Change feed for pollers."""

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_registry
from app.schemas.missions import ChangeFeedResponse
from missionfactory.services._types import ChangeDict
from missionfactory.services.registry import MissionRegistry

router: APIRouter = APIRouter(prefix="/api", tags=["changes"])


@router.get("/changes", response_model=ChangeFeedResponse)
def changes_after(
    after: int = Query(0, ge=0, description="Last sequence number the caller has seen"),
    registry: MissionRegistry = Depends(get_registry),
) -> dict[str, object]:
    changes: list[ChangeDict] = registry.get_changes_after(after)
    last_seq: int = changes[-1]["seq"] if changes else after
    return {"last_seq": last_seq, "changes": changes}
