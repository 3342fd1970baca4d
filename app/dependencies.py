"""FastAPI dependencies: DB sessions, auth, clock and the mission registry."""

from functools import lru_cache

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from config import get_settings
from db.connection import get_db as get_db  # noqa: F401 (re-exported for routes)
from missionfactory.services._helpers import unix_now
from missionfactory.services.locks import MissionLocks
from missionfactory.services.registry import MissionRegistry
from missionfactory.services.transfers import LedgerTransferGateway


def get_api_key(x_api_key: str = Header(default="")) -> str:
    """Validate API key on mutation endpoints."""
    expected: str | None = get_settings().api_key
    if not expected:
        return ""  # auth disabled when no key configured
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return x_api_key


def get_caller(x_caller: str = Header(default="")) -> str:
    """Address on whose behalf an admin or creation request is made."""
    if not x_caller.strip():
        raise HTTPException(status_code=400, detail="Missing X-Caller header")
    return x_caller


def get_now() -> int:
    return unix_now()


@lru_cache
def get_locks() -> MissionLocks:
    """One lock table per process, shared by every request."""
    return MissionLocks()


def get_registry(
    db: Session = Depends(get_db),
    locks: MissionLocks = Depends(get_locks),
) -> MissionRegistry:
    settings = get_settings()
    gateway = LedgerTransferGateway(db, settings.missions.contract_addresses)
    return MissionRegistry(db, gateway, locks=locks, settings=settings.missions)
