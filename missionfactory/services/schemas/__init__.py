"""Shared dataclasses for mission services."""

from missionfactory.services.schemas.results import (
    EnrollmentResult,
    LimitCheck,
    MissionParams,
    RefundResult,
    RoundResult,
    SettlementResult,
    StartCheckResult,
)

__all__ = [
    # Inputs
    "MissionParams",
    # Result schemas
    "EnrollmentResult",
    "LimitCheck",
    "RefundResult",
    "RoundResult",
    "SettlementResult",
    "StartCheckResult",
]
