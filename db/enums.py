"""Enumeration types for the Mission Factory."""

from enum import Enum


class MissionType(str, Enum):
    """Mission category. Drives the settlement split and reserve-pool bucket."""

    CUSTOM = "custom"
    HOURLY = "hourly"
    QUARTER_DAILY = "quarter_daily"
    BI_DAILY = "bi_daily"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    INVITE_ONLY = "invite_only"
    USER_MISSION = "user_mission"

    @property
    def relaxed(self) -> bool:
        """Invite-only and user-created missions use the relaxed constraint set."""
        return self in (MissionType.INVITE_ONLY, MissionType.USER_MISSION)


class MissionStatus(str, Enum):
    """Lifecycle status. Declaration order is lifecycle order."""

    PENDING = "pending"
    ENROLLING = "enrolling"
    ARMING = "arming"
    ACTIVE = "active"
    PAUSED = "paused"
    PARTLY_SUCCESS = "partly_success"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (MissionStatus.SUCCESS, MissionStatus.FAILED)

    @property
    def ended(self) -> bool:
        return self in (
            MissionStatus.PARTLY_SUCCESS,
            MissionStatus.SUCCESS,
            MissionStatus.FAILED,
        )


class LimitBreach(str, Enum):
    """Which enrollment window a user has exhausted."""

    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PayoutKind(str, Enum):
    """Reason a value transfer left the system."""

    ROUND = "round"
    REFUND = "refund"
    CREATOR_SHARE = "creator_share"
    WITHDRAWAL = "withdrawal"
