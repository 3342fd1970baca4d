"""Sliding-window enrollment limiter (weekly / monthly caps per player)."""

import structlog
from sqlalchemy import Select, delete, select
from sqlalchemy.orm import Session

from db.enums import LimitBreach
from db.models import EnrollmentStamp
from missionfactory.services._helpers import MONTH, WEEK, normalize_address
from missionfactory.services._types import PlayerLimitsDict
from missionfactory.services.schemas.results import LimitCheck

logger = structlog.get_logger(__name__)


def _in_window(timestamps: list[int], now: int, window: int) -> list[int]:
    return [ts for ts in timestamps if now - ts < window]


def _seconds_till_slot(in_window: list[int], limit: int, now: int, window: int) -> int:
    """Seconds until the window holds fewer than ``limit`` entries."""
    if len(in_window) < limit:
        return 0
    # History is chronological; the slot opens when this entry ages out.
    blocking: int = in_window[len(in_window) - limit]
    return max(0, blocking + window - now)


class EnrollmentLimiter:
    """Counts a player's enrollments across all missions.

    History rows are append-only and read back in insertion order, so the
    timestamps of one player are always chronological.
    """

    def __init__(self, session: Session, weekly_limit: int, monthly_limit: int) -> None:
        self.session: Session = session
        self.weekly_limit: int = weekly_limit
        self.monthly_limit: int = monthly_limit

    def _history(self, user: str) -> list[EnrollmentStamp]:
        stmt: Select[tuple[EnrollmentStamp]] = (
            select(EnrollmentStamp)
            .where(EnrollmentStamp.user_address == normalize_address(user))
            .order_by(EnrollmentStamp.id)
        )
        return list(self.session.scalars(stmt).all())

    def _timestamps(self, user: str) -> list[int]:
        return [row.enrolled_at for row in self._history(user)]

    def seconds_till_weekly_slot(self, user: str, now: int) -> int:
        weekly: list[int] = _in_window(self._timestamps(user), now, WEEK)
        return _seconds_till_slot(weekly, self.weekly_limit, now, WEEK)

    def seconds_till_monthly_slot(self, user: str, now: int) -> int:
        monthly: list[int] = _in_window(self._timestamps(user), now, MONTH)
        return _seconds_till_slot(monthly, self.monthly_limit, now, MONTH)

    def can_enroll(self, user: str, now: int) -> LimitCheck:
        timestamps: list[int] = self._timestamps(user)
        weekly: list[int] = _in_window(timestamps, now, WEEK)
        monthly: list[int] = _in_window(timestamps, now, MONTH)
        weekly_broken: bool = len(weekly) >= self.weekly_limit
        monthly_broken: bool = len(monthly) >= self.monthly_limit

        if not weekly_broken and not monthly_broken:
            return LimitCheck(allowed=True, breach=LimitBreach.NONE)

        weekly_wait: int = _seconds_till_slot(weekly, self.weekly_limit, now, WEEK)
        monthly_wait: int = _seconds_till_slot(monthly, self.monthly_limit, now, MONTH)

        if weekly_broken and monthly_broken:
            breach = LimitBreach.WEEKLY if weekly_wait <= monthly_wait else LimitBreach.MONTHLY
            # Both windows must reopen before the player can enroll again.
            return LimitCheck(False, breach, max(weekly_wait, monthly_wait))
        if weekly_broken:
            return LimitCheck(False, LimitBreach.WEEKLY, weekly_wait)
        return LimitCheck(False, LimitBreach.MONTHLY, monthly_wait)

    def record_enrollment(self, user: str, now: int) -> None:
        user = normalize_address(user)
        self.session.execute(
            delete(EnrollmentStamp).where(
                EnrollmentStamp.user_address == user,
                EnrollmentStamp.enrolled_at <= now - MONTH,
            )
        )
        self.session.add(EnrollmentStamp(user_address=user, enrolled_at=now))
        self.session.flush()

    def undo_enrollment(self, user: str, window_start: int, window_end: int) -> bool:
        """Remove one enrollment stamp inside ``[window_start, window_end]``.

        Returns False when the player has no stamp in that window (already
        pruned, or never recorded).
        """
        for row in self._history(user):
            if window_start <= row.enrolled_at <= window_end:
                self.session.delete(row)
                self.session.flush()
                logger.debug(
                    "Enrollment reversed",
                    user=row.user_address,
                    enrolled_at=row.enrolled_at,
                )
                return True
        return False

    def player_limits(self, user: str, now: int) -> PlayerLimitsDict:
        timestamps: list[int] = self._timestamps(user)
        weekly: list[int] = _in_window(timestamps, now, WEEK)
        monthly: list[int] = _in_window(timestamps, now, MONTH)
        return PlayerLimitsDict(
            weekly_count=len(weekly),
            monthly_count=len(monthly),
            weekly_limit=self.weekly_limit,
            monthly_limit=self.monthly_limit,
            seconds_till_weekly_slot=_seconds_till_slot(weekly, self.weekly_limit, now, WEEK),
            seconds_till_monthly_slot=_seconds_till_slot(
                monthly, self.monthly_limit, now, MONTH
            ),
        )
