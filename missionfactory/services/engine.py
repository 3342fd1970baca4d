"""Per-mission state machine: enrollment, arming, round payout, refund and settlement."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from db.enums import MissionStatus, MissionType, PayoutKind
from db.models import Mission, PlayerRecord
from missionfactory.services._helpers import normalize_address, secret_commitment
from missionfactory.services._types import (
    MissionSnapshotDict,
    PlayerDict,
    PlayerPageDict,
    RollupDict,
    WinnerDict,
)
from missionfactory.services.errors import (
    AllRoundsClaimedError,
    AlreadyEnrolledError,
    AlreadyWonError,
    ContractCallerError,
    CooldownActiveError,
    EnrollmentClosedError,
    InvalidStateError,
    MissionFullError,
    MissionNotActiveError,
    NotEnrolledError,
    PayoutInvariantError,
    RateLimitError,
    TransferFailedError,
    WrongEnrollmentAmountError,
)
from missionfactory.services.locks import MissionLocks
from missionfactory.services.schemas.results import (
    EnrollmentResult,
    LimitCheck,
    RefundResult,
    RoundResult,
    SettlementResult,
    StartCheckResult,
)
from missionfactory.services.status import cooldown_remaining, derive_status
from missionfactory.services.transfers import TransferGateway

logger = structlog.get_logger(__name__)

SCALE: int = 10**10


class MissionCallback(Protocol):
    """What a mission may ask of the registry that owns it."""

    def set_mission_status(self, mission_id: str, status: MissionStatus, now: int) -> None: ...

    def register_mission_funds(self, mission_id: str, amount: int, now: int) -> None: ...

    def collect_owner_share(self, mission_id: str, amount: int) -> None: ...

    def check_enrollment(self, user: str, now: int) -> LimitCheck: ...

    def record_enrollment(self, user: str, now: int) -> None: ...

    def undo_enrollment(self, user: str, window_start: int, window_end: int) -> bool: ...

    def require_authorized(self, caller: str) -> None: ...


def round_payout(mission: Mission, now: int) -> int:
    """Amount owed to the next round winner at ``now``.

    The pool is released linearly over the mission window. Whatever has
    already been paid is subtracted, so the cumulative total tracks the
    entitlement curve and never exceeds ``cro_start``.
    """
    span: int = mission.mission_end - mission.mission_start
    elapsed: int = min(max(now - mission.mission_start, 0), span)
    progress: int = elapsed * SCALE // span
    paid_so_far: int = mission.cro_start - mission.cro_current
    entitlement: int = mission.cro_start * progress // SCALE

    if entitlement < paid_so_far:
        raise PayoutInvariantError(
            "Entitlement fell below the amount already paid",
            mission_id=mission.id,
            entitlement=str(entitlement),
            paid_so_far=str(paid_so_far),
        )
    return min(entitlement - paid_so_far, mission.cro_current)


def _player_dict(record: PlayerRecord) -> PlayerDict:
    return PlayerDict(
        address=record.player_address,
        enrolled_at=record.enrolled_at,
        amount_won=str(record.amount_won),
        won_at=record.won_at,
        refunded=record.refunded,
        refund_failed=record.refund_failed,
        refunded_at=record.refunded_at,
    )


class MissionEngine:
    """Operations on one mission.

    Every mutating call holds the mission's guard, validates before it
    touches any row, pins a terminal status once derived, and publishes the
    resulting status to the registry.
    """

    def __init__(
        self,
        session: Session,
        mission: Mission,
        callback: MissionCallback,
        gateway: TransferGateway,
        locks: MissionLocks,
    ) -> None:
        self.session: Session = session
        self.mission: Mission = mission
        self.callback: MissionCallback = callback
        self.gateway: TransferGateway = gateway
        self.locks: MissionLocks = locks

    @property
    def mission_id(self) -> str:
        return self.mission.id

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @contextmanager
    def _guarded(self) -> Iterator[None]:
        """Hold the mission guard and work on the committed row, not a stale copy."""
        with self.locks.guard(self.mission.id):
            self.session.flush()
            self.session.refresh(self.mission, with_for_update=True)
            yield

    def status(self, now: int) -> MissionStatus:
        return derive_status(now, self.mission)

    def _sync(self, now: int) -> MissionStatus:
        """Derive the status and pin it if it became terminal."""
        status: MissionStatus = derive_status(now, self.mission)
        if status.terminal and self.mission.terminal_status is None:
            self.mission.terminal_status = status
            logger.info(
                "Mission reached terminal status",
                mission_id=self.mission.id,
                status=status.value,
            )
        return status

    def _publish(self, status: MissionStatus, now: int) -> None:
        self.session.flush()
        self.callback.set_mission_status(self.mission.id, status, now)

    def refresh(self, now: int) -> MissionStatus:
        """Pin and publish the current status if the registry's copy is stale."""
        with self._guarded():
            status: MissionStatus = self._sync(now)
            if status != self.mission.published_status:
                self._publish(status, now)
            return status

    # ------------------------------------------------------------------
    # Player lookups
    # ------------------------------------------------------------------

    def _record(self, player: str) -> PlayerRecord | None:
        return self.session.scalars(
            select(PlayerRecord).where(
                PlayerRecord.mission_id == self.mission.id,
                PlayerRecord.player_address == normalize_address(player),
            )
        ).first()

    def _records(self) -> list[PlayerRecord]:
        return list(
            self.session.scalars(
                select(PlayerRecord)
                .where(PlayerRecord.mission_id == self.mission.id)
                .order_by(PlayerRecord.position)
            ).all()
        )

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def enroll(
        self, player: str, paid_amount: int, now: int, passphrase: str | None = None
    ) -> EnrollmentResult:
        player = normalize_address(player)
        m: Mission = self.mission

        with self._guarded():
            if m.mission_type == MissionType.INVITE_ONLY:
                supplied: str | None = (
                    secret_commitment(passphrase, m.enrollment_start) if passphrase else None
                )
                if supplied is None or supplied != m.secret_commitment:
                    raise EnrollmentClosedError(
                        "Enrollment is not open",
                        enrollment_start=m.enrollment_start,
                        enrollment_end=m.enrollment_end,
                    )
            if self.gateway.is_contract(player):
                raise ContractCallerError("Contracts cannot enroll", player=player)

            status: MissionStatus = derive_status(now, m)
            if status != MissionStatus.ENROLLING:
                raise EnrollmentClosedError(
                    "Enrollment is not open",
                    status=status.value,
                    enrollment_start=m.enrollment_start,
                    enrollment_end=m.enrollment_end,
                )
            if m.players_count >= m.max_players:
                raise MissionFullError("Mission is full", max_players=m.max_players)
            if paid_amount != m.enrollment_amount:
                raise WrongEnrollmentAmountError(m.enrollment_amount, paid_amount)
            if self._record(player) is not None:
                raise AlreadyEnrolledError("Player already enrolled", player=player)

            check: LimitCheck = self.callback.check_enrollment(player, now)
            if not check.allowed:
                raise RateLimitError(check.breach, check.seconds_until_slot)

            self.session.add(
                PlayerRecord(
                    mission_id=m.id,
                    position=m.players_count,
                    player_address=player,
                    enrolled_at=now,
                    amount_won=0,
                    refunded=False,
                    refund_failed=False,
                )
            )
            m.players_count += 1
            m.cro_start += paid_amount
            m.cro_current += paid_amount
            m.balance += paid_amount
            self.callback.record_enrollment(player, now)
            self._publish(MissionStatus.ENROLLING, now)

            logger.info(
                "Player enrolled",
                mission_id=m.id,
                player=player,
                players_count=m.players_count,
            )
            return EnrollmentResult(
                mission_id=m.id,
                player=player,
                amount=paid_amount,
                total_players=m.players_count,
                status=MissionStatus.ENROLLING,
            )

    def check_start_condition(self, now: int) -> StartCheckResult:
        """Arm the mission after enrollment closes, or fail and refund it.

        Runs once, between the end of enrollment and the mission start. A mission
        that misses the window still derives its status, and a failed one is
        refunded through ``refund_all``.
        """
        m: Mission = self.mission
        with self._guarded():
            status: MissionStatus = derive_status(now, m)
            if not m.enrollment_end < now < m.mission_start:
                raise InvalidStateError("check start condition", status)
            if m.start_checked:
                return StartCheckResult(
                    mission_id=m.id, status=status, warnings=["Start condition already checked"]
                )

            m.start_checked = True
            status = self._sync(now)
            self._publish(status, now)

            refund: RefundResult | None = None
            if m.players_count < m.min_players:
                logger.info(
                    "Mission failed to start",
                    mission_id=m.id,
                    players_count=m.players_count,
                    min_players=m.min_players,
                )
                refund = self._refund_all(now)
            return StartCheckResult(mission_id=m.id, status=status, refund=refund)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    def call_round(self, player: str, now: int) -> RoundResult:
        player = normalize_address(player)
        m: Mission = self.mission

        with self._guarded():
            status: MissionStatus = derive_status(now, m)
            if status == MissionStatus.PAUSED:
                raise CooldownActiveError(cooldown_remaining(now, m))
            if m.round_count >= m.mission_rounds:
                raise AllRoundsClaimedError(
                    "All rounds have been claimed", mission_rounds=m.mission_rounds
                )
            if status != MissionStatus.ACTIVE:
                raise MissionNotActiveError(status)

            record: PlayerRecord | None = self._record(player)
            if record is None:
                raise NotEnrolledError("Player is not enrolled", player=player)
            if record.won_at is not None:
                raise AlreadyWonError("Player already won a round", player=player)

            payout: int = round_payout(m, now)
            if not self.gateway.send(player, payout, m.id, PayoutKind.ROUND):
                raise TransferFailedError(player, payout)

            m.cro_current -= payout
            m.balance -= payout
            m.round_count += 1
            record.amount_won = payout
            record.won_at = now
            remaining: int = m.cro_current

            if m.round_count == m.mission_rounds:
                m.terminal_status = MissionStatus.SUCCESS
                status = MissionStatus.SUCCESS
                self._publish(status, now)
                self._settle(force=False, now=now)
            else:
                m.pause_timestamp = now
                status = derive_status(now, m)
                self._publish(status, now)

            logger.info(
                "Round paid",
                mission_id=m.id,
                player=player,
                round_number=m.round_count,
                payout=str(payout),
            )
            return RoundResult(
                mission_id=m.id,
                player=player,
                round_number=m.round_count,
                payout=payout,
                cro_remaining=remaining,
                status=status,
            )

    # ------------------------------------------------------------------
    # Refunds and settlement
    # ------------------------------------------------------------------

    def refund_all(self, now: int) -> RefundResult:
        with self._guarded():
            return self._refund_all(now)

    def _refund_all(self, now: int) -> RefundResult:
        m: Mission = self.mission
        status: MissionStatus = self._sync(now)
        if status != MissionStatus.FAILED:
            raise InvalidStateError("refund", status)

        refunded: list[str] = []
        failed: list[str] = []
        amount_refunded: int = 0
        for record in self._records():
            if record.refunded:
                continue
            # Only what the mission still holds can be sent back.
            covered: bool = m.balance >= m.enrollment_amount
            sent: bool = covered and self.gateway.send(
                record.player_address, m.enrollment_amount, m.id, PayoutKind.REFUND
            )
            if sent:
                record.refunded = True
                record.refund_failed = False
                record.refunded_at = now
                m.balance -= m.enrollment_amount
                m.cro_current -= min(m.enrollment_amount, m.cro_current)
                amount_refunded += m.enrollment_amount
                refunded.append(record.player_address)
                self.callback.undo_enrollment(
                    record.player_address, m.enrollment_start, m.enrollment_end
                )
            else:
                record.refund_failed = True
                failed.append(record.player_address)
                logger.warning(
                    "Refund transfer failed" if covered else "Refund not covered by balance",
                    mission_id=m.id,
                    player=record.player_address,
                    amount=str(m.enrollment_amount),
                    balance=str(m.balance),
                )

        self._publish(status, now)
        settlement: SettlementResult = self._settle(force=not failed, now=now)
        logger.info(
            "Refund pass finished",
            mission_id=m.id,
            refunded=len(refunded),
            failed=len(failed),
        )
        return RefundResult(
            mission_id=m.id,
            refunded=refunded,
            failed=failed,
            amount_refunded=amount_refunded,
            settlement=settlement,
        )

    def settle(self, caller: str, force: bool, now: int) -> SettlementResult:
        self.callback.require_authorized(caller)
        with self._guarded():
            status: MissionStatus = self._sync(now)
            if not status.terminal:
                raise InvalidStateError("settle", status)
            self._publish(status, now)
            return self._settle(force=force, now=now)

    def _settle(self, force: bool, now: int) -> SettlementResult:
        m: Mission = self.mission
        outstanding: int = sum(
            1 for r in self._records() if r.refund_failed and not r.refunded
        )
        withheld: int = 0 if force else min(outstanding * m.enrollment_amount, m.balance)
        distributable: int = max(0, m.balance - withheld)

        owner: int = 0
        creator: int = 0
        reserve: int = 0
        if m.mission_type == MissionType.INVITE_ONLY:
            owner = distributable
        elif m.mission_type == MissionType.USER_MISSION:
            creator = distributable // 2
            owner = distributable - creator
        else:
            owner = distributable // 4
            reserve = distributable - owner

        if creator > 0:
            if not m.creator or not self.gateway.send(
                m.creator, creator, m.id, PayoutKind.CREATOR_SHARE
            ):
                logger.warning(
                    "Creator share transfer failed, kept in mission balance",
                    mission_id=m.id,
                    creator=m.creator,
                    amount=str(creator),
                )
                creator = 0

        m.balance -= owner + creator + reserve
        m.cro_current = min(m.cro_current, m.balance)
        m.owner_share += owner
        m.creator_share += creator
        m.reserve_share += reserve
        self.session.flush()

        if owner > 0:
            self.callback.collect_owner_share(m.id, owner)
        if reserve > 0:
            self.callback.register_mission_funds(m.id, reserve, now)

        if distributable:
            logger.info(
                "Mission settled",
                mission_id=m.id,
                mission_type=m.mission_type.value,
                owner_share=str(owner),
                creator_share=str(creator),
                reserve_share=str(reserve),
                withheld=str(withheld),
            )
        return SettlementResult(
            mission_id=m.id,
            mission_type=m.mission_type,
            distributable=distributable,
            withheld=withheld,
            owner_share=owner,
            creator_share=creator,
            reserve_share=reserve,
        )

    def force_finalize(self, caller: str, now: int) -> SettlementResult:
        """Close a partly successful mission as a success and settle what is left."""
        self.callback.require_authorized(caller)
        m: Mission = self.mission
        with self._guarded():
            status: MissionStatus = derive_status(now, m)
            if status != MissionStatus.PARTLY_SUCCESS:
                raise InvalidStateError("force finalize", status)
            m.terminal_status = MissionStatus.SUCCESS
            self._publish(MissionStatus.SUCCESS, now)
            logger.info("Mission force-finalized", mission_id=m.id, round_count=m.round_count)
            return self._settle(force=False, now=now)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def players(self) -> list[PlayerDict]:
        return [_player_dict(r) for r in self._records()]

    def winners(self) -> list[WinnerDict]:
        return [
            WinnerDict(address=r.player_address, amount=str(r.amount_won), won_at=r.won_at)
            for r in sorted(
                (r for r in self._records() if r.won_at is not None),
                key=lambda r: (r.won_at or 0, r.position),
            )
        ]

    def failed_refunds(self) -> list[str]:
        return [r.player_address for r in self._records() if r.refund_failed and not r.refunded]

    def refunded_players(self, offset: int = 0, limit: int = 50) -> PlayerPageDict:
        refunded: list[PlayerRecord] = [r for r in self._records() if r.refunded]
        return PlayerPageDict(
            total=len(refunded),
            offset=offset,
            items=[_player_dict(r) for r in refunded[offset : offset + limit]],
        )

    def rollup(self, now: int) -> RollupDict:
        records: list[PlayerRecord] = self._records()
        return RollupDict(
            status=self.status(now).value,
            round_count=self.mission.round_count,
            cro_current=str(self.mission.cro_current),
            players_count=self.mission.players_count,
            winners_count=sum(1 for r in records if r.won_at is not None),
            refunded_count=sum(1 for r in records if r.refunded),
        )

    def snapshot(self, now: int) -> MissionSnapshotDict:
        m: Mission = self.mission
        records: list[PlayerRecord] = self._records()
        return MissionSnapshotDict(
            mission_id=m.id,
            name=m.name,
            mission_type=m.mission_type.value,
            creator=m.creator,
            status=self.status(now).value,
            enrollment_start=m.enrollment_start,
            enrollment_end=m.enrollment_end,
            enrollment_amount=str(m.enrollment_amount),
            min_players=m.min_players,
            max_players=m.max_players,
            mission_start=m.mission_start,
            mission_end=m.mission_end,
            mission_rounds=m.mission_rounds,
            round_count=m.round_count,
            round_pause_duration=m.round_pause_duration,
            last_round_pause_duration=m.last_round_pause_duration,
            cro_initial=str(m.cro_initial),
            cro_start=str(m.cro_start),
            cro_current=str(m.cro_current),
            balance=str(m.balance),
            pause_timestamp=m.pause_timestamp,
            players_count=m.players_count,
            owner_share=str(m.owner_share),
            creator_share=str(m.creator_share),
            reserve_share=str(m.reserve_share),
            players=[_player_dict(r) for r in records],
            winners=self.winners(),
            refunded_players=[r.player_address for r in records if r.refunded],
        )
