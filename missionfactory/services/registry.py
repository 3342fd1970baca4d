"""Mission registry: creation, status bookkeeping, reserve pools, authorization and queries."""

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from config import MissionSettings, get_settings
from db.enums import MissionStatus, MissionType, PayoutKind
from db.models import AuthorizedAddress, Mission, PlayerRecord, RegistryState, ReservePool
from missionfactory.services._helpers import DAY, new_id, normalize_address
from missionfactory.services._types import (
    ChangeDict,
    FactorySummaryDict,
    MissionPageDict,
    MissionSummaryDict,
    OwnershipProposalDict,
    ParticipationDict,
    PlayerLimitsDict,
)
from missionfactory.services.change_ledger import ChangeLedger
from missionfactory.services.engine import MissionEngine
from missionfactory.services.enrollment_limiter import EnrollmentLimiter
from missionfactory.services.errors import (
    InsufficientFundsError,
    InvalidMissionParamsError,
    InvalidStateError,
    MissionNotFoundError,
    NotAMissionError,
    NotAuthorizedError,
    OwnershipProposalError,
    TransferFailedError,
)
from missionfactory.services.locks import MissionLocks
from missionfactory.services.schemas.results import LimitCheck, MissionParams
from missionfactory.services.status import derive_status
from missionfactory.services.transfers import TransferGateway

logger = structlog.get_logger(__name__)

MIN_COOLDOWN: int = 60
MAX_PLAYERS: int = 100
MAX_PLAYERS_RELAXED: int = 25
MIN_PLAYERS_RELAXED: int = 3

# Age-ordered scans stop at the first mission that started before this.
SCAN_LOOKBACK: int = 60 * DAY
ENDED_LOOKBACK: int = 30 * DAY


def _summary(mission: Mission, now: int) -> MissionSummaryDict:
    return MissionSummaryDict(
        mission_id=mission.id,
        name=mission.name,
        mission_type=mission.mission_type.value,
        status=derive_status(now, mission).value,
        enrollment_end=mission.enrollment_end,
        mission_end=mission.mission_end,
    )


def validate_params(params: MissionParams) -> None:
    """Raise ``InvalidMissionParamsError`` for the first structural violation."""
    relaxed: bool = params.mission_type.relaxed

    if params.enrollment_amount <= 0:
        raise InvalidMissionParamsError("enrollment_amount", "must be positive")
    if params.initial_pot < 0:
        raise InvalidMissionParamsError("initial_pot", "must not be negative")

    min_rounds: int = 2 if relaxed else 1
    if params.mission_rounds < min_rounds:
        raise InvalidMissionParamsError("mission_rounds", f"must be at least {min_rounds}")

    if relaxed:
        if params.min_players < MIN_PLAYERS_RELAXED:
            raise InvalidMissionParamsError(
                "min_players", f"must be at least {MIN_PLAYERS_RELAXED}"
            )
        if params.mission_rounds > params.min_players - 1:
            raise InvalidMissionParamsError("mission_rounds", "must be below min_players")
    elif params.min_players < params.mission_rounds:
        raise InvalidMissionParamsError("min_players", "must be at least mission_rounds")

    max_allowed: int = MAX_PLAYERS_RELAXED if relaxed else MAX_PLAYERS
    if params.max_players < params.min_players:
        raise InvalidMissionParamsError("max_players", "must be at least min_players")
    if params.max_players > max_allowed:
        raise InvalidMissionParamsError("max_players", f"must be at most {max_allowed}")

    if not params.enrollment_start < params.enrollment_end:
        raise InvalidMissionParamsError("enrollment_end", "must be after enrollment_start")
    if not params.enrollment_end <= params.mission_start:
        raise InvalidMissionParamsError("mission_start", "must not precede enrollment_end")
    if not params.mission_start < params.mission_end:
        raise InvalidMissionParamsError("mission_end", "must be after mission_start")

    if params.round_pause_duration < MIN_COOLDOWN:
        raise InvalidMissionParamsError(
            "round_pause_duration", f"must be at least {MIN_COOLDOWN}s"
        )
    if params.last_round_pause_duration < MIN_COOLDOWN:
        raise InvalidMissionParamsError(
            "last_round_pause_duration", f"must be at least {MIN_COOLDOWN}s"
        )

    if params.mission_type == MissionType.INVITE_ONLY:
        digits: str = (params.secret_commitment or "").strip().lower().removeprefix("0x")
        if not digits or set(digits) == {"0"}:
            raise InvalidMissionParamsError("secret_commitment", "required for invite-only")


class MissionRegistry:
    """Owns every mission and the factory-wide counters.

    Missions reach back into the registry only through the ``MissionCallback``
    methods (status publication, fund registration, limiter access).
    """

    def __init__(
        self,
        session: Session,
        gateway: TransferGateway,
        locks: MissionLocks | None = None,
        settings: MissionSettings | None = None,
    ) -> None:
        self.session: Session = session
        self.gateway: TransferGateway = gateway
        self.locks: MissionLocks = locks or MissionLocks()
        self.settings: MissionSettings = settings or get_settings().missions

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def state(self) -> RegistryState:
        state: RegistryState | None = self.session.get(RegistryState, 1)
        if state is None:
            state = RegistryState(
                id=1,
                owner=normalize_address(self.settings.owner_address),
                weekly_limit=self.settings.weekly_limit,
                monthly_limit=self.settings.monthly_limit,
                mission_count=0,
                change_seq=0,
                purge_cursor=0,
                total_successes=0,
                total_failures=0,
                total_owner_earned=0,
                platform_balance=0,
            )
            self.session.add(state)
            self.session.flush()
            logger.info("Registry initialized", owner=state.owner)
        return state

    def _locked_state(self) -> RegistryState:
        """Registry row re-read under the registry lock, ahead of a write."""
        state: RegistryState = self.state
        self.session.flush()
        self.session.refresh(state, with_for_update=True)
        return state

    @property
    def limiter(self) -> EnrollmentLimiter:
        return EnrollmentLimiter(self.session, self.state.weekly_limit, self.state.monthly_limit)

    @property
    def ledger(self) -> ChangeLedger:
        return ChangeLedger(
            self.session,
            self.state,
            batch_size=self.settings.purge_batch_size,
            retention_seconds=self.settings.change_retention_seconds,
        )

    def _pool(self, mission_type: MissionType) -> ReservePool:
        self.session.flush()
        pool: ReservePool | None = self.session.get(
            ReservePool, mission_type, populate_existing=True, with_for_update=True
        )
        if pool is None:
            pool = ReservePool(mission_type=mission_type, amount=0)
            self.session.add(pool)
            self.session.flush()
        return pool

    def get_mission(self, mission_id: str) -> Mission:
        mission: Mission | None = self.session.get(Mission, mission_id)
        if mission is None:
            raise MissionNotFoundError(f"Mission {mission_id} not found", mission_id=mission_id)
        return mission

    def _calling_mission(self, mission_id: str) -> Mission:
        mission: Mission | None = self.session.get(Mission, mission_id)
        if mission is None:
            raise NotAMissionError("Caller is not a registered mission", caller=mission_id)
        return mission

    def is_mission(self, mission_id: str) -> bool:
        return self.session.get(Mission, mission_id) is not None

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorized_addresses(self) -> list[str]:
        stmt: Select[tuple[str]] = select(AuthorizedAddress.address).order_by(
            AuthorizedAddress.added_at, AuthorizedAddress.address
        )
        return list(self.session.scalars(stmt).all())

    def is_authorized(self, address: str) -> bool:
        address = normalize_address(address)
        if address == self.state.owner:
            return True
        return self.session.get(AuthorizedAddress, address) is not None

    def require_authorized(self, caller: str) -> None:
        if not self.is_authorized(caller):
            raise NotAuthorizedError("Caller is not owner or authorized", caller=caller)

    def require_owner(self, caller: str) -> None:
        if normalize_address(caller) != self.state.owner:
            raise NotAuthorizedError("Caller is not the owner", caller=caller)

    def add_authorized(self, caller: str, address: str, now: int) -> bool:
        self.require_owner(caller)
        address = normalize_address(address)
        if not address:
            raise InvalidMissionParamsError("address", "must not be empty")
        if self.session.get(AuthorizedAddress, address) is not None:
            return False
        self.session.add(AuthorizedAddress(address=address, added_at=now))
        self.session.flush()
        logger.info("Address authorized", address=address)
        return True

    def remove_authorized(self, caller: str, address: str) -> bool:
        self.require_owner(caller)
        row: AuthorizedAddress | None = self.session.get(
            AuthorizedAddress, normalize_address(address)
        )
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        logger.info("Address deauthorized", address=row.address)
        return True

    def propose_ownership(self, caller: str, new_owner: str, now: int) -> None:
        self.require_authorized(caller)
        new_owner = normalize_address(new_owner)
        if not new_owner:
            raise OwnershipProposalError("New owner must not be empty")
        if new_owner == self.state.owner:
            raise OwnershipProposalError("Address is already the owner", new_owner=new_owner)

        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            state.pending_owner = new_owner
            state.proposer = normalize_address(caller)
            state.proposed_at = now
            self.session.flush()
        logger.info("Ownership proposed", new_owner=new_owner, proposer=state.proposer)

    def confirm_ownership(self, caller: str, now: int) -> str:
        self.require_authorized(caller)
        caller = normalize_address(caller)
        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            if state.pending_owner is None or state.proposed_at is None:
                raise OwnershipProposalError("No pending ownership proposal")
            if now - state.proposed_at > self.settings.ownership_proposal_ttl:
                raise OwnershipProposalError(
                    "Ownership proposal expired", proposed_at=state.proposed_at
                )
            if caller == state.proposer:
                raise OwnershipProposalError(
                    "Proposal must be confirmed by a different address",
                    proposer=state.proposer,
                )

            previous: str = state.owner
            state.owner = state.pending_owner
            state.pending_owner = None
            state.proposer = None
            state.proposed_at = None
            self.session.flush()
        logger.info("Ownership transferred", previous_owner=previous, new_owner=state.owner)
        return state.owner

    def ownership_proposal(self, now: int) -> OwnershipProposalDict:
        state: RegistryState = self.state
        seconds_left: int = 0
        if state.pending_owner is not None and state.proposed_at is not None:
            expires: int = state.proposed_at + self.settings.ownership_proposal_ttl
            seconds_left = max(0, expires - now)
        return OwnershipProposalDict(
            new_owner=state.pending_owner,
            proposer=state.proposer,
            proposed_at=state.proposed_at,
            seconds_left=seconds_left,
        )

    def set_enrollment_limits(self, caller: str, weekly: int, monthly: int) -> None:
        self.require_authorized(caller)
        if weekly < 1:
            raise InvalidMissionParamsError("weekly_limit", "must be at least 1")
        if monthly < weekly:
            raise InvalidMissionParamsError("monthly_limit", "must be at least weekly_limit")
        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            state.weekly_limit = weekly
            state.monthly_limit = monthly
            self.session.flush()
        logger.info("Enrollment limits updated", weekly=weekly, monthly=monthly)

    def withdraw_funds(self, caller: str, amount: int, now: int) -> int:
        """Pay ``amount`` of the platform balance to the owner. Returns the remaining balance."""
        self.require_owner(caller)
        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            if amount <= 0:
                raise InvalidMissionParamsError("amount", "must be positive")
            if amount > state.platform_balance:
                raise InsufficientFundsError(
                    "Withdrawal exceeds platform balance",
                    requested=str(amount),
                    available=str(state.platform_balance),
                )
            if not self.gateway.send(state.owner, amount, None, PayoutKind.WITHDRAWAL):
                raise TransferFailedError(state.owner, amount)
            state.platform_balance -= amount
            self.session.flush()
        logger.info("Platform funds withdrawn", amount=str(amount), at=now)
        return state.platform_balance

    # ------------------------------------------------------------------
    # Mission creation
    # ------------------------------------------------------------------

    def _check_user_mission_gap(self, creator: str, now: int) -> None:
        last: int | None = self.session.scalar(
            select(func.max(Mission.created_at)).where(
                Mission.mission_type == MissionType.USER_MISSION,
                Mission.creator == creator,
            )
        )
        gap: int = self.settings.user_mission_gap
        if last is not None and now - last < gap:
            raise InvalidMissionParamsError(
                "creator", f"next user mission allowed in {last + gap - now}s"
            )

    def create_mission(self, caller: str, params: MissionParams, now: int) -> Mission:
        caller = normalize_address(caller)
        if params.mission_type == MissionType.USER_MISSION:
            if not caller:
                raise InvalidMissionParamsError("creator", "required for user missions")
        else:
            self.require_authorized(caller)
        validate_params(params)
        if params.mission_type == MissionType.USER_MISSION:
            self._check_user_mission_gap(caller, now)

        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            funded: int = 0
            if params.fund_from_reserve:
                pool: ReservePool = self._pool(params.mission_type)
                funded = pool.amount // 4
                pool.amount -= funded

            pot: int = params.initial_pot + funded
            state.mission_count += 1
            mission = Mission(
                id=new_id(),
                seq_no=state.mission_count,
                mission_type=params.mission_type,
                name=params.name,
                creator=caller,
                enrollment_start=params.enrollment_start,
                enrollment_end=params.enrollment_end,
                enrollment_amount=params.enrollment_amount,
                min_players=params.min_players,
                max_players=params.max_players,
                mission_start=params.mission_start,
                mission_end=params.mission_end,
                mission_rounds=params.mission_rounds,
                round_pause_duration=params.round_pause_duration,
                last_round_pause_duration=params.last_round_pause_duration,
                secret_commitment=(
                    params.secret_commitment.lower() if params.secret_commitment else None
                ),
                cro_initial=pot,
                cro_start=pot,
                cro_current=pot,
                balance=pot,
                players_count=0,
                round_count=0,
                start_checked=False,
                published_status=MissionStatus.PENDING,
                owner_share=0,
                creator_share=0,
                reserve_share=0,
                created_at=now,
            )
            self.session.add(mission)
            self.session.flush()
            self.ledger.touch(mission.id, MissionStatus.PENDING, now)

        logger.info(
            "Mission created",
            mission_id=mission.id,
            mission_type=mission.mission_type.value,
            creator=caller,
            pot=str(pot),
            from_reserve=str(funded),
        )
        return mission

    def open(self, mission_id: str) -> MissionEngine:
        return MissionEngine(
            self.session, self.get_mission(mission_id), self, self.gateway, self.locks
        )

    # ------------------------------------------------------------------
    # Mission callbacks
    # ------------------------------------------------------------------

    def set_mission_status(self, mission_id: str, status: MissionStatus, now: int) -> None:
        mission: Mission = self._calling_mission(mission_id)
        previous: MissionStatus = mission.published_status
        if previous.terminal and status != previous:
            raise InvalidStateError(f"publish {status.value}", previous)

        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            if status.terminal and not previous.terminal:
                if status == MissionStatus.SUCCESS:
                    state.total_successes += 1
                else:
                    state.total_failures += 1
            mission.published_status = status
            ledger: ChangeLedger = self.ledger
            ledger.touch(mission_id, status, now)
            if status.terminal:
                ledger.purge(now)

        if status != previous:
            logger.info(
                "Mission status changed",
                mission_id=mission_id,
                previous=previous.value,
                status=status.value,
            )

    def register_mission_funds(self, mission_id: str, amount: int, now: int) -> None:
        mission: Mission = self._calling_mission(mission_id)
        if mission.terminal_status is None:
            raise InvalidStateError("register funds", derive_status(now, mission))
        with self.locks.registry_lock:
            state: RegistryState = self._locked_state()
            pool: ReservePool = self._pool(mission.mission_type)
            pool.amount += amount
            state.total_owner_earned += amount // 3
            self.session.flush()
        logger.info(
            "Reserve funds registered",
            mission_id=mission_id,
            mission_type=mission.mission_type.value,
            amount=str(amount),
            reserve=str(pool.amount),
        )

    def collect_owner_share(self, mission_id: str, amount: int) -> None:
        self._calling_mission(mission_id)
        with self.locks.registry_lock:
            self._locked_state().platform_balance += amount
            self.session.flush()

    def check_enrollment(self, user: str, now: int) -> LimitCheck:
        return self.limiter.can_enroll(user, now)

    def record_enrollment(self, user: str, now: int) -> None:
        self.limiter.record_enrollment(user, now)

    def undo_enrollment(self, user: str, window_start: int, window_end: int) -> bool:
        return self.limiter.undo_enrollment(user, window_start, window_end)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _missions_newest_first(self) -> list[Mission]:
        return list(self.session.scalars(select(Mission).order_by(Mission.seq_no.desc())).all())

    def all_missions(self, now: int) -> list[MissionSummaryDict]:
        stmt: Select[tuple[Mission]] = select(Mission).order_by(Mission.seq_no)
        return [_summary(m, now) for m in self.session.scalars(stmt).all()]

    def latest_missions(self, count: int, now: int) -> list[MissionSummaryDict]:
        stmt: Select[tuple[Mission]] = select(Mission).order_by(Mission.seq_no.desc()).limit(count)
        return [_summary(m, now) for m in self.session.scalars(stmt).all()]

    def missions_by_status(self, status: MissionStatus, now: int) -> list[MissionSummaryDict]:
        stmt: Select[tuple[Mission]] = select(Mission).order_by(Mission.seq_no)
        return [
            _summary(m, now)
            for m in self.session.scalars(stmt).all()
            if derive_status(now, m) == status
        ]

    def not_ended(self, now: int) -> list[MissionSummaryDict]:
        result: list[MissionSummaryDict] = []
        for mission in self._missions_newest_first():
            if now - mission.mission_start > SCAN_LOOKBACK:
                break
            if not derive_status(now, mission).ended:
                result.append(_summary(mission, now))
        return result

    def ended(self, now: int) -> list[MissionSummaryDict]:
        result: list[MissionSummaryDict] = []
        for mission in self._missions_newest_first():
            if now - mission.mission_start > SCAN_LOOKBACK:
                break
            if not derive_status(now, mission).ended:
                continue
            if now - mission.mission_end > ENDED_LOOKBACK:
                continue
            result.append(_summary(mission, now))
        return result

    def missions_ended(self, now: int, offset: int = 0, limit: int = 20) -> MissionPageDict:
        ended: list[MissionSummaryDict] = self.ended(now)
        return MissionPageDict(
            total=len(ended), offset=offset, items=ended[offset : offset + limit]
        )

    def player_participation(self, user: str, now: int) -> list[ParticipationDict]:
        stmt = (
            select(PlayerRecord, Mission)
            .join(Mission, PlayerRecord.mission_id == Mission.id)
            .where(PlayerRecord.player_address == normalize_address(user))
            .order_by(Mission.seq_no.desc())
        )
        return [
            ParticipationDict(
                mission_id=mission.id,
                name=mission.name,
                mission_type=mission.mission_type.value,
                status=derive_status(now, mission).value,
                enrolled_at=record.enrolled_at,
                amount_won=str(record.amount_won),
                refunded=record.refunded,
                refund_failed=record.refund_failed,
            )
            for record, mission in self.session.execute(stmt).all()
        ]

    def player_limits(self, user: str, now: int) -> PlayerLimitsDict:
        return self.limiter.player_limits(user, now)

    def get_changes_after(self, last_seq: int) -> list[ChangeDict]:
        return self.ledger.get_changes_after(last_seq)

    def funds_by_type(self) -> dict[str, int]:
        pools: dict[MissionType, int] = {
            p.mission_type: p.amount for p in self.session.scalars(select(ReservePool)).all()
        }
        return {t.value: pools.get(t, 0) for t in MissionType}

    def factory_summary(self, now: int) -> FactorySummaryDict:
        state: RegistryState = self.state
        funds: dict[str, int] = self.funds_by_type()
        return FactorySummaryDict(
            owner=state.owner,
            pending_owner=state.pending_owner,
            authorized=self.authorized_addresses(),
            total_missions=state.mission_count,
            active_missions=len(self.not_ended(now)),
            total_successes=state.total_successes,
            total_failures=state.total_failures,
            total_mission_funds=str(sum(funds.values())),
            total_owner_earned=str(state.total_owner_earned),
            platform_balance=str(state.platform_balance),
            weekly_limit=state.weekly_limit,
            monthly_limit=state.monthly_limit,
            funds_by_type={k: str(v) for k, v in funds.items()},
        )
