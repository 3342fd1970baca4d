"""SQLAlchemy ORM models for the Mission Factory."""

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    MetaData,
    String,
    UniqueConstraint,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from db.enums import MissionStatus, MissionType

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Amount(TypeDecorator[int]):
    """Exact integer amount persisted as decimal text (values exceed 64 bits)."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value: int | None, dialect: Dialect) -> str | None:
        return None if value is None else str(int(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> int | None:
        return None if value is None else int(value)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)


class Mission(Base):
    __tablename__ = "missions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq_no: Mapped[int] = mapped_column(nullable=False, unique=True)
    mission_type: Mapped[MissionType] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    creator: Mapped[str | None] = mapped_column(String(64))

    enrollment_start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    enrollment_end: Mapped[int] = mapped_column(BigInteger, nullable=False)
    enrollment_amount: Mapped[int] = mapped_column(Amount, nullable=False)
    min_players: Mapped[int] = mapped_column(nullable=False)
    max_players: Mapped[int] = mapped_column(nullable=False)
    mission_start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mission_end: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mission_rounds: Mapped[int] = mapped_column(nullable=False)
    round_pause_duration: Mapped[int] = mapped_column(nullable=False)
    last_round_pause_duration: Mapped[int] = mapped_column(nullable=False)
    secret_commitment: Mapped[str | None] = mapped_column(String(64))

    cro_initial: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    cro_start: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    cro_current: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    balance: Mapped[int] = mapped_column(Amount, nullable=False, default=0)

    players_count: Mapped[int] = mapped_column(nullable=False, default=0)
    round_count: Mapped[int] = mapped_column(nullable=False, default=0)
    pause_timestamp: Mapped[int | None] = mapped_column(BigInteger)
    start_checked: Mapped[bool] = mapped_column(nullable=False, default=False)
    terminal_status: Mapped[MissionStatus | None] = mapped_column()
    published_status: Mapped[MissionStatus] = mapped_column(
        nullable=False, default=MissionStatus.PENDING
    )

    owner_share: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    creator_share: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    reserve_share: Mapped[int] = mapped_column(Amount, nullable=False, default=0)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    players = relationship(
        "PlayerRecord",
        back_populates="mission",
        cascade="all, delete-orphan",
        order_by="PlayerRecord.position",
    )

    __table_args__ = (
        Index("ix_missions_creator_type", "creator", "mission_type"),
    )
    # Writes from a stale copy fail with StaleDataError instead of overwriting.
    __mapper_args__ = {"version_id_col": version}


class PlayerRecord(Base):
    __tablename__ = "mission_players"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mission_id: Mapped[str] = mapped_column(ForeignKey("missions.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    player_address: Mapped[str] = mapped_column(String(64), nullable=False)
    enrolled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_won: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    won_at: Mapped[int | None] = mapped_column(BigInteger)
    refunded: Mapped[bool] = mapped_column(nullable=False, default=False)
    refund_failed: Mapped[bool] = mapped_column(nullable=False, default=False)
    refunded_at: Mapped[int | None] = mapped_column(BigInteger)

    __table_args__ = (
        UniqueConstraint("mission_id", "player_address"),
        UniqueConstraint("mission_id", "position", name="uq_mission_players_position"),
        Index("ix_mission_players_player", "player_address"),
    )
    mission = relationship("Mission", back_populates="players")


class EnrollmentStamp(Base):
    __tablename__ = "enrollment_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_address: Mapped[str] = mapped_column(String(64), nullable=False)
    enrolled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("ix_enrollment_history_user", "user_address", "id"),)


class ChangeEntry(Base):
    __tablename__ = "change_entries"

    mission_id: Mapped[str] = mapped_column(ForeignKey("missions.id"), primary_key=True)
    slot: Mapped[int] = mapped_column(nullable=False, unique=True)
    touched_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[MissionStatus] = mapped_column(nullable=False)

    __table_args__ = (Index("ix_change_entries_seq", "seq"),)


class ReservePool(Base):
    __tablename__ = "reserve_pools"

    mission_type: Mapped[MissionType] = mapped_column(primary_key=True)
    amount: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}


class AuthorizedAddress(Base):
    __tablename__ = "authorized_addresses"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    added_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class RegistryState(Base):
    __tablename__ = "registry_state"

    id: Mapped[int] = mapped_column(primary_key=True, default=1)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    pending_owner: Mapped[str | None] = mapped_column(String(64))
    proposer: Mapped[str | None] = mapped_column(String(64))
    proposed_at: Mapped[int | None] = mapped_column(BigInteger)
    weekly_limit: Mapped[int] = mapped_column(nullable=False)
    monthly_limit: Mapped[int] = mapped_column(nullable=False)
    mission_count: Mapped[int] = mapped_column(nullable=False, default=0)
    change_seq: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    purge_cursor: Mapped[int] = mapped_column(nullable=False, default=0)
    total_successes: Mapped[int] = mapped_column(nullable=False, default=0)
    total_failures: Mapped[int] = mapped_column(nullable=False, default=0)
    total_owner_earned: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    platform_balance: Mapped[int] = mapped_column(Amount, nullable=False, default=0)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Payout(Base):
    __tablename__ = "payouts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mission_id: Mapped[str | None] = mapped_column(String(64))
    recipient: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Amount, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("ix_payouts_mission", "mission_id"),)
