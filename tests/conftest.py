"""Shared fixtures: in-memory SQLite DB with all tables, fake transfers, a registry."""

from collections.abc import Callable, Generator
from dataclasses import replace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import MissionSettings
from db.enums import MissionType, PayoutKind
from db.models import Base, Mission
from missionfactory.services.engine import MissionEngine
from missionfactory.services.locks import MissionLocks
from missionfactory.services.registry import MissionRegistry
from missionfactory.services.schemas.results import MissionParams

OWNER = "0xowner"
ADMIN = "0xadmin"
T0 = 1_700_000_000

# Enrollment runs for an hour, the mission window is 1000s so progress is easy to reason about.
ENROLL_START = T0
ENROLL_END = T0 + 3600
MISSION_START = T0 + 7200
MISSION_END = MISSION_START + 1000


class FakeTransferGateway:
    """Records transfers; recipients in ``failing`` are refused."""

    def __init__(self, failing: set[str] | None = None, contracts: set[str] | None = None) -> None:
        self.failing: set[str] = failing or set()
        self.contracts: set[str] = contracts or set()
        self.sent: list[tuple[str, int, PayoutKind]] = []
        self.on_send: Callable[[str, int], None] | None = None

    def send(self, recipient: str, amount: int, mission_id: str | None, kind: PayoutKind) -> bool:
        if self.on_send is not None:
            self.on_send(recipient, amount)
        if recipient in self.failing:
            return False
        self.sent.append((recipient, amount, kind))
        return True

    def is_contract(self, address: str) -> bool:
        return address in self.contracts

    def total_to(self, recipient: str, kind: PayoutKind | None = None) -> int:
        return sum(a for r, a, k in self.sent if r == recipient and (kind is None or k == kind))


def make_params(**overrides: object) -> MissionParams:
    base = MissionParams(
        mission_type=MissionType.DAILY,
        name="Daily mission",
        enrollment_start=ENROLL_START,
        enrollment_end=ENROLL_END,
        enrollment_amount=100,
        min_players=3,
        max_players=5,
        mission_start=MISSION_START,
        mission_end=MISSION_END,
        mission_rounds=3,
        round_pause_duration=300,
        last_round_pause_duration=60,
    )
    return replace(base, **overrides)


def player(n: int) -> str:
    return f"0xplayer{n}"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine: Engine) -> Generator[Session, None, None]:
    factory: sessionmaker[Session] = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    sess: Session = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def mission_settings() -> MissionSettings:
    return MissionSettings(
        owner_address=OWNER,
        weekly_limit=4,
        monthly_limit=10,
        purge_batch_size=10,
        change_retention_seconds=7 * 24 * 60 * 60,
        ownership_proposal_ttl=24 * 60 * 60,
        user_mission_gap=24 * 60 * 60,
    )


@pytest.fixture()
def gateway() -> FakeTransferGateway:
    return FakeTransferGateway()


@pytest.fixture()
def registry(
    session: Session, gateway: FakeTransferGateway, mission_settings: MissionSettings
) -> MissionRegistry:
    reg: MissionRegistry = MissionRegistry(
        session, gateway, locks=MissionLocks(), settings=mission_settings
    )
    reg.add_authorized(OWNER, ADMIN, T0)
    return reg


@pytest.fixture()
def create_mission(registry: MissionRegistry) -> Callable[..., MissionEngine]:
    """Create a mission from ``make_params`` overrides and return its engine."""

    def _create(caller: str = OWNER, now: int = T0 - 60, **overrides: object) -> MissionEngine:
        mission: Mission = registry.create_mission(caller, make_params(**overrides), now)
        return registry.open(mission.id)

    return _create


def enroll_players(mission: MissionEngine, count: int, now: int = ENROLL_START + 10) -> list[str]:
    players: list[str] = [player(i) for i in range(count)]
    for i, address in enumerate(players):
        mission.enroll(address, mission.mission.enrollment_amount, now + i)
    return players
