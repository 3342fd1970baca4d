"""Tests for missionfactory.services.change_ledger."""

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from db.enums import MissionStatus
from db.models import ChangeEntry, RegistryState
from missionfactory.services.change_ledger import ChangeLedger

RETENTION = 100


@pytest.fixture()
def state(session: Session) -> RegistryState:
    row = RegistryState(
        id=1,
        owner="0xowner",
        weekly_limit=4,
        monthly_limit=10,
        mission_count=0,
        change_seq=0,
        purge_cursor=0,
        total_successes=0,
        total_failures=0,
        total_owner_earned=0,
        platform_balance=0,
    )
    session.add(row)
    session.flush()
    return row


def _ledger(session: Session, state: RegistryState, batch_size: int = 10) -> ChangeLedger:
    return ChangeLedger(session, state, batch_size=batch_size, retention_seconds=RETENTION)


def _slots(session: Session) -> dict[str, int]:
    return {e.mission_id: e.slot for e in session.scalars(select(ChangeEntry)).all()}


def _seed(ledger: ChangeLedger, terminal: set[str], now: int = 0) -> None:
    """Touch m0..m4; missions in ``terminal`` end in Success."""
    for i in range(5):
        mission_id = f"m{i}"
        status = MissionStatus.SUCCESS if mission_id in terminal else MissionStatus.ACTIVE
        ledger.touch(mission_id, status, now)


class TestTouch:
    def test_sequence_numbers_increase(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        assert ledger.touch("a", MissionStatus.PENDING, 10) == 1
        assert ledger.touch("b", MissionStatus.PENDING, 11) == 2
        assert ledger.latest_seq() == 2

    def test_retouch_overwrites_entry(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        ledger.touch("a", MissionStatus.PENDING, 10)
        ledger.touch("b", MissionStatus.PENDING, 11)
        seq = ledger.touch("a", MissionStatus.ENROLLING, 20)

        entry = ledger.get("a")
        assert entry is not None
        assert entry.seq == seq == 3
        assert entry.status == MissionStatus.ENROLLING
        assert entry.touched_at == 20
        assert ledger.count() == 2
        assert _slots(session) == {"a": 0, "b": 1}


class TestRemove:
    def test_last_entry_fills_freed_slot(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        for mission_id in ("a", "b", "c"):
            ledger.touch(mission_id, MissionStatus.ACTIVE, 0)

        assert ledger.remove("a")
        assert _slots(session) == {"c": 0, "b": 1}

    def test_remove_last_slot(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        ledger.touch("a", MissionStatus.ACTIVE, 0)
        ledger.touch("b", MissionStatus.ACTIVE, 0)
        assert ledger.remove("b")
        assert _slots(session) == {"a": 0}

    def test_unknown_mission(self, session: Session, state: RegistryState) -> None:
        assert not _ledger(session, state).remove("missing")


class TestPurge:
    def test_drops_expired_terminal_entries(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        _seed(ledger, terminal={"m1", "m3"})

        assert ledger.purge(RETENTION) == 2
        slots = _slots(session)
        assert set(slots) == {"m0", "m2", "m4"}
        assert sorted(slots.values()) == [0, 1, 2]

    def test_keeps_recent_terminal_entries(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        _seed(ledger, terminal={"m1", "m3"})
        assert ledger.purge(RETENTION - 1) == 0
        assert ledger.count() == 5

    def test_keeps_expired_non_terminal_entries(
        self, session: Session, state: RegistryState
    ) -> None:
        ledger = _ledger(session, state)
        _seed(ledger, terminal=set())
        assert ledger.purge(10 * RETENTION) == 0
        assert ledger.count() == 5

    def test_cursor_resumes_between_batches(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state, batch_size=2)
        _seed(ledger, terminal={"m1", "m3"})

        # m0 is kept, m1 removed and m4 swapped into its slot; cursor stays on slot 1.
        assert ledger.purge(RETENTION) == 1
        assert state.purge_cursor == 1

        # m4 and m2 are inspected and kept.
        assert ledger.purge(RETENTION) == 0
        assert state.purge_cursor == 3

        assert ledger.purge(RETENTION) == 1
        assert ledger.get("m3") is None
        assert ledger.count() == 3

    def test_empty_ledger_resets_cursor(self, session: Session, state: RegistryState) -> None:
        state.purge_cursor = 4
        assert _ledger(session, state).purge(RETENTION) == 0
        assert state.purge_cursor == 0


class TestGetChangesAfter:
    def test_returns_entries_in_sequence_order(
        self, session: Session, state: RegistryState
    ) -> None:
        ledger = _ledger(session, state)
        ledger.touch("a", MissionStatus.PENDING, 10)
        ledger.touch("b", MissionStatus.PENDING, 11)
        ledger.touch("a", MissionStatus.ENROLLING, 12)

        changes = ledger.get_changes_after(0)
        assert [(c["mission_id"], c["seq"]) for c in changes] == [("b", 2), ("a", 3)]
        assert changes[1]["status"] == "enrolling"
        assert changes[1]["timestamp"] == 12

    def test_cursor_never_repeats_an_entry(self, session: Session, state: RegistryState) -> None:
        ledger = _ledger(session, state)
        ledger.touch("a", MissionStatus.PENDING, 10)
        ledger.touch("b", MissionStatus.PENDING, 11)

        first = ledger.get_changes_after(0)
        cursor = max(c["seq"] for c in first)
        assert ledger.get_changes_after(cursor) == []

        ledger.touch("b", MissionStatus.ENROLLING, 20)
        second = ledger.get_changes_after(cursor)
        assert [c["mission_id"] for c in second] == ["b"]
        assert second[0]["seq"] > cursor
