"""Sequence-numbered per-mission change log for poll-based synchronization.

Entries live in a dense slot array (``change_entries.slot`` is 0..n-1). A
mission's entry is overwritten on every touch and gets a fresh global sequence
number. Removal swaps the last entry into the freed slot, and a rotating purge
cursor drops terminal entries older than the retention window a few at a time.
"""

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from db.enums import MissionStatus
from db.models import ChangeEntry, RegistryState
from missionfactory.services._types import ChangeDict

logger = structlog.get_logger(__name__)


def _change_dict(entry: ChangeEntry) -> ChangeDict:
    return ChangeDict(
        mission_id=entry.mission_id,
        timestamp=entry.touched_at,
        seq=entry.seq,
        status=entry.status.value,
    )


class ChangeLedger:
    """Change entries plus the sequence counter and purge cursor held in ``RegistryState``."""

    def __init__(
        self,
        session: Session,
        state: RegistryState,
        batch_size: int = 10,
        retention_seconds: int = 7 * 24 * 60 * 60,
    ) -> None:
        self.session: Session = session
        self.state: RegistryState = state
        self.batch_size: int = batch_size
        self.retention_seconds: int = retention_seconds

    # ------------------------------------------------------------------
    # Slot helpers
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(ChangeEntry)) or 0

    def _at_slot(self, slot: int) -> ChangeEntry | None:
        return self.session.scalars(select(ChangeEntry).where(ChangeEntry.slot == slot)).first()

    def get(self, mission_id: str) -> ChangeEntry | None:
        return self.session.get(ChangeEntry, mission_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def touch(self, mission_id: str, status: MissionStatus, now: int) -> int:
        """Record that ``mission_id`` changed at ``now``. Returns the new sequence number."""
        self.state.change_seq += 1
        seq: int = self.state.change_seq

        entry: ChangeEntry | None = self.get(mission_id)
        if entry is None:
            entry = ChangeEntry(
                mission_id=mission_id,
                slot=self.count(),
                touched_at=now,
                seq=seq,
                status=status,
            )
            self.session.add(entry)
        else:
            entry.touched_at = now
            entry.seq = seq
            entry.status = status
        self.session.flush()
        return seq

    def remove(self, mission_id: str) -> bool:
        entry: ChangeEntry | None = self.get(mission_id)
        if entry is None:
            return False

        freed: int = entry.slot
        self.session.delete(entry)
        self.session.flush()

        last: ChangeEntry | None = self._at_slot(self.count())
        if last is not None and last.slot != freed:
            last.slot = freed
            self.session.flush()
        return True

    def purge(self, now: int) -> int:
        """Inspect up to ``batch_size`` entries from the cursor; drop expired terminal ones."""
        size: int = self.count()
        if size == 0:
            self.state.purge_cursor = 0
            return 0

        cursor: int = self.state.purge_cursor if self.state.purge_cursor < size else 0
        removed: int = 0
        for _ in range(self.batch_size):
            if size == 0:
                break
            if cursor >= size:
                cursor = 0
            entry: ChangeEntry | None = self._at_slot(cursor)
            if entry is None:
                break
            expired: bool = now - entry.touched_at >= self.retention_seconds
            if entry.status.terminal and expired:
                self.remove(entry.mission_id)
                size -= 1
                removed += 1
                # The swapped-in entry now occupies ``cursor``; inspect it next.
            else:
                cursor += 1

        self.state.purge_cursor = cursor if cursor < size else 0
        if removed:
            logger.info("Change ledger purged", removed=removed, remaining=size)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_changes_after(self, last_seq: int) -> list[ChangeDict]:
        stmt: Select[tuple[ChangeEntry]] = (
            select(ChangeEntry).where(ChangeEntry.seq > last_seq).order_by(ChangeEntry.seq)
        )
        return [_change_dict(e) for e in self.session.scalars(stmt).all()]

    def latest_seq(self) -> int:
        return self.state.change_seq
