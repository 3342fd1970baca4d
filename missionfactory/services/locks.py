"""Per-mission serialization and the operation-in-progress guard."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from missionfactory.services.errors import ReentrantCallError

logger = structlog.get_logger(__name__)


class MissionLocks:
    """Lock table keyed by mission id.

    Calls from other threads wait for the mission to become free. A second
    entry from the thread already inside the mission (e.g. a transfer callback
    that calls back into the engine) is rejected instead of deadlocking.
    """

    def __init__(self) -> None:
        self._table_lock: threading.Lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, int] = {}
        self.registry_lock: threading.RLock = threading.RLock()

    def _lock_for(self, mission_id: str) -> threading.Lock:
        with self._table_lock:
            lock = self._locks.get(mission_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[mission_id] = lock
            return lock

    def in_progress(self, mission_id: str) -> bool:
        return mission_id in self._holders

    @contextmanager
    def guard(self, mission_id: str) -> Iterator[None]:
        me: int = threading.get_ident()
        if self._holders.get(mission_id) == me:
            logger.warning("Reentrant mission call rejected", mission_id=mission_id)
            raise ReentrantCallError(
                "Mission operation already in progress", mission_id=mission_id
            )

        lock = self._lock_for(mission_id)
        with lock:
            self._holders[mission_id] = me
            try:
                yield
            finally:
                del self._holders[mission_id]
