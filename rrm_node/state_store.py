"""
rrm_node/state_store.py

Network State Store: the ground truth for every managed access point.

The store exclusively owns all `AccessPoint` records. Callers receive
snapshot copies from `get()`; the only way to touch a live record is through
`checkout()`, which holds that access point's lock for the whole
read-modify-write. Requests against different access points never contend
on a record lock.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from pydantic import BaseModel, Field

from rrm_node.config import CHANGE_BUDGET_MINUTES

logger = logging.getLogger(__name__)


class AccessPointNotFound(KeyError):
    """Raised when an access point id has no record in the store."""

    def __init__(self, ap_id: str) -> None:
        super().__init__(ap_id)
        self.ap_id = ap_id

    def __str__(self) -> str:
        return f"AP '{self.ap_id}' not found in network state"


class AccessPoint(BaseModel):
    """One managed radio unit and the time of its last applied change."""

    id: str = Field(..., description="Unique access point identifier.")
    channel: int = Field(..., description="Current operating channel.")
    power_db: int = Field(..., description="Current transmit power (dB).")
    last_change_time_minutes: int = Field(
        default=-CHANGE_BUDGET_MINUTES - 1,
        description="Simulated minute of the most recent applied mutation.",
    )


StateListener = Callable[[AccessPoint], None]


class NetworkStateStore:
    """
    In-memory mapping of access point id -> AccessPoint with per-id locking.

    Usage:
        store = NetworkStateStore()
        store.add(AccessPoint(id="AP-001", channel=6, power_db=20))

        with store.checkout("AP-001") as ap:
            ap.channel = 11       # mutation is atomic per access point
    """

    def __init__(self) -> None:
        self._records: dict[str, AccessPoint] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._listeners: list[StateListener] = []

    def _create_lock(self, ap_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(ap_id)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[ap_id] = lock
            return lock

    def _existing_lock(self, ap_id: str) -> threading.Lock:
        # Locks exist only for ids that were added; lookups never create one.
        with self._registry_lock:
            lock = self._key_locks.get(ap_id)
        if lock is None:
            raise AccessPointNotFound(ap_id)
        return lock

    # -----------------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> None:
        """Registers a callback invoked with a snapshot after every add()."""
        self._listeners.append(listener)

    # -----------------------------------------------------------------------
    # Record access
    # -----------------------------------------------------------------------

    def add(self, ap: AccessPoint) -> None:
        """Inserts or replaces the record for `ap.id`. No range validation."""
        record = ap.model_copy()
        with self._create_lock(record.id):
            self._records[record.id] = record
            snapshot = record.model_copy()

        logger.info(
            "[State] Added AP: %s (Ch: %d, Pwr: %ddB)",
            snapshot.id, snapshot.channel, snapshot.power_db,
        )
        for listener in self._listeners:
            try:
                listener(snapshot.model_copy())
            except Exception:
                logger.exception("[State] Listener failed for AP %s", snapshot.id)

    def get(self, ap_id: str) -> AccessPoint:
        """Returns a snapshot of the current record. Raises AccessPointNotFound."""
        with self._existing_lock(ap_id):
            record = self._records.get(ap_id)
            if record is None:
                raise AccessPointNotFound(ap_id)
            return record.model_copy()

    @contextmanager
    def checkout(self, ap_id: str) -> Iterator[AccessPoint]:
        """
        Holds the per-id lock and yields the live record.

        Everything done inside the `with` block is one critical section for
        this access point. Raises AccessPointNotFound before yielding if the
        id is unknown.
        """
        with self._existing_lock(ap_id):
            record = self._records.get(ap_id)
            if record is None:
                raise AccessPointNotFound(ap_id)
            yield record

    def ids(self) -> list[str]:
        return sorted(self._records.copy())

    def __contains__(self, ap_id: object) -> bool:
        return ap_id in self._records

    def __len__(self) -> int:
        return len(self._records)
