"""
challenges/registry.py -- In-memory challenge scheduling registry.

Maps challenge_id -> start_time so time-sensitive checks ("is this challenge
starting soon?") do not need a database round trip per request.

Consistency contract:
  The registry is a best-effort cache over ChallengeStore, never the source
  of truth. It may lag behind storage between a write to a Challenge and the
  next upsert()/load_all(). Absence from the registry is NOT proof that a
  challenge does not exist -- ask the store for that.

Concurrency:
  FastAPI runs sync handlers in a thread pool, so one registry instance is
  shared by real threads. Every operation holds a single lock around the
  whole dict. load_all() reads storage first (no lock held during I/O), then
  swaps the contents under the lock in one step, so readers see either the
  old map or the new one, never a half-cleared one. The lock is not
  re-entrant; no method calls another locked method while holding it.

Aliasing:
  datetimes are copied on the way in and on the way out, so the registry
  never shares an object with a caller.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from challenges.models import RegistryEntry
from challenges.store import ChallengeStore

logger = logging.getLogger("huntgate.registry")


def _copy_time(value: datetime) -> datetime:
    return copy.copy(value)


class ChallengeRegistry:
    """Process-lifetime cache of active challenge start times.

    Usage:
        registry = ChallengeRegistry(challenge_store)
        registry.load_all()                     # at startup
        registry.upsert(challenge_id, start)    # after create/update
        registry.delete(challenge_id)           # after delete
    """

    def __init__(self, store: ChallengeStore) -> None:
        self._store = store
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Single-entry operations
    # ------------------------------------------------------------------

    def upsert(self, challenge_id: str, start_time: datetime) -> None:
        """Insert or overwrite the entry, keeping a private copy of start_time."""
        with self._lock:
            self._entries[challenge_id] = _copy_time(start_time)

    def delete(self, challenge_id: str) -> bool:
        """Remove the entry. Returns True if something was removed."""
        with self._lock:
            return self._entries.pop(challenge_id, None) is not None

    def get(self, challenge_id: str) -> Optional[datetime]:
        """Return a copy of the start time, or None if the id is not cached."""
        with self._lock:
            start_time = self._entries.get(challenge_id)
        return _copy_time(start_time) if start_time is not None else None

    def has(self, challenge_id: str) -> bool:
        with self._lock:
            return challenge_id in self._entries

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def list_all(self) -> list[RegistryEntry]:
        """Return every entry with copied start times. Order is not part of the contract."""
        with self._lock:
            items = list(self._entries.items())
        return [RegistryEntry(challenge_id=cid, start_time=_copy_time(start)) for cid, start in items]

    def starting_within(self, window: timedelta, now: Optional[datetime] = None) -> list[RegistryEntry]:
        """Return entries whose start time falls in [now, now + window], soonest first."""
        now = now or datetime.now(timezone.utc)
        upcoming = [e for e in self.list_all() if now <= e.start_time <= now + window]
        return sorted(upcoming, key=lambda e: e.start_time)

    def clear(self) -> None:
        """Drop every entry without touching storage."""
        with self._lock:
            self._entries.clear()

    def load_all(self) -> int:
        """Replace the contents with the active challenges from storage.

        Entries that exist only in memory disappear; every active stored
        challenge appears, whatever the registry held before. Returns the
        number of entries loaded. A storage failure propagates and leaves the
        current contents untouched.
        """
        challenges = self._store.list_active()
        with self._lock:
            self._entries.clear()
            for challenge in challenges:
                self._entries[challenge.challenge_id] = _copy_time(challenge.start_time)
            count = len(self._entries)
        logger.info("Challenge registry loaded (%d entries)", count)
        return count

    def flush_all(self) -> int:
        """Force a full resync from storage. Same semantics as load_all()."""
        logger.info("Challenge registry flush requested")
        return self.load_all()
