"""
In-memory billing ledger.

Process-lifetime storage of UserBillingRecord values keyed by user id.
Writes to one user are serialized by a per-user lock; writes to
different users never contend. Nothing here blocks on I/O, so callers
must finish any provider calls before entering upsert/transact.
"""
import threading
from typing import Callable, Dict, List, Tuple, TypeVar

from backend.models.billing import UserBillingRecord

T = TypeVar("T")

Mutation = Callable[[UserBillingRecord], UserBillingRecord]


class LedgerStore:
    """Keyed store with atomic read-modify-write per user id."""

    def __init__(self):
        self._records: Dict[str, UserBillingRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    def get(self, user_id: str) -> UserBillingRecord:
        """Return the stored record, or a fresh default one (not stored)."""
        record = self._records.get(user_id)
        if record is None:
            return UserBillingRecord()
        return record

    def exists(self, user_id: str) -> bool:
        return user_id in self._records

    def user_ids(self) -> List[str]:
        return list(self._records)

    def transact(self, user_id: str, fn: Callable[[UserBillingRecord], Tuple[UserBillingRecord, T]]) -> T:
        """
        Run fn over the current record under the user's lock.

        fn returns (new_record, result). If new_record is the record fn was
        given, nothing is written (so no-ops never materialize a default).
        """
        with self._lock_for(user_id):
            current = self.get(user_id)
            updated, result = fn(current)
            if updated is not current:
                self._records[user_id] = updated
            return result

    def upsert(self, user_id: str, mutation: Mutation) -> UserBillingRecord:
        """Apply a pure mutation to the user's record and return the new value."""
        def _apply(record: UserBillingRecord) -> Tuple[UserBillingRecord, UserBillingRecord]:
            updated = mutation(record)
            return updated, updated

        return self.transact(user_id, _apply)

    def clear(self) -> None:
        """Drop all records (testing only)."""
        with self._locks_guard:
            self._records.clear()
            self._locks.clear()
