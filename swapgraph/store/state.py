"""
swapgraph/store/state.py

Shared state for intents, proposals, runs, commits, timelines, receipts,
reservations and idempotency records.

Writers never mutate stored records in place. They stage new versions on a
Transaction and the store applies the whole batch under its commit lock, so
readers see either the state before or after a transition, never a mix.

Per-record serialization uses KeyedLocks. Keys are always acquired in sorted
order within one hold() call.
"""

import copy
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from swapgraph.core.models import Event


TABLES = (
    "intents",
    "proposals",
    "runs",
    "commits",
    "timelines",
    "receipts",
    "reservations",   # intent_id -> proposal_id
    "idempotency",
    "counters",
)

_DELETED = object()


class KeyedLocks:
    """Lazily created re-entrant lock per key."""

    def __init__(self) -> None:
        self._guard: threading.Lock = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired: List[threading.RLock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class StateStore:
    """In-memory record store. Pass one instance to every service."""

    def __init__(self) -> None:
        self.locks = KeyedLocks()
        self._commit_lock: threading.RLock = threading.RLock()
        self._tables: Dict[str, Dict[str, Any]] = {name: {} for name in TABLES}

    # ── Reads (copies) ────────────────────────────────────────

    def get(self, table: str, key: str) -> Optional[Any]:
        with self._commit_lock:
            value = self._table(table).get(key)
            return copy.deepcopy(value)

    def values(self, table: str) -> List[Any]:
        with self._commit_lock:
            return copy.deepcopy([self._table(table)[k] for k in sorted(self._table(table))])

    def items(self, table: str) -> List[Tuple[str, Any]]:
        with self._commit_lock:
            target = self._table(table)
            return [(k, copy.deepcopy(target[k])) for k in sorted(target)]

    def keys(self, table: str) -> List[str]:
        with self._commit_lock:
            return sorted(self._table(table))

    def count(self, table: str) -> int:
        with self._commit_lock:
            return len(self._table(table))

    # ── Writes (batched) ──────────────────────────────────────

    def apply(self, writes: List[Tuple[str, str, Any]]) -> None:
        """Apply staged writes as one unit. A value of _DELETED removes the key."""
        with self._commit_lock:
            for table, key, value in writes:
                target = self._table(table)
                if value is _DELETED:
                    target.pop(key, None)
                else:
                    target[key] = copy.deepcopy(value)

    def seed(self, table: str, key: str, value: Any) -> None:
        """Direct write for fixtures and bulk loading; bypasses transactions."""
        self.apply([(table, key, value)])

    def _table(self, table: str) -> Dict[str, Any]:
        try:
            return self._tables[table]
        except KeyError:
            raise KeyError(f"Unknown table '{table}'. Valid: {list(TABLES)}") from None


class Transaction:
    """
    Staged writes and events for one operation.

    Reads see this transaction's own staged writes first, then the store.
    Nothing becomes visible until the runner applies the transaction.
    """

    def __init__(self, store: StateStore, extend_locks: Callable[..., None]) -> None:
        self._store        = store
        self._extend_locks = extend_locks
        self._writes: Dict[Tuple[str, str], Any] = {}
        self.events:  List[Event] = []

    def lock(self, *keys: str) -> None:
        """Acquire extra per-key locks for the rest of the operation."""
        if keys:
            self._extend_locks(*keys)

    def get(self, table: str, key: str) -> Optional[Any]:
        if (table, key) in self._writes:
            staged = self._writes[(table, key)]
            return None if staged is _DELETED else copy.deepcopy(staged)
        return self._store.get(table, key)

    def values(self, table: str) -> List[Any]:
        merged = dict(self._store.items(table))
        for (t, key), value in self._writes.items():
            if t != table:
                continue
            if value is _DELETED:
                merged.pop(key, None)
            else:
                merged[key] = copy.deepcopy(value)
        return [merged[k] for k in sorted(merged)]

    def put(self, table: str, key: str, value: Any) -> None:
        self._writes[(table, key)] = copy.deepcopy(value)

    def delete(self, table: str, key: str) -> None:
        self._writes[(table, key)] = _DELETED

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def rollback(self) -> None:
        self._writes.clear()
        self.events.clear()

    @property
    def writes(self) -> List[Tuple[str, str, Any]]:
        return [(table, key, value) for (table, key), value in self._writes.items()]
