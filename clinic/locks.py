"""
Per-key mutual exclusion for read-validate-write units of work.

Units of work touching the same calendar day or the same inventory item run
one at a time inside this process; different keys proceed in parallel.
Database-level locks in ``crud`` extend the guarantee across processes.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator


def calendar_day_key(day) -> str:
    return f"calendar:{day.isoformat()}"


def inventory_item_key(item_id: int) -> str:
    return f"inventory:{item_id:012d}"


def appointment_key(appointment_id: int) -> str:
    return f"appointment:{appointment_id:012d}"


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """Registry of locks created on demand and dropped when no longer held or awaited."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _release(self, key: str, entry: _Entry) -> None:
        entry.lock.release()
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """
        Hold the locks for all ``keys`` for the duration of the block.

        Keys are de-duplicated and acquired in sorted order so two callers
        asking for overlapping sets cannot deadlock.
        """
        ordered = sorted(set(keys))
        acquired = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                entry.lock.acquire()
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                self._release(key, entry)

    def active_keys(self) -> Iterable[str]:
        with self._guard:
            return list(self._entries)
