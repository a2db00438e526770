"""
In-process per-member locks.

Every ledger mutation for a (brand_id, member_key) runs while holding that
member's lock, so the read-check-write sequence is single-writer within a
worker process. The database row lock and version column cover writers in
other processes.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterable, List, Tuple

from .exceptions import StorageError

logger = logging.getLogger(__name__)

MemberLockKey = Tuple[str, str]


class _MemberLock:
    """Weak-referenceable holder for one member's lock."""
    __slots__ = ('lock', '__weakref__')

    def __init__(self):
        self.lock = threading.RLock()


def ordered_keys(brand_id: str, member_keys: Iterable[str]) -> List[MemberLockKey]:
    """Distinct lock keys in lexicographic order."""
    return [(brand_id, key) for key in sorted(set(member_keys))]


class MemberLockRegistry:
    """
    Registry of per-(brand_id, member_key) locks.

    Locks are created on demand and dropped once no thread references them.
    Multi-member operations acquire in lexicographic order so two requests
    touching the same pair can never deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def _get(self, key: MemberLockKey) -> _MemberLock:
        with self._guard:
            holder = self._locks.get(key)
            if holder is None:
                holder = _MemberLock()
                self._locks[key] = holder
            return holder

    @contextmanager
    def hold(self, brand_id: str, member_keys: Iterable[str], timeout: float = 10):
        """
        Hold the locks for every given member of a brand.

        Raises:
            StorageError: If a lock is not acquired within ``timeout`` seconds
        """
        acquired = []
        try:
            for key in ordered_keys(brand_id, member_keys):
                holder = self._get(key)
                if not holder.lock.acquire(timeout=timeout):
                    logger.warning('Lock timeout for %s/%s after %ss', key[0], key[1], timeout)
                    raise StorageError(f"Timed out waiting for ledger lock on '{key[1]}'")
                acquired.append(holder)
            yield
        finally:
            for holder in reversed(acquired):
                holder.lock.release()


member_locks = MemberLockRegistry()
