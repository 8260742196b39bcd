"""
Per-account locking.

One lock per account id. Multi-account acquisition is always done in
ascending id order so two transfers over the same pair in opposite
directions cannot deadlock; operations over disjoint accounts never share
a lock.

A lock only exists while some thread holds or waits for it, so the registry
stays as small as the set of accounts currently in use.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, List
import threading

from .exceptions import TransientStoreError
from .logging_config import get_logger


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class AccountLockManager:
    """Registry of per-account locks with bounded acquisition"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._entries: Dict[int, _LockEntry] = {}
        self._registry_lock = threading.Lock()
        self.logger = get_logger("core_ledger.locking")

    def _claim(self, account_id: int) -> _LockEntry:
        with self._registry_lock:
            entry = self._entries.get(account_id)
            if entry is None:
                entry = _LockEntry()
                self._entries[account_id] = entry
            entry.users += 1
            return entry

    def _unclaim(self, account_id: int, entry: _LockEntry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if not entry.users:
                del self._entries[account_id]

    @contextmanager
    def hold(self, *account_ids: int) -> Iterator[None]:
        """
        Hold the locks of all given accounts for the duration of the block.

        Raises:
            TransientStoreError: If a lock could not be acquired within the timeout
        """
        claimed: List[tuple] = []
        acquired: List[_LockEntry] = []
        try:
            for account_id in sorted(set(account_ids)):
                entry = self._claim(account_id)
                claimed.append((account_id, entry))
                if not entry.lock.acquire(timeout=self.timeout):
                    self.logger.warning(f"Timed out waiting for lock on account {account_id}")
                    raise TransientStoreError(f"lock on account {account_id} not acquired within {self.timeout}s")
                acquired.append(entry)
            yield
        finally:
            for entry in reversed(acquired):
                entry.lock.release()
            for account_id, entry in reversed(claimed):
                self._unclaim(account_id, entry)

    def tracked_count(self) -> int:
        """Number of accounts that currently have a lock allocated"""
        with self._registry_lock:
            return len(self._entries)
