"""
Identifier generation for accounts and transactions.
"""

from typing import Callable, Optional
import itertools
import random
import secrets
import threading
import time

from .exceptions import TransientStoreError
from .logging_config import get_logger


class IdGenerator:
    """
    Produces account numbers and transaction ids.

    Account numbers are uniform random draws of a fixed number of digits,
    re-drawn while the candidate is already taken. Transaction ids combine
    the wall clock, a random per-process node token and a per-process
    counter, so two ids from one process can never be equal; the
    transactions table primary key covers ids from different processes.
    """

    def __init__(self, account_number_length: int = 10, max_attempts: int = 20,
                 rng: Optional[random.Random] = None, node_id: Optional[str] = None):
        if account_number_length < 1:
            raise ValueError("account_number_length must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.account_number_length = account_number_length
        self.max_attempts = max_attempts
        self.node_id = node_id or secrets.token_hex(4)
        self._rng = rng or secrets.SystemRandom()
        self._rng_lock = threading.Lock()
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        self.logger = get_logger("core_ledger.ids")

    def _draw_account_number(self) -> str:
        with self._rng_lock:
            value = self._rng.randrange(10 ** self.account_number_length)
        return str(value).zfill(self.account_number_length)

    def next_account_number(self, exists: Callable[[str], bool]) -> str:
        """
        Draw account numbers until one is not taken.

        The result is only a candidate: the accounts table unique constraint
        decides, since another writer can claim the same number between the
        check and the insert.

        Raises:
            TransientStoreError: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._draw_account_number()
            if not exists(candidate):
                return candidate
            self.logger.debug(f"Account number collision on attempt {attempt}")
        self.logger.warning(f"No free account number after {self.max_attempts} attempts")
        raise TransientStoreError(f"no free account number after {self.max_attempts} attempts")

    def next_transaction_id(self) -> str:
        """Return a new transaction id of the form TXN<millis>-<node>-<sequence>"""
        with self._counter_lock:
            sequence = next(self._counter)
        millis = int(time.time() * 1000)
        return f"TXN{millis}-{self.node_id}-{sequence:06d}"
