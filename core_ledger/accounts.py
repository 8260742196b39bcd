"""
Account Store Module

Persistent mapping from account identity to balance and metadata. Each user
owns at most one account; account numbers are globally unique and never
change once assigned. Both rules are enforced by unique constraints in the
storage backend, not only by a read before the insert.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, Optional
import time

from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .exceptions import AccountAlreadyExistsError, DuplicateKeyError, TransientStoreError
from .ids import IdGenerator
from .logging_config import get_logger, log_action
from .money import ZERO
from .storage import StorageInterface, VERSION_FIELD


@dataclass
class Account:
    """
    A user's balance-holding account.

    ``version`` is the optimistic-concurrency token; it goes up by one on
    every successful save.
    """
    id: int
    account_number: str
    balance: Decimal
    owner_id: str
    account_type: str
    created_at: datetime
    updated_at: datetime
    version: int = 0


class AccountStore(EventPublisherMixin):
    """Reads and writes accounts; `save` is the only write path for balances"""

    def __init__(
        self,
        storage: StorageInterface,
        id_generator: IdGenerator,
        default_account_type: str = "SAVINGS",
        max_attempts: int = 20,
        backoff_seconds: float = 0.005,
        events: Optional[EventDispatcher] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.storage = storage
        self.id_generator = id_generator
        self.default_account_type = default_account_type
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.events = events
        self._sleep = sleep
        self.table_name = "accounts"
        self.logger = get_logger("core_ledger.accounts")

        self.storage.register_table(
            self.table_name,
            unique_fields=("account_number", "owner_id")
        )

    def get(self, account_id: int) -> Optional[Account]:
        """Get account by numeric id"""
        data = self.storage.load(self.table_name, str(account_id))
        if data:
            return self._account_from_dict(data)
        return None

    def get_by_owner(self, owner_id: str) -> Optional[Account]:
        """Get the account owned by a user, if any"""
        results = self.storage.find(self.table_name, {"owner_id": owner_id})
        if results:
            return self._account_from_dict(results[0])
        return None

    def get_by_account_number(self, account_number: str) -> Optional[Account]:
        """Get account by its public account number"""
        results = self.storage.find(self.table_name, {"account_number": account_number})
        if results:
            return self._account_from_dict(results[0])
        return None

    def exists_account_number(self, account_number: str) -> bool:
        return bool(self.storage.find(self.table_name, {"account_number": account_number}))

    def create(self, owner_id: str, account_type: Optional[str] = None) -> Account:
        """
        Open the single account of a user with a zero balance.

        Args:
            owner_id: User the account belongs to
            account_type: Account type label, defaults to the configured type

        Returns:
            The created account

        Raises:
            AccountAlreadyExistsError: If the user already owns an account
            TransientStoreError: If no account number could be claimed
        """
        if self.get_by_owner(owner_id) is not None:
            self._log_duplicate_owner(owner_id)
            raise AccountAlreadyExistsError(owner_id=owner_id)

        account_type = account_type or self.default_account_type

        for attempt in range(self.max_attempts):
            account_number = self.id_generator.next_account_number(self.exists_account_number)
            now = datetime.now(timezone.utc)
            account = Account(
                id=self.storage.next_sequence(self.table_name),
                account_number=account_number,
                balance=ZERO,
                owner_id=owner_id,
                account_type=account_type,
                created_at=now,
                updated_at=now
            )
            try:
                self.storage.insert(self.table_name, str(account.id), self._account_to_dict(account))
            except DuplicateKeyError as e:
                if e.field == "owner_id":
                    self._log_duplicate_owner(owner_id)
                    raise AccountAlreadyExistsError(owner_id=owner_id) from e
                if e.field not in ("account_number", "id"):
                    raise
                self.logger.info(f"Lost race for account number on attempt {attempt + 1}, retrying")
                self._sleep(self.backoff_seconds * (2 ** attempt))
                continue

            log_action(
                self.logger, "info", "Account created",
                user_id=owner_id, action="create_account", resource=f"account:{account.id}",
                extra={"account_number": account.account_number, "account_type": account.account_type}
            )
            self.publish_event(DomainEvent.ACCOUNT_CREATED, "account", str(account.id), {
                "account_number": account.account_number,
                "owner_id": owner_id,
                "account_type": account_type
            })
            return account

        raise TransientStoreError(f"could not open account for {owner_id} after {self.max_attempts} attempts")

    def save(self, account: Account) -> None:
        """
        Persist an account with a compare-and-swap on its version.

        Raises:
            StaleRecordError: If the stored account changed since it was read
        """
        expected_version = account.version
        data = self._account_to_dict(account)
        data[VERSION_FIELD] = expected_version + 1
        self.storage.update(self.table_name, str(account.id), data, expected_version)
        account.version = expected_version + 1

    def _log_duplicate_owner(self, owner_id: str) -> None:
        log_action(self.logger, "warning", "Account creation rejected: user already has an account",
                   user_id=owner_id, action="create_account_rejected")

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        return {
            "id": account.id,
            "account_number": account.account_number,
            "balance": str(account.balance),
            "owner_id": account.owner_id,
            "account_type": account.account_type,
            "created_at": account.created_at.isoformat(),
            "updated_at": account.updated_at.isoformat(),
            "version": account.version
        }

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            id=int(data["id"]),
            account_number=data["account_number"],
            balance=Decimal(data["balance"]),
            owner_id=data["owner_id"],
            account_type=data["account_type"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            version=int(data.get("version", 0))
        )
