"""
Transaction Ledger Module

Append-only record of money movements keyed by a globally unique
transaction id. Entries are never updated or deleted; the only write is
``insert``, so the primary key of the transactions table rejects any id
that was already used.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union
from enum import Enum
import time

from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .exceptions import DuplicateKeyError, TransactionNotFoundError, TransientStoreError
from .ids import IdGenerator
from .logging_config import get_logger, log_action
from .money import AmountLike, to_positive_amount
from .storage import StorageInterface


class TransactionStatus(Enum):
    """Transaction status"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class PaymentMethod(Enum):
    """Payment methods produced by the ledger engines"""
    TRANSFER = "TRANSFER"
    DEPOSIT = "DEPOSIT"
    TRANSFER_CREDIT = "TRANSFER_CREDIT"


@dataclass
class Transaction:
    """
    A recorded money movement.

    ``payment_method`` is a plain string: engine-produced entries use the
    PaymentMethod values, externally recorded entries carry whatever method
    the caller supplied (for example "CARD").
    """
    id: str
    amount: Decimal
    status: TransactionStatus
    payment_method: str
    owner_id: str
    created_at: datetime
    account_id: Optional[int] = None
    counterparty_account_number: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED


class TransactionLedger(EventPublisherMixin):
    """Appends and reads transaction entries"""

    def __init__(
        self,
        storage: StorageInterface,
        id_generator: IdGenerator,
        max_attempts: int = 20,
        backoff_seconds: float = 0.005,
        events: Optional[EventDispatcher] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.storage = storage
        self.id_generator = id_generator
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.events = events
        self._sleep = sleep
        self.table_name = "transactions"
        self.logger = get_logger("core_ledger.transactions")

        self.storage.register_table(self.table_name, indexed_fields=("owner_id",))

    def append(
        self,
        owner_id: str,
        amount: Decimal,
        status: TransactionStatus,
        payment_method: Union[PaymentMethod, str],
        account_id: Optional[int] = None,
        counterparty_account_number: Optional[str] = None,
        description: Optional[str] = None
    ) -> Transaction:
        """
        Stamp a fresh id on a new entry and insert it.

        Runs inside the caller's unit of work when there is one. An id
        already present in the store is retried with a new id and
        exponential backoff.

        Raises:
            TransientStoreError: If no unused id was found
        """
        method = payment_method.value if isinstance(payment_method, PaymentMethod) else str(payment_method)

        for attempt in range(self.max_attempts):
            transaction = Transaction(
                id=self.id_generator.next_transaction_id(),
                amount=amount,
                status=status,
                payment_method=method,
                owner_id=owner_id,
                created_at=datetime.now(timezone.utc),
                account_id=account_id,
                counterparty_account_number=counterparty_account_number,
                description=description
            )
            try:
                self.storage.insert(self.table_name, transaction.id, self._transaction_to_dict(transaction))
                return transaction
            except DuplicateKeyError as e:
                if e.field != "id":
                    raise
                self.logger.warning(f"Transaction id {transaction.id} already used, retrying")
                self._sleep(self.backoff_seconds * (2 ** attempt))

        raise TransientStoreError(f"no unused transaction id after {self.max_attempts} attempts")

    def record_external(
        self,
        owner_id: str,
        amount: AmountLike,
        payment_method: Union[PaymentMethod, str],
        status: TransactionStatus = TransactionStatus.PENDING,
        description: Optional[str] = None
    ) -> Transaction:
        """
        Record a transaction that was initiated outside the ledger engines.

        The entry is persisted as given; no account is read or changed and
        the status is kept (PENDING unless the caller says otherwise).

        Raises:
            InvalidAmountError: If the amount is not a positive number
        """
        amount = to_positive_amount(amount)
        transaction = self.append(
            owner_id=owner_id,
            amount=amount,
            status=status,
            payment_method=payment_method,
            description=description
        )

        log_action(
            self.logger, "info", "External transaction recorded",
            user_id=owner_id, action="record_transaction", resource=f"transaction:{transaction.id}",
            extra={
                "amount": str(amount),
                "payment_method": transaction.payment_method,
                "status": transaction.status.value
            }
        )
        self.publish_event(DomainEvent.TRANSACTION_RECORDED, "transaction", transaction.id,
                           self._transaction_to_dict(transaction))
        return transaction

    def get(self, transaction_id: str) -> Transaction:
        """
        Get a transaction by id.

        Raises:
            TransactionNotFoundError: If no such transaction exists
        """
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise TransactionNotFoundError(transaction_id=transaction_id)
        return self._transaction_from_dict(data)

    def list_for_owner(self, owner_id: str) -> List[Transaction]:
        """All transactions attributed to a user, newest first"""
        results = self.storage.find(self.table_name, {"owner_id": owner_id})
        transactions = [self._transaction_from_dict(data) for data in results]
        transactions.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return transactions

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        return {
            "id": transaction.id,
            "amount": str(transaction.amount),
            "status": transaction.status.value,
            "payment_method": transaction.payment_method,
            "owner_id": transaction.owner_id,
            "account_id": transaction.account_id,
            "counterparty_account_number": transaction.counterparty_account_number,
            "description": transaction.description,
            "created_at": transaction.created_at.isoformat()
        }

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data["id"],
            amount=Decimal(data["amount"]),
            status=TransactionStatus(data["status"]),
            payment_method=data["payment_method"],
            owner_id=data["owner_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            account_id=data.get("account_id"),
            counterparty_account_number=data.get("counterparty_account_number"),
            description=data.get("description")
        )
