"""
Ledger service facade.

Wires storage, id generation, locks, the integrity monitor and the engines
together, and exposes account and transaction operations keyed by caller
identity. Identities are resolved through the UserDirectory; the results
are the wire models from ``schemas``.
"""

from decimal import Decimal
from datetime import timedelta
from typing import List, Optional, Union

from .accounts import AccountStore
from .config import LedgerConfig, get_config
from .deposits import DepositEngine
from .directory import InMemoryUserDirectory, UserDirectory
from .events import EventDispatcher
from .exceptions import AccountNotFoundError
from .ids import IdGenerator
from .integrity import IntegrityMonitor
from .locking import AccountLockManager
from .logging_config import setup_logging
from .money import AmountLike
from .schemas import (
    AccountResponse, BalanceResponse, DepositRequest, TransactionCreateRequest,
    TransactionResponse, TransferRequest
)
from .sessions import SessionRegistry
from .storage import StorageInterface, create_storage
from .transactions import Transaction, TransactionLedger
from .transfers import TransferEngine


class LedgerService:
    """Ledger core with all components initialized"""

    def __init__(self, storage: StorageInterface, directory: UserDirectory,
                 config: Optional[LedgerConfig] = None,
                 events: Optional[EventDispatcher] = None):
        self.config = config or get_config()
        self.storage = storage
        self.directory = directory
        self.events = events or EventDispatcher()

        self.id_generator = IdGenerator(
            account_number_length=self.config.account_number_length,
            max_attempts=self.config.id_generation_max_attempts
        )
        self.locks = AccountLockManager(timeout=self.config.lock_timeout_seconds)
        self.integrity = IntegrityMonitor(self.events)

        self.accounts = AccountStore(
            storage, self.id_generator,
            default_account_type=self.config.default_account_type,
            max_attempts=self.config.id_generation_max_attempts,
            backoff_seconds=self.config.id_generation_backoff_seconds,
            events=self.events
        )
        self.ledger = TransactionLedger(
            storage, self.id_generator,
            max_attempts=self.config.id_generation_max_attempts,
            backoff_seconds=self.config.id_generation_backoff_seconds,
            events=self.events
        )
        self.transfers = TransferEngine(
            storage, self.accounts, self.ledger, self.locks, self.integrity,
            record_receiver_entry=self.config.record_receiver_entry,
            events=self.events
        )
        self.deposits = DepositEngine(
            storage, self.accounts, self.ledger, self.locks, self.integrity,
            events=self.events
        )

    # Accounts

    def create_account(self, identity: str, account_type: Optional[str] = None) -> AccountResponse:
        """Open the caller's account"""
        self.integrity.check_open()
        user_id = self.directory.resolve(identity)
        return AccountResponse.from_account(self.accounts.create(user_id, account_type))

    def get_account(self, identity: str) -> AccountResponse:
        """
        Raises:
            AccountNotFoundError: If the caller has no account
        """
        user_id = self.directory.resolve(identity)
        account = self.accounts.get_by_owner(user_id)
        if account is None:
            raise AccountNotFoundError(user_id=user_id)
        return AccountResponse.from_account(account)

    def get_balance(self, identity: str) -> Decimal:
        return self.get_account(identity).balance

    def get_balance_response(self, identity: str) -> BalanceResponse:
        account = self.get_account(identity)
        return BalanceResponse(account_number=account.account_number, balance=account.balance)

    # Money movements

    def transfer(self, identity: str, request: TransferRequest) -> TransactionResponse:
        user_id = self.directory.resolve(identity)
        transaction = self.transfers.transfer(
            user_id, request.to_account_number, request.amount, request.description
        )
        return self._transaction_response(transaction)

    def deposit(self, identity: str, amount: Union[AmountLike, DepositRequest],
                description: Optional[str] = None) -> TransactionResponse:
        if isinstance(amount, DepositRequest):
            amount, description = amount.amount, amount.description
        user_id = self.directory.resolve(identity)
        transaction = self.deposits.deposit(user_id, amount, description)
        return self._transaction_response(transaction)

    # Transactions

    def create_transaction(self, identity: str, request: TransactionCreateRequest) -> TransactionResponse:
        """Record an externally initiated transaction as PENDING; balances are untouched"""
        self.integrity.check_open()
        user_id = self.directory.resolve(identity)
        transaction = self.ledger.record_external(
            user_id, request.amount, request.payment_method, description=request.description
        )
        return self._transaction_response(transaction)

    def get_transaction(self, transaction_id: str) -> TransactionResponse:
        """
        Raises:
            TransactionNotFoundError: If no such transaction exists
        """
        return self._transaction_response(self.ledger.get(transaction_id))

    def list_transactions(self, identity: str) -> List[TransactionResponse]:
        """The caller's transactions, newest first"""
        user_id = self.directory.resolve(identity)
        return [self._transaction_response(t) for t in self.ledger.list_for_owner(user_id)]

    def _transaction_response(self, transaction: Transaction) -> TransactionResponse:
        profile = self.directory.lookup(transaction.owner_id)
        return TransactionResponse.from_transaction(
            transaction, user_email=profile.email if profile else None
        )

    def close(self) -> None:
        self.storage.close()


def build_session_registry(config: Optional[LedgerConfig] = None) -> SessionRegistry:
    """Session registry with timeouts taken from configuration"""
    config = config or get_config()
    return SessionRegistry(
        idle_timeout=timedelta(minutes=config.session_idle_minutes),
        remember_me_idle_timeout=timedelta(days=config.session_remember_me_days),
        absolute_timeout=timedelta(hours=config.session_absolute_hours),
        max_sessions=config.session_max_tracked
    )


def build_ledger_service(config: Optional[LedgerConfig] = None,
                         directory: Optional[UserDirectory] = None) -> LedgerService:
    """Configure logging and storage from configuration and build the service"""
    config = config or get_config()
    setup_logging(level=config.log_level, log_format=config.log_format)
    storage = create_storage(config.database_url, timeout=config.store_timeout_seconds)
    return LedgerService(storage, directory or InMemoryUserDirectory(), config=config)
