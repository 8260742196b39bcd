"""
Deposit Engine Module

Credits a user's account and records a DEPOSIT entry in one unit of work.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .accounts import AccountStore
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .exceptions import AccountNotFoundError, LedgerError
from .integrity import IntegrityMonitor
from .locking import AccountLockManager
from .logging_config import get_logger, log_action
from .money import AmountLike, ZERO, add, to_positive_amount
from .storage import StorageInterface
from .transactions import PaymentMethod, Transaction, TransactionLedger, TransactionStatus


class DepositEngine(EventPublisherMixin):
    """Atomic single-account credit"""

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        ledger: TransactionLedger,
        locks: AccountLockManager,
        integrity: IntegrityMonitor,
        events: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.locks = locks
        self.integrity = integrity
        self.events = events
        self.logger = get_logger("core_ledger.deposits")

    def deposit(self, user_id: str, amount: AmountLike,
                description: Optional[str] = None) -> Transaction:
        """
        Credit the user's account.

        The account lookup comes before amount validation, so a user
        without an account gets AccountNotFoundError even for a bad amount.
        There is no upper bound on the amount beyond the digits a balance can
        hold exactly (see money.MAX_DIGITS).

        Raises:
            AccountNotFoundError: user has no account
            InvalidAmountError: amount is not a positive number
            TransientStoreError: lock or store timeout, safe to retry
            DataCorruptionError: ledger is halted or the deposit broke an invariant
        """
        self.integrity.check_open()

        account = self.accounts.get_by_owner(user_id)
        if account is None:
            self._reject(user_id, AccountNotFoundError(user_id=user_id), amount)

        try:
            amount = to_positive_amount(amount)
        except LedgerError as e:
            self._reject(user_id, e, amount)

        with self.locks.hold(account.id):
            self.integrity.check_open()

            with self.storage.atomic():
                account = self.accounts.get(account.id)
                if account is None:
                    raise AccountNotFoundError(user_id=user_id)
                balance_before = account.balance
                try:
                    expected = add(balance_before, amount)
                except LedgerError as e:
                    self._reject(user_id, e, amount)

                account.balance = expected
                account.updated_at = datetime.now(timezone.utc)
                self.accounts.save(account)

                transaction = self.ledger.append(
                    owner_id=account.owner_id,
                    amount=amount,
                    status=TransactionStatus.COMPLETED,
                    payment_method=PaymentMethod.DEPOSIT,
                    account_id=account.id,
                    description=description
                )

            self._verify(account.id, account.version, balance_before, expected, transaction)

        log_action(
            self.logger, "info", "Deposit completed",
            user_id=user_id, action="deposit", resource=f"transaction:{transaction.id}",
            extra={"account_number": account.account_number, "amount": str(amount)}
        )
        self.publish_event(DomainEvent.DEPOSIT_COMPLETED, "transaction", transaction.id, {
            "account_number": account.account_number,
            "amount": str(amount),
            "owner_id": user_id
        })
        return transaction

    def _verify(self, account_id: int, saved_version: int, balance_before: Decimal,
                expected: Decimal, transaction: Transaction) -> None:
        """
        Post-commit check of the credit.

        The amount is only compared while the account still holds the version
        this deposit wrote. A later version belongs to another writer that
        committed in between (another process on the same database) and the
        balance is then only required to be non-negative.
        """
        stored = self.accounts.get(account_id)
        if stored is None:
            raise self.integrity.trip("deposit account vanished after commit",
                                      transaction_id=transaction.id)

        if stored.version == saved_version and stored.balance != expected:
            raise self.integrity.trip(
                "deposit did not credit the expected amount",
                transaction_id=transaction.id, before=balance_before,
                amount=transaction.amount, after=stored.balance
            )
        if stored.version < saved_version:
            raise self.integrity.trip(
                "deposit not visible after commit",
                transaction_id=transaction.id, saved_version=saved_version,
                stored_version=stored.version
            )
        if stored.balance < ZERO:
            raise self.integrity.trip(
                "negative balance after deposit",
                transaction_id=transaction.id, after=stored.balance
            )
        if stored.version > saved_version:
            self.logger.debug(
                f"Account {account_id} moved to version {stored.version} after deposit "
                f"{transaction.id}, amount check skipped"
            )

    def _reject(self, user_id: str, error: LedgerError, amount) -> None:
        log_action(
            self.logger, "warning", f"Deposit rejected: {error.message}",
            user_id=user_id, action="deposit_rejected",
            extra={"code": error.code, "amount": str(amount)}
        )
        raise error
