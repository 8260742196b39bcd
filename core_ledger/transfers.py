"""
Transfer Engine Module

Moves money from a user's account to another account identified by its
account number. The debit, the credit and the ledger entry commit together
or not at all.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .accounts import Account, AccountStore
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .exceptions import (
    InsufficientBalanceError, LedgerRuleViolation, ReceiverAccountNotFoundError,
    SelfTransferNotAllowedError, SenderAccountNotFoundError
)
from .integrity import IntegrityMonitor
from .locking import AccountLockManager
from .logging_config import get_logger, log_action
from .money import AmountLike, ZERO, add, subtract, to_positive_amount
from .storage import StorageInterface
from .transactions import PaymentMethod, Transaction, TransactionLedger, TransactionStatus


class TransferEngine(EventPublisherMixin):
    """
    Atomic two-account transfer.

    Both account locks are held, in ascending account-id order, from the
    fresh balance read until the post-commit verification, so concurrent
    transfers over the same accounts are serialized while transfers over
    disjoint accounts proceed in parallel.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        ledger: TransactionLedger,
        locks: AccountLockManager,
        integrity: IntegrityMonitor,
        record_receiver_entry: bool = False,
        events: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.locks = locks
        self.integrity = integrity
        self.record_receiver_entry = record_receiver_entry
        self.events = events
        self.logger = get_logger("core_ledger.transfers")

    def transfer(self, from_user_id: str, to_account_number: str, amount: AmountLike,
                 description: Optional[str] = None) -> Transaction:
        """
        Transfer money from the sender's account to the receiver's account.

        Args:
            from_user_id: User whose account is debited
            to_account_number: Account number of the receiver
            amount: Positive amount to move
            description: Optional free text stored on the ledger entry

        Returns:
            The COMPLETED TRANSFER transaction attributed to the sender

        Raises:
            InvalidAmountError: amount is not a positive number
            SenderAccountNotFoundError: sender has no account
            ReceiverAccountNotFoundError: no account has that number
            SelfTransferNotAllowedError: both sides are the same account
            InsufficientBalanceError: sender balance is below the amount
            TransientStoreError: lock or store timeout, safe to retry
            DataCorruptionError: ledger is halted or the transfer broke an invariant
        """
        self.integrity.check_open()
        try:
            return self._transfer(from_user_id, to_account_number, amount, description)
        except LedgerRuleViolation as e:
            log_action(
                self.logger, "warning", f"Transfer rejected: {e.message}",
                user_id=from_user_id, action="transfer_rejected",
                extra={"code": e.code, "to_account_number": to_account_number, "amount": str(amount)}
            )
            raise

    def _transfer(self, from_user_id: str, to_account_number: str, amount: AmountLike,
                  description: Optional[str]) -> Transaction:
        amount = to_positive_amount(amount)

        sender = self.accounts.get_by_owner(from_user_id)
        if sender is None:
            raise SenderAccountNotFoundError(user_id=from_user_id)

        receiver = self.accounts.get_by_account_number(to_account_number)
        if receiver is None:
            raise ReceiverAccountNotFoundError(account_number=to_account_number)

        if sender.id == receiver.id:
            raise SelfTransferNotAllowedError(account_number=to_account_number)

        with self.locks.hold(sender.id, receiver.id):
            self.integrity.check_open()

            with self.storage.atomic():
                sender = self._reload(sender, SenderAccountNotFoundError)
                receiver = self._reload(receiver, ReceiverAccountNotFoundError)

                if sender.balance < amount:
                    raise InsufficientBalanceError(
                        account_number=sender.account_number, requested=str(amount)
                    )

                now = datetime.now(timezone.utc)
                sender.balance = subtract(sender.balance, amount)
                sender.updated_at = now
                receiver.balance = add(receiver.balance, amount)
                receiver.updated_at = now
                expected_sender, expected_receiver = sender.balance, receiver.balance

                self.accounts.save(sender)
                self.accounts.save(receiver)

                transaction = self.ledger.append(
                    owner_id=sender.owner_id,
                    amount=amount,
                    status=TransactionStatus.COMPLETED,
                    payment_method=PaymentMethod.TRANSFER,
                    account_id=sender.id,
                    counterparty_account_number=receiver.account_number,
                    description=description
                )
                credit_entry = None
                if self.record_receiver_entry:
                    credit_entry = self.ledger.append(
                        owner_id=receiver.owner_id,
                        amount=amount,
                        status=TransactionStatus.COMPLETED,
                        payment_method=PaymentMethod.TRANSFER_CREDIT,
                        account_id=receiver.id,
                        counterparty_account_number=sender.account_number,
                        description=description
                    )

            self._verify(sender, receiver, expected_sender, expected_receiver, transaction)

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=from_user_id, action="transfer", resource=f"transaction:{transaction.id}",
            extra={
                "from_account": sender.account_number,
                "to_account": receiver.account_number,
                "amount": str(amount)
            }
        )
        self.publish_event(DomainEvent.TRANSFER_COMPLETED, "transaction", transaction.id, {
            "from_account_number": sender.account_number,
            "to_account_number": receiver.account_number,
            "amount": str(amount),
            "owner_id": sender.owner_id,
            "credit_transaction_id": credit_entry.id if credit_entry else None
        })
        return transaction

    def _reload(self, account: Account, missing_error) -> Account:
        fresh = self.accounts.get(account.id)
        if fresh is None:
            raise missing_error(account_id=account.id)
        return fresh

    def _verify(self, sender: Account, receiver: Account, expected_sender: Decimal,
                expected_receiver: Decimal, transaction: Transaction) -> None:
        """
        Post-commit check of conservation and non-negativity.

        ``sender`` and ``receiver`` carry the versions this transfer saved.
        Balances are only compared while both accounts still hold those
        versions; once another writer (another process on the same
        database) has committed over either of them, only non-negativity is
        checked.
        """
        stored_sender = self.accounts.get(sender.id)
        stored_receiver = self.accounts.get(receiver.id)
        if stored_sender is None or stored_receiver is None:
            raise self.integrity.trip("transfer account vanished after commit",
                                      transaction_id=transaction.id)

        if stored_sender.version < sender.version or stored_receiver.version < receiver.version:
            raise self.integrity.trip(
                "transfer not visible after commit",
                transaction_id=transaction.id,
                sender_version=stored_sender.version, receiver_version=stored_receiver.version
            )
        if stored_sender.balance < ZERO or stored_receiver.balance < ZERO:
            raise self.integrity.trip(
                "negative balance after transfer",
                transaction_id=transaction.id, sender_balance=stored_sender.balance,
                receiver_balance=stored_receiver.balance
            )

        if stored_sender.version != sender.version or stored_receiver.version != receiver.version:
            self.logger.debug(f"Accounts of transfer {transaction.id} changed after commit, "
                              f"conservation check skipped")
            return

        # Debit and credit both equal to the amount means nothing was created or lost
        if stored_sender.balance != expected_sender or stored_receiver.balance != expected_receiver:
            raise self.integrity.trip(
                "transfer did not conserve money",
                transaction_id=transaction.id, amount=transaction.amount,
                sender_expected=expected_sender, sender_after=stored_sender.balance,
                receiver_expected=expected_receiver, receiver_after=stored_receiver.balance
            )
