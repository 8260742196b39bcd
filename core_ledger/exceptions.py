"""
Ledger Error Taxonomy

Every failure the ledger core can report has its own class with a stable
``code`` and ``message`` so the surrounding API layer can translate it to an
HTTP status without inspecting free text.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for all ledger errors"""
    code = "LEDGER_ERROR"
    message = "Ledger operation failed"
    http_status = 500
    retryable = False

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail
        self.context = context
        text = self.message if detail is None else f"{self.message}: {detail}"
        super().__init__(text)


# Business-rule violations: returned synchronously, never retried

class LedgerRuleViolation(LedgerError, ValueError):
    """A request was rejected by a ledger business rule"""
    code = "RULE_VIOLATION"
    message = "Request rejected by ledger rules"
    http_status = 400


class InvalidAmountError(LedgerRuleViolation):
    code = "INVALID_AMOUNT"
    message = "Amount must be greater than zero"
    http_status = 400


class SenderAccountNotFoundError(LedgerRuleViolation):
    code = "SENDER_ACCOUNT_NOT_FOUND"
    message = "Sender account not found"
    http_status = 404


class ReceiverAccountNotFoundError(LedgerRuleViolation):
    code = "RECEIVER_ACCOUNT_NOT_FOUND"
    message = "Receiver account not found"
    http_status = 404


class SelfTransferNotAllowedError(LedgerRuleViolation):
    code = "SELF_TRANSFER_NOT_ALLOWED"
    message = "Cannot transfer to the same account"
    http_status = 400


class InsufficientBalanceError(LedgerRuleViolation):
    code = "INSUFFICIENT_BALANCE"
    message = "Insufficient balance"
    http_status = 422


class AccountAlreadyExistsError(LedgerRuleViolation):
    code = "ACCOUNT_ALREADY_EXISTS"
    message = "User already has an account"
    http_status = 409


# Lookups

class LedgerLookupError(LedgerError, LookupError):
    """A requested ledger record does not exist"""
    code = "NOT_FOUND"
    message = "Record not found"
    http_status = 404


class AccountNotFoundError(LedgerLookupError):
    code = "ACCOUNT_NOT_FOUND"
    message = "Account not found"


class TransactionNotFoundError(LedgerLookupError):
    code = "TRANSACTION_NOT_FOUND"
    message = "Transaction not found"


class UserNotFoundError(LedgerLookupError):
    code = "USER_NOT_FOUND"
    message = "User not found"


# Store failures

class TransientStoreError(LedgerError):
    """Timeout or contention in the store; safe for the caller to retry"""
    code = "TRANSIENT_STORE_FAILURE"
    message = "Temporary storage failure, retry the request"
    http_status = 503
    retryable = True


class DuplicateKeyError(TransientStoreError):
    """A unique constraint rejected an insert"""
    code = "DUPLICATE_KEY"
    message = "Unique constraint violated"

    def __init__(self, table: str, field: str, value: Any = None):
        self.table = table
        self.field = field
        self.value = value
        super().__init__(f"{table}.{field}", table=table, field=field)


class StaleRecordError(TransientStoreError):
    """A compare-and-swap update found a newer version in the store"""
    code = "STALE_RECORD"
    message = "Record was modified concurrently"


class DataCorruptionError(LedgerError):
    """A ledger invariant was found violated after commit; fatal"""
    code = "DATA_CORRUPTION"
    message = "Ledger invariant violated, mutations halted"
    http_status = 500
