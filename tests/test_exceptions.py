"""
Tests for the ledger error taxonomy
"""

import pytest

from core_ledger.exceptions import (
    AccountAlreadyExistsError, AccountNotFoundError, DataCorruptionError, DuplicateKeyError,
    InsufficientBalanceError, InvalidAmountError, LedgerError, LedgerLookupError,
    LedgerRuleViolation, ReceiverAccountNotFoundError, SelfTransferNotAllowedError,
    SenderAccountNotFoundError, StaleRecordError, TransactionNotFoundError, TransientStoreError,
    UserNotFoundError
)


RULE_VIOLATIONS = [
    InvalidAmountError, SenderAccountNotFoundError, ReceiverAccountNotFoundError,
    SelfTransferNotAllowedError, InsufficientBalanceError, AccountAlreadyExistsError,
]


class TestTaxonomy:

    @pytest.mark.parametrize("error_class", RULE_VIOLATIONS)
    def test_rule_violations_are_value_errors_and_not_retryable(self, error_class):
        error = error_class()
        assert isinstance(error, LedgerRuleViolation)
        assert isinstance(error, ValueError)
        assert not error.retryable

    @pytest.mark.parametrize("error_class", [AccountNotFoundError, TransactionNotFoundError, UserNotFoundError])
    def test_lookups(self, error_class):
        error = error_class()
        assert isinstance(error, LedgerLookupError)
        assert isinstance(error, LookupError)
        assert error.http_status == 404

    def test_transient_errors_are_retryable(self):
        assert TransientStoreError().retryable
        assert StaleRecordError().retryable
        assert DuplicateKeyError("accounts", "account_number").retryable

    def test_corruption_is_fatal(self):
        error = DataCorruptionError("totals differ")
        assert isinstance(error, LedgerError)
        assert not isinstance(error, TransientStoreError)
        assert not error.retryable

    def test_codes_are_unique(self):
        classes = RULE_VIOLATIONS + [
            AccountNotFoundError, TransactionNotFoundError, UserNotFoundError,
            TransientStoreError, DuplicateKeyError, StaleRecordError, DataCorruptionError
        ]
        codes = [c.code for c in classes]
        assert len(codes) == len(set(codes))


class TestMessages:

    def test_stable_message(self):
        assert str(InsufficientBalanceError()) == "Insufficient balance"
        assert str(SelfTransferNotAllowedError()) == "Cannot transfer to the same account"

    def test_detail_and_context(self):
        error = AccountAlreadyExistsError("retry later", owner_id="u1")
        assert str(error) == "User already has an account: retry later"
        assert error.context == {"owner_id": "u1"}
        assert error.message == "User already has an account"

    def test_duplicate_key_attributes(self):
        error = DuplicateKeyError("accounts", "owner_id", "u1")
        assert error.table == "accounts"
        assert error.field == "owner_id"
        assert error.value == "u1"
        assert "accounts.owner_id" in str(error)
