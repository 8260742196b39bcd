"""
Pydantic schemas for ledger requests and responses.

Field names on the wire are camelCase; Python code may use either the
alias or the attribute name.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from .accounts import Account
from .transactions import Transaction


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Request schemas
class TransferRequest(WireModel):
    to_account_number: str = Field(..., alias="toAccountNumber")
    amount: Decimal = Field(..., description="Positivity is checked by the ledger")
    description: Optional[str] = None


class DepositRequest(WireModel):
    amount: Decimal
    description: Optional[str] = None


class TransactionCreateRequest(WireModel):
    amount: Decimal
    payment_method: str = Field(..., alias="paymentMethod", description="Passed through unchanged, e.g. CARD")
    description: Optional[str] = None


# Response schemas
class TransactionResponse(WireModel):
    transaction_id: str = Field(..., alias="transactionId")
    amount: Decimal
    status: str
    payment_method: str = Field(..., alias="paymentMethod")
    created_at: str = Field(..., alias="createdAt", description="ISO 8601 timestamp")
    user_email: Optional[str] = Field(None, alias="userEmail")
    description: Optional[str] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction,
                         user_email: Optional[str] = None) -> 'TransactionResponse':
        return cls(
            transaction_id=transaction.id,
            amount=transaction.amount,
            status=transaction.status.value,
            payment_method=transaction.payment_method,
            created_at=transaction.created_at.isoformat(),
            user_email=user_email,
            description=transaction.description
        )


class AccountResponse(WireModel):
    id: int
    account_number: str = Field(..., alias="accountNumber")
    balance: Decimal
    account_type: str = Field(..., alias="accountType")
    user_id: str = Field(..., alias="userId")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            account_number=account.account_number,
            balance=account.balance,
            account_type=account.account_type,
            user_id=account.owner_id,
            created_at=account.created_at.isoformat(),
            updated_at=account.updated_at.isoformat()
        )


class BalanceResponse(WireModel):
    account_number: str = Field(..., alias="accountNumber")
    balance: Decimal
