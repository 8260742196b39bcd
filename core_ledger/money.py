"""
Money Handling Module

Decimal precision for every balance and amount in the ledger.
NEVER uses float for monetary values.

Balances have no upper bound other than MAX_DIGITS significant digits.
Arithmetic that would have to round is refused with InvalidAmountError
rather than silently losing cents.
"""

from decimal import Context, Decimal, DecimalException, InvalidOperation, ROUND_HALF_UP, Rounded
from typing import Union

from .exceptions import InvalidAmountError

MAX_DIGITS = 64
AMOUNT_PLACES = 2
QUANTUM = Decimal('0.1') ** AMOUNT_PLACES
ZERO = Decimal('0').quantize(QUANTUM)

# Input rounding to cents is allowed; running out of digits is not
INPUT_CONTEXT = Context(prec=MAX_DIGITS, rounding=ROUND_HALF_UP, traps=[InvalidOperation])
# Balance arithmetic must be exact
LEDGER_CONTEXT = Context(prec=MAX_DIGITS, rounding=ROUND_HALF_UP, traps=[InvalidOperation, Rounded])

AmountLike = Union[Decimal, str, int]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to a Decimal rounded to ledger precision.

    Floats go through ``str`` so 0.1 becomes Decimal('0.10') rather than the
    binary approximation.

    Raises:
        InvalidAmountError: If the value is not a finite number or needs more
            than MAX_DIGITS digits at cent precision
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"not a number: {value!r}")

    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidAmountError(f"not a number: {value!r}")

    if not value.is_finite():
        raise InvalidAmountError(f"not a finite number: {value}")

    try:
        return value.quantize(QUANTUM, context=INPUT_CONTEXT)
    except InvalidOperation:
        raise InvalidAmountError(f"more than {MAX_DIGITS} digits: {value}")


def to_positive_amount(value: AmountLike) -> Decimal:
    """Convert to a ledger amount and require it to be strictly positive"""
    amount = to_amount(value)
    if amount <= ZERO:
        raise InvalidAmountError(f"got {amount}")
    return amount


def add(augend: Decimal, addend: Decimal) -> Decimal:
    """
    Exact sum of two ledger amounts.

    Raises:
        InvalidAmountError: If the sum cannot be held without rounding
    """
    try:
        return LEDGER_CONTEXT.add(augend, addend)
    except DecimalException:
        raise InvalidAmountError(f"{augend} + {addend} exceeds {MAX_DIGITS} digits")


def subtract(minuend: Decimal, subtrahend: Decimal) -> Decimal:
    """Exact difference of two ledger amounts, see `add`"""
    try:
        return LEDGER_CONTEXT.subtract(minuend, subtrahend)
    except DecimalException:
        raise InvalidAmountError(f"{minuend} - {subtrahend} exceeds {MAX_DIGITS} digits")


def format_amount(amount: Decimal) -> str:
    """Format for display"""
    return f"{amount:,.{AMOUNT_PLACES}f}"
