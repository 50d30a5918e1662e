"""
Money helpers — conversion between API decimals and integer cents.

Storage and all ledger arithmetic use integer minor units (cents), so
balances never accumulate floating-point error: $10.50 is stored as 1050.
The API speaks decimals with two fractional digits. Anything more precise is
rejected rather than rounded, because rounding would silently create or
destroy value.
"""

from decimal import Decimal, InvalidOperation

from app.exceptions import InvalidAmountError

CENT = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100

# Largest value a BigInteger column holds; applies to amounts and balances.
MAX_CENTS = 2**63 - 1


def to_minor_units(
    amount: Decimal,
    *,
    allow_negative: bool = False,
    allow_zero: bool = False,
) -> int:
    """
    Convert a decimal amount to integer cents.

    Args:
        amount: The amount as received from the API.
        allow_negative: Accept negative amounts (signed balance adjustments).
        allow_zero: Accept zero (opening deposits).

    Raises:
        InvalidAmountError: If the amount is non-finite, zero or negative
                            (unless allowed), has more than two
                            fractional digits, or exceeds MAX_CENTS.
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if not amount.is_finite():
        raise InvalidAmountError("Amount must be a finite number")
    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise InvalidAmountError("Amount is too large")
    if quantized != amount:
        raise InvalidAmountError("Amount must have at most 2 decimal places")
    if amount == 0 and not allow_zero:
        raise InvalidAmountError("Amount must not be zero")
    if amount < 0 and not allow_negative:
        raise InvalidAmountError("Amount must be positive")
    cents = int(quantized * MINOR_UNITS_PER_MAJOR)
    if abs(cents) > MAX_CENTS:
        raise InvalidAmountError("Amount is too large")
    return cents


def to_major_units(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal (1050 -> Decimal('10.50'))."""
    return (Decimal(cents) / MINOR_UNITS_PER_MAJOR).quantize(CENT)


def mask_account_number(account_number: str, visible: int = 4) -> str:
    """Hide all but the trailing digits of an account number."""
    if len(account_number) <= visible:
        return account_number
    return "*" * (len(account_number) - visible) + account_number[-visible:]
