"""
Fixed-Point Money Module

Single-currency amounts with two decimal places built on Decimal.
NEVER uses float for monetary values: floats coming from external input are
converted through their string form before any arithmetic.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from typing import Any, Union

from .errors import InvalidInputError

# Set global decimal context for financial precision
getcontext().prec = 28

# Number of decimal places and the smallest representable amount
PRECISION = 2
MINOR_UNIT = Decimal('0.01')


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation quantised to the minor unit.
    All balances and transfer amounts MUST use this class.
    """
    amount: Decimal

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        rounded = self.amount.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls) -> 'Money':
        return cls(Decimal('0'))

    @classmethod
    def from_minor_units(cls, units: int) -> 'Money':
        """Build from an integer count of cents"""
        return cls(Decimal(units).scaleb(-PRECISION))

    def to_minor_units(self) -> int:
        """Integer count of cents"""
        return int(self.amount.scaleb(PRECISION))

    def __add__(self, other: 'Money') -> 'Money':
        return Money(self.amount + other.amount)

    def __sub__(self, other: 'Money') -> 'Money':
        return Money(self.amount - other.amount)

    def __neg__(self) -> 'Money':
        return Money(-self.amount)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount

    def __hash__(self) -> int:
        return hash(self.amount)

    def __lt__(self, other: 'Money') -> bool:
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.amount:,.{PRECISION}f}"

    def __str__(self) -> str:
        return str(self.amount)


def _to_decimal(value: Any) -> Decimal:
    """Convert external input to Decimal without going through float arithmetic"""
    if isinstance(value, bool):
        raise InvalidInputError("Invalid transfer amount")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidInputError("Invalid transfer amount")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise InvalidInputError(
                "Invalid transfer amount", details={"amount": value}
            ) from None
    else:
        raise InvalidInputError("Invalid transfer amount", details={"amount": repr(value)})

    if not result.is_finite():
        raise InvalidInputError("Invalid transfer amount", details={"amount": str(value)})
    return result


def parse_amount(value: Union[str, int, float, Decimal],
                 minimum: Decimal = MINOR_UNIT) -> Money:
    """
    Parse a transfer amount supplied by an external caller

    Args:
        value: Raw amount (string, number or Decimal)
        minimum: Smallest accepted amount

    Returns:
        Money with the exact parsed amount

    Raises:
        InvalidInputError: If the value is non-numeric, not positive, below
            the minimum, or finer than the minor unit. Values are never
            clamped or rounded.
    """
    if value is None:
        raise InvalidInputError("Amount is required")

    amount = _to_decimal(value)

    if amount <= Decimal('0'):
        raise InvalidInputError("Invalid transfer amount", details={"amount": str(amount)})

    if amount < minimum:
        raise InvalidInputError(
            f"Minimum transfer amount is {minimum}",
            details={"amount": str(amount), "minimum": str(minimum)}
        )

    try:
        exact = amount == amount.quantize(MINOR_UNIT)
    except InvalidOperation:
        # More digits than the decimal context can hold
        raise InvalidInputError("Invalid transfer amount", details={"amount": str(amount)}) from None

    if not exact:
        raise InvalidInputError(
            f"Amount cannot have more than {PRECISION} decimal places",
            details={"amount": str(amount)}
        )

    return Money(amount)


def money_from_storage(value: Union[str, Decimal]) -> Money:
    """Rebuild Money from its stored Decimal string"""
    return Money(Decimal(str(value)))
