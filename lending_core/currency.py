"""
Currency and Money Module

ISO 4217 currency codes and an immutable Money type with Decimal precision.
NEVER uses float for monetary values: every amount is rounded to its
currency precision with ROUND_HALF_UP.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from typing import Any
from enum import Enum

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    ETB = ("ETB", 2)  # Ethiopian Birr
    KES = ("KES", 2)  # Kenyan Shilling
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency code: {code}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    Negative amounts are allowed (e.g. an overpaid residual).
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))

        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = to_decimal(multiplier)
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other)
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
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"

    def to_dict(self) -> dict:
        return {'amount': str(self.amount), 'currency': self.currency.code}

    @classmethod
    def from_dict(cls, data: dict) -> 'Money':
        return cls(Decimal(data['amount']), Currency.from_code(data['currency']))


def min_money(first: Money, second: Money) -> Money:
    """Smaller of two amounts in the same currency"""
    return first if first <= second else second


def to_decimal(value: Any) -> Decimal:
    """
    Convert a stored numeric value to Decimal without going through float
    binary representation.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Cannot convert {value!r} to Decimal")
    if not result.is_finite():
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    return result
