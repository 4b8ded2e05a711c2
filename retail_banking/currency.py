"""
Money Module

Currency codes with their minor-unit precision and an immutable Money type.
NEVER uses float for monetary values. The bank books in FCFA (XAF), which has
no minor unit.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from typing import Union
from enum import Enum
import re

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    XAF = ("XAF", 0)  # Central African CFA franc (FCFA)
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
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
        if self.currency.precision == 0:
            return f"{self.amount:,.0f} {'FCFA' if self.currency == Currency.XAF else self.currency.code}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


# "1,500" / "1,000,000.25": comma thousands separators, optional dot decimals
_GROUPED_AMOUNT = re.compile(r'[+-]?\d{1,3}(,\d{3})+(\.\d+)?')
_DOT_AMOUNT = re.compile(r'[+-]?\d+(\.\d+)?')
# "12,5": comma as decimal separator
_COMMA_AMOUNT = re.compile(r'[+-]?\d+,\d+')


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Accepts plain decimals ("3000", "12.50"), comma thousands separators
    ("1,500") and a decimal comma ("12,5"). Exponents, currency symbols and
    trailing text are rejected.

    Raises:
        InvalidAmount: If string cannot be converted to a valid Decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidAmount("Value must be a non-empty string")

    clean_value = value.strip()
    if _GROUPED_AMOUNT.fullmatch(clean_value):
        clean_value = clean_value.replace(',', '')
    elif _COMMA_AMOUNT.fullmatch(clean_value):
        clean_value = clean_value.replace(',', '.')
    elif not _DOT_AMOUNT.fullmatch(clean_value):
        raise InvalidAmount(f"Cannot convert '{value}' to Decimal")

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise InvalidAmount(f"Cannot convert '{value}' to Decimal")


def parse_amount(value: Union[str, int, Decimal, Money], currency: Currency) -> Money:
    """
    Validate a user-supplied amount: must be a positive finite decimal
    with no more decimal places than the currency has.

    Raises:
        InvalidAmount: On floats, NaN/Infinity, zero or negative values,
            or amounts finer than the currency's minor unit
    """
    if isinstance(value, Money):
        if value.currency != currency:
            raise InvalidAmount(f"Amount currency must be {currency.code}")
        amount = value.amount
    elif isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount("Amount must be given as a decimal string or integer")
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, Decimal):
        amount = value
    elif isinstance(value, str):
        amount = decimal_from_string(value)
    else:
        raise InvalidAmount(f"Unsupported amount type: {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmount("Amount must be finite")
    try:
        exact = amount == amount.quantize(currency.quantum)
    except InvalidOperation:
        raise InvalidAmount("Amount is too large")
    if not exact:
        raise InvalidAmount(
            f"{currency.code} amounts allow at most {currency.precision} decimal places"
        )
    money = Money(amount, currency)
    if not money.is_positive():
        raise InvalidAmount("Amount must be greater than zero")
    return money
