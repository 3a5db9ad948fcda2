from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

SCALE = 2
_FACTOR = 10**SCALE


@dataclass(frozen=True, order=True)
class Money:
    """Fixed-point amount stored as an integer number of minor units (cents)."""

    cents: int

    @classmethod
    def of(cls, value: Money | Decimal | str | int) -> Money:
        if isinstance(value, Money):
            return value
        if isinstance(value, bool) or isinstance(value, float):
            raise TypeError('Money cannot be built from float or bool values')
        if isinstance(value, int):
            return cls(value * _FACTOR)
        try:
            amount = Decimal(value) if isinstance(value, str) else value
        except InvalidOperation as exc:
            raise ValueError(f'Invalid money amount: {value!r}') from exc
        if not isinstance(amount, Decimal) or not amount.is_finite():
            raise ValueError(f'Invalid money amount: {value!r}')
        scaled = amount * _FACTOR
        if scaled != scaled.to_integral_value():
            raise ValueError(f'Money supports at most {SCALE} decimal places: {value!r}')
        return cls(int(scaled))

    @classmethod
    def zero(cls) -> Money:
        return cls(0)

    def to_decimal(self) -> Decimal:
        return Decimal(self.cents).scaleb(-SCALE)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents + other.cents)

    def __radd__(self, other):
        # sum() starts from int 0
        if other == 0:
            return self
        return NotImplemented

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents - other.cents)

    def __mul__(self, qty: int) -> Money:
        if isinstance(qty, bool) or not isinstance(qty, int):
            return NotImplemented
        return Money(self.cents * qty)

    __rmul__ = __mul__

    def is_negative(self) -> bool:
        return self.cents < 0

    def display(self) -> str:
        return f'{self.to_decimal():.{SCALE}f}'

    def __str__(self) -> str:
        # '105.00' -> '105', '12.50' -> '12.5'
        text = self.display()
        if '.' in text:
            text = text.rstrip('0').rstrip('.')
        return text

    def __repr__(self) -> str:
        return f"Money('{self.display()}')"


class MoneyType(TypeDecorator):
    """Persists Money as BIGINT cents."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return Money.of(value).cents

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Money(int(value))
