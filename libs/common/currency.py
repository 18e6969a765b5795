"""Money and tax amounts for the storefront.

Internal storage unit: minor units (cents, 100 cents = 1.00).
API / display unit: decimal string with two places (e.g. "12.50").

Conversion chain
----------------
Decimal/str × 100 → minor units (round half-up)
minor units ÷ 100 → Decimal (exact)
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Mapping, Union

# ─── constants ───────────────────────────────────────────────────────────────

MINOR_PER_MAJOR: int = 100
DEFAULT_CURRENCY: str = "USD"

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "NGN": "₦",
    "PLN": "zł",
}

AmountLike = Union["Money", Decimal, int, float, str]


# ─── conversion helpers ───────────────────────────────────────────────────────


def to_minor(value: Union[Decimal, int, float, str]) -> int:
    """Convert a major-unit amount to minor units (round half-up)."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return int((amount * MINOR_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major(minor: int) -> Decimal:
    """Convert minor units to a two-place Decimal."""
    return (Decimal(minor) / MINOR_PER_MAJOR).quantize(Decimal("0.01"))


# ─── value type ──────────────────────────────────────────────────────────────


@functools.total_ordering
@dataclass(frozen=True)
class Money:
    """Immutable amount in minor units with its currency.

    Arithmetic never rounds: every operation works on integers. Amounts in
    different currencies cannot be combined.
    """

    amount: int = 0
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError(
                f"Money amount must be int minor units, got {type(self.amount).__name__}"
            )

    @classmethod
    def of(cls, value: AmountLike, currency: str = DEFAULT_CURRENCY) -> "Money":
        """Build from a major-unit value such as ``"10.00"`` or ``Decimal("5")``."""
        if isinstance(value, Money):
            return value
        return cls(to_minor(value), currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(0, currency)

    @property
    def decimal(self) -> Decimal:
        return to_major(self.amount)

    def is_zero(self) -> bool:
        return self.amount == 0

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValueError(f"Cannot combine {self.currency} with {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __radd__(self, other):
        # Allows sum() without an explicit start value.
        if other == 0:
            return self
        return self.__add__(other)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: int) -> "Money":
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise TypeError(f"Can only multiply Money by int, got {type(factor).__name__}")
        return Money(self.amount * factor, self.currency)

    __rmul__ = __mul__

    def scale(self, numerator: int, denominator: int) -> "Money":
        """Multiply by ``numerator / denominator``, rounding half-up to whole minor units."""
        amount = Decimal(self.amount) * numerator / denominator
        return Money(int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __str__(self) -> str:
        return str(self.decimal)


# ─── tax helpers ─────────────────────────────────────────────────────────────


def sum_money(values: Iterable[Money], currency: str = DEFAULT_CURRENCY) -> Money:
    """Sum amounts; an empty iterable yields zero in ``currency``."""
    return sum(values, Money.zero(currency))


def merge_taxes(*taxes: Mapping[str, Money]) -> dict[str, Money]:
    """Add per-class tax mappings together, class by class."""
    merged: dict[str, Money] = {}
    for tax in taxes:
        for tax_class, amount in tax.items():
            merged[tax_class] = merged[tax_class] + amount if tax_class in merged else amount
    return merged


def format_price(money: Money) -> str:
    """Display projection, e.g. ``$1,250.00``. Never stored."""
    value = f"{money.decimal:,.2f}"
    symbol = CURRENCY_SYMBOLS.get(money.currency)
    if money.amount < 0:
        value = value.lstrip("-")
        return f"-{symbol}{value}" if symbol else f"-{money.currency} {value}"
    return f"{symbol}{value}" if symbol else f"{money.currency} {value}"
