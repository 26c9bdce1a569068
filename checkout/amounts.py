"""
Conversion between display amounts and the gateway's integer minor units.

    $10.50 USD -> 1050
    ¥1000 JPY  -> 1000 (JPY has no minor unit)

Amounts are handled as Decimal throughout; floats are converted through their
string form so 10.555 is treated as 10.555 and not its binary approximation.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from checkout.config import ZERO_DECIMAL_CURRENCIES

AmountLike = Union[Decimal, int, float, str]

DEFAULT_ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

_zero_decimal = frozenset(c.upper() for c in ZERO_DECIMAL_CURRENCIES) or DEFAULT_ZERO_DECIMAL_CURRENCIES

_ONE = Decimal(1)
_CENT = Decimal("0.01")


def set_zero_decimal_currencies(codes: Iterable[str]):
    """Replace the zero-decimal table, e.g. after fetching the gateway's current list."""
    global _zero_decimal
    table = frozenset(c.strip().upper() for c in codes if c and c.strip())
    if not table:
        raise ValueError("zero-decimal currency table cannot be empty")
    _zero_decimal = table


def zero_decimal_currencies() -> frozenset:
    return _zero_decimal


def _to_decimal(amount: AmountLike) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        return Decimal(str(amount))
    return Decimal(amount)


def is_zero_decimal(currency: str) -> bool:
    return currency.strip().upper() in _zero_decimal


def currency_exponent(currency: str) -> int:
    return 0 if is_zero_decimal(currency) else 2


def to_minor_units(amount: AmountLike, currency: str) -> int:
    """
    Convert a display amount to the gateway's smallest currency unit.

    Rounds half away from zero: 10.555 USD -> 1056, -10.555 USD -> -1056.
    """
    value = _to_decimal(amount)
    if not is_zero_decimal(currency):
        value = value * 100
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def from_minor_units(minor: int, currency: str) -> Decimal:
    """Convert a minor-unit amount back to an exact display Decimal (1050 USD -> Decimal('10.50'))."""
    value = Decimal(int(minor))
    if is_zero_decimal(currency):
        return value
    return (value / 100).quantize(_CENT)


def format_amount(amount: AmountLike, currency: str) -> str:
    code = currency.strip().upper()
    value = _to_decimal(amount)
    if is_zero_decimal(code):
        return f"{code} {value.quantize(_ONE, rounding=ROUND_HALF_UP)}"
    return f"{code} {value.quantize(_CENT, rounding=ROUND_HALF_UP)}"
