"""
Fixed-point conversion between human decimal text and ledger integer units.

Amounts are parsed with ``decimal.Decimal`` and scaled with integer arithmetic,
so no binary floating-point value is ever involved. Conversion floors: a
fractional remainder below one raw unit is dropped, never rounded up.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from app.core.errors import InvalidAmount

NATIVE_DECIMALS = 9  # lamports per SOL
MAX_SHIFT = 1024  # decimal exponents beyond this cannot be a ledger amount

_AMOUNT_RE = re.compile(r"^\+?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def _check_decimals(decimals: int) -> None:
    if decimals < 0:
        raise ValueError("decimals must be non-negative")


def to_raw_units(amount_text: str, decimals: int) -> int:
    """
    Convert a decimal amount string into raw ledger units.

    ``to_raw_units("0.1", 2) == 10``; ``to_raw_units("1.239", 2) == 123``.

    Raises:
        InvalidAmount: text is not a plain non-negative decimal number
    """
    _check_decimals(decimals)
    if not isinstance(amount_text, str):
        raise InvalidAmount("Invalid amount: expected decimal text")
    text = amount_text.strip()
    if not _AMOUNT_RE.match(text):
        raise InvalidAmount(f"Invalid amount: unable to parse {amount_text!r}")
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise InvalidAmount(f"Invalid amount: unable to parse {amount_text!r}") from exc

    _, digits, exponent = value.as_tuple()
    coefficient = int("".join(str(d) for d in digits) or "0")
    shift = exponent + decimals
    if coefficient == 0:
        return 0
    if shift > MAX_SHIFT:
        raise InvalidAmount(f"Invalid amount: {amount_text!r} is out of range")
    if -shift > len(digits):
        return 0
    if shift >= 0:
        return coefficient * 10**shift
    return coefficient // 10**-shift


def to_display_text(raw: int, decimals: int) -> str:
    """
    Render raw units as decimal text with exactly *decimals* fractional digits.

    ``to_display_text(5, 2) == "0.05"``; ``to_display_text(100, 2) == "1.00"``.
    """
    _check_decimals(decimals)
    if raw < 0:
        raise ValueError("raw amount must be non-negative")
    if decimals == 0:
        return str(raw)
    padded = str(raw).rjust(decimals + 1, "0")
    integer_part = padded[:-decimals] or "0"
    return f"{integer_part}.{padded[-decimals:]}"


@dataclass(frozen=True)
class AssetAmount:
    """A fixed-point quantity: ``raw / 10**decimals``."""

    raw: int
    decimals: int

    def __post_init__(self) -> None:
        if self.raw < 0:
            raise InvalidAmount("raw amount must be non-negative")
        _check_decimals(self.decimals)

    @classmethod
    def from_text(cls, amount_text: str, decimals: int) -> "AssetAmount":
        return cls(to_raw_units(amount_text, decimals), decimals)

    def display(self) -> str:
        return to_display_text(self.raw, self.decimals)

    def __str__(self) -> str:
        return self.display()


def native_to_raw(amount_text: str) -> int:
    return to_raw_units(amount_text, NATIVE_DECIMALS)


def format_native(lamports: int) -> str:
    return to_display_text(lamports, NATIVE_DECIMALS)
