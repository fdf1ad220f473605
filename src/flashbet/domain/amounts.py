"""Fixed-point conversion between decimal strings and integer base units.

One whole token is ``10**18`` base units. Amounts are plain Python ``int``
values so every add, multiply and floor-divide is exact regardless of size.

``format_amount`` is a display helper: it keeps at most four fractional
digits, so ``parse_amount(format_amount(x)) == x`` does NOT hold in general.
Only ``format_amount(parse_amount(s))`` is stable after one normalisation
pass for strings with up to four fractional digits.
"""

from __future__ import annotations

import re

from flashbet.domain.errors import InvalidAmountError, InvalidFormatError

Amount = int

DECIMALS = 18
BASE_UNITS = 10**DECIMALS
DISPLAY_DECIMALS = 4

_DECIMAL_RE = re.compile(r"^(?P<whole>[0-9]+)(?:\.(?P<fraction>[0-9]*))?$")


def parse_amount(value: str) -> Amount:
    """Convert a human-entered decimal string into base units.

    The fractional part is right-padded or truncated to exactly 18 digits.

    Raises:
        InvalidFormatError: if the whole part is not a non-negative integer
            literal or the fractional part contains non-digits.
    """

    if not isinstance(value, str):
        raise InvalidFormatError(f"Amount must be a decimal string, got {type(value).__name__}")
    match = _DECIMAL_RE.match(value.strip())
    if match is None:
        raise InvalidFormatError(f"Invalid amount literal: {value!r}")
    whole = int(match.group("whole"))
    fraction = (match.group("fraction") or "").ljust(DECIMALS, "0")[:DECIMALS]
    return whole * BASE_UNITS + int(fraction)


def format_amount(amount: Amount) -> str:
    """Render base units as a decimal string with at most four fractional digits."""

    validate_amount(amount, allow_zero=True)
    whole, remainder = divmod(amount, BASE_UNITS)
    if remainder == 0:
        return str(whole)
    fraction = str(remainder).zfill(DECIMALS)[:DISPLAY_DECIMALS].rstrip("0")
    if not fraction:
        return str(whole)
    return f"{whole}.{fraction}"


def validate_amount(amount: object, *, allow_zero: bool = False) -> Amount:
    """Return ``amount`` if it is a representable amount, else raise."""

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"Amount must be an integer number of base units, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
    return amount


def mul_div(amount: Amount, numerator: Amount, denominator: Amount) -> Amount:
    """Return ``floor(amount * numerator / denominator)`` without intermediate rounding."""

    if denominator <= 0:
        raise InvalidAmountError("Denominator must be positive")
    return amount * numerator // denominator


__all__ = [
    "Amount",
    "BASE_UNITS",
    "DECIMALS",
    "DISPLAY_DECIMALS",
    "format_amount",
    "mul_div",
    "parse_amount",
    "validate_amount",
]
