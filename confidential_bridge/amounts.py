"""
Exact amount conversion between user-denominated decimals and on-chain
integers.

All arithmetic is ``Decimal`` or ``int``; floats never touch an amount.
Confidential tokens carry encrypted 64-bit unsigned integers, so values
bound for encryption are range-checked against ``UINT64_MAX``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from confidential_bridge.errors import InvalidAmount

UINT64_MAX = 2**64 - 1


def to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise InvalidAmount("floating point amounts are not accepted")
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise InvalidAmount(f"not a finite number: {value!r}")
    return result


def parse_units(amount: Decimal | int | str, decimals: int) -> int:
    """Convert a user amount to the token's integer unit.

    ``parse_units("1", 18) == 10**18``. Amounts carrying more fractional
    digits than ``decimals`` are rejected rather than rounded.

    Raises:
        InvalidAmount: For non-numeric, negative or over-precise input.
    """
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    value = to_decimal(amount)
    if value < 0:
        raise InvalidAmount("amount must not be negative")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(
            f"amount has more than {decimals} fractional digits"
        )
    return int(scaled)


def format_units(value: int, decimals: int, places: int | None = None) -> str:
    """Render an integer unit amount as a decimal string.

    ``places`` fixes the number of fractional digits (truncating toward
    zero); by default all ``decimals`` digits are shown.
    """
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    digits = str(frac).rjust(decimals, "0") if decimals else ""
    if places is not None:
        digits = digits[:places].ljust(places, "0")
    return f"{sign}{whole}.{digits}" if digits else f"{sign}{whole}"


def check_uint64(value: int) -> int:
    """Return value if it fits in an unsigned 64-bit integer."""
    if value < 0 or value > UINT64_MAX:
        raise InvalidAmount("amount exceeds the confidential token range")
    return value
