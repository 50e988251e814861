"""
Fixed-point helpers for ledger amounts.

The ledger stores prices and balances as integers scaled by fixed
precision constants. Everything crossing the HTTP boundary is a decimal
string, so values are carried as Decimal internally and never as float.
"""

from __future__ import annotations

import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Any, Optional, Union

AMOUNT_PRECISION = Decimal(10) ** 18
PRICE_PRECISION = Decimal(10) ** 9
TRANSFER_PRECISION = Decimal(10) ** 9

ZERO = Decimal(0)

Number = Union[int, float, str, Decimal]

_POS_INT = re.compile(r"^[1-9]\d*$")


def to_decimal(value: Number) -> Decimal:
    """Parse a client-supplied number without going through binary float."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def to_raw(value: Number, precision: Decimal) -> int:
    """Scale a natural-unit value into the ledger's integer representation."""
    with localcontext() as ctx:
        ctx.prec = 60
        scaled = to_decimal(value) * precision
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_raw(raw: Any, precision: Decimal) -> Decimal:
    """Scale a ledger integer (int, numeric string or hex) into natural units."""
    if raw is None:
        return ZERO
    if isinstance(raw, str) and raw.startswith("0x"):
        raw = int(raw, 16)
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(str(raw)) / precision


def signed_balance(raw: Any, precision: Decimal = PRICE_PRECISION) -> Decimal:
    """Decode a ledger SignedBalance ({"Positive": n} / {"Negative": n})."""
    if isinstance(raw, dict):
        if "Positive" in raw:
            return from_raw(raw["Positive"], precision)
        if "Negative" in raw:
            return -from_raw(raw["Negative"], precision)
        return ZERO
    if isinstance(raw, (int, str, Decimal)):
        return from_raw(raw, precision)
    return ZERO


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Render a Decimal as a plain string, never in exponent notation."""
    if value is None:
        return None
    if value == 0:
        return "0"
    text = format(value.normalize(), "f")
    return text


def currency_to_asset(token: str) -> int:
    """Encode a token symbol as the ledger's u64 asset id ("eq" -> 0x6571)."""
    data = token.strip().lower().encode("ascii")
    if not data or len(data) > 8:
        raise ValueError(f"invalid token symbol: {token!r}")
    return int.from_bytes(data, "big")


def asset_to_currency(asset: int) -> str:
    """Decode a u64 asset id back to its token symbol."""
    asset = int(asset)
    if asset <= 0:
        return ""
    length = (asset.bit_length() + 7) // 8
    return asset.to_bytes(length, "big").decode("ascii", errors="replace")


def is_pos_int(value: Any) -> bool:
    return value is not None and bool(_POS_INT.match(str(value)))


def capitalize(direction: str) -> str:
    direction = direction.strip()
    return direction[:1].upper() + direction[1:].lower() if direction else direction
