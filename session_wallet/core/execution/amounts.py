"""
Exact conversion between whole-coin amounts and atomic units.

Amounts cross the public boundary as ``Decimal`` in whole-coin units
(SOL, ETH). Conversion to lamports / wei is exact integer scaling by the
asset's decimal exponent; anything finer than one atomic unit is refused
rather than rounded.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

from ..chain_types import Chain, native_decimals
from ..errors import InvalidAmount


def parse_amount(value: Any) -> Decimal:
    """
    Parse a user/LLM supplied amount into a finite ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.
    Booleans, NaN and infinities are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Invalid amount: {value!r}", amount=value)
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount(f"Amount must be finite: {value!r}", amount=value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"Invalid amount: {value!r}", amount=value) from e
    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite: {value!r}", amount=value)
    return amount


def require_positive(amount: Decimal) -> Decimal:
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}", amount=amount)
    return amount


def to_atomic(amount: Decimal, chain: Chain) -> int:
    """
    Convert a whole-coin amount to integer atomic units (lamports / wei).

    Raises:
        InvalidAmount: non-positive amount, or more precision than the
            atomic unit can represent.
    """
    return scale_to_atomic(amount, native_decimals(chain))


def scale_to_atomic(amount: Decimal, decimals: int) -> int:
    """``to_atomic`` for an arbitrary decimal exponent (SPL tokens)."""
    amount = require_positive(parse_amount(amount))
    # 78 digits covers uint256
    with localcontext() as ctx:
        ctx.prec = 78
        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(
                f"Amount {amount} has more than {decimals} decimal places",
                amount=amount,
            )
        return int(scaled)


def from_atomic(atomic: int, chain: Chain) -> Decimal:
    """Convert integer atomic units back to a whole-coin ``Decimal``."""
    return scale_from_atomic(atomic, native_decimals(chain))


def scale_from_atomic(atomic: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 78
        return Decimal(int(atomic)).scaleb(-decimals)


def format_amount(amount: Decimal) -> str:
    """Plain notation without trailing zeros: 0.100000000 -> "0.1", 0E-9 -> "0"."""
    return format(amount.normalize(), "f")


__all__ = [
    "parse_amount",
    "require_positive",
    "to_atomic",
    "from_atomic",
    "scale_to_atomic",
    "scale_from_atomic",
    "format_amount",
]
