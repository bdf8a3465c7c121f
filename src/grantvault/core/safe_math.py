"""
Checked unsigned-integer arithmetic.

All ledger and release math goes through these helpers. Results outside
[0, MAX_UINT] raise ArithmeticOverflowError instead of wrapping or going
negative. Floats are rejected outright.
"""

from __future__ import annotations

from . import config
from .exceptions import ArithmeticOverflowError


def is_uint(value: object, max_value: int | None = None) -> bool:
    """True if value is a non-bool int inside the unsigned range."""
    limit = config.MAX_UINT if max_value is None else max_value
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= limit


def require_uint(value: int, name: str = "value", max_value: int | None = None) -> int:
    if not is_uint(value, max_value):
        raise ArithmeticOverflowError(
            f"{name} is not an unsigned integer in range: {value!r}",
            details={"operand": name},
        )
    return value


def checked_add(a: int, b: int, max_value: int | None = None) -> int:
    limit = config.MAX_UINT if max_value is None else max_value
    require_uint(a, "a", limit)
    require_uint(b, "b", limit)
    result = a + b
    if result > limit:
        raise ArithmeticOverflowError(
            "addition overflow",
            details={"a": a, "b": b, "limit_bits": limit.bit_length()},
        )
    return result


def checked_sub(a: int, b: int, max_value: int | None = None) -> int:
    limit = config.MAX_UINT if max_value is None else max_value
    require_uint(a, "a", limit)
    require_uint(b, "b", limit)
    if b > a:
        raise ArithmeticOverflowError("subtraction underflow", details={"a": a, "b": b})
    return a - b


def checked_mul(a: int, b: int, max_value: int | None = None) -> int:
    limit = config.MAX_UINT if max_value is None else max_value
    require_uint(a, "a", limit)
    require_uint(b, "b", limit)
    result = a * b
    if result > limit:
        raise ArithmeticOverflowError(
            "multiplication overflow",
            details={"a": a, "b": b, "limit_bits": limit.bit_length()},
        )
    return result


def mul_div(a: int, b: int, denominator: int, max_value: int | None = None) -> int:
    """
    Calculate floor((a * b) / denominator) with a checked product.

    Rounds toward zero, which for unsigned operands is the floor. Paying out
    the floor keeps the vault from ever releasing more than has accrued.

    Raises:
        ArithmeticOverflowError: If the product overflows or denominator is zero
    """
    if denominator == 0:
        raise ArithmeticOverflowError("division by zero")
    product = checked_mul(a, b, max_value)
    return product // denominator
