"""Conversions between human units and smallest-unit integers."""

from __future__ import annotations

from decimal import Decimal, DecimalException, Inexact, InvalidOperation, localcontext
from typing import Union

from .constants import U64_MAX, UNIT_SCALE
from .errors import InvalidAmount, InvalidInput

Amount = Union[int, str, Decimal, float]


def _as_decimal(value: Amount, name: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount(f"{name} must be a number")
    if isinstance(value, float):
        # repr keeps the shortest round-tripping form, so 0.1 stays 0.1
        value = repr(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f"{name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise InvalidAmount(f"{name} must be finite")
    return result


def to_base_units(amount: Amount, *, scale: int = UNIT_SCALE, name: str = "amount") -> int:
    """Convert a human amount to smallest units, rejecting sub-unit remainders."""
    human = _as_decimal(amount, name)
    with localcontext() as ctx:
        # wide enough that the product is exact, never rounded
        ctx.prec = len(human.as_tuple().digits) + len(str(scale)) + 1
        ctx.traps[Inexact] = True
        try:
            value = human * scale
        except DecimalException as exc:
            raise InvalidAmount(f"{name} {amount} is out of range") from exc
    if value < 0:
        raise InvalidAmount(f"{name} must be >= 0")
    if value > U64_MAX:
        raise InvalidAmount(f"{name} exceeds u64 range")
    integral = int(value)  # truncates toward zero
    if value != integral:
        raise InvalidAmount(f"{name} {amount} is not a whole number of base units")
    return integral


def from_base_units(value: int, *, scale: int = UNIT_SCALE) -> Decimal:
    return Decimal(value) / Decimal(scale)


def check_uint(value: int, bits: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer")
    if value < 0 or value > (2**bits - 1):
        raise InvalidInput(f"{name} must fit in u{bits}")
    return value


def check_int(value: int, bits: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer")
    bound = 2 ** (bits - 1)
    if value < -bound or value >= bound:
        raise InvalidInput(f"{name} must fit in i{bits}")
    return value


def encode_text(value: str, width: int, name: str) -> bytes:
    """UTF-8 encode ``value``, rejecting anything wider than ``width`` bytes."""
    if not isinstance(value, str):
        raise InvalidInput(f"{name} must be a string")
    data = value.encode("utf-8")
    if len(data) > width:
        raise InvalidInput(f"{name} is {len(data)} bytes; maximum is {width}")
    return data
