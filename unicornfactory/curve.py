"""Linear bonding curve used for quoting and for checking on-chain prices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple, Union

import numpy as np

from .constants import CURVE_BASE_PRICE, CURVE_SLOPE, CURVE_STEPS, UNIT_SCALE
from .records import Project
from .units import check_uint, from_base_units

logger = logging.getLogger(__name__)

Number = Union[int, Decimal]


def price(total_raised: Number, funding_goal: Number) -> Decimal:
    """Token price in units: ``base + base * (raised / goal) * slope``.

    ``total_raised`` and ``funding_goal`` only need to share a unit; a zero
    goal leaves the price at the base price.
    """
    base = Decimal(CURVE_BASE_PRICE)
    goal = Decimal(funding_goal)
    if goal == 0:
        return base
    return base + base * (Decimal(total_raised) / goal) * CURVE_SLOPE


def price_base_units(total_raised: int, funding_goal: int, scale: int = UNIT_SCALE) -> int:
    """Integer price in smallest units, rounded down."""
    check_uint(total_raised, 64, "total_raised")
    check_uint(funding_goal, 64, "funding_goal")
    base = CURVE_BASE_PRICE * scale
    if funding_goal == 0:
        return base
    return base + (base * CURVE_SLOPE * total_raised) // funding_goal


def tokens_for(amount: int, token_price: int) -> int:
    """Tokens minted for ``amount`` at ``token_price`` (both smallest units)."""
    if token_price <= 0:
        return 0
    return amount // token_price


def curve_points(
    funding_goal: int,
    steps: int = CURVE_STEPS,
    scale: int = UNIT_SCALE,
) -> Tuple[np.ndarray, np.ndarray]:
    """Sample ``steps + 1`` points from zero raised up to the goal, in units."""
    if steps <= 0:
        raise ValueError("steps must be > 0")
    goal_units = float(funding_goal) / scale
    raised = np.linspace(0.0, goal_units, steps + 1)
    if goal_units == 0:
        prices = np.full_like(raised, float(CURVE_BASE_PRICE))
    else:
        prices = CURVE_BASE_PRICE + CURVE_BASE_PRICE * (raised / goal_units) * CURVE_SLOPE
    return raised, prices


@dataclass(frozen=True)
class PriceReconciliation:
    model_price: Decimal
    on_chain_price: Decimal
    tolerance: Decimal

    @property
    def delta(self) -> Decimal:
        return self.on_chain_price - self.model_price

    @property
    def matches(self) -> bool:
        return abs(self.delta) <= self.tolerance


def reconcile(
    project: Project,
    scale: int = UNIT_SCALE,
    tolerance: Number = Decimal(0),
) -> PriceReconciliation:
    # on-chain prices are whole base units, so compare against the floored curve
    result = PriceReconciliation(
        model_price=from_base_units(
            price_base_units(project.total_raised, project.funding_goal, scale),
            scale=scale,
        ),
        on_chain_price=from_base_units(project.token_price, scale=scale),
        tolerance=Decimal(tolerance),
    )
    if not result.matches:
        logger.warning(
            "token price mismatch for %s: curve %s, on-chain %s",
            project.address or project.name,
            result.model_price,
            result.on_chain_price,
        )
    return result
