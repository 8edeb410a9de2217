"""
health.py - Health factor computation and the solvency invariant

    health_factor = (collateral_value * threshold // liquidation_precision) * precision // debt

A position with no debt has MAX_HEALTH_FACTOR and can never be liquidated.
A position is solvent while health_factor >= min_health_factor (1.0).

revert_if_health_factor_broken() is the gate run as the final step of every
operation that can worsen a position (mint, withdraw, liquidation). Operations
that can only improve a position (deposit, burn) are never gated, so an
unavailable oracle cannot block them.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .core import (
    PositionView, EngineParameters, MAX_HEALTH_FACTOR, HealthFactorTooLow,
)
from .oracle import OracleAdapter
from .valuation import compute_collateral_value


@dataclass(frozen=True, slots=True)
class HealthReport:
    """
    Inputs and result of one health factor computation.

    collateral_value_usd is None when the user has no debt: the health factor
    is MAX_HEALTH_FACTOR regardless, so the collateral is not priced.
    """
    dsc_minted: int
    collateral_value_usd: Optional[int]
    health_factor: int
    min_health_factor: int

    @property
    def is_healthy(self) -> bool:
        return self.health_factor >= self.min_health_factor


def calculate_health_factor(dsc_minted: int, collateral_value_usd: int, parameters: EngineParameters) -> int:
    """
    PURE FUNCTION - health factor from debt and collateral value.

    Example (default parameters):
        calculate_health_factor(10_000 * 10**18, 30_000 * 10**18, params) == 15 * 10**17
    """
    if dsc_minted == 0:
        return MAX_HEALTH_FACTOR
    collateral_adjusted_for_threshold = (
        collateral_value_usd * parameters.liquidation_threshold // parameters.liquidation_precision
    )
    return collateral_adjusted_for_threshold * parameters.precision // dsc_minted


def compute_health_report(
    view: PositionView, oracle: OracleAdapter, user: str, parameters: EngineParameters,
) -> HealthReport:
    """
    Debt, collateral value and health factor of `user`.

    Debt is read first: a user with no debt is reported with MAX_HEALTH_FACTOR
    and no collateral value, without touching the oracle.
    """
    dsc_minted = view.get_dsc_minted(user)
    if dsc_minted == 0:
        return HealthReport(0, None, MAX_HEALTH_FACTOR, parameters.min_health_factor)
    collateral_value = compute_collateral_value(view, oracle, user)
    return HealthReport(
        dsc_minted=dsc_minted,
        collateral_value_usd=collateral_value,
        health_factor=calculate_health_factor(dsc_minted, collateral_value, parameters),
        min_health_factor=parameters.min_health_factor,
    )


def compute_health_factor(
    view: PositionView, oracle: OracleAdapter, user: str, parameters: EngineParameters,
) -> int:
    return compute_health_report(view, oracle, user, parameters).health_factor


def revert_if_health_factor_broken(
    view: PositionView, oracle: OracleAdapter, user: str, parameters: EngineParameters,
) -> int:
    """
    Enforce the solvency invariant for `user`.

    Returns:
        The health factor, when it is at least min_health_factor

    Raises:
        HealthFactorTooLow: If the health factor is below the minimum
        OracleUnavailable: If a held asset cannot be priced
    """
    health_factor = compute_health_factor(view, oracle, user, parameters)
    if health_factor < parameters.min_health_factor:
        raise HealthFactorTooLow(health_factor)
    return health_factor
