"""
liquidation.py - Pricing and validation of liquidations

A liquidator repays part or all of an unhealthy user's debt and receives that
user's collateral worth the repaid amount plus a bonus:

    collateral_from_debt = token_amount_from_usd(asset, debt_to_cover)
    bonus_collateral     = collateral_from_debt * bonus // liquidation_precision
    total_collateral     = collateral_from_debt + bonus_collateral

plan_liquidation() performs every check that can be made before mutating
anything and returns a frozen LiquidationPlan. DSCEngine.liquidate() applies
the plan, then requires the user's health factor to have strictly improved.

Liquidations are not clamped to the amount needed to restore the minimum
health factor; calculate_debt_to_restore() tells a liquidator that amount.

CRITICAL - A liquidation only improves a position while its collateral ratio
exceeds 1 + bonus. Below that (a deeply underwater position) every liquidation
makes the ratio worse and is rejected with HealthFactorNotImproved.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    PositionView, EngineParameters,
    HealthFactorOk, BurnExceedsDebt, InsufficientCollateral, MustBeMoreThanZero,
)
from .health import compute_health_factor
from .oracle import OracleAdapter
from .valuation import calculate_token_amount_from_usd


@dataclass(frozen=True, slots=True)
class LiquidationPlan:
    """
    Immutable result of plan_liquidation().

    Contains the amounts DSCEngine.liquidate() will record and settle.
    """
    user: str
    asset_id: str
    debt_to_cover: int
    collateral_from_debt: int
    bonus_collateral: int
    starting_health_factor: int

    @property
    def total_collateral(self) -> int:
        return self.collateral_from_debt + self.bonus_collateral


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_bonus_collateral(collateral_from_debt: int, parameters: EngineParameters) -> int:
    return collateral_from_debt * parameters.liquidation_bonus // parameters.liquidation_precision


def calculate_debt_to_restore(dsc_minted: int, collateral_value_usd: int, parameters: EngineParameters) -> int:
    """
    Smallest debt_to_cover that lifts the health factor back to the minimum.

    Solves (c - D * (1 + b)) * t / (d - D) >= 1 for D, with t and b expressed
    in liquidation_precision units. Returns 0 for healthy positions, and the
    full debt when no partial repayment suffices. Integer rounding in the
    actual liquidation can leave the result a few base units short.
    """
    if dsc_minted == 0:
        return 0
    lp = parameters.liquidation_precision
    threshold = parameters.liquidation_threshold
    # Express the min health factor as a multiple of the debt in lp**2 units.
    required = dsc_minted * lp * lp * parameters.min_health_factor // parameters.precision
    supported = collateral_value_usd * threshold * lp
    if supported >= required:
        return 0
    denominator = (
        lp * lp * parameters.min_health_factor // parameters.precision
        - threshold * (lp + parameters.liquidation_bonus)
    )
    if denominator <= 0:
        return dsc_minted
    numerator = required - supported
    debt_to_cover = -(-numerator // denominator)
    return min(debt_to_cover, dsc_minted)


# ============================================================================
# PLANNING
# ============================================================================

def plan_liquidation(
    view: PositionView,
    oracle: OracleAdapter,
    parameters: EngineParameters,
    user: str,
    asset_id: str,
    debt_to_cover: int,
) -> LiquidationPlan:
    """
    Validate and price a liquidation of `user`'s `asset_id` collateral.

    Checks, in order:
    1. debt_to_cover is positive (MustBeMoreThanZero)
    2. the asset is allowed (NotAllowedCollateral)
    3. the user is below the minimum health factor (HealthFactorOk)
    4. debt_to_cover does not exceed the user's debt (BurnExceedsDebt)
    5. the user holds enough of the asset to pay debt plus bonus
       (InsufficientCollateral)

    Raises:
        OracleUnavailable: If the user's collateral cannot be priced
    """
    if isinstance(debt_to_cover, bool) or not isinstance(debt_to_cover, int) or debt_to_cover <= 0:
        raise MustBeMoreThanZero(f"debt_to_cover must be more than zero, got {debt_to_cover}")
    asset = view.get_asset(asset_id)

    starting_health_factor = compute_health_factor(view, oracle, user, parameters)
    if starting_health_factor >= parameters.min_health_factor:
        raise HealthFactorOk(starting_health_factor)

    debt = view.get_dsc_minted(user)
    if debt_to_cover > debt:
        raise BurnExceedsDebt(f"debt_to_cover {debt_to_cover} exceeds {user}'s debt of {debt}")

    quote = oracle.price(asset_id)
    collateral_from_debt = calculate_token_amount_from_usd(debt_to_cover, quote.price, asset.decimals)
    bonus_collateral = calculate_bonus_collateral(collateral_from_debt, parameters)

    balance = view.get_collateral_balance(user, asset_id)
    if collateral_from_debt + bonus_collateral > balance:
        raise InsufficientCollateral(
            f"{user} has {balance} {asset_id}, liquidation needs {collateral_from_debt + bonus_collateral}"
        )

    return LiquidationPlan(
        user=user,
        asset_id=asset_id,
        debt_to_cover=debt_to_cover,
        collateral_from_debt=collateral_from_debt,
        bonus_collateral=bonus_collateral,
        starting_health_factor=starting_health_factor,
    )
