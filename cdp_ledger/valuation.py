"""
valuation.py - USD valuation of collateral

Two layers, following the pure-function pattern:

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - All inputs explicit (amounts, normalized prices, decimals)
   - No view, no oracle, trivially testable

2. CONVENIENCE FUNCTIONS (compute_*):
   - Read balances from a PositionView and prices from an OracleAdapter
   - Then delegate to calculate_*

Key Formulas:
    usd_value = amount * price // 10**asset_decimals
    token_amount = usd_value * 10**asset_decimals // price
    collateral_value = sum(usd_value(balance, price) for each asset with a balance)

Prices are normalized to FEED_PRECISION (18) decimals, so every USD value is
scaled by PRECISION. Integer division rounds down, in the protocol's favour.
"""

from __future__ import annotations
from typing import Dict, Mapping

from .core import PositionView, CollateralAsset
from .oracle import OracleAdapter


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_usd_value(amount: int, price: int, asset_decimals: int) -> int:
    """
    USD value of `amount` base units at a normalized `price`.

    Example:
        calculate_usd_value(15 * 10**18, 2000 * 10**18, 18) == 30000 * 10**18
    """
    return amount * price // 10 ** asset_decimals


def calculate_token_amount_from_usd(usd_amount: int, price: int, asset_decimals: int) -> int:
    """
    Base units of an asset worth `usd_amount` at a normalized `price`.

    Example:
        calculate_token_amount_from_usd(100 * 10**18, 2000 * 10**18, 18) == 5 * 10**16
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    return usd_amount * 10 ** asset_decimals // price


def calculate_collateral_value(
    collateral: Mapping[str, int],
    prices: Mapping[str, int],
    decimals: Mapping[str, int],
) -> int:
    """
    Total USD value of a collateral pool.

    PURE FUNCTION - All inputs explicit, no hidden state. Zero balances need
    no price.

    Raises:
        ValueError: if a non-zero balance is missing its price or decimals.
    """
    total_value = 0
    for asset, quantity in collateral.items():
        if quantity == 0:
            continue
        if asset not in prices:
            raise ValueError(f"Missing price for collateral asset '{asset}'")
        if asset not in decimals:
            raise ValueError(f"Missing decimals for collateral asset '{asset}'")
        total_value += calculate_usd_value(quantity, prices[asset], decimals[asset])
    return total_value


# ============================================================================
# CONVENIENCE FUNCTIONS - view + oracle, then pure calculation
# ============================================================================

def compute_usd_value(oracle: OracleAdapter, asset: CollateralAsset, amount: int) -> int:
    """USD value of `amount` of `asset` at the current oracle price."""
    quote = oracle.price(asset.asset_id)
    return calculate_usd_value(amount, quote.price, asset.decimals)


def compute_token_amount_from_usd(oracle: OracleAdapter, asset: CollateralAsset, usd_amount: int) -> int:
    """Amount of `asset` worth `usd_amount` at the current oracle price."""
    quote = oracle.price(asset.asset_id)
    return calculate_token_amount_from_usd(usd_amount, quote.price, asset.decimals)


def compute_collateral_value(view: PositionView, oracle: OracleAdapter, user: str) -> int:
    """
    Total USD value of everything `user` has deposited.

    Iterates the registry's fixed order. Assets with a zero balance are skipped
    without querying the oracle, so a broken feed for an asset the user never
    touched cannot fail the valuation.

    Raises:
        OracleUnavailable: If a feed for a held asset is unavailable
    """
    collateral: Dict[str, int] = {}
    prices: Dict[str, int] = {}
    decimals: Dict[str, int] = {}
    for asset in view.collateral_assets():
        balance = view.get_collateral_balance(user, asset.asset_id)
        if balance == 0:
            continue
        collateral[asset.asset_id] = balance
        prices[asset.asset_id] = oracle.price(asset.asset_id).price
        decimals[asset.asset_id] = asset.decimals
    return calculate_collateral_value(collateral, prices, decimals)


def compute_collateral_breakdown(view: PositionView, oracle: OracleAdapter, user: str) -> Dict[str, int]:
    """USD value per held asset, in registry order (zero balances omitted)."""
    breakdown: Dict[str, int] = {}
    for asset in view.collateral_assets():
        balance = view.get_collateral_balance(user, asset.asset_id)
        if balance:
            breakdown[asset.asset_id] = compute_usd_value(oracle, asset, balance)
    return breakdown
