"""
harness.py - Test Helper for building a complete engine deployment

Provides a plain-function builder (usable inside hypothesis tests, where
function-scoped fixtures are not allowed) plus a few funding helpers.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any

from cdp_ledger import (
    TokenLedger, FaucetToken, StableCoin, StaticPriceFeed, DSCEngine,
    EngineParameters,
)


ETH = 10 ** 18
BTC = 10 ** 8
USD = 10 ** 18
FEED = 10 ** 8

DEPLOYER = "deployer"
ENGINE = "dsc_engine"


@dataclass
class System:
    tokens: TokenLedger
    weth: FaucetToken
    wbtc: FaucetToken
    weth_feed: StaticPriceFeed
    wbtc_feed: StaticPriceFeed
    dsc: StableCoin
    engine: DSCEngine


def build_system(
    weth_price: int = 2000,
    wbtc_price: int = 30000,
    parameters: EngineParameters = None,
    **engine_kwargs,
) -> System:
    """
    WETH (18 decimals) and WBTC (8 decimals) collateral with 8-decimal USD
    feeds, and a DSC owned by the engine.
    """
    tokens = TokenLedger("tokens", verbose=False)
    weth = FaucetToken(tokens, "WETH", "Wrapped Ether", decimals=18)
    wbtc = FaucetToken(tokens, "WBTC", "Wrapped Bitcoin", decimals=8)
    weth_feed = StaticPriceFeed(weth_price * FEED, decimals=8)
    wbtc_feed = StaticPriceFeed(wbtc_price * FEED, decimals=8)
    dsc = StableCoin(tokens, owner=DEPLOYER)
    engine_kwargs.setdefault("verbose", False)
    engine = DSCEngine(
        [weth, wbtc], [weth_feed, wbtc_feed], dsc,
        address=ENGINE, parameters=parameters, **engine_kwargs,
    )
    dsc.transfer_ownership(DEPLOYER, ENGINE)
    return System(tokens, weth, wbtc, weth_feed, wbtc_feed, dsc, engine)


def fund(token: FaucetToken, user: str, amount: int, spender: str = ENGINE) -> None:
    """Issue `amount` to `user` and approve the engine to pull all of it."""
    token.issue(user, amount)
    token.approve(user, spender, token.allowance(user, spender) + amount)


def open_position(system: System, user: str, weth_amount: int, dsc_amount: int) -> None:
    """Fund `user` with WETH, deposit it and mint DSC, approving DSC repayment."""
    fund(system.weth, user, weth_amount)
    system.engine.deposit_collateral_and_mint_dsc(user, "WETH", weth_amount, dsc_amount)
    system.dsc.approve(user, ENGINE, dsc_amount)


def snapshot_state(system: System) -> Dict[str, Any]:
    """Everything an aborted operation must leave untouched."""
    engine = system.engine
    return {
        'positions': {user: engine.get_position(user) for user in engine.list_users()},
        'events': engine.events,
        'balances': {
            symbol: system.tokens.get_positions(symbol) for symbol in system.tokens.list_units()
        },
        'supply': {
            symbol: system.tokens.total_supply(symbol) for symbol in system.tokens.list_units()
        },
    }
