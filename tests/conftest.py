"""
conftest.py - Shared pytest fixtures for engine tests

Provides common fixtures used across unit and functional tests:
- A token ledger with WETH / WBTC collateral and the DSC stablecoin
- Price feeds (8 decimals, like USD aggregators)
- A deployed engine that owns the DSC
- Users with open positions
"""

import pytest

from cdp_ledger import (
    TokenLedger, FaucetToken, StableCoin, StaticPriceFeed,
    CollateralAsset, PositionStore, OracleAdapter, EngineParameters,
)

from tests.harness import (
    build_system, open_position, ETH, USD,
)


# =============================================================================
# TOKENS AND FEEDS
# =============================================================================

@pytest.fixture
def token_ledger():
    return TokenLedger("test", verbose=False)


@pytest.fixture
def weth(token_ledger):
    return FaucetToken(token_ledger, "WETH", "Wrapped Ether", decimals=18)


@pytest.fixture
def dsc(token_ledger):
    return StableCoin(token_ledger, owner="deployer")


@pytest.fixture
def weth_feed():
    return StaticPriceFeed(2000 * 10 ** 8, decimals=8)


@pytest.fixture
def wbtc_feed():
    return StaticPriceFeed(30000 * 10 ** 8, decimals=8)


# =============================================================================
# POSITION STORE + ORACLE (no tokens)
# =============================================================================

@pytest.fixture
def params():
    return EngineParameters()


@pytest.fixture
def assets(weth_feed, wbtc_feed):
    return [
        CollateralAsset("WETH", weth_feed, decimals=18),
        CollateralAsset("WBTC", wbtc_feed, decimals=8),
    ]


@pytest.fixture
def store(assets):
    return PositionStore(assets)


@pytest.fixture
def oracle(weth_feed, wbtc_feed):
    return OracleAdapter({"WETH": weth_feed, "WBTC": wbtc_feed})


# =============================================================================
# FULL DEPLOYMENT
# =============================================================================

@pytest.fixture
def system():
    """WETH at $2000, WBTC at $30000, engine owns DSC."""
    return build_system()


@pytest.fixture
def engine(system):
    return system.engine


@pytest.fixture
def alice_at_minimum(system):
    """alice: 10 WETH ($20,000) backing 10,000 DSC, health factor exactly 1.0."""
    open_position(system, "alice", 10 * ETH, 10_000 * USD)
    return system


@pytest.fixture
def underwater(alice_at_minimum):
    """
    alice at health factor 0.9 after WETH falls to $1800, and bob holding
    10,000 DSC from a healthy 20 WETH position.
    """
    system = alice_at_minimum
    open_position(system, "bob", 20 * ETH, 10_000 * USD)
    system.weth_feed.update_answer(1800 * 10 ** 8)
    return system
