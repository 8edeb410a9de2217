"""
strategies.py - Hypothesis strategies for engine property tests

Generates operation tuples whose first element is a DSCEngine method name
(or "set_price") and whose remaining elements are that method's arguments.
Amounts are drawn on a coarse grid so that a good share of operations
succeed, with zero included to exercise validation.
"""

from hypothesis import strategies as st

from cdp_ledger import EngineError, to_base_units

from tests.harness import System, fund, ETH, BTC, USD, FEED, ENGINE


USERS = ("alice", "bob", "carol")
ASSETS = ("WETH", "WBTC")
UNITS = {"WETH": ETH, "WBTC": BTC}
PRICE_RANGES = {"WETH": (500, 4000), "WBTC": (10_000, 60_000)}

POSITION_OPERATIONS = (
    "deposit_collateral",
    "mint_dsc",
    "redeem_collateral",
    "burn_dsc",
    "deposit_collateral_and_mint_dsc",
    "redeem_collateral_for_dsc",
    "liquidate",
)


def collateral_amounts(asset: str):
    """Quarter-unit steps from 0 to 10 whole tokens."""
    unit = UNITS[asset]
    return st.integers(min_value=0, max_value=40).map(lambda n: n * unit // 4)


def usd_amounts():
    """$250 steps from $0 to $10,000."""
    return st.integers(min_value=0, max_value=40).map(lambda n: n * 250 * USD)


def feed_prices(asset: str):
    low, high = PRICE_RANGES[asset]
    return st.integers(min_value=low, max_value=high).map(lambda p: p * FEED)


@st.composite
def position_operations(draw):
    kind = draw(st.sampled_from(POSITION_OPERATIONS))
    user = draw(st.sampled_from(USERS))
    asset = draw(st.sampled_from(ASSETS))
    collateral = draw(collateral_amounts(asset))
    usd = draw(usd_amounts())

    if kind in ("deposit_collateral", "redeem_collateral"):
        return (kind, user, asset, collateral)
    if kind in ("mint_dsc", "burn_dsc"):
        return (kind, user, usd)
    if kind in ("deposit_collateral_and_mint_dsc", "redeem_collateral_for_dsc"):
        return (kind, user, asset, collateral, usd)
    liquidator = draw(st.sampled_from(USERS))
    return (kind, liquidator, user, asset, usd)


@st.composite
def price_moves(draw):
    asset = draw(st.sampled_from(ASSETS))
    return ("set_price", asset, draw(feed_prices(asset)))


def operations():
    return st.one_of(position_operations(), position_operations(), price_moves())


def fund_users(system: System, users=USERS) -> None:
    """Give every user plenty of both collateral tokens and unlimited DSC approval."""
    for user in users:
        fund(system.weth, user, 1000 * ETH)
        fund(system.wbtc, user, 100 * BTC)
        system.dsc.approve(user, ENGINE, to_base_units(10 ** 12))


def apply_operation(system: System, op) -> bool:
    """Run one generated operation. Returns False if the engine rejected it."""
    kind, args = op[0], op[1:]
    if kind == "set_price":
        asset, price = args
        feed = system.weth_feed if asset == "WETH" else system.wbtc_feed
        feed.update_answer(price)
        return True
    try:
        getattr(system.engine, kind)(*args)
    except EngineError:
        return False
    return True
