"""
test_position_lifecycle.py - End-to-end position lifecycle scenario tests

Tests complete position lifecycles:
- Deposit, mint to a safe level, rejected over-borrow
- Price crash to liquidation and recovery
- Multi-collateral positions (18- and 8-decimal tokens)
- Time-varying prices with staleness checks
- Full unwind back to an empty position
"""

import pytest
from datetime import datetime, timedelta

from cdp_ledger import (
    TokenLedger, FaucetToken, StableCoin, StaticPriceFeed, TimeSeriesPriceFeed,
    DSCEngine, MIN_HEALTH_FACTOR, MAX_HEALTH_FACTOR,
    HealthFactorTooLow, HealthFactorOk, OracleUnavailable, StalePrice,
    CollateralDeposited, DscMinted, DscBurned, CollateralRedeemed, Liquidated,
)

from tests.harness import (
    build_system, fund, open_position, snapshot_state,
    ETH, BTC, USD, FEED, DEPLOYER, ENGINE,
)


class TestBorrowingLifecycle:
    """Opening a position and borrowing against it."""

    def test_mint_to_safe_level_then_over_borrow(self):
        """15 ETH at $2000 supports 10000 DSC (HF 1.5) but not 21000."""
        tokens = TokenLedger("tokens", verbose=False)
        weth = FaucetToken(tokens, "WETH", "Wrapped Ether", decimals=18)
        feed = StaticPriceFeed(2000 * 10 ** 18, decimals=18)
        dsc = StableCoin(tokens, owner=DEPLOYER)
        engine = DSCEngine([weth], [feed], dsc, address=ENGINE, verbose=False)
        dsc.transfer_ownership(DEPLOYER, ENGINE)

        fund(weth, "alice", 15 * ETH)
        engine.deposit_collateral("alice", "WETH", 15 * ETH)
        assert engine.get_account_collateral_value("alice") == 30_000 * USD

        engine.mint_dsc("alice", 10_000 * USD)
        assert engine.get_health_factor("alice") == 15 * 10 ** 17

        with pytest.raises(HealthFactorTooLow):
            engine.mint_dsc("alice", 11_000 * USD)

        assert engine.get_dsc_minted("alice") == 10_000 * USD
        assert dsc.balance_of("alice") == 10_000 * USD
        assert dsc.total_supply() == 10_000 * USD

    def test_events_record_the_lifecycle_in_order(self):
        system = build_system()
        engine = system.engine
        open_position(system, "alice", 5 * ETH, 2_000 * USD)
        engine.burn_dsc("alice", 500 * USD)
        engine.redeem_collateral("alice", "WETH", 1 * ETH)

        kinds = [type(event) for event in engine.events]
        assert kinds == [CollateralDeposited, DscMinted, DscBurned, CollateralRedeemed]
        sequences = [event.sequence for event in engine.events]
        assert sequences == sorted(sequences)

    def test_full_unwind_returns_everything(self):
        system = build_system()
        engine = system.engine
        open_position(system, "alice", 5 * ETH, 2_000 * USD)

        engine.redeem_collateral_for_dsc("alice", "WETH", 5 * ETH, 2_000 * USD)

        assert engine.get_position("alice").is_empty()
        assert engine.get_health_factor("alice") == MAX_HEALTH_FACTOR
        assert system.weth.balance_of("alice") == 5 * ETH
        assert system.dsc.balance_of("alice") == 0
        assert system.dsc.total_supply() == 0
        assert system.weth.balance_of(ENGINE) == 0


class TestPriceCrashLifecycle:
    """Healthy position, price crash, liquidation, recovery."""

    def test_crash_liquidate_recover(self):
        system = build_system()
        engine = system.engine
        open_position(system, "alice", 10 * ETH, 8_000 * USD)
        open_position(system, "bob", 50 * ETH, 10_000 * USD)
        assert engine.get_health_factor("alice") == 125 * 10 ** 16

        # Healthy positions cannot be liquidated
        with pytest.raises(HealthFactorOk):
            engine.liquidate("bob", "alice", "WETH", 1_000 * USD)

        system.weth_feed.update_answer(1500 * FEED)
        assert engine.is_liquidatable("alice")
        needed = engine.get_debt_to_restore("alice")
        assert 0 < needed <= 8_000 * USD

        event = engine.liquidate("bob", "alice", "WETH", needed)

        assert isinstance(event, Liquidated)
        assert event.ending_health_factor > event.starting_health_factor
        assert engine.get_health_factor("alice") >= MIN_HEALTH_FACTOR - 10
        assert engine.get_dsc_minted("alice") == 8_000 * USD - needed
        assert system.weth.balance_of("bob") == event.collateral_seized + event.bonus_collateral
        assert system.dsc.balance_of("bob") == 10_000 * USD - needed

        # Recovered: alice can repay the rest and leave
        system.dsc.approve("alice", ENGINE, engine.get_dsc_minted("alice"))
        engine.burn_dsc("alice", engine.get_dsc_minted("alice"))
        remaining = engine.get_collateral_balance_of_user("alice", "WETH")
        engine.redeem_collateral("alice", "WETH", remaining)
        assert engine.get_position("alice").is_empty()

    def test_bob_profits_from_the_bonus(self):
        system = build_system()
        engine = system.engine
        open_position(system, "alice", 10 * ETH, 10_000 * USD)
        open_position(system, "bob", 20 * ETH, 10_000 * USD)
        system.weth_feed.update_answer(1800 * FEED)

        event = engine.liquidate("bob", "alice", "WETH", 5_000 * USD)

        received_usd = engine.get_usd_value("WETH", event.collateral_seized + event.bonus_collateral)
        assert received_usd > 5_000 * USD
        assert received_usd <= 5_500 * USD


class TestMultiCollateralLifecycle:
    """Positions backed by WETH (18 decimals) and WBTC (8 decimals)."""

    def open_mixed(self):
        system = build_system()
        engine = system.engine
        fund(system.weth, "alice", 2 * ETH)
        fund(system.wbtc, "alice", BTC // 10)
        engine.deposit_collateral("alice", "WETH", 2 * ETH)
        engine.deposit_collateral_and_mint_dsc("alice", "WBTC", BTC // 10, 3_000 * USD)
        system.dsc.approve("alice", ENGINE, 3_000 * USD)
        open_position(system, "bob", 20 * ETH, 2_000 * USD)
        return system

    def test_collateral_value_sums_both_assets(self):
        system = self.open_mixed()
        engine = system.engine
        assert engine.get_collateral_breakdown("alice") == {
            "WETH": 4_000 * USD,
            "WBTC": 3_000 * USD,
        }
        assert engine.get_account_information("alice").collateral_value_usd == 7_000 * USD

    def test_one_asset_crashing_sinks_the_position(self):
        system = self.open_mixed()
        engine = system.engine
        system.wbtc_feed.update_answer(20_000 * FEED)
        assert engine.get_health_factor("alice") == MIN_HEALTH_FACTOR
        assert not engine.is_liquidatable("alice")

        system.wbtc_feed.update_answer(10_000 * FEED)
        assert engine.is_liquidatable("alice")

    def test_liquidate_against_either_asset(self):
        system = self.open_mixed()
        engine = system.engine
        system.wbtc_feed.update_answer(10_000 * FEED)

        wbtc_event = engine.liquidate("bob", "alice", "WBTC", 500 * USD)
        assert wbtc_event.collateral_seized == 5 * 10 ** 6
        assert wbtc_event.bonus_collateral == 5 * 10 ** 5
        assert system.wbtc.balance_of("bob") == 55 * 10 ** 5
        assert engine.get_health_factor("alice") == 89 * 10 ** 16

        weth_event = engine.liquidate("bob", "alice", "WETH", 1_000 * USD)
        assert weth_event.collateral_seized == ETH // 2
        assert weth_event.bonus_collateral == ETH // 20
        assert engine.get_dsc_minted("alice") == 1_500 * USD

    def test_wbtc_outage_blocks_borrowing_but_not_deposits(self):
        system = self.open_mixed()
        engine = system.engine
        system.wbtc_feed.update_answer(None)
        before = snapshot_state(system)

        with pytest.raises(OracleUnavailable):
            engine.mint_dsc("alice", 1 * USD)
        assert snapshot_state(system) == before

        fund(system.weth, "alice", 1 * ETH)
        engine.deposit_collateral("alice", "WETH", 1 * ETH)
        assert engine.get_collateral_balance_of_user("alice", "WETH") == 3 * ETH


class TestTimeSeriesLifecycle:
    """Prices that move with a clock, and a staleness limit."""

    def build(self):
        now = {'t': datetime(2025, 1, 1, 0, 10)}
        clock = lambda: now['t']

        tokens = TokenLedger("tokens", verbose=False)
        weth = FaucetToken(tokens, "WETH", "Wrapped Ether", decimals=18)
        feed = TimeSeriesPriceFeed(clock, [
            (datetime(2025, 1, 1), 2000 * FEED),
            (datetime(2025, 1, 2), 1500 * FEED),
        ], decimals=8)
        dsc = StableCoin(tokens, owner=DEPLOYER)
        engine = DSCEngine(
            [weth], [feed], dsc, address=ENGINE,
            max_price_age=timedelta(hours=1), clock=clock, verbose=False,
        )
        dsc.transfer_ownership(DEPLOYER, ENGINE)
        return now, weth, dsc, engine

    def test_stale_then_fresh_crash_then_liquidation(self):
        now, weth, dsc, engine = self.build()

        for user, eth, debt in [("alice", 10, 8_000), ("bob", 20, 4_000)]:
            fund(weth, user, eth * ETH)
            engine.deposit_collateral_and_mint_dsc(user, "WETH", eth * ETH, debt * USD)
            dsc.approve(user, ENGINE, debt * USD)
        assert engine.get_health_factor("alice") == 125 * 10 ** 16

        # Two hours after the last observation, the price is stale
        now['t'] = datetime(2025, 1, 1, 2, 0)
        with pytest.raises(StalePrice):
            engine.mint_dsc("alice", 1 * USD)
        assert engine.get_dsc_minted("alice") == 8_000 * USD

        # Next day's observation: fresh, and lower
        now['t'] = datetime(2025, 1, 2, 0, 5)
        assert engine.get_health_factor("alice") == 9375 * 10 ** 14
        event = engine.liquidate("bob", "alice", "WETH", 4_000 * USD)

        assert event.collateral_seized == 2666666666666666666
        assert event.bonus_collateral == 266666666666666666
        assert engine.get_health_factor("alice") > MIN_HEALTH_FACTOR
        assert engine.get_dsc_minted("alice") == 4_000 * USD
        assert dsc.total_supply() == 8_000 * USD

    def test_before_first_observation_nothing_is_priced(self):
        now, weth, dsc, engine = self.build()
        now['t'] = datetime(2024, 12, 31)
        fund(weth, "alice", 1 * ETH)
        engine.deposit_collateral("alice", "WETH", 1 * ETH)
        with pytest.raises(OracleUnavailable):
            engine.mint_dsc("alice", 1 * USD)
