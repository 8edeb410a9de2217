"""
Atomicity Conformance Tests

INVARIANT: Engine operations are all-or-nothing.

    ∀ operation O:
        O fails ⟹ positions, events, token balances and token supplies
                  are exactly as before O

Failures include validation errors, solvency errors, oracle failures and
token transfers that report failure in the middle of settlement.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cdp_ledger import EngineError, TransferFailed

from tests.harness import build_system, open_position, snapshot_state, ETH, USD, FEED
from tests.strategies import operations, position_operations, fund_users, apply_operation


class TestAtomicityProperties:

    @given(st.lists(operations(), min_size=1, max_size=25))
    @settings(max_examples=60, deadline=None)
    def test_failed_operations_change_nothing(self, ops):
        system = build_system()
        fund_users(system)
        for op in ops:
            before = snapshot_state(system)
            if not apply_operation(system, op):
                assert snapshot_state(system) == before

    @given(st.lists(position_operations(), min_size=1, max_size=15))
    @settings(max_examples=40, deadline=None)
    def test_oracle_outage_blocks_only_gated_operations(self, ops):
        """With every feed down, failures still leave no trace."""
        system = build_system()
        fund_users(system)
        system.weth_feed.update_answer(None)
        system.wbtc_feed.update_answer(None)
        for op in ops:
            before = snapshot_state(system)
            if not apply_operation(system, op):
                assert snapshot_state(system) == before
        # Nobody could have minted without a price.
        assert system.dsc.total_supply() == 0


class TestAtomicityExamples:
    """Explicit atomicity examples."""

    def test_failing_collateral_push_rolls_back_everything(self, monkeypatch):
        system = build_system()
        open_position(system, "alice", 10 * ETH, 5_000 * USD)
        before = snapshot_state(system)
        monkeypatch.setattr(system.weth, "transfer", lambda sender, to, amount: False)

        with pytest.raises(TransferFailed):
            system.engine.redeem_collateral_for_dsc("alice", "WETH", 2 * ETH, 1_000 * USD)

        assert snapshot_state(system) == before

    def test_failing_liquidation_push_rolls_back_everything(self, monkeypatch):
        system = build_system()
        open_position(system, "alice", 10 * ETH, 10_000 * USD)
        open_position(system, "bob", 20 * ETH, 10_000 * USD)
        system.weth_feed.update_answer(1800 * FEED)
        before = snapshot_state(system)
        monkeypatch.setattr(system.weth, "transfer", lambda sender, to, amount: False)

        with pytest.raises(TransferFailed):
            system.engine.liquidate("bob", "alice", "WETH", 5_000 * USD)

        assert snapshot_state(system) == before
        assert system.engine.is_liquidatable("alice")

    def test_every_failure_is_an_engine_error(self):
        system = build_system()
        for op in [
            ("mint_dsc", "alice", 0),
            ("redeem_collateral", "alice", "WETH", 1),
            ("burn_dsc", "alice", 1),
            ("liquidate", "bob", "alice", "WETH", 1),
            ("deposit_collateral", "alice", "DOGE", 1),
        ]:
            with pytest.raises(EngineError):
                getattr(system.engine, op[0])(*op[1:])
        assert system.engine.events == ()
