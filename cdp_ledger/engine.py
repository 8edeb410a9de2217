"""
engine.py - DSCEngine, the position operations of the collateralized-debt system

DSCEngine owns a PositionStore (collateral + debt ledgers), an OracleAdapter
and references to the external tokens. Every mutating entry point follows the
same shape:

    1. Record the ledger changes in the PositionStore
    2. Run the solvency check if the operation can worsen a position
    3. Settle the token movements (pull, burn, push/mint)

Steps 1-3 run inside PositionStore.atomic(), so any failure, including a token
transfer reporting failure during settlement, restores the ledgers. The
Settlement undoes the token steps it already ran. Nothing in the store is
mutated after a token call returns.

Setup:
    dsc = StableCoin(tokens, owner="deployer")
    engine = DSCEngine([weth, wbtc], [weth_feed, wbtc_feed], dsc)
    dsc.transfer_ownership("deployer", engine.address)

Users approve the engine before depositing collateral or repaying DSC:
    weth.approve("alice", engine.address, 10 * 10**18)
    engine.deposit_collateral_and_mint_dsc("alice", "WETH", 10 * 10**18, 5000 * 10**18)
"""

from __future__ import annotations
import functools
import threading
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .core import (
    CollateralAsset, CollateralToken, DebtToken, PriceFeed, EngineParameters,
    UserPosition, AccountInformation, EngineEvent, Liquidated,
    EngineError, ConfigurationMismatch, InvalidConfiguration,
    HealthFactorNotImproved, ReentrantCall,
)
from .health import (
    HealthReport, calculate_health_factor, compute_health_report,
    compute_health_factor, revert_if_health_factor_broken,
)
from .liquidation import LiquidationPlan, plan_liquidation, calculate_debt_to_restore
from .oracle import OracleAdapter, Clock
from .positions import PositionStore
from .settlement import Settlement
from .valuation import (
    compute_usd_value, compute_token_amount_from_usd,
    compute_collateral_value, compute_collateral_breakdown,
)


T = TypeVar("T")


def non_reentrant(method: Callable[..., T]) -> Callable[..., T]:
    """
    Serialize calls to a mutating entry point and reject re-entry.

    Calls from other threads wait for the running operation to finish. A call
    made from inside a running operation on the same thread (for example from
    a token callback) raises ReentrantCall.
    """
    @functools.wraps(method)
    def wrapper(self: 'DSCEngine', *args, **kwargs):
        if self._lock_owner == threading.get_ident():
            raise ReentrantCall(f"{method.__name__} called while another operation is running")
        return _run_locked(self, method, args, kwargs)
    return wrapper


def locked_read(method: Callable[..., T]) -> Callable[..., T]:
    """
    Run a read method against committed state only.

    Calls from other threads wait for a running operation to commit or roll
    back. A call made from inside a running operation on the same thread (a
    token or feed callback) reads directly and sees that operation's
    uncommitted entries.
    """
    @functools.wraps(method)
    def wrapper(self: 'DSCEngine', *args, **kwargs):
        if self._lock_owner == threading.get_ident():
            return method(self, *args, **kwargs)
        return _run_locked(self, method, args, kwargs)
    return wrapper


def _run_locked(engine: 'DSCEngine', method: Callable[..., T], args, kwargs) -> T:
    with engine._lock:
        engine._lock_owner = threading.get_ident()
        try:
            return method(engine, *args, **kwargs)
        finally:
            engine._lock_owner = None


class DSCEngine:
    """
    Collateralized-debt engine for a USD-pegged stablecoin.

    Args:
        collateral_tokens: Accepted collateral tokens, in registry order
        price_feeds: One USD price feed per collateral token, same order
        dsc: The debt token. The engine must own it before DSC is minted.
        address: Account the engine holds tokens under
        parameters: Protocol constants (default: EngineParameters())
        max_price_age: Reject prices older than this (None disables the check)
        clock: Time source for the staleness check
        verbose: Print one line per applied or rejected operation

    Raises:
        ConfigurationMismatch: If the token and feed lists differ in length
        InvalidConfiguration: For a missing token, feed or debt token, an empty
            identifier, or a duplicate collateral asset

    Thread Safety:
        Mutating operations are serialized by a per-engine lock. Read methods
        that touch positions take the same lock, so other threads only ever
        see committed state.
    """

    def __init__(
        self,
        collateral_tokens: Sequence[CollateralToken],
        price_feeds: Sequence[PriceFeed],
        dsc: DebtToken,
        address: str = "dsc_engine",
        parameters: Optional[EngineParameters] = None,
        max_price_age: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
        verbose: bool = True,
    ):
        if len(collateral_tokens) != len(price_feeds):
            raise ConfigurationMismatch(
                f"{len(collateral_tokens)} collateral tokens but {len(price_feeds)} price feeds"
            )
        if dsc is None:
            raise InvalidConfiguration("Debt token is required")
        if not address or not address.strip():
            raise InvalidConfiguration("Engine address cannot be empty")

        assets: List[CollateralAsset] = []
        tokens: Dict[str, CollateralToken] = {}
        for token, feed in zip(collateral_tokens, price_feeds):
            if token is None:
                raise InvalidConfiguration("Collateral token cannot be None")
            asset = CollateralAsset(asset_id=token.symbol, price_feed=feed, decimals=token.decimals)
            assets.append(asset)
            tokens[asset.asset_id] = token

        self.address = address
        self.parameters = parameters or EngineParameters()
        self.verbose = verbose
        self._store = PositionStore(assets)
        self._tokens = tokens
        self._dsc = dsc
        self._oracle = OracleAdapter(
            {asset.asset_id: asset.price_feed for asset in assets},
            max_age=max_price_age,
            clock=clock,
        )
        self._lock = threading.Lock()
        self._lock_owner: Optional[int] = None

    # ========================================================================
    # POSITION OPERATIONS
    # ========================================================================

    @non_reentrant
    def deposit_collateral(self, user: str, asset_id: str, amount: int) -> None:
        """
        Deposit `amount` of `asset_id` from `user`. Never health-checked.

        Raises:
            MustBeMoreThanZero, NotAllowedCollateral, TransferFailed
        """
        def body():
            self._store.record_deposit(user, asset_id, amount)
            self._settlement().pull(self._tokens[asset_id], user, amount).run()

        self._execute(f"deposit {amount} {asset_id} for {user}", body)

    @non_reentrant
    def mint_dsc(self, user: str, amount: int) -> None:
        """
        Mint `amount` DSC to `user` against their collateral.

        Raises:
            MustBeMoreThanZero, HealthFactorTooLow, OracleUnavailable, MintFailed
        """
        def body():
            self._store.record_mint(user, amount)
            self._revert_if_health_factor_broken(user)
            self._settlement().mint(self._dsc, user, amount).run()

        self._execute(f"mint {amount} DSC for {user}", body)

    @non_reentrant
    def redeem_collateral(self, user: str, asset_id: str, amount: int) -> None:
        """
        Withdraw `amount` of `asset_id` back to `user`.

        Raises:
            MustBeMoreThanZero, NotAllowedCollateral, InsufficientCollateral,
            HealthFactorTooLow, OracleUnavailable, TransferFailed
        """
        def body():
            self._store.record_withdrawal(user, asset_id, amount)
            self._revert_if_health_factor_broken(user)
            self._settlement().push(self._tokens[asset_id], user, amount).run()

        self._execute(f"redeem {amount} {asset_id} for {user}", body)

    @non_reentrant
    def burn_dsc(self, user: str, amount: int) -> None:
        """
        Repay `amount` of `user`'s debt with DSC pulled from `user`. Never
        health-checked.

        Raises:
            MustBeMoreThanZero, BurnExceedsDebt, TransferFailed
        """
        def body():
            self._store.record_burn(user, amount)
            self._settlement().pull(self._dsc, user, amount).burn(self._dsc, amount).run()

        self._execute(f"burn {amount} DSC for {user}", body)

    @non_reentrant
    def deposit_collateral_and_mint_dsc(
        self, user: str, asset_id: str, collateral_amount: int, dsc_amount: int,
    ) -> None:
        """Deposit collateral and mint DSC in one step, with a single solvency check."""
        def body():
            self._store.record_deposit(user, asset_id, collateral_amount)
            self._store.record_mint(user, dsc_amount)
            self._revert_if_health_factor_broken(user)
            (self._settlement()
                .pull(self._tokens[asset_id], user, collateral_amount)
                .mint(self._dsc, user, dsc_amount)
                .run())

        self._execute(
            f"deposit {collateral_amount} {asset_id} and mint {dsc_amount} DSC for {user}", body,
        )

    @non_reentrant
    def redeem_collateral_for_dsc(
        self, user: str, asset_id: str, collateral_amount: int, dsc_to_burn: int,
    ) -> None:
        """Burn DSC and withdraw collateral in one step, with a single solvency check."""
        def body():
            self._store.record_burn(user, dsc_to_burn)
            self._store.record_withdrawal(user, asset_id, collateral_amount)
            self._revert_if_health_factor_broken(user)
            (self._settlement()
                .pull(self._dsc, user, dsc_to_burn)
                .burn(self._dsc, dsc_to_burn)
                .push(self._tokens[asset_id], user, collateral_amount)
                .run())

        self._execute(
            f"burn {dsc_to_burn} DSC and redeem {collateral_amount} {asset_id} for {user}", body,
        )

    @non_reentrant
    def liquidate(self, liquidator: str, user: str, asset_id: str, debt_to_cover: int) -> Liquidated:
        """
        Repay `debt_to_cover` of `user`'s debt with the liquidator's DSC and
        pay the liquidator that much `asset_id` collateral plus the bonus.

        The user's health factor must end strictly higher than it started, and
        the liquidator's own position must stay healthy.

        Returns:
            The recorded Liquidated event

        Raises:
            MustBeMoreThanZero, NotAllowedCollateral, HealthFactorOk,
            BurnExceedsDebt, InsufficientCollateral, HealthFactorNotImproved,
            HealthFactorTooLow, OracleUnavailable, TransferFailed
        """
        def body() -> Liquidated:
            plan = plan_liquidation(
                self._store, self._oracle, self.parameters, user, asset_id, debt_to_cover,
            )
            # A tiny repayment can be worth less than one base unit of collateral.
            if plan.total_collateral > 0:
                self._store.record_withdrawal(user, asset_id, plan.total_collateral, to=liquidator)
            self._store.record_burn(user, debt_to_cover, dsc_from=liquidator)

            ending_health_factor = compute_health_factor(self._store, self._oracle, user, self.parameters)
            if ending_health_factor <= plan.starting_health_factor:
                raise HealthFactorNotImproved(plan.starting_health_factor, ending_health_factor)
            event = self._store.record_event(self._liquidated_event(liquidator, plan, ending_health_factor))
            self._revert_if_health_factor_broken(liquidator)

            settlement = self._settlement().pull(self._dsc, liquidator, debt_to_cover).burn(self._dsc, debt_to_cover)
            if plan.total_collateral > 0:
                settlement.push(self._tokens[asset_id], liquidator, plan.total_collateral)
            settlement.run()
            return event

        return self._execute(f"liquidate {debt_to_cover} DSC of {user} by {liquidator}", body)

    # ========================================================================
    # READ API
    # ========================================================================

    @locked_read
    def get_account_information(self, user: str) -> AccountInformation:
        return AccountInformation(
            dsc_minted=self._store.get_dsc_minted(user),
            collateral_value_usd=compute_collateral_value(self._store, self._oracle, user),
        )

    @locked_read
    def get_account_collateral_value(self, user: str) -> int:
        """Total USD value (PRECISION-scaled) of everything `user` has deposited."""
        return compute_collateral_value(self._store, self._oracle, user)

    @locked_read
    def get_collateral_breakdown(self, user: str) -> Dict[str, int]:
        """USD value per held asset, in registry order."""
        return compute_collateral_breakdown(self._store, self._oracle, user)

    def get_usd_value(self, asset_id: str, amount: int) -> int:
        return compute_usd_value(self._oracle, self._store.get_asset(asset_id), amount)

    def get_token_amount_from_usd(self, asset_id: str, usd_amount: int) -> int:
        return compute_token_amount_from_usd(self._oracle, self._store.get_asset(asset_id), usd_amount)

    @locked_read
    def get_collateral_balance_of_user(self, user: str, asset_id: str) -> int:
        return self._store.get_collateral_balance(user, asset_id)

    @locked_read
    def get_dsc_minted(self, user: str) -> int:
        return self._store.get_dsc_minted(user)

    @locked_read
    def get_position(self, user: str) -> UserPosition:
        return self._store.get_position(user)

    @locked_read
    def list_users(self) -> List[str]:
        return self._store.list_users()

    @locked_read
    def get_total_collateral(self, asset_id: str) -> int:
        """Amount of `asset_id` deposited across all users (what the engine should hold)."""
        return self._store.total_collateral(asset_id)

    @locked_read
    def get_total_dsc_minted(self) -> int:
        return self._store.total_dsc_minted()

    @locked_read
    def get_health_factor(self, user: str) -> int:
        return compute_health_factor(self._store, self._oracle, user, self.parameters)

    @locked_read
    def get_health_report(self, user: str) -> HealthReport:
        return compute_health_report(self._store, self._oracle, user, self.parameters)

    def calculate_health_factor(self, total_dsc_minted: int, collateral_value_usd: int) -> int:
        return calculate_health_factor(total_dsc_minted, collateral_value_usd, self.parameters)

    @locked_read
    def is_liquidatable(self, user: str) -> bool:
        return self.get_health_factor(user) < self.parameters.min_health_factor

    @locked_read
    def get_debt_to_restore(self, user: str) -> int:
        """Smallest debt_to_cover that brings `user` back to the minimum health factor."""
        report = self.get_health_report(user)
        return calculate_debt_to_restore(report.dsc_minted, report.collateral_value_usd, self.parameters)

    def get_collateral_tokens(self) -> Tuple[str, ...]:
        return tuple(asset.asset_id for asset in self._store.collateral_assets())

    def get_collateral_token(self, asset_id: str) -> CollateralToken:
        self._store.get_asset(asset_id)
        return self._tokens[asset_id]

    def get_collateral_token_price_feed(self, asset_id: str) -> PriceFeed:
        return self._store.get_asset(asset_id).price_feed

    def get_dsc(self) -> DebtToken:
        return self._dsc

    @property
    def oracle(self) -> OracleAdapter:
        return self._oracle

    @property
    @locked_read
    def events(self) -> Tuple[EngineEvent, ...]:
        return tuple(self._store.events)

    @property
    def liquidation_threshold(self) -> int:
        return self.parameters.liquidation_threshold

    @property
    def liquidation_bonus(self) -> int:
        return self.parameters.liquidation_bonus

    @property
    def liquidation_precision(self) -> int:
        return self.parameters.liquidation_precision

    @property
    def precision(self) -> int:
        return self.parameters.precision

    @property
    def min_health_factor(self) -> int:
        return self.parameters.min_health_factor

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _execute(self, label: str, body: Callable[[], T]) -> T:
        """Run `body` atomically against the store and report the outcome."""
        try:
            with self._store.atomic():
                result = body()
        except EngineError as exc:
            if self.verbose:
                print(f"✗ REJECTED: {label}: {type(exc).__name__}: {exc}")
            raise
        if self.verbose:
            print(f"✓ APPLIED: {label}")
        return result

    def _settlement(self) -> Settlement:
        return Settlement(self.address, verbose=self.verbose)

    def _revert_if_health_factor_broken(self, user: str) -> int:
        return revert_if_health_factor_broken(self._store, self._oracle, user, self.parameters)

    def _liquidated_event(self, liquidator: str, plan: LiquidationPlan, ending_health_factor: int) -> Liquidated:
        return Liquidated(
            liquidator=liquidator,
            user=plan.user,
            asset_id=plan.asset_id,
            debt_covered=plan.debt_to_cover,
            collateral_seized=plan.collateral_from_debt,
            bonus_collateral=plan.bonus_collateral,
            starting_health_factor=plan.starting_health_factor,
            ending_health_factor=ending_health_factor,
        )

    def __repr__(self) -> str:
        return (
            f"DSCEngine({self.address}, collateral={list(self.get_collateral_tokens())}, "
            f"users={len(self.list_users())}, debt={self.get_total_dsc_minted()})"
        )
