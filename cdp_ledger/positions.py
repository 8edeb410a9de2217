"""
positions.py - Collateral and debt ledgers

PositionStore is the single owned store for per-user collateral balances,
per-user minted debt, the collateral allow-list and the engine's event log.
It is the only module that mutates position state.

Key responsibilities:
    - Implements the PositionView protocol for valuation and health checks
    - Validates and records deposits, withdrawals, mints and burns
    - Emits an event for every recorded change
    - Journals every balance write inside atomic() so a failed operation can
      be undone as a unit, at a cost proportional to what it touched
    - Snapshots and restores its full state on request (snapshot()/restore())
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Any

from .core import (
    CollateralAsset, CollateralBalances, UserPosition, EngineEvent,
    CollateralDeposited, CollateralRedeemed, DscMinted, DscBurned,
    MustBeMoreThanZero, NotAllowedCollateral, InsufficientCollateral,
    InvalidConfiguration, BurnExceedsDebt,
)


def _require_positive(amount: int, what: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise MustBeMoreThanZero(f"{what} must be an int amount, got {type(amount).__name__}")
    if amount <= 0:
        raise MustBeMoreThanZero(f"{what} must be more than zero, got {amount}")


class PositionStore:
    """
    Collateral ledger + debt ledger for one engine instance.

    The allow-list is fixed at construction. Users appear implicitly on
    their first deposit and are never removed.

    Example:
        store = PositionStore([CollateralAsset("WETH", weth_feed)])
        with store.atomic():
            store.record_deposit("alice", "WETH", 10 ** 18)
            store.record_mint("alice", 500 * 10 ** 18)
    """

    def __init__(self, assets: Sequence[CollateralAsset]):
        registry: Dict[str, CollateralAsset] = {}
        for asset in assets:
            if asset.asset_id in registry:
                raise InvalidConfiguration(f"Collateral asset {asset.asset_id} registered twice")
            registry[asset.asset_id] = asset
        self._assets: Tuple[CollateralAsset, ...] = tuple(assets)
        self._registry = registry
        self.collateral: Dict[str, CollateralBalances] = defaultdict(dict)
        self.dsc_minted: Dict[str, int] = {}
        self.events: List[EngineEvent] = []
        self._next_sequence = 0
        # Undo entries of the innermost atomic() block, None outside one.
        self._journal: Optional[List[Callable[[], None]]] = None

    # ========================================================================
    # PositionView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def collateral_assets(self) -> Tuple[CollateralAsset, ...]:
        return self._assets

    def get_asset(self, asset_id: str) -> CollateralAsset:
        asset = self._registry.get(asset_id)
        if asset is None:
            raise NotAllowedCollateral(f"{asset_id} is not an allowed collateral asset")
        return asset

    def is_allowed(self, asset_id: str) -> bool:
        return asset_id in self._registry

    def get_collateral_balance(self, user: str, asset_id: str) -> int:
        if user not in self.collateral:
            return 0
        return self.collateral[user].get(asset_id, 0)

    def get_dsc_minted(self, user: str) -> int:
        return self.dsc_minted.get(user, 0)

    def get_position(self, user: str) -> UserPosition:
        """Snapshot of a user's balances in registry order."""
        return UserPosition(
            user=user,
            collateral={a.asset_id: self.get_collateral_balance(user, a.asset_id) for a in self._assets},
            dsc_minted=self.get_dsc_minted(user),
        )

    def list_users(self) -> List[str]:
        """Every user that has ever deposited or minted, sorted."""
        return sorted(set(self.collateral) | set(self.dsc_minted))

    def total_collateral(self, asset_id: str) -> int:
        """Total deposited amount of one asset across all users."""
        self.get_asset(asset_id)
        return sum(balances.get(asset_id, 0) for balances in self.collateral.values())

    def total_dsc_minted(self) -> int:
        return sum(self.dsc_minted.values())

    # ========================================================================
    # COLLATERAL LEDGER (Mutating)
    # ========================================================================

    def record_deposit(self, user: str, asset_id: str, amount: int) -> None:
        """
        Increase a user's balance of a collateral asset.

        Raises:
            MustBeMoreThanZero: If amount is not positive
            NotAllowedCollateral: If the asset is not registered
        """
        _require_positive(amount, "Deposit")
        self.get_asset(asset_id)
        self._set_collateral(user, asset_id, self.get_collateral_balance(user, asset_id) + amount)
        self._emit(CollateralDeposited(user=user, asset_id=asset_id, amount=amount))

    def record_withdrawal(self, user: str, asset_id: str, amount: int, to: Optional[str] = None) -> None:
        """
        Decrease a user's balance of a collateral asset.

        The caller must re-check the user's health factor afterward and undo
        the withdrawal if it is broken.

        Raises:
            MustBeMoreThanZero: If amount is not positive
            NotAllowedCollateral: If the asset is not registered
            InsufficientCollateral: If the balance is smaller than amount
        """
        _require_positive(amount, "Withdrawal")
        self.get_asset(asset_id)
        balance = self.get_collateral_balance(user, asset_id)
        if amount > balance:
            raise InsufficientCollateral(
                f"{user} has {balance} {asset_id} deposited, cannot withdraw {amount}"
            )
        self._set_collateral(user, asset_id, balance - amount)
        self._emit(CollateralRedeemed(
            redeemed_from=user, redeemed_to=to or user, asset_id=asset_id, amount=amount,
        ))

    # ========================================================================
    # DEBT LEDGER (Mutating)
    # ========================================================================

    def record_mint(self, user: str, amount: int) -> None:
        """
        Increase a user's minted debt.

        The caller must re-check the user's health factor afterward and undo
        the mint if it is broken.
        """
        _require_positive(amount, "Mint")
        self._set_dsc_minted(user, self.get_dsc_minted(user) + amount)
        self._emit(DscMinted(user=user, amount=amount))

    def record_burn(self, user: str, amount: int, dsc_from: Optional[str] = None) -> None:
        """
        Decrease a user's minted debt.

        Raises:
            MustBeMoreThanZero: If amount is not positive
            BurnExceedsDebt: If amount is larger than the recorded debt
        """
        _require_positive(amount, "Burn")
        debt = self.get_dsc_minted(user)
        if amount > debt:
            raise BurnExceedsDebt(f"Burn of {amount} exceeds {user}'s debt of {debt}")
        self._set_dsc_minted(user, debt - amount)
        self._emit(DscBurned(on_behalf_of=user, dsc_from=dsc_from or user, amount=amount))

    def record_event(self, event: EngineEvent) -> EngineEvent:
        """Append an event that is not tied to a single ledger entry (e.g. Liquidated)."""
        return self._emit(event)

    def _emit(self, event: EngineEvent) -> EngineEvent:
        stamped = replace(event, sequence=self._next_sequence)
        self._next_sequence += 1
        self.events.append(stamped)
        return stamped

    def _set_collateral(self, user: str, asset_id: str, amount: int) -> None:
        if self._journal is not None:
            new_user = user not in self.collateral
            previous = None if new_user else self.collateral[user].get(asset_id)
            self._journal.append(lambda: self._undo_collateral(user, asset_id, previous, new_user))
        self.collateral[user][asset_id] = amount

    def _undo_collateral(self, user: str, asset_id: str, previous: Optional[int], new_user: bool) -> None:
        if new_user:
            self.collateral.pop(user, None)
        elif previous is None:
            self.collateral[user].pop(asset_id, None)
        else:
            self.collateral[user][asset_id] = previous

    def _set_dsc_minted(self, user: str, amount: int) -> None:
        if self._journal is not None:
            previous = self.dsc_minted.get(user)
            self._journal.append(lambda: self._undo_dsc_minted(user, previous))
        self.dsc_minted[user] = amount

    def _undo_dsc_minted(self, user: str, previous: Optional[int]) -> None:
        if previous is None:
            self.dsc_minted.pop(user, None)
        else:
            self.dsc_minted[user] = previous

    # ========================================================================
    # SNAPSHOT / ROLLBACK
    # ========================================================================

    def snapshot(self) -> Dict[str, Any]:
        """Copy of every mutable field, for restore()."""
        return {
            'collateral': {user: dict(balances) for user, balances in self.collateral.items()},
            'dsc_minted': dict(self.dsc_minted),
            'events_len': len(self.events),
            'next_sequence': self._next_sequence,
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Return to the state captured by snapshot(). Later events are discarded."""
        self.collateral = defaultdict(dict, {
            user: dict(balances) for user, balances in snapshot['collateral'].items()
        })
        self.dsc_minted = dict(snapshot['dsc_minted'])
        del self.events[snapshot['events_len']:]
        self._next_sequence = snapshot['next_sequence']

    @contextmanager
    def atomic(self) -> Iterator['PositionStore']:
        """
        Run a block of record_* calls as one unit.

        Any exception raised inside the block undoes the block's writes in
        reverse order, drops its events and propagates. Only the entries the
        block wrote are touched. Blocks may nest; an inner block that commits
        hands its undo entries to the enclosing one.
        """
        outer = self._journal
        self._journal = []
        events_len, next_sequence = len(self.events), self._next_sequence
        try:
            yield self
        except Exception:
            for undo in reversed(self._journal):
                undo()
            del self.events[events_len:]
            self._next_sequence = next_sequence
            raise
        else:
            if outer is not None:
                outer.extend(self._journal)
        finally:
            self._journal = outer
