"""
settlement.py - Ordered, compensated execution of external token effects

DSCEngine records every position change first and validates it, then settles
the matching token movements through a Settlement:

    settlement = Settlement(engine_address)
    settlement.pull(dsc, user, amount)        # user -> engine (allowance)
    settlement.burn(dsc, amount)              # engine burns what it pulled
    settlement.push(weth, user, collateral)   # engine -> user
    settlement.run()

Steps run in the order they were added. Each successful step registers its
inverse; if a later step fails, the inverses run in reverse order and the
failure is re-raised as TransferFailed or MintFailed. The engine then restores
its position state, so a failed operation leaves no trace anywhere.

Pushes and mints hand value to an outside account and cannot be taken back
without that account's cooperation. A settlement therefore allows at most one
of them, as its final step: if it fails nothing needs undoing past it, and if
it succeeds the settlement is complete.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional, Type

from .core import (
    CollateralToken, DebtToken, ExternalFailure, TransferFailed, MintFailed,
    SettlementUnwindFailed, TokenError,
)


@dataclass(frozen=True, slots=True)
class SettlementStep:
    """
    One external token call and, when it can be undone, its inverse.

    action and inverse return False (or raise TokenError) on failure.
    """
    description: str
    action: Callable[[], bool]
    failure: Type[ExternalFailure]
    inverse: Optional[Callable[[], bool]] = None

    @property
    def is_final(self) -> bool:
        return self.inverse is None


def _call(fn: Callable[[], bool]) -> bool:
    try:
        result = fn()
    except TokenError:
        return False
    # burn() returns None on success
    return result is None or bool(result)


class Settlement:
    """
    Runs a list of token steps as one unit on behalf of `engine`.

    Args:
        engine: Account the engine holds tokens under (and the DSC owner)
        verbose: Print unwinds
    """

    def __init__(self, engine: str, verbose: bool = False):
        self.engine = engine
        self.verbose = verbose
        self.steps: List[SettlementStep] = []
        self.completed: List[SettlementStep] = []

    # ========================================================================
    # STEP BUILDERS
    # ========================================================================

    def pull(self, token: CollateralToken, owner: str, amount: int) -> 'Settlement':
        """Move `amount` from `owner` into the engine using the engine's allowance."""
        engine = self.engine
        return self._add(SettlementStep(
            description=f"pull {amount} {token.symbol} from {owner}",
            action=lambda: token.transfer_from(engine, owner, engine, amount),
            failure=TransferFailed,
            inverse=lambda: token.transfer(engine, owner, amount),
        ))

    def burn(self, dsc: DebtToken, amount: int) -> 'Settlement':
        """Burn `amount` of the engine's own DSC balance."""
        engine = self.engine
        return self._add(SettlementStep(
            description=f"burn {amount} {dsc.symbol}",
            action=lambda: dsc.burn(engine, amount),
            failure=TransferFailed,
            inverse=lambda: dsc.mint(engine, engine, amount),
        ))

    def push(self, token: CollateralToken, to: str, amount: int) -> 'Settlement':
        """Move `amount` from the engine to `to`. Final step."""
        engine = self.engine
        return self._add(SettlementStep(
            description=f"push {amount} {token.symbol} to {to}",
            action=lambda: token.transfer(engine, to, amount),
            failure=TransferFailed,
        ))

    def mint(self, dsc: DebtToken, to: str, amount: int) -> 'Settlement':
        """Mint `amount` of DSC to `to`. Final step."""
        engine = self.engine
        return self._add(SettlementStep(
            description=f"mint {amount} {dsc.symbol} to {to}",
            action=lambda: dsc.mint(engine, to, amount),
            failure=MintFailed,
        ))

    def _add(self, step: SettlementStep) -> 'Settlement':
        if self.steps and self.steps[-1].is_final:
            raise ValueError(f"Cannot add '{step.description}' after final step '{self.steps[-1].description}'")
        self.steps.append(step)
        return self

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def run(self) -> None:
        """
        Execute every step in order.

        Raises:
            TransferFailed / MintFailed: A step failed; earlier steps were undone
            SettlementUnwindFailed: A step failed and undoing an earlier one also failed
        """
        for step in self.steps:
            try:
                ok = _call(step.action)
            except Exception:
                self._unwind(step)
                raise
            if not ok:
                self._unwind(step)
                raise step.failure(f"Settlement step failed: {step.description}")
            self.completed.append(step)

    def _unwind(self, failed: SettlementStep) -> None:
        while self.completed:
            step = self.completed.pop()
            if self.verbose:
                print(f"⚠️  Unwinding '{step.description}' after '{failed.description}' failed")
            if not _call(step.inverse):
                raise SettlementUnwindFailed(
                    f"Could not undo '{step.description}' after '{failed.description}' failed"
                )
