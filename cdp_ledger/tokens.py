"""
tokens.py - Reference token collaborators backed by a TokenLedger

Classes:
- LedgerToken: ERC20-style token (balances, allowances, transfers)
- FaucetToken: LedgerToken whose supply anyone can issue (test collateral)
- StableCoin: the synthetic debt token; only its owner may mint and burn

Transfers report success as a bool, as the engine's collaborator protocols
expect. A rejected ledger execution becomes False; nothing is partially applied.
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple

from .core import (
    Move, PendingTransfer, TokenUnit, ExecuteResult, TransferRule,
    SYSTEM_WALLET, UNIT_TYPE_COLLATERAL, UNIT_TYPE_STABLECOIN,
    MustBeMoreThanZero, NotOwner, NotZeroAddress, BurnAmountExceedsBalance,
    TokenError, issuer_only_transfer_rule,
)
from .token_ledger import TokenLedger


class LedgerToken:
    """
    ERC20-style token whose balances live in a shared TokenLedger.

    Accounts are plain strings. transfer_from() requires an allowance
    granted with approve(), which is consumed on success.
    """

    def __init__(
        self,
        ledger: TokenLedger,
        symbol: str,
        name: str,
        decimals: int = 18,
        unit_type: str = UNIT_TYPE_COLLATERAL,
        transfer_rule: Optional[TransferRule] = None,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.name = name
        self.decimals = decimals
        self._allowances: Dict[Tuple[str, str], int] = {}
        ledger.register_unit(TokenUnit(
            symbol=symbol,
            name=name,
            unit_type=unit_type,
            decimals=decimals,
            transfer_rule=transfer_rule,
        ))

    def balance_of(self, account: str) -> int:
        return self.ledger.get_balance(account, self.symbol)

    def total_supply(self) -> int:
        return self.ledger.total_supply(self.symbol)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0 or not owner or not spender:
            return False
        self._allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        """Move `amount` from `sender` to `to`. Returns False if rejected."""
        return self._move(sender, to, amount, "transfer")

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        """Move `amount` from `owner` to `to` on the strength of `spender`'s allowance."""
        allowed = self.allowance(owner, spender)
        if amount > allowed:
            if self.ledger.verbose:
                print(f"✗ REJECTED: {spender} allowance {allowed} < {amount} {self.symbol} from {owner}")
            return False
        if not self._move(owner, to, amount, "transfer_from"):
            return False
        self._allowances[(owner, spender)] = allowed - amount
        return True

    def _move(self, source: str, dest: str, amount: int, contract_id: str,
              caller: Optional[str] = None) -> bool:
        if amount < 0 or not source or not dest:
            return False
        if amount == 0 or source == dest:
            return True
        move = Move(
            quantity=amount,
            unit_symbol=self.symbol,
            source=source,
            dest=dest,
            contract_id=contract_id,
            metadata={"caller": caller} if caller else None,
        )
        result = self.ledger.execute(PendingTransfer((move,), memo=f"{self.symbol}.{contract_id}"))
        return result == ExecuteResult.APPLIED

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol}, supply={self.total_supply()})"


class FaucetToken(LedgerToken):
    """Collateral token with open issuance, for simulations and tests."""

    def issue(self, to: str, amount: int) -> None:
        if amount <= 0:
            raise MustBeMoreThanZero(f"Cannot issue {amount} {self.symbol}")
        if not to:
            raise NotZeroAddress("Cannot issue to an empty account")
        self._move(SYSTEM_WALLET, to, amount, "issue")


class StableCoin(LedgerToken):
    """
    The USD-pegged synthetic debt token.

    Minting and burning are restricted to `owner` both here and at the ledger
    level through issuer_only_transfer_rule. Deploy it, construct the engine,
    then hand ownership to the engine's address.
    """

    def __init__(
        self,
        ledger: TokenLedger,
        owner: str,
        symbol: str = "DSC",
        name: str = "Decentralized Stable Coin",
        decimals: int = 18,
    ):
        if not owner:
            raise NotZeroAddress("StableCoin owner cannot be empty")
        self.owner = owner
        super().__init__(
            ledger, symbol, name, decimals,
            unit_type=UNIT_TYPE_STABLECOIN,
            transfer_rule=issuer_only_transfer_rule(lambda: self.owner),
        )

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._only_owner(caller)
        if not new_owner:
            raise NotZeroAddress("New owner cannot be empty")
        self.owner = new_owner

    def mint(self, caller: str, to: str, amount: int) -> bool:
        self._only_owner(caller)
        if not to:
            raise NotZeroAddress("Cannot mint to an empty account")
        if amount <= 0:
            raise MustBeMoreThanZero(f"Cannot mint {amount} {self.symbol}")
        return self._move(SYSTEM_WALLET, to, amount, "mint", caller=caller)

    def burn(self, caller: str, amount: int) -> None:
        """Burn `amount` from the owner's own balance."""
        self._only_owner(caller)
        if amount <= 0:
            raise MustBeMoreThanZero(f"Cannot burn {amount} {self.symbol}")
        balance = self.balance_of(caller)
        if balance < amount:
            raise BurnAmountExceedsBalance(f"Burn of {amount} exceeds balance {balance}")
        if not self._move(caller, SYSTEM_WALLET, amount, "burn", caller=caller):
            raise TokenError(f"Ledger rejected burn of {amount} {self.symbol}")

    def _only_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise NotOwner(f"{caller} is not the owner of {self.symbol}")
