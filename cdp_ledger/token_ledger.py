"""
token_ledger.py - Stateful Token Balance Ledger

The TokenLedger holds the balances of every token the engine interacts with:
collateral tokens and the stablecoin. It is the reference implementation behind
the token collaborators in tokens.py.

Key responsibilities:
    - Implements TokenView protocol for transfer rules
    - Executes transfers atomically (all moves succeed or all fail)
    - Maintains wallet balances and token definitions
    - Issues and redeems supply through SYSTEM_WALLET
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, List, Set, Tuple, Any

from .core import (
    # Types
    PendingTransfer, TokenTransaction, TokenUnit, Positions, ExecuteResult,
    # Constants
    SYSTEM_WALLET,
    # Exceptions
    TransferRuleViolation, UnitNotRegistered,
)


class TokenLedger:
    """
    Double-entry token ledger with full validation and audit trail.

    Wallets are created on first use: any non-empty string identifies an account.
    SYSTEM_WALLET is the issuance counterparty, so for every token the sum of
    all balances (including the negative system balance) is always zero.

    Thread Safety:
        Not thread-safe on its own. The engine serializes access to it.

    Example:
        ledger = TokenLedger("tokens")
        ledger.register_unit(TokenUnit("WETH", "Wrapped Ether", UNIT_TYPE_COLLATERAL))

        ledger.execute(PendingTransfer((
            Move(10 ** 18, "WETH", SYSTEM_WALLET, "alice", "faucet"),
        )))
    """

    def __init__(self, name: str, verbose: bool = True):
        """
        Create a token ledger.

        Args:
            name: Ledger identifier
            verbose: Enable debug output (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.units: Dict[str, TokenUnit] = {}
        self.transaction_log: List[TokenTransaction] = []
        self.verbose = verbose
        self._next_sequence: int = 0

    # ========================================================================
    # TokenView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Get the balance of a token in a wallet.

        Raises:
            UnitNotRegistered: If the token is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if wallet_id not in self.balances:
            return 0
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_unit(self, symbol: str) -> TokenUnit:
        """Return the TokenUnit for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero balances of a token, SYSTEM_WALLET excluded."""
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return {
            wallet: bals[unit_symbol]
            for wallet, bals in sorted(self.balances.items())
            if wallet != SYSTEM_WALLET and bals.get(unit_symbol, 0) != 0
        }

    def list_units(self) -> List[str]:
        """List all registered token symbols."""
        return sorted(self.units.keys())

    def list_wallets(self) -> Set[str]:
        """List every wallet that has ever held a balance."""
        return set(self.balances.keys())

    def total_supply(self, unit_symbol: str) -> int:
        """
        Circulating supply of a token: everything issued out of SYSTEM_WALLET.

        Raises:
            UnitNotRegistered: If the token is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return -self.balances[SYSTEM_WALLET].get(unit_symbol, 0) if SYSTEM_WALLET in self.balances else 0

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that every token's balances sum to zero across all wallets.

        Transfers redistribute but never create or destroy value; issuance is
        a transfer out of SYSTEM_WALLET.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'sums': Dict[str, int] - Sum of balances for each token
            - 'discrepancies': List[str] - Tokens whose balances do not net to zero
        """
        sums: Dict[str, int] = {}
        for unit_symbol in self.units:
            sums[unit_symbol] = sum(
                self.balances[w].get(unit_symbol, 0) for w in sorted(self.balances)
            )
        discrepancies = [symbol for symbol, total in sums.items() if total != 0]
        return {
            'valid': not discrepancies,
            'sums': sums,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_unit(self, unit: TokenUnit) -> None:
        """
        Register a new token.

        Raises:
            ValueError: If the symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def execute(self, pending: PendingTransfer) -> ExecuteResult:
        """
        Execute a PendingTransfer atomically.

        All moves succeed together or all fail together. Every move is
        validated against token registration, transfer rules and balance
        minimums before anything is applied.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed (nothing is applied)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = TokenTransaction(
            moves=pending.moves,
            memo=pending.memo,
            exec_id=f"exec:{self.name}:{sequence:012d}",
            ledger_name=self.name,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)
        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransfer) -> Tuple[bool, str]:
        """
        Validate a pending transfer against all constraints.

        Checks performed:
        1. Token registration
        2. Transfer rule enforcement
        3. Balance minimums on net balance changes

        Returns:
            Tuple of (success: bool, reason: str)
        """
        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        net: Dict[Tuple[str, str], int] = defaultdict(int)
        for move in pending.moves:
            net[(move.source, move.unit_symbol)] -= move.quantity
            net[(move.dest, move.unit_symbol)] += move.quantity

        # SYSTEM_WALLET is exempt from balance validation - it can hold any balance
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.get_balance(wallet, unit_sym) + delta
            minimum = self.units[unit_sym].min_balance
            if proposed < minimum:
                return False, f"{wallet} {unit_sym}: {proposed} < min {minimum}"

        return True, ""

    def _execute_moves(self, moves) -> None:
        for move in moves:
            self.balances[move.source][move.unit_symbol] -= move.quantity
            self.balances[move.dest][move.unit_symbol] += move.quantity
