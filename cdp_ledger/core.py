"""
Core types and pure functions for the collateralized-debt engine.

This module provides the foundational data structures and protocols for the engine:
1. Constants: fixed-point precision and protocol parameters
2. Protocols: PositionView for read-only position access, plus the interfaces of
   the external collaborators (price feeds, collateral tokens, the debt token)
3. Immutable data structures: CollateralAsset, PriceQuote, UserPosition, events,
   Move, PendingTransfer, TokenTransaction, TokenUnit
4. Exceptions: EngineError and the validation / solvency / external / invariant
   families beneath it
5. Fixed-point helpers: conversion between base units and human-readable Decimals

All amounts are integers in fixed-point base units. A USD value of PRECISION is
one dollar and a health factor of PRECISION is 1.0.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, localcontext
from enum import Enum
from typing import (
    Dict, Optional, Callable, Any, Protocol, Tuple, Union,
    Mapping, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for USD values, normalized prices and health factors.
PRECISION = 10 ** 18

# Decimal places every oracle price is normalized to.
FEED_PRECISION = 18

# Collateral counts for LIQUIDATION_THRESHOLD / LIQUIDATION_PRECISION of its value,
# i.e. positions must be 200% collateralized.
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_BONUS = 10
LIQUIDATION_PRECISION = 100

MIN_HEALTH_FACTOR = PRECISION

# Sentinel health factor for positions with no debt (uint256 max).
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Price rounds older than this are rejected when staleness checking is enabled.
DEFAULT_ORACLE_TIMEOUT = timedelta(hours=3)

# Reserved wallet for issuance and redemption in the token ledger.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_COLLATERAL = "COLLATERAL"
UNIT_TYPE_STABLECOIN = "STABLECOIN"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from asset id to base-unit quantity deposited by a single user.
CollateralBalances = Dict[str, int]

# Mapping from wallet ID to quantity held by that wallet for a specific token.
Positions = Dict[str, int]


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a token transfer execution attempt.

    APPLIED: Transfer was successfully validated and applied to the ledger.
    REJECTED: Transfer failed validation due to insufficient funds, an
              unregistered token, or a transfer rule violation.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine and token errors."""
    pass


class ValidationError(EngineError):
    """Caller-preventable input error, raised before any mutation."""
    pass


class SolvencyError(EngineError):
    """The operation would leave a position below (or fail to improve) its health factor."""
    pass


class ExternalFailure(EngineError):
    """A price feed or token collaborator failed; the operation is aborted wholesale."""
    pass


class InvariantError(EngineError):
    """Caller or upstream-state corruption. Always fatal to the operation."""
    pass


class MustBeMoreThanZero(ValidationError):
    """Raised when an amount is zero or negative."""
    pass


class NotAllowedCollateral(ValidationError):
    """Raised when an asset is not on the collateral allow-list."""
    pass


class InsufficientCollateral(ValidationError):
    """Raised when a withdrawal exceeds the user's deposited balance of an asset."""
    pass


class ConfigurationMismatch(ValidationError):
    """Raised when the collateral token and price feed lists differ in length."""
    pass


class InvalidConfiguration(ValidationError):
    """Raised for null identifiers, duplicate assets, or out-of-range parameters."""
    pass


class HealthFactorTooLow(SolvencyError):
    """Raised when a position's health factor ends below the minimum."""

    def __init__(self, health_factor: int):
        self.health_factor = health_factor
        super().__init__(f"Health factor {format_health_factor(health_factor)} is below minimum")


class HealthFactorOk(SolvencyError):
    """Raised when liquidating a position that is not below the minimum health factor."""

    def __init__(self, health_factor: int):
        self.health_factor = health_factor
        super().__init__(f"Health factor {format_health_factor(health_factor)} is not liquidatable")


class HealthFactorNotImproved(SolvencyError):
    """Raised when a liquidation does not strictly improve the target's health factor."""

    def __init__(self, starting: int, ending: int):
        self.starting = starting
        self.ending = ending
        super().__init__(
            f"Health factor not improved: {format_health_factor(starting)} -> "
            f"{format_health_factor(ending)}"
        )


class OracleUnavailable(ExternalFailure):
    """Raised when a feed returns no data or a non-positive price."""
    pass


class StalePrice(OracleUnavailable):
    """Raised when a feed's latest round is older than the allowed age."""
    pass


class TransferFailed(ExternalFailure):
    """Raised when a token transfer reports failure."""
    pass


class MintFailed(ExternalFailure):
    """Raised when the debt token reports a failed mint."""
    pass


class BurnExceedsDebt(InvariantError):
    """Raised when a burn exceeds the user's recorded debt."""
    pass


class ReentrantCall(InvariantError):
    """Raised when a mutating entry point is re-entered from inside an operation."""
    pass


class SettlementUnwindFailed(InvariantError):
    """Raised when a compensating token transfer fails while unwinding an operation."""
    pass


class TokenError(EngineError):
    """Base exception for the reference token implementation."""
    pass


class TransferRuleViolation(TokenError):
    """Raised when a move violates the token's transfer rule."""
    pass


class UnitNotRegistered(TokenError):
    """Raised when operating on a token that has not been registered with the ledger."""
    pass


class NotOwner(TokenError):
    """Raised when someone other than the owner mints or burns the stablecoin."""
    pass


class NotZeroAddress(TokenError):
    """Raised when minting to an empty account."""
    pass


class BurnAmountExceedsBalance(TokenError):
    """Raised when the owner burns more stablecoin than it holds."""
    pass


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_decimal(value: int, decimals: int = FEED_PRECISION) -> Decimal:
    """
    Convert a fixed-point integer to a human-readable Decimal.

    Example:
        to_decimal(1_500_000_000_000_000_000) == Decimal("1.5")
    """
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(value).scaleb(-decimals).normalize()


def to_base_units(amount: Union[int, str, Decimal], decimals: int = FEED_PRECISION) -> int:
    """
    Convert a human-readable amount to fixed-point base units, rounding down.

    Floats are rejected; pass strings or Decimals to avoid binary rounding.
    """
    if isinstance(amount, float):
        raise TypeError("Use str or Decimal amounts, not float")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = Decimal(amount).scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def format_health_factor(health_factor: int) -> str:
    """Render a health factor for messages ("inf" for the no-debt sentinel)."""
    if health_factor == MAX_HEALTH_FACTOR:
        return "inf"
    return f"{to_decimal(health_factor):f}"


# ============================================================================
# PARAMETERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class EngineParameters:
    """
    Immutable protocol constants for one engine instance.

    Attributes:
        liquidation_threshold: Share of collateral value counted toward solvency,
            in units of liquidation_precision (50 -> 50% -> 200% collateralization).
        liquidation_bonus: Extra collateral paid to liquidators, in units of
            liquidation_precision (10 -> 10%).
        liquidation_precision: Denominator for threshold and bonus.
        precision: Fixed-point scale of USD values and health factors.
        min_health_factor: Health factor below which a position is liquidatable.
    """
    liquidation_threshold: int = LIQUIDATION_THRESHOLD
    liquidation_bonus: int = LIQUIDATION_BONUS
    liquidation_precision: int = LIQUIDATION_PRECISION
    precision: int = PRECISION
    min_health_factor: int = MIN_HEALTH_FACTOR

    def __post_init__(self):
        if self.liquidation_precision <= 0:
            raise InvalidConfiguration("liquidation_precision must be positive")
        if not 0 < self.liquidation_threshold < self.liquidation_precision:
            raise InvalidConfiguration(
                f"liquidation_threshold must be in (0, {self.liquidation_precision}), "
                f"got {self.liquidation_threshold}"
            )
        if self.liquidation_bonus < 0:
            raise InvalidConfiguration(f"liquidation_bonus cannot be negative, got {self.liquidation_bonus}")
        # An unhealthy position can only be improved by liquidation when
        # threshold * (1 + bonus) < 1.
        if (self.liquidation_threshold * (self.liquidation_precision + self.liquidation_bonus)
                >= self.liquidation_precision ** 2):
            raise InvalidConfiguration(
                "liquidation_threshold and liquidation_bonus leave no room for liquidation to improve a position"
            )
        if self.precision <= 0 or self.min_health_factor <= 0:
            raise InvalidConfiguration("precision and min_health_factor must be positive")


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceFeed(Protocol):
    """
    External price feed for one collateral asset.

    latest_round() returns (price, updated_at) with the price scaled by
    10**decimals, or None when the feed has no data.
    """
    decimals: int

    def latest_round(self) -> Optional[Tuple[int, Optional[datetime]]]:
        ...


@runtime_checkable
class CollateralToken(Protocol):
    """Fungible collateral token. Transfers report success instead of raising."""
    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int:
        ...

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        ...


@runtime_checkable
class DebtToken(Protocol):
    """The synthetic stablecoin. Only its owner (the engine) may mint or burn."""
    symbol: str

    def balance_of(self, account: str) -> int:
        ...

    def mint(self, caller: str, to: str, amount: int) -> bool:
        ...

    def burn(self, caller: str, amount: int) -> None:
        ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        ...


@runtime_checkable
class PositionView(Protocol):
    """
    Read-only interface to collateral and debt ledgers.

    Valuation, health-factor and liquidation functions accept a PositionView to
    declare their read-only intent. PositionStore implements this protocol but
    also provides mutation methods. For testing, FakePositionView provides a
    truly immutable implementation.
    """

    def collateral_assets(self) -> Tuple['CollateralAsset', ...]:
        """Return the allow-list in registration order."""
        ...

    def get_asset(self, asset_id: str) -> 'CollateralAsset':
        """Return a registered asset. Raises NotAllowedCollateral otherwise."""
        ...

    def get_collateral_balance(self, user: str, asset_id: str) -> int:
        """Return the user's deposited amount (0 if none)."""
        ...

    def get_dsc_minted(self, user: str) -> int:
        """Return the user's outstanding debt (0 if none)."""
        ...


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralAsset:
    """
    An accepted collateral token.

    Attributes:
        asset_id: Identifier of the token (its symbol).
        price_feed: Feed quoting the asset in USD.
        decimals: Base-unit precision of the token.
    """
    asset_id: str
    price_feed: Any
    decimals: int = 18

    def __post_init__(self):
        if not self.asset_id or not self.asset_id.strip():
            raise InvalidConfiguration("Collateral asset id cannot be empty")
        if self.price_feed is None:
            raise InvalidConfiguration(f"Collateral asset {self.asset_id} has no price feed")
        if self.decimals < 0:
            raise InvalidConfiguration(f"Collateral asset {self.asset_id} has negative decimals")


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A point-in-time USD price for one unit of an asset, normalized to
    FEED_PRECISION decimals. Owned by the call that requested it; never cached.
    """
    asset_id: str
    price: int
    decimals: int = FEED_PRECISION
    updated_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class UserPosition:
    """Snapshot of one user's collateral (registry order) and debt."""
    user: str
    collateral: Mapping[str, int]
    dsc_minted: int

    def is_empty(self) -> bool:
        return self.dsc_minted == 0 and not any(self.collateral.values())


@dataclass(frozen=True, slots=True)
class AccountInformation:
    """Debt and total collateral value of one user."""
    dsc_minted: int
    collateral_value_usd: int


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralDeposited:
    user: str
    asset_id: str
    amount: int
    sequence: int = 0


@dataclass(frozen=True, slots=True)
class CollateralRedeemed:
    redeemed_from: str
    redeemed_to: str
    asset_id: str
    amount: int
    sequence: int = 0


@dataclass(frozen=True, slots=True)
class DscMinted:
    user: str
    amount: int
    sequence: int = 0


@dataclass(frozen=True, slots=True)
class DscBurned:
    on_behalf_of: str
    dsc_from: str
    amount: int
    sequence: int = 0


@dataclass(frozen=True, slots=True)
class Liquidated:
    liquidator: str
    user: str
    asset_id: str
    debt_covered: int
    collateral_seized: int
    bonus_collateral: int
    starting_health_factor: int
    ending_health_factor: int
    sequence: int = 0


EngineEvent = Union[CollateralDeposited, CollateralRedeemed, DscMinted, DscBurned, Liquidated]


# ============================================================================
# TOKEN LEDGER STRUCTURES
# ============================================================================

@runtime_checkable
class TokenView(Protocol):
    """Read-only access to token balances, passed to transfer rules."""

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        ...

    def get_unit(self, symbol: str) -> 'TokenUnit':
        ...


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a token between two wallets.

    Attributes:
        quantity: The amount to transfer in base units (must be a positive int).
        unit_symbol: The token being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransfer:
    """
    A batch of moves before execution - represents INTENT.

    Executed atomically by TokenLedger.execute(): all moves apply or none do.
    """
    moves: Tuple[Move, ...]
    memo: str = ""

    def is_empty(self) -> bool:
        return not self.moves


@dataclass(frozen=True, slots=True)
class TokenTransaction:
    """
    An executed, immutable record of token movements - represents FACT.

    Attributes:
        moves: Tuple of transfers between wallets
        memo: Free-form description carried over from the PendingTransfer
        exec_id: Unique execution identifier (ledger + sequence)
        ledger_name: Name of the ledger that executed this
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    memo: str
    exec_id: str
    ledger_name: str
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("TokenTransaction must have moves")


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[TokenView, Move], None]


@dataclass(frozen=True, slots=True)
class TokenUnit:
    """
    Definition of a token registered in a TokenLedger.

    Attributes:
        symbol: Short identifier for the token (e.g., "WETH", "DSC").
        name: Human-readable name.
        unit_type: UNIT_TYPE_COLLATERAL or UNIT_TYPE_STABLECOIN.
        decimals: Base-unit precision.
        min_balance: Minimum allowed balance in any wallet except SYSTEM_WALLET.
        transfer_rule: Optional function to validate moves involving this token.
    """
    symbol: str
    name: str
    unit_type: str
    decimals: int = 18
    min_balance: int = 0
    transfer_rule: Optional[TransferRule] = field(default=None, compare=False)


def issuer_only_transfer_rule(get_owner: Callable[[], str]) -> TransferRule:
    """
    Build a rule that only lets the current owner issue into or redeem out of
    SYSTEM_WALLET.

    Moves touching SYSTEM_WALLET must carry metadata {"caller": owner}. Ordinary
    wallet-to-wallet transfers are unrestricted. The owner is looked up per move
    so ownership can be transferred after registration.
    """
    def rule(view: TokenView, move: Move) -> None:
        if SYSTEM_WALLET not in (move.source, move.dest):
            return
        owner = get_owner()
        caller = (move.metadata or {}).get("caller")
        if caller != owner:
            raise TransferRuleViolation(
                f"{move.unit_symbol}: only {owner} may mint or burn, got {caller!r}"
            )
    rule.__name__ = "issuer_only_transfer_rule"
    return rule
