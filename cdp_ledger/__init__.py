"""
cdp_ledger - Collateralized-Debt Accounting Engine

Users deposit approved collateral tokens, mint a USD-pegged stablecoin (DSC)
against them, and must stay over-collateralized. Under-collateralized
positions can be liquidated by anyone for a bonus.

Usage:
    from cdp_ledger import (
        TokenLedger, FaucetToken, StableCoin, StaticPriceFeed, DSCEngine,
    )

    tokens = TokenLedger("main")
    weth = FaucetToken(tokens, "WETH", "Wrapped Ether")
    dsc = StableCoin(tokens, owner="deployer")
    engine = DSCEngine([weth], [StaticPriceFeed(2000 * 10**8)], dsc)
    dsc.transfer_ownership("deployer", engine.address)

    # Fund a user and let the engine pull their collateral
    weth.issue("alice", 10 * 10**18)
    weth.approve("alice", engine.address, 10 * 10**18)

    # 10 WETH = $20,000; at 200% collateralization alice may mint $10,000
    engine.deposit_collateral_and_mint_dsc("alice", "WETH", 10 * 10**18, 5000 * 10**18)
    engine.get_health_factor("alice")   # 2 * 10**18
"""

# Core types
from .core import (
    PositionView,
    TokenView,
    PriceFeed,
    CollateralToken,
    DebtToken,
    EngineParameters,
    CollateralAsset,
    PriceQuote,
    UserPosition,
    AccountInformation,
    CollateralDeposited,
    CollateralRedeemed,
    DscMinted,
    DscBurned,
    Liquidated,
    EngineEvent,
    Move,
    PendingTransfer,
    TokenTransaction,
    TokenUnit,
    ExecuteResult,
    issuer_only_transfer_rule,
    to_decimal,
    to_base_units,
    format_health_factor,
    PRECISION,
    FEED_PRECISION,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_BONUS,
    LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    DEFAULT_ORACLE_TIMEOUT,
    SYSTEM_WALLET,
    UNIT_TYPE_COLLATERAL,
    UNIT_TYPE_STABLECOIN,
)

# Errors
from .core import (
    EngineError,
    ValidationError,
    SolvencyError,
    ExternalFailure,
    InvariantError,
    MustBeMoreThanZero,
    NotAllowedCollateral,
    InsufficientCollateral,
    ConfigurationMismatch,
    InvalidConfiguration,
    HealthFactorTooLow,
    HealthFactorOk,
    HealthFactorNotImproved,
    OracleUnavailable,
    StalePrice,
    TransferFailed,
    MintFailed,
    BurnExceedsDebt,
    ReentrantCall,
    SettlementUnwindFailed,
    TokenError,
    TransferRuleViolation,
    UnitNotRegistered,
    NotOwner,
    NotZeroAddress,
    BurnAmountExceedsBalance,
)

# Token ledger and reference tokens
from .token_ledger import TokenLedger
from .tokens import LedgerToken, FaucetToken, StableCoin

# Oracle
from .oracle import (
    OracleAdapter,
    StaticPriceFeed,
    TimeSeriesPriceFeed,
    normalize_price,
)

# Position store
from .positions import PositionStore

# Valuation
from .valuation import (
    calculate_usd_value,
    calculate_token_amount_from_usd,
    calculate_collateral_value,
    compute_usd_value,
    compute_token_amount_from_usd,
    compute_collateral_value,
    compute_collateral_breakdown,
)

# Health factor
from .health import (
    HealthReport,
    calculate_health_factor,
    compute_health_report,
    compute_health_factor,
    revert_if_health_factor_broken,
)

# Liquidation
from .liquidation import (
    LiquidationPlan,
    calculate_bonus_collateral,
    calculate_debt_to_restore,
    plan_liquidation,
)

# Settlement and engine
from .settlement import Settlement, SettlementStep
from .engine import DSCEngine, non_reentrant


__all__ = [
    # Core
    'PositionView', 'TokenView', 'PriceFeed', 'CollateralToken', 'DebtToken',
    'EngineParameters', 'CollateralAsset', 'PriceQuote', 'UserPosition',
    'AccountInformation', 'CollateralDeposited', 'CollateralRedeemed',
    'DscMinted', 'DscBurned', 'Liquidated', 'EngineEvent',
    'Move', 'PendingTransfer', 'TokenTransaction', 'TokenUnit', 'ExecuteResult',
    'issuer_only_transfer_rule', 'to_decimal', 'to_base_units', 'format_health_factor',
    'PRECISION', 'FEED_PRECISION', 'LIQUIDATION_THRESHOLD', 'LIQUIDATION_BONUS',
    'LIQUIDATION_PRECISION', 'MIN_HEALTH_FACTOR', 'MAX_HEALTH_FACTOR',
    'DEFAULT_ORACLE_TIMEOUT', 'SYSTEM_WALLET', 'UNIT_TYPE_COLLATERAL', 'UNIT_TYPE_STABLECOIN',
    # Errors
    'EngineError', 'ValidationError', 'SolvencyError', 'ExternalFailure', 'InvariantError',
    'MustBeMoreThanZero', 'NotAllowedCollateral', 'InsufficientCollateral',
    'ConfigurationMismatch', 'InvalidConfiguration',
    'HealthFactorTooLow', 'HealthFactorOk', 'HealthFactorNotImproved',
    'OracleUnavailable', 'StalePrice', 'TransferFailed', 'MintFailed',
    'BurnExceedsDebt', 'ReentrantCall', 'SettlementUnwindFailed',
    'TokenError', 'TransferRuleViolation', 'UnitNotRegistered', 'NotOwner',
    'NotZeroAddress', 'BurnAmountExceedsBalance',
    # Tokens
    'TokenLedger', 'LedgerToken', 'FaucetToken', 'StableCoin',
    # Oracle
    'OracleAdapter', 'StaticPriceFeed', 'TimeSeriesPriceFeed', 'normalize_price',
    # Positions
    'PositionStore',
    # Valuation
    'calculate_usd_value', 'calculate_token_amount_from_usd', 'calculate_collateral_value',
    'compute_usd_value', 'compute_token_amount_from_usd', 'compute_collateral_value',
    'compute_collateral_breakdown',
    # Health
    'HealthReport', 'calculate_health_factor', 'compute_health_report',
    'compute_health_factor', 'revert_if_health_factor_broken',
    # Liquidation
    'LiquidationPlan', 'calculate_bonus_collateral', 'calculate_debt_to_restore',
    'plan_liquidation',
    # Engine
    'Settlement', 'SettlementStep', 'DSCEngine', 'non_reentrant',
]
