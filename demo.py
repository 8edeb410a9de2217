#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Collateralized Debt Engine Step by Step

This is a pedagogical demonstration of how the DSC engine works. Each step
builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation     - Tokens, price feeds, deploying the engine
  4-6:  Borrowing      - Deposits, minting, the health factor, rejected mints
  7-9:  Liquidation    - Price crashes, liquidation with a bonus, debt to restore
  10:   Conservation   - Token balances always match recorded positions

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
import sys

from cdp_ledger import (
    TokenLedger, FaucetToken, StableCoin, StaticPriceFeed, DSCEngine,
    EngineError, MIN_HEALTH_FACTOR,
    to_decimal, format_health_factor,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    # Prices (USD, 8-decimal feeds)
    weth_price: int = 2000
    crash_price: int = 1200

    # Alice's position
    alice_weth: int = 15
    alice_mint: int = 10_000
    alice_over_mint: int = 11_000

    # Bob, the liquidator
    bob_weth: int = 50
    bob_mint: int = 10_000


CONFIG = DemoConfig()

ETH = 10 ** 18
USD = 10 ** 18
FEED = 10 ** 8

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_position(engine: DSCEngine, user: str):
    info = engine.get_account_information(user)
    print(f"{user}:")
    print(f"  Collateral value: ${to_decimal(info.collateral_value_usd):,f}")
    print(f"  DSC minted:       {to_decimal(info.dsc_minted):,f}")
    print(f"  Health factor:    {format_health_factor(engine.get_health_factor(user))}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_tokens():
    """Create the token ledger and the tokens that live on it."""
    step_header(1, "Tokens",
        "Every token balance lives in one TokenLedger, which conserves value.")

    print("""
    Tokens are ERC20-style: balances, allowances, transfer and transfer_from.
    All of them are backed by a single TokenLedger:

    - FaucetToken:  collateral anyone can be issued in a demo (WETH)
    - StableCoin:   the DSC debt token, mintable and burnable only by its owner

    Issuance moves value out of the SYSTEM wallet, so every token's balances
    still sum to zero.
    """)

    print('>>> tokens = TokenLedger("tokens", verbose=False)')
    tokens = TokenLedger("tokens", verbose=False)
    weth = FaucetToken(tokens, "WETH", "Wrapped Ether", decimals=18)
    dsc = StableCoin(tokens, owner="deployer")

    section_header("Registered Tokens")
    for symbol in tokens.list_units():
        print(f"  {symbol}")

    return tokens, weth, dsc


def step_02_price_feed():
    """Create a price feed."""
    step_header(2, "Price Feeds",
        "Collateral is valued with USD price feeds, normalized to 18 decimals.")

    print(f">>> feed = StaticPriceFeed({CONFIG.weth_price} * 10**8, decimals=8)")
    feed = StaticPriceFeed(CONFIG.weth_price * FEED, decimals=8)

    section_header("Key Insight")
    print("""
    The engine never caches prices. Every valuation reads the feed, and a
    feed with no data makes any operation that needs a price fail cleanly.
    """)
    return feed


def step_03_deploy(weth, feed, dsc):
    """Deploy the engine and hand it the DSC."""
    step_header(3, "Deploying the Engine",
        "The engine must own the DSC so that only it can mint and burn.")

    print('>>> engine = DSCEngine([weth], [feed], dsc, address="dsc_engine")')
    engine = DSCEngine([weth], [feed], dsc, address="dsc_engine", verbose=True)
    print('>>> dsc.transfer_ownership("deployer", "dsc_engine")')
    dsc.transfer_ownership("deployer", "dsc_engine")

    section_header("Engine Parameters")
    print(f"Liquidation threshold: {engine.liquidation_threshold}%")
    print(f"Liquidation bonus:     {engine.liquidation_bonus}%")
    print(f"Min health factor:     {format_health_factor(engine.min_health_factor)}")
    print(f"Collateral tokens:     {engine.get_collateral_tokens()}")
    return engine


# ============================================================================
# PHASE 2: BORROWING (Steps 4-6)
# ============================================================================

def step_04_deposit(engine, weth):
    """Deposit collateral."""
    step_header(4, "Depositing Collateral",
        "Deposits pull tokens into the engine and are never health-checked.")

    amount = CONFIG.alice_weth * ETH
    weth.issue("alice", amount)
    weth.approve("alice", "dsc_engine", amount)
    print(f'>>> engine.deposit_collateral("alice", "WETH", {CONFIG.alice_weth} * 10**18)')
    engine.deposit_collateral("alice", "WETH", amount)

    section_header("Position")
    show_position(engine, "alice")


def step_05_mint(engine):
    """Mint DSC against the collateral."""
    step_header(5, "Minting DSC",
        "health_factor = (collateral_value * threshold / 100) / debt, and must stay >= 1.")

    print(f'>>> engine.mint_dsc("alice", {CONFIG.alice_mint} * 10**18)')
    engine.mint_dsc("alice", CONFIG.alice_mint * USD)

    section_header("Position")
    show_position(engine, "alice")

    print(f"""
    ${CONFIG.alice_weth * CONFIG.weth_price:,} of collateral supports at most
    ${CONFIG.alice_weth * CONFIG.weth_price * engine.liquidation_threshold // 100:,} of debt.
    """)


def step_06_rejected_mint(engine, dsc):
    """Try to over-borrow."""
    step_header(6, "A Rejected Mint",
        "An operation that would break the health factor is rolled back entirely.")

    supply_before = dsc.total_supply()
    print(f'>>> engine.mint_dsc("alice", {CONFIG.alice_over_mint} * 10**18)')
    try:
        engine.mint_dsc("alice", CONFIG.alice_over_mint * USD)
    except EngineError as exc:
        section_header("Rejected")
        print(f"{type(exc).__name__}: {exc}")

    section_header("Nothing Changed")
    show_position(engine, "alice")
    print(f"DSC supply unchanged: {dsc.total_supply() == supply_before}")


# ============================================================================
# PHASE 3: LIQUIDATION (Steps 7-9)
# ============================================================================

def step_07_price_crash(engine, weth, dsc, feed):
    """Crash the price until alice is liquidatable."""
    step_header(7, "Price Crash",
        "Prices move; positions that fall below the minimum become liquidatable.")

    amount = CONFIG.bob_weth * ETH
    weth.issue("bob", amount)
    weth.approve("bob", "dsc_engine", amount)
    engine.deposit_collateral_and_mint_dsc("bob", "WETH", amount, CONFIG.bob_mint * USD)
    dsc.approve("bob", "dsc_engine", CONFIG.bob_mint * USD)

    print(f">>> feed.update_answer({CONFIG.crash_price} * 10**8)")
    feed.update_answer(CONFIG.crash_price * FEED)

    section_header("Positions After the Crash")
    show_position(engine, "alice")
    show_position(engine, "bob")
    print(f"\nalice liquidatable: {engine.is_liquidatable('alice')}")


def step_08_debt_to_restore(engine):
    """Ask how much debt must be covered."""
    step_header(8, "Debt to Restore",
        "The engine can compute the smallest repayment that restores the minimum.")

    needed = engine.get_debt_to_restore("alice")
    print('>>> engine.get_debt_to_restore("alice")')
    print(f"{to_decimal(needed):,f} DSC")

    print("""
    Covering too little leaves the position unhealthy; a liquidation is only
    required to improve it. Covering too much is rejected as BurnExceedsDebt.
    """)
    return needed


def step_09_liquidate(engine, weth, needed):
    """Liquidate alice."""
    step_header(9, "Liquidation",
        "The liquidator repays debt and receives that much collateral plus a bonus.")

    print(f'>>> engine.liquidate("bob", "alice", "WETH", {needed})')
    event = engine.liquidate("bob", "alice", "WETH", needed)

    section_header("Liquidated Event")
    print(f"Debt covered:       {to_decimal(event.debt_covered):,f} DSC")
    print(f"Collateral seized:  {to_decimal(event.collateral_seized):f} WETH")
    print(f"Bonus collateral:   {to_decimal(event.bonus_collateral):f} WETH")
    print(f"Health factor:      {format_health_factor(event.starting_health_factor)}"
          f" -> {format_health_factor(event.ending_health_factor)}")

    section_header("Positions")
    show_position(engine, "alice")
    print(f"\nbob's WETH wallet: {to_decimal(weth.balance_of('bob')):f}")
    print(f"alice restored: {engine.get_health_factor('alice') >= MIN_HEALTH_FACTOR - 10}")


# ============================================================================
# PHASE 4: CONSERVATION (Step 10)
# ============================================================================

def step_10_conservation(tokens, engine, weth, dsc):
    """Prove that balances match the engine's records."""
    step_header(10, "Conservation",
        "Token balances always agree with the positions the engine records.")

    result = tokens.verify_conservation()
    print(f"Every token sums to zero:          {result['valid']}")
    print(f"Engine WETH == recorded collateral: "
          f"{weth.balance_of('dsc_engine') == engine.get_total_collateral('WETH')}")
    print(f"DSC supply == recorded debt:        "
          f"{dsc.total_supply() == engine.get_total_dsc_minted()}")
    print(f"Events recorded:                   {len(engine.events)}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       DSC ENGINE - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print("""
    Welcome! This tutorial teaches how the collateralized debt engine works.

    PHASES:
      1-3:  Foundation    - Tokens, price feeds, deployment
      4-6:  Borrowing     - Deposits, minting, the health factor
      7-9:  Liquidation   - Crashes, debt to restore, liquidation
      10:   Conservation  - Balances match positions
    """)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    tokens, weth, dsc = step_01_tokens()
    wait_for_enter()

    feed = step_02_price_feed()
    wait_for_enter()

    engine = step_03_deploy(weth, feed, dsc)
    wait_for_enter()

    step_04_deposit(engine, weth)
    wait_for_enter()

    step_05_mint(engine)
    wait_for_enter()

    step_06_rejected_mint(engine, dsc)
    wait_for_enter()

    step_07_price_crash(engine, weth, dsc, feed)
    wait_for_enter()

    needed = step_08_debt_to_restore(engine)
    wait_for_enter()

    step_09_liquidate(engine, weth, needed)
    wait_for_enter()

    step_10_conservation(tokens, engine, weth, dsc)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:
      - Collateral is valued with normalized oracle prices
      - Minting is allowed only while the health factor stays >= 1
      - Failed operations change nothing
      - Liquidation repays debt for collateral plus a bonus
      - Token balances always match recorded positions

    Next steps:
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
