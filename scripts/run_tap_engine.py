#!/usr/bin/env python3
"""
Run the Tap Trading Engine

Command-line runner for a headless tap session: streams live Hyperliquid
prices, keeps the odds grid fresh, and resolves bets as prices move.

Usage:
    # Paper trading (default, safe)
    python scripts/run_tap_engine.py

    # Different asset and stake
    python scripts/run_tap_engine.py --asset ETH --amount 25

    # Place one tap on the nearest long cell once a price arrives
    python scripts/run_tap_engine.py --demo-tap

    # Run for a specific duration (in minutes)
    python scripts/run_tap_engine.py --duration 5

    # Show configuration and credentials status
    python scripts/run_tap_engine.py --status

    # Live trading (CAUTION - requires credentials)
    python scripts/run_tap_engine.py --live

Safety Notes:
    - Paper mode is the default. Real orders are NEVER sent unless --live is passed
      or TRADING_MODE=live is set.
    - Live mode requires HYPERLIQUID_PRIVATE_KEY in .env
    - Without a key, --live falls back to Hyperliquid mock mode.

Environment Variables:
    HYPERLIQUID_PRIVATE_KEY - Private key for signing orders
    HYPERLIQUID_WALLET_ADDRESS - Account address (derived from key if unset)
    HYPERLIQUID_TESTNET - "true" (default) or "false"
    TRADING_MODE - "paper" (default) or "live" (same as --live)
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from hypertap.config import (
    BET_PRESETS,
    DEFAULT_ASSET,
    DEFAULT_BET_AMOUNT,
    HYPERLIQUID_PRIVATE_KEY,
    HYPERLIQUID_TESTNET,
    HYPERLIQUID_WALLET_ADDRESS,
    LOGS_DIR,
    PAPER_BALANCE,
    TAP_LEVERAGE,
    TRADING_MODE,
    WS_URL,
)
from hypertap.exchanges import HyperliquidExchange, PaperExchange
from hypertap.tap import BettingEngine


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the engine."""
    level = logging.DEBUG if verbose else logging.INFO

    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    # File handler
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / f"tap_engine_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")


def show_status() -> None:
    """Show configuration without starting the engine."""
    print("\n" + "=" * 70)
    print("Tap Engine Status")
    print("=" * 70)

    print("\nConfiguration:")
    print(f"  Trading Mode: {TRADING_MODE}")
    print(f"  Default Asset: {DEFAULT_ASSET}")
    print(f"  Default Bet: ${DEFAULT_BET_AMOUNT} (presets: {BET_PRESETS})")
    print(f"  Leverage: {TAP_LEVERAGE}x")
    print(f"  Price Feed: {WS_URL}")

    print("\nCredentials:")
    has_key = bool(HYPERLIQUID_PRIVATE_KEY)
    print(f"  Private Key: {'Configured' if has_key else 'NOT CONFIGURED'}")
    print(f"  Wallet Address: {HYPERLIQUID_WALLET_ADDRESS or 'derived from key'}")
    print(f"  Network: {'testnet' if HYPERLIQUID_TESTNET else 'MAINNET'}")
    print(f"  Live Trading: {'Ready' if has_key else 'NOT AVAILABLE (mock mode)'}")

    print("\n" + "=" * 70)


def print_state(engine: BettingEngine) -> None:
    state = engine.get_state()
    status = "connected" if state.is_connected else "disconnected"
    print(
        f"[{datetime.now().strftime('%H:%M:%S')}] {state.asset} {state.current_price:,.4f} ({status}) | "
        f"balance ${state.balance:,.2f} | active {len(state.active_bets)} | "
        f"done {len(state.completed_bets)} | PnL {state.session_pnl:+.2f}"
    )


async def run_engine(
    paper_mode: bool,
    asset: str,
    amount: float,
    duration_minutes: int,
    demo_tap: bool,
) -> None:
    """
    Run a tap session until interrupted or the duration elapses.

    Args:
        paper_mode: If True, orders go to the paper exchange
        asset: Asset to stream and tap
        amount: Stake per tap in USD
        duration_minutes: How long to run (0 = unlimited)
        demo_tap: Place one tap on the nearest long cell
    """
    mode_str = "PAPER" if paper_mode else "LIVE"

    print("\n" + "=" * 70)
    print(f"Starting Tap Engine ({mode_str} MODE) on {asset}")
    print("=" * 70)

    if paper_mode:
        exchange = PaperExchange(
            initial_balance=Decimal(str(PAPER_BALANCE)),
            leverage=Decimal(str(TAP_LEVERAGE)),
        )
    else:
        exchange = HyperliquidExchange(testnet=HYPERLIQUID_TESTNET)

    engine = BettingEngine(exchange, asset=asset, bet_amount=amount, ws_url=WS_URL)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            pass

    await engine.start()
    tapped = False
    elapsed = 0.0

    try:
        while not shutdown.is_set():
            if demo_tap and not tapped and engine.current_price > 0:
                grid = engine.grid
                if grid.long_boxes:
                    box = grid.long_boxes[0][0]
                    result = await engine.place_bet(box)
                    print(f"Demo tap on {box.id} @ {box.price} x{box.multiplier}: {result.message or 'placed'}")
                    tapped = True

            print_state(engine)

            try:
                await asyncio.wait_for(shutdown.wait(), timeout=5)
            except asyncio.TimeoutError:
                pass

            elapsed += 5
            if duration_minutes and elapsed >= duration_minutes * 60:
                print(f"Duration of {duration_minutes} minutes reached")
                break
    finally:
        await engine.stop()

    stats = engine.ledger.get_stats()
    print("\n" + "=" * 70)
    print("Session Summary")
    print("=" * 70)
    print(f"  Bets: {stats['completed']} resolved, {stats['active']} unresolved")
    print(f"  Wins/Losses: {stats['wins']}/{stats['losses']} ({stats['win_rate']:.0%})")
    print(f"  Session PnL: {stats['session_pnl']:+.2f}")


def is_paper_mode(live_flag: bool, trading_mode: str = TRADING_MODE) -> bool:
    """Live when --live is passed or TRADING_MODE=live; paper otherwise."""
    return not live_flag and trading_mode.strip().lower() != "live"


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the Hyperliquid tap trading engine")
    parser.add_argument("--asset", default=DEFAULT_ASSET, help="Asset to stream (default: %(default)s)")
    parser.add_argument("--amount", type=float, default=DEFAULT_BET_AMOUNT, help="Stake per tap in USD")
    parser.add_argument("--duration", type=int, default=0, help="Minutes to run (0 = until Ctrl+C)")
    parser.add_argument("--live", action="store_true", help="Send real orders to Hyperliquid")
    parser.add_argument("--status", action="store_true", help="Show configuration and exit")
    parser.add_argument("--demo-tap", action="store_true", help="Place one tap on the nearest long cell")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    if args.status:
        show_status()
        return 0

    if args.amount <= 0:
        parser.error("--amount must be positive")

    setup_logging(args.verbose)

    paper_mode = is_paper_mode(args.live)
    if not paper_mode and not HYPERLIQUID_PRIVATE_KEY:
        print("Warning: HYPERLIQUID_PRIVATE_KEY not set, Hyperliquid runs in mock mode")

    try:
        asyncio.run(
            run_engine(
                paper_mode=paper_mode,
                asset=args.asset.upper(),
                amount=args.amount,
                duration_minutes=args.duration,
                demo_tap=args.demo_tap,
            )
        )
    except KeyboardInterrupt:
        print("\nInterrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
