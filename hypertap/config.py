"""Configuration management for the Hyperliquid tap trading engine."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

LOGS_DIR = PROJECT_ROOT / "logs"

# Hyperliquid credentials
HYPERLIQUID_PRIVATE_KEY = os.getenv("HYPERLIQUID_PRIVATE_KEY", "")
HYPERLIQUID_WALLET_ADDRESS = os.getenv("HYPERLIQUID_WALLET_ADDRESS", "")
HYPERLIQUID_TESTNET = os.getenv("HYPERLIQUID_TESTNET", "true").lower() in ("1", "true", "yes")

# Trading mode: "paper" or "live"
TRADING_MODE = os.getenv("TRADING_MODE", "paper")

# =============================================================================
# API ENDPOINTS
# =============================================================================

MAINNET_WS_URL = "wss://api.hyperliquid.xyz/ws"
TESTNET_WS_URL = "wss://api.hyperliquid-testnet.xyz/ws"
# Orders and prices come from the same network
WS_URL = os.getenv(
    "HYPERLIQUID_WS_URL", TESTNET_WS_URL if HYPERLIQUID_TESTNET else MAINNET_WS_URL
)

# =============================================================================
# TAP TRADING CONFIGURATION
# =============================================================================

DEFAULT_ASSET = os.getenv("TAP_DEFAULT_ASSET", "BTC")

# Stake per tap (USD)
DEFAULT_BET_AMOUNT = float(os.getenv("TAP_DEFAULT_BET_AMOUNT", "10"))
BET_PRESETS = [5, 10, 25, 50, 100]

# Order notional = stake * leverage
TAP_LEVERAGE = float(os.getenv("TAP_LEVERAGE", "10"))

# Starting balance for the paper exchange
PAPER_BALANCE = float(os.getenv("TAP_PAPER_BALANCE", "100"))

# =============================================================================
# TIMING
# =============================================================================

RECONNECT_DELAY_MS = int(os.getenv("TAP_RECONNECT_DELAY_MS", "3000"))
MONITOR_INTERVAL_MS = int(os.getenv("TAP_MONITOR_INTERVAL_MS", "100"))
BALANCE_POLL_SECONDS = float(os.getenv("TAP_BALANCE_POLL_SECONDS", "5"))
ORDER_TIMEOUT_SECONDS = float(os.getenv("TAP_ORDER_TIMEOUT_SECONDS", "10"))
MAX_PRICE_HISTORY = int(os.getenv("TAP_MAX_HISTORY", "100"))

# =============================================================================
# GRID
# =============================================================================

GRID_ROWS_PER_SIDE = 15
TIME_WINDOWS = [5, 10, 15, 20, 25, 30]  # seconds

# Price step per grid row, sized to about a minute of short-term movement
PRICE_INCREMENTS = {
    "BTC": 10.0,
    "ETH": 0.5,
    "SOL": 0.02,
    "DEFAULT": 0.01,
}

MIN_MULTIPLIER = 1.01
MAX_MULTIPLIER = 25.0

# Multiplier curve shape
DISTANCE_SCALE_BP = 5.0
DISTANCE_EXPONENT = 1.3
REFERENCE_WINDOW = 30.0

# Perpetual asset indexes on Hyperliquid mainnet
PERP_ASSET_INDEXES = {
    "BTC": 0,
    "ETH": 1,
    "ATOM": 2,
    "MATIC": 3,
    "DYDX": 4,
    "SOL": 5,
    "AVAX": 6,
    "BNB": 7,
    "APE": 8,
    "OP": 9,
    "LTC": 10,
    "ARB": 11,
    "DOGE": 12,
}

# Size decimals used when the exchange metadata is unavailable
PERP_SIZE_DECIMALS = {
    "BTC": 5,
    "ETH": 4,
    "SOL": 2,
    "DEFAULT": 2,
}
