"""Real-time tap trading engine on Hyperliquid price feeds."""

__version__ = "0.1.0"
