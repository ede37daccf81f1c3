"""Swap route calculation and execution over liquidity pools."""

__version__ = "0.1.0"
