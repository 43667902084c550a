"""Raydium AMM liquidity and farming toolkit for Solana."""

__version__ = "0.1.0"
