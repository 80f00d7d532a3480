"""Stanks economy core: money, ledger, trading, market and business simulation."""

__version__ = "1.0.0"
