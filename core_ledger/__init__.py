"""
Core Ledger

Account ledger engine for a banking backend: per-user balances, atomic
transfers and deposits with Decimal precision, and an append-only
transaction record.
"""

__version__ = "1.0.0"
