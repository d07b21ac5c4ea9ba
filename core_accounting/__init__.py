"""
Core Accounting Ledger

Double-entry bookkeeping for the ERP: chart of accounts, balanced journal
entries, an append-only journal and balances derived from posted entries.
"""

__version__ = "1.0.0"
