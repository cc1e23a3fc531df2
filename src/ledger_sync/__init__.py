"""
Payment APIs → Canonical Transactions → Spreadsheet Ledger

A deterministic, testable sync engine that pulls transactions from Stripe,
Brex and PrivatBank, normalizes them into one canonical shape, and appends
only the ones the ledger does not already hold.
"""

__version__ = "0.1.0"
