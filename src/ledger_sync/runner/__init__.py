"""
CLI runner module.

Provides commands:
- sync: Fetch, dedupe and append new transactions
- test-connections: Probe the ledger and every source
- init-config: Write a starter config file
- init-ledgers: Write header rows into empty worksheets
"""

from .main import build_orchestrator, create_cli, main

__all__ = [
    "build_orchestrator",
    "create_cli",
    "main",
]
