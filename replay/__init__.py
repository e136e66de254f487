"""
Replay protection for the Veridity trust core.

Exports the nonce ledger protocol and its in-memory / SQLite backends.
"""

from __future__ import annotations

from .ledger import MemoryNonceLedger, NonceLedger, NonceRecord, SQLiteNonceLedger, open_ledger

__all__ = [
    "NonceLedger",
    "NonceRecord",
    "MemoryNonceLedger",
    "SQLiteNonceLedger",
    "open_ledger",
]
