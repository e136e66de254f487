"""
Veridity circuits.cli
---------------------
Command-line entrypoint for the circuit build pipeline (``veridity-circuits``).

Usage:
  veridity-circuits status
  veridity-circuits build age_verification --contribution "Veridity Age Verification"
"""

from .build import app, main

__all__ = ["app", "main"]
