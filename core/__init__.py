"""
Veridity core package.

Shared substrate for the trust core: typed configuration, structured logging
and the error taxonomy. Higher-level packages (circuits, zk, replay, qr)
build on top.
"""

from __future__ import annotations

__version__ = "0.1.0"


def get_version() -> str:
    """Return the semantic version string for this package."""
    return __version__


__all__ = ["__version__", "get_version"]
