"""
Domain-separated hashing into the BN254 scalar field.

Used by the witness mapping (citizenship numbers are hashed before they
become circuit inputs) and by the development mock backend (nullifiers and
commitments). Every digest is SHA-256 over ``domain || 0x00 || parts...``,
interpreted big-endian and reduced mod r.
"""

from __future__ import annotations

import hashlib
from typing import Union

from zk.verifiers.pairing_bn254 import curve_order

FR = curve_order()

DOMAIN_ID_HASH = b"Veridity/IdentityHash/v1"
DOMAIN_NULLIFIER = b"Veridity/Nullifier/v1"
DOMAIN_COMMITMENT = b"Veridity/Commitment/v1"

Part = Union[int, str, bytes]


def _bytes(part: Part) -> bytes:
    if isinstance(part, bytes):
        return part
    if isinstance(part, int):
        return (part % FR).to_bytes(32, "big")
    return str(part).encode("utf-8")


def hash_to_field(domain: bytes, *parts: Part) -> int:
    h = hashlib.sha256()
    h.update(domain)
    h.update(b"\x00")
    for p in parts:
        b = _bytes(p)
        h.update(len(b).to_bytes(4, "big"))
        h.update(b)
    return int.from_bytes(h.digest(), "big") % FR


def hash_identifier(value: str) -> int:
    """Field element for a private identifier (e.g. a citizenship number)."""
    return hash_to_field(DOMAIN_ID_HASH, value.strip())


def nullifier(circuit_id: str, key: int) -> int:
    """Deterministic per (circuit, key). ``key`` must be high-entropy (a holder secret or hashed identifier)."""
    return hash_to_field(DOMAIN_NULLIFIER, circuit_id, key)


def commitment(private_value: int, salt: int) -> int:
    return hash_to_field(DOMAIN_COMMITMENT, private_value, salt)


__all__ = ["FR", "hash_to_field", "hash_identifier", "nullifier", "commitment"]
