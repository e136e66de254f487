"""
Veridity zk.adapters
====================

Converters from snarkjs JSON (proofs, verification keys) into the normalized
integer form consumed by `zk.verifiers.groth16_bn254`.
"""

from __future__ import annotations

from .snarkjs_loader import is_groth16_vk, normalize_groth16_proof, normalize_groth16_vk

__all__ = [
    "is_groth16_vk",
    "normalize_groth16_proof",
    "normalize_groth16_vk",
]
