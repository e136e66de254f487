"""
Veridity zk.verifiers
=====================

BN254 verifier primitives:

- `zk.verifiers.pairing_bn254`  -> curve helpers and the multi-pairing product check
- `zk.verifiers.groth16_bn254`  -> Groth16 verification over snarkjs-style JSON

Everything here is pure and picklable so checks can run on a process pool.
"""

from .groth16_bn254 import Proof, VerifyingKey, check, load_proof, load_vk, verify_groth16
from .pairing_bn254 import check_pairing_product, curve_order, field_modulus

__all__ = [
    "Proof",
    "VerifyingKey",
    "check",
    "load_proof",
    "load_vk",
    "verify_groth16",
    "check_pairing_product",
    "curve_order",
    "field_modulus",
]
