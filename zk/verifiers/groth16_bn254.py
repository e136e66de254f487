"""
Veridity zk.verifiers.groth16_bn254
===================================

Groth16 verifier for BN254 (altbn128), compatible with the `snarkjs` JSON
layout produced by ``snarkjs zkey export verificationkey`` and
``snarkjs groth16 fullprove``.

Verification equation (standard form)
-------------------------------------
    e(A, B) == e(alpha1, beta2) * e(VK_x, gamma2) * e(C, delta2)

implemented as a product check in GT:
    e(A, B) * e(-alpha1, beta2) * e(-VK_x, gamma2) * e(-C, delta2) == 1

with ``VK_x = IC[0] + Σ s_i · IC[i+1]`` over the public signals ``s_i``.

JSON compatibility (snarkjs)
----------------------------
- Verifying key:  vk_alpha_1, vk_beta_2, vk_gamma_2, vk_delta_2, IC
  (``len(IC) == 1 + #public signals``)
- Proof:          pi_a, pi_b, pi_c

Points may carry the projective third coordinate snarkjs emits
(``["x", "y", "1"]`` / ``[[x0, x1], [y0, y1], ["1", "0"]]``); see
`zk.adapters.snarkjs_loader`. G2 elements are encoded ``[c0, c1]`` for
``c0 + c1 * i``.

Public API
----------
- load_vk(vk_json) -> VerifyingKey        (raises ValueError on bad shape / points)
- load_proof(proof_json) -> Proof         (raises ValueError on bad shape / points)
- check(vk, proof, inputs) -> bool        (pairing equation only)
- verify_groth16(vk_json, proof_json, inputs) -> bool

Malformed inputs raise ``ValueError``; a well-formed proof that does not
satisfy the equation returns ``False``. Callers that must tell the two apart
(the Verifier does) rely on that split.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Union

from py_ecc.optimized_bn128 import FQ, FQ2
from py_ecc.optimized_bn128 import add as _add
from py_ecc.optimized_bn128 import multiply as _mul
from py_ecc.optimized_bn128 import neg as _neg

from zk.adapters.snarkjs_loader import normalize_groth16_proof, normalize_groth16_vk

from .pairing_bn254 import (check_pairing_product, curve_order, field_modulus,
                            in_g2_subgroup, is_on_curve_g1, is_on_curve_g2)

G1Point = Any
G2Point = Any

_FR = curve_order()
_FP = field_modulus()


# ---------------------------
# Utilities
# ---------------------------


def _coord(v: int) -> int:
    if not 0 <= v < _FP:
        raise ValueError("coordinate outside the base field")
    return v


def _g1(pt: Sequence[int]) -> G1Point:
    x, y = _coord(pt[0]), _coord(pt[1])
    # Infinity convention sometimes appears as [0,0]
    if x == 0 and y == 0:
        return (FQ(1), FQ(1), FQ(0))
    return (FQ(x), FQ(y), FQ(1))


def _g2(pt: Sequence[Sequence[int]]) -> G2Point:
    (x0, x1), (y0, y1) = pt[0], pt[1]
    for v in (x0, x1, y0, y1):
        _coord(v)
    if x0 == 0 and x1 == 0 and y0 == 0 and y1 == 0:
        return (FQ2([1, 0]), FQ2([1, 0]), FQ2([0, 0]))
    return (FQ2([x0, x1]), FQ2([y0, y1]), FQ2([1, 0]))


# ---------------------------
# Data classes
# ---------------------------


@dataclass(frozen=True)
class VerifyingKey:
    alpha1: G1Point
    beta2: G2Point
    gamma2: G2Point
    delta2: G2Point
    IC: List[G1Point]  # [IC0, IC1, ..., ICn]

    @property
    def n_public(self) -> int:
        return len(self.IC) - 1


@dataclass(frozen=True)
class Proof:
    A: G1Point
    B: G2Point
    C: G1Point


# ---------------------------
# Loaders (snarkjs JSON)
# ---------------------------


def load_vk(vk_json: Mapping[str, Any]) -> VerifyingKey:
    """Parse and validate a snarkjs-style verifying key."""
    vk = normalize_groth16_vk(vk_json)
    alpha1 = _g1(vk["vk_alpha_1"])
    beta2 = _g2(vk["vk_beta_2"])
    gamma2 = _g2(vk["vk_gamma_2"])
    delta2 = _g2(vk["vk_delta_2"])
    ic_pts = [_g1(p) for p in vk["IC"]]

    if not (is_on_curve_g1(alpha1) and is_on_curve_g2(beta2) and is_on_curve_g2(gamma2) and is_on_curve_g2(delta2)):
        raise ValueError("VK points are not on curve")
    for P in ic_pts:
        if not is_on_curve_g1(P):
            raise ValueError("IC point not on G1 curve")

    return VerifyingKey(alpha1=alpha1, beta2=beta2, gamma2=gamma2, delta2=delta2, IC=ic_pts)


def load_proof(proof_json: Mapping[str, Any]) -> Proof:
    """Parse and validate a snarkjs-style proof (flat or ``{proof, publicSignals}`` bundle)."""
    pf, _ = normalize_groth16_proof(proof_json)
    A = _g1(pf["pi_a"])
    B = _g2(pf["pi_b"])
    C = _g1(pf["pi_c"])

    if not (is_on_curve_g1(A) and is_on_curve_g2(B) and is_on_curve_g1(C)):
        raise ValueError("Proof points are not on curve")
    if not in_g2_subgroup(B):
        raise ValueError("Proof point B is not in the G2 subgroup")

    return Proof(A=A, B=B, C=C)


# ---------------------------
# Core verification
# ---------------------------


def _to_scalar(v: Union[int, str]) -> int:
    s = int(v, 0) if isinstance(v, str) else int(v)
    if not 0 <= s < _FR:
        raise ValueError("public signal outside the scalar field")
    return s


def _vk_x(IC: Sequence[G1Point], inputs: Sequence[Union[int, str]]) -> G1Point:
    """Compute VK_x = IC[0] + sum_i inputs[i] * IC[i+1] in G1."""
    if len(IC) != len(inputs) + 1:
        raise ValueError(f"IC length {len(IC)} != 1 + len(inputs) {len(inputs)}")
    acc = IC[0]
    for i, v in enumerate(inputs):
        s = _to_scalar(v)
        if s != 0:
            acc = _add(acc, _mul(IC[i + 1], s))
    return acc


def check(vk: VerifyingKey, pf: Proof, public_inputs: Sequence[Union[int, str]]) -> bool:
    """Evaluate the pairing equation for already-loaded key and proof."""
    vkx = _vk_x(vk.IC, public_inputs)
    pairs = [
        (pf.A, pf.B),
        (_neg(vk.alpha1), vk.beta2),
        (_neg(vkx), vk.gamma2),
        (_neg(pf.C), vk.delta2),
    ]
    return check_pairing_product(pairs, validate=False)


def verify_groth16(
    vk_json: Mapping[str, Any],
    proof_json: Mapping[str, Any],
    public_inputs: Sequence[Union[int, str]],
) -> bool:
    """
    Verify a Groth16 proof given snarkjs-style VK/Proof JSON and public inputs.

    Module-level and picklable so it can run on a process pool.
    """
    return check(load_vk(vk_json), load_proof(proof_json), public_inputs)


__all__ = ["VerifyingKey", "Proof", "load_vk", "load_proof", "check", "verify_groth16"]
