"""
zk.tests helpers

Groth16 fixtures without the Node toolchain: `simulate_groth16` picks the
setup trapdoor itself, so it can produce a verification key and a proof that
satisfy the pairing equation for any chosen public inputs.

Exports:
- simulate_groth16(public_inputs, seed=...) -> (vk_json, proof_json)
- g1_json / g2_json: py_ecc points -> snarkjs coordinate lists
"""

from __future__ import annotations

import random
from typing import Any, Dict, Sequence, Tuple

from py_ecc.optimized_bn128 import G1, G2, multiply

from zk.verifiers.pairing_bn254 import curve_order, normalize_g1, normalize_g2

R = curve_order()


def g1_json(k: int) -> list:
    x, y = normalize_g1(multiply(G1, k % R))
    return [str(x), str(y), "1"]


def g2_json(k: int) -> list:
    (x0, x1), (y0, y1) = normalize_g2(multiply(G2, k % R))
    return [[str(x0), str(x1)], [str(y0), str(y1)], ["1", "0"]]


def simulate_groth16(public_inputs: Sequence[int], *, seed: int = 7) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    With alpha, beta, gamma, delta and the IC scalars known, pick a, b and solve
        a*b = alpha*beta + x*gamma + c*delta      (x = IC_0 + sum s_i * IC_i)
    for c. The resulting (A, B, C) verifies against the returned key.
    """
    rnd = random.Random(seed)
    alpha, beta, gamma, delta = (rnd.randrange(1, R) for _ in range(4))
    ic = [rnd.randrange(1, R) for _ in range(len(public_inputs) + 1)]
    a, b = rnd.randrange(1, R), rnd.randrange(1, R)

    x = (ic[0] + sum(int(s) * k for s, k in zip(public_inputs, ic[1:]))) % R
    c = ((a * b - alpha * beta - x * gamma) * pow(delta, -1, R)) % R

    vk = {
        "protocol": "groth16",
        "curve": "bn128",
        "nPublic": len(public_inputs),
        "vk_alpha_1": g1_json(alpha),
        "vk_beta_2": g2_json(beta),
        "vk_gamma_2": g2_json(gamma),
        "vk_delta_2": g2_json(delta),
        "IC": [g1_json(k) for k in ic],
    }
    proof = {
        "pi_a": g1_json(a),
        "pi_b": g2_json(b),
        "pi_c": g1_json(c),
        "protocol": "groth16",
        "curve": "bn128",
    }
    return vk, proof
