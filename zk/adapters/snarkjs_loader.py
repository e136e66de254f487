"""
Veridity zk.adapters.snarkjs_loader
===================================

Helpers to **normalize** snarkjs Groth16 JSON artifacts (BN254,
"bn128" in snarkjs terms) before they reach the verifier.

This module does **not** verify proofs; it only takes parsed JSON, coerces
bigint-like strings into Python `int`s and normalizes the point shapes.

Typical snarkjs shapes
----------------------
Verifying key (<circuit>_vkey.json):
{
  "protocol": "groth16",
  "curve": "bn128",
  "nPublic": 5,
  "vk_alpha_1": [ "..", "..", "1" ],
  "vk_beta_2":  [[ "..",".." ], [ "..",".." ], [ "1","0" ]],
  "vk_gamma_2": ..., "vk_delta_2": ...,
  "IC": [ [ "..", "..", "1" ], ... ]
}

Proof (proof.json from `groth16 fullprove`):
{
  "pi_a": [ "..", "..", "1" ],
  "pi_b": [[ "..",".." ], [ "..",".." ], [ "1","0" ]],
  "pi_c": [ "..", "..", "1" ],
  "protocol": "groth16",
  "curve": "bn128"
}

The trailing projective coordinate is accepted only when it is the affine
marker (``1`` for G1, ``[1, 0]`` for G2) and is dropped. Some tools wrap as
``{ "proof": {...}, "publicSignals": [...] }``; both forms are handled.

Exports
-------
- is_groth16_vk(obj)
- normalize_groth16_vk(vk) -> dict (same keys, ints, affine points)
- normalize_groth16_proof(proof_or_bundle) -> (proof_dict, public_inputs_list)
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple


# -----------------------------------------------------------------------------
# Number coercion (dec/hex/JS BigInt strings → Python int)
# -----------------------------------------------------------------------------

_INT_RE = re.compile(r"^\s*(0x[0-9a-fA-F]+|\d+)n?\s*$")


def _maybe_to_int(x: Any) -> Any:
    if isinstance(x, bool):  # bool is an int subclass; keep booleans as-is
        return x
    if isinstance(x, int):
        return x
    if isinstance(x, str):
        m = _INT_RE.match(x)
        if m:
            val = m.group(1)
            return int(val, 16) if val.lower().startswith("0x") else int(val, 10)
    return x


def _as_int(x: Any) -> int:
    v = _maybe_to_int(x)
    if isinstance(v, bool) or not isinstance(v, int):
        raise ValueError(f"expected a non-negative integer, got {x!r}")
    return v


# -----------------------------------------------------------------------------
# Shape detection
# -----------------------------------------------------------------------------

def is_groth16_vk(obj: Mapping[str, Any]) -> bool:
    return isinstance(obj, Mapping) and all(
        k in obj for k in ("vk_alpha_1", "vk_beta_2", "vk_gamma_2", "vk_delta_2", "IC")
    )


# -----------------------------------------------------------------------------
# Groth16 normalization
# -----------------------------------------------------------------------------

def _norm_g1(pt: Iterable[Any]) -> List[int]:
    if isinstance(pt, (str, bytes, Mapping)):
        raise ValueError("G1 point must be a list of coordinates")
    arr = list(pt)
    if len(arr) == 3:
        if _as_int(arr[2]) != 1:
            raise ValueError("G1 point must be affine (z == 1)")
        arr = arr[:2]
    if len(arr) != 2:
        raise ValueError("G1 point must have 2 coordinates")
    return [_as_int(arr[0]), _as_int(arr[1])]


def _norm_g2(pt: Iterable[Iterable[Any]]) -> List[List[int]]:
    if isinstance(pt, (str, bytes, Mapping)):
        raise ValueError("G2 point must be a list of coordinates")
    arr = [list(a) for a in pt]
    if len(arr) == 3:
        if len(arr[2]) != 2 or _as_int(arr[2][0]) != 1 or _as_int(arr[2][1]) != 0:
            raise ValueError("G2 point must be affine (z == [1, 0])")
        arr = arr[:2]
    if len(arr) != 2 or len(arr[0]) != 2 or len(arr[1]) != 2:
        raise ValueError("G2 point must be [[x0,x1],[y0,y1]]")
    return [
        [_as_int(arr[0][0]), _as_int(arr[0][1])],
        [_as_int(arr[1][0]), _as_int(arr[1][1])],
    ]


def normalize_groth16_vk(vk: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Normalize a snarkjs Groth16 verifying key into a dict with the same key
    names, Python ints everywhere and affine points.
    """
    if not is_groth16_vk(vk):
        raise ValueError("Provided object does not look like a Groth16 verifying key")
    out: Dict[str, Any] = {}

    for meta_key in ("protocol", "curve"):
        if meta_key in vk:
            out[meta_key] = str(vk[meta_key])

    out["vk_alpha_1"] = _norm_g1(vk["vk_alpha_1"])
    out["vk_beta_2"] = _norm_g2(vk["vk_beta_2"])
    out["vk_gamma_2"] = _norm_g2(vk["vk_gamma_2"])
    out["vk_delta_2"] = _norm_g2(vk["vk_delta_2"])

    IC = vk.get("IC")
    if not isinstance(IC, list) or len(IC) == 0:
        raise ValueError("vk.IC must be a non-empty list of G1 points")
    out["IC"] = [_norm_g1(pt) for pt in IC]

    if "nPublic" in vk and _as_int(vk["nPublic"]) != len(IC) - 1:
        raise ValueError("vk.nPublic disagrees with the IC length")
    out["nPublic"] = len(IC) - 1
    return out


def normalize_groth16_proof(bundle_or_proof: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[int]]:
    """
    Accept either:
      - flat proof dict {pi_a, pi_b, pi_c, protocol?, curve?, publicSignals?}
      - bundle {proof: {...}, publicSignals: [...]}

    Returns: (proof_dict, public_inputs_list_of_ints)
    """
    if not isinstance(bundle_or_proof, Mapping):
        raise ValueError("Groth16 proof must be a JSON object")
    if isinstance(bundle_or_proof.get("proof"), Mapping):
        proof = bundle_or_proof["proof"]
    else:
        proof = bundle_or_proof
    publics = bundle_or_proof.get("publicSignals", [])

    for k in ("pi_a", "pi_b", "pi_c"):
        if k not in proof:
            raise ValueError(f"Groth16 proof missing '{k}'")
    if str(proof.get("protocol", "groth16")).lower() != "groth16":
        raise ValueError("only groth16 proofs are supported")
    if str(proof.get("curve", "bn128")).lower() not in ("bn128", "bn254", "altbn128"):
        raise ValueError("only BN254 proofs are supported")

    out: Dict[str, Any] = {}
    for meta_key in ("protocol", "curve"):
        if meta_key in proof:
            out[meta_key] = str(proof[meta_key])

    out["pi_a"] = _norm_g1(proof["pi_a"])
    out["pi_b"] = _norm_g2(proof["pi_b"])
    out["pi_c"] = _norm_g1(proof["pi_c"])

    if publics is None:
        public_signals: List[int] = []
    elif isinstance(publics, list):
        public_signals = [_as_int(v) for v in publics]
    else:
        raise ValueError("publicSignals must be a list when present")

    return out, public_signals


__all__ = [
    "is_groth16_vk",
    "normalize_groth16_vk",
    "normalize_groth16_proof",
]
