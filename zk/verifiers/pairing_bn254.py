"""
Veridity zk.verifiers.pairing_bn254
===================================

Thin BN254 (altbn128) Ate pairing wrapper over `py_ecc.optimized_bn128`.

Public API
----------
- pair(P: G1Point, Q: G2Point) -> GTElement
- product_of_pairings(pairs) -> GTElement
- check_pairing_product(pairs) -> bool
- is_on_curve_g1(P), is_on_curve_g2(Q), in_g2_subgroup(Q), is_inf(P)
- normalize_g1(P) / normalize_g2(Q)  (to affine integers)
- g1_generator(), g2_generator(), curve_order(), field_modulus()

Notes
-----
- Point ordering follows the common convention e(P, Q) with P in G1, Q in G2.
  The underlying `py_ecc` pairing call expects (Q, P); this wrapper handles it.
- Points are py_ecc projective triples (x, y, z); z == 0 is infinity.
- Everything here is deterministic and side-effect free.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Tuple

from py_ecc.optimized_bn128 import (
    FQ12,
    G1 as _G1,
    G2 as _G2,
    b as _B,
    b2 as _B2,
    curve_order as _Q,
    field_modulus as _P,
    is_on_curve as _is_on_curve,
    multiply as _mul,
    normalize as _normalize,
    pairing as _pairing,
)

# Opaque to callers; py_ecc understands them.
G1Point = Any
G2Point = Any
GTElement = FQ12

__all__ = [
    "pair",
    "product_of_pairings",
    "check_pairing_product",
    "is_inf",
    "is_on_curve_g1",
    "is_on_curve_g2",
    "in_g2_subgroup",
    "normalize_g1",
    "normalize_g2",
    "g1_generator",
    "g2_generator",
    "curve_order",
    "field_modulus",
]


def curve_order() -> int:
    """Return the BN254 subgroup order r (the scalar field of the circuits)."""
    return int(_Q)


def field_modulus() -> int:
    """Return the base field modulus p."""
    return int(_P)


def g1_generator() -> G1Point:
    return _G1


def g2_generator() -> G2Point:
    return _G2


def _limb(c: Any) -> int:
    # FQ2 coefficients are plain ints or FQ elements depending on how they were built
    return int(c.n) if hasattr(c, "n") else int(c)


def is_inf(P: Any) -> bool:
    """True for the projective point at infinity (z == 0) of either group."""
    if P is None:
        return True
    z = P[2]
    return z == type(z).zero()


def is_on_curve_g1(P: G1Point) -> bool:
    """Return True if P is on G1 or is the point at infinity."""
    return is_inf(P) or bool(_is_on_curve(P, _B))


def is_on_curve_g2(Q: G2Point) -> bool:
    """Return True if Q is on the twist curve or is the point at infinity."""
    return is_inf(Q) or bool(_is_on_curve(Q, _B2))


def in_g2_subgroup(Q: G2Point) -> bool:
    """
    Return True if Q lies in the order-r subgroup.

    The twist has a large cofactor, so an on-curve point is not necessarily a
    valid G2 element; G1 has cofactor 1 and needs no such check.
    """
    return is_inf(_mul(Q, curve_order()))


def normalize_g1(P: G1Point) -> Optional[Tuple[int, int]]:
    """Affine (x, y) integers, or None for infinity."""
    if is_inf(P):
        return None
    ax, ay = _normalize(P)
    return int(ax.n), int(ay.n)


def normalize_g2(Q: G2Point) -> Optional[Tuple[Tuple[int, int], Tuple[int, int]]]:
    """Affine ((x_c0, x_c1), (y_c0, y_c1)) integers, or None for infinity."""
    if is_inf(Q):
        return None
    ax, ay = _normalize(Q)
    return (_limb(ax.coeffs[0]), _limb(ax.coeffs[1])), (_limb(ay.coeffs[0]), _limb(ay.coeffs[1]))


# -------------------------
# Pairing
# -------------------------

def pair(P: G1Point, Q: G2Point, *, validate: bool = True) -> GTElement:
    """
    Compute the Ate pairing e(P, Q) on BN254.

    Raises
    ------
    ValueError
        If inputs are not on the curve and validate=True.
    """
    if validate:
        if not is_on_curve_g1(P):
            raise ValueError("G1 point is not on curve")
        if not is_on_curve_g2(Q):
            raise ValueError("G2 point is not on curve")

    if is_inf(P) or is_inf(Q):
        return FQ12.one()

    return _pairing(Q, P)


def product_of_pairings(pairs: Iterable[Tuple[G1Point, G2Point]], *, validate: bool = True) -> GTElement:
    """Compute ∏ e(P_i, Q_i)."""
    acc = FQ12.one()
    for P, Q in pairs:
        acc *= pair(P, Q, validate=validate)
    return acc


def check_pairing_product(pairs: Iterable[Tuple[G1Point, G2Point]], *, validate: bool = True) -> bool:
    """Return True iff ∏ e(P_i, Q_i) == 1 in GT."""
    return product_of_pairings(pairs, validate=validate) == FQ12.one()
