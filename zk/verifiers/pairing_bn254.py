"""
zk.verifiers.pairing_bn254
==========================

Thin BN254 (altbn128) wrapper over `py_ecc`: curve constants, point
construction from affine integers, validation, and a product-of-pairings check.

Public API
----------
- curve_order(), field_modulus()
- g1_generator(), g2_generator(), g1_zero(), g2_zero()
- g1_from_affine(x, y) / g2_from_affine((x0, x1), (y0, y1))
- normalize_g1(P) / normalize_g2(Q)   (to affine ints, (0, 0) for infinity)
- is_on_curve_g1(P), is_on_curve_g2(Q)
- add, neg, multiply                  (backend point ops)
- check_pairing_product(pairs) -> bool

Notes
-----
- Point ordering follows e(P, Q) with P in G1, Q in G2. The underlying
  `py_ecc` pairing call expects (Q, P); this wrapper handles it.
- The product check multiplies Miller loops and runs a single final
  exponentiation.
- Affine (0, 0) is the point at infinity on the wire.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence, Tuple

from py_ecc.optimized_bn128 import (FQ, FQ2, FQ12, G1, G2, Z1, Z2, add, b, b2,
                                    curve_order as _Q, field_modulus as _P,
                                    final_exponentiate, is_on_curve, multiply,
                                    neg, normalize, pairing)

BACKEND_NAME = "py_ecc.optimized_bn128"

# Backend points are opaque projective tuples (x, y, z).
G1Point = Any
G2Point = Any
AffineG1 = Tuple[int, int]
AffineG2 = Tuple[Tuple[int, int], Tuple[int, int]]


def curve_order() -> int:
    """BN254 subgroup order r (scalar field)."""
    return int(_Q)


def field_modulus() -> int:
    """Base field modulus p."""
    return int(_P)


def g1_generator() -> G1Point:
    return G1


def g2_generator() -> G2Point:
    return G2


def g1_zero() -> G1Point:
    return Z1


def g2_zero() -> G2Point:
    return Z2


def is_inf(P: Any) -> bool:
    """Projective point with z == 0 (FQ or FQ2)."""
    z = P[2]
    return z == z.zero()


def in_base_field(*coords: int) -> bool:
    p = int(_P)
    return all(isinstance(c, int) and 0 <= c < p for c in coords)


def g1_from_affine(x: int, y: int) -> G1Point:
    """
    Build a G1 point. Raises ValueError for coordinates outside [0, p) or a
    point off the curve.
    """
    if not in_base_field(x, y):
        raise ValueError("G1 coordinate out of range")
    if x == 0 and y == 0:
        return Z1
    P = (FQ(x), FQ(y), FQ.one())
    if not is_on_curve(P, b):
        raise ValueError("G1 point is not on curve")
    return P


def g2_from_affine(xx: Sequence[int], yy: Sequence[int]) -> G2Point:
    x0, x1 = xx
    y0, y1 = yy
    if not in_base_field(x0, x1, y0, y1):
        raise ValueError("G2 coordinate out of range")
    if x0 == 0 and x1 == 0 and y0 == 0 and y1 == 0:
        return Z2
    Q = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())
    if not is_on_curve(Q, b2):
        raise ValueError("G2 point is not on curve")
    return Q


def normalize_g1(P: G1Point) -> AffineG1:
    if is_inf(P):
        return (0, 0)
    x, y = normalize(P)
    return int(x.n), int(y.n)


def normalize_g2(Q: G2Point) -> AffineG2:
    if is_inf(Q):
        return ((0, 0), (0, 0))
    x, y = normalize(Q)
    return (_limb(x.coeffs[0]), _limb(x.coeffs[1])), (_limb(y.coeffs[0]), _limb(y.coeffs[1]))


def _limb(c: Any) -> int:
    # FQ2 limbs are plain ints on the optimized backend, FQ on the reference one.
    return c if isinstance(c, int) else int(c.n)


def is_on_curve_g1(P: G1Point) -> bool:
    return is_inf(P) or bool(is_on_curve(P, b))


def is_on_curve_g2(Q: G2Point) -> bool:
    return is_inf(Q) or bool(is_on_curve(Q, b2))


def check_pairing_product(pairs: Iterable[Tuple[G1Point, G2Point]]) -> bool:
    """
    Return True iff ∏ e(P_i, Q_i) == 1 in GT. Pairs touching infinity
    contribute the identity. Points must already be validated.
    """
    acc = FQ12.one()
    for P, Q in pairs:
        if is_inf(P) or is_inf(Q):
            continue
        acc = acc * pairing(Q, P, final_exponentiate=False)
    return final_exponentiate(acc) == FQ12.one()


__all__ = [
    "BACKEND_NAME",
    "curve_order",
    "field_modulus",
    "g1_generator",
    "g2_generator",
    "g1_zero",
    "g2_zero",
    "is_inf",
    "in_base_field",
    "g1_from_affine",
    "g2_from_affine",
    "normalize_g1",
    "normalize_g2",
    "is_on_curve_g1",
    "is_on_curve_g2",
    "check_pairing_product",
    "add",
    "neg",
    "multiply",
]
