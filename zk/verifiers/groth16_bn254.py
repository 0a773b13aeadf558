"""
zk.verifiers.groth16_bn254
==========================

Groth16 verifier for BN254 (altbn128), reading verification keys in the
common `snarkjs` JSON layout.

Verification equation
---------------------
    e(A, B) == e(alpha1, beta2) * e(VK_x, gamma2) * e(C, delta2)
    VK_x     = IC[0] + Σ x_i · IC[i+1]

implemented as one product check in GT:
    e(A, B) * e(-alpha1, beta2) * e(-VK_x, gamma2) * e(-C, delta2) == 1

Verifying key JSON (snarkjs)
----------------------------
    {
      "protocol": "groth16", "curve": "bn128", "nPublic": n,
      "vk_alpha_1": [ax, ay],
      "vk_beta_2":  [[bx0, bx1], [by0, by1]],
      "vk_gamma_2": [[gx0, gx1], [gy0, gy1]],
      "vk_delta_2": [[dx0, dx1], [dy0, dy1]],
      "IC": [[ic0x, ic0y], ...]            # 1 + nPublic entries
    }

Coordinates are decimal strings (or ints / 0x-hex). A trailing projective "1"
(as snarkjs writes it) is accepted and ignored. [0, 0] is infinity.

`verify` never raises for a well-formed but wrong proof: coordinates outside
the base field, points off the curve, signals outside the scalar field or a
signal-count mismatch all return False.

G2 points are checked to be on the twist curve only; no explicit subgroup
check is performed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from .pairing_bn254 import (G1Point, G2Point, add, check_pairing_product,
                            curve_order, g1_from_affine, g2_from_affine,
                            multiply, neg, normalize_g1, normalize_g2)

log = logging.getLogger(__name__)

_FR = curve_order()


def _to_int(z: Union[int, str]) -> int:
    if isinstance(z, bool):
        raise ValueError("boolean is not a coordinate")
    if isinstance(z, int):
        return z
    s = str(z).strip().lower()
    if s.startswith("0x"):
        return int(s, 16)
    return int(s)


def _g1(obj: Sequence[Any]) -> G1Point:
    return g1_from_affine(_to_int(obj[0]), _to_int(obj[1]))


def _g2(obj: Sequence[Any]) -> G2Point:
    xx, yy = obj[0], obj[1]
    return g2_from_affine((_to_int(xx[0]), _to_int(xx[1])), (_to_int(yy[0]), _to_int(yy[1])))


@dataclass(frozen=True)
class VerifyingKey:
    alpha1: G1Point
    beta2: G2Point
    gamma2: G2Point
    delta2: G2Point
    IC: Tuple[G1Point, ...]

    @property
    def n_public(self) -> int:
        return len(self.IC) - 1


def load_vk(vk_json: Mapping[str, Any]) -> VerifyingKey:
    """
    Parse a snarkjs-style verifying key. Raises ValueError (or KeyError for a
    missing field) when the key is malformed or a point is off-curve.
    """
    a1 = vk_json.get("vk_alpha_1") or vk_json["alpha_1"]
    b2 = vk_json.get("vk_beta_2") or vk_json["beta_2"]
    g2 = vk_json.get("vk_gamma_2") or vk_json["gamma_2"]
    d2 = vk_json.get("vk_delta_2") or vk_json["delta_2"]
    ic = vk_json.get("IC") or vk_json["ic"]
    if not isinstance(ic, list) or not ic:
        raise ValueError("IC must be a non-empty list")
    vk = VerifyingKey(
        alpha1=_g1(a1),
        beta2=_g2(b2),
        gamma2=_g2(g2),
        delta2=_g2(d2),
        IC=tuple(_g1(p) for p in ic),
    )
    declared = vk_json.get("nPublic")
    if declared is not None and int(declared) != vk.n_public:
        raise ValueError(f"nPublic={declared} but IC has {len(ic)} entries")
    return vk


def g1_json(P: G1Point) -> List[str]:
    x, y = normalize_g1(P)
    return [str(x), str(y)]


def g2_json(Q: G2Point) -> List[List[str]]:
    (x0, x1), (y0, y1) = normalize_g2(Q)
    return [[str(x0), str(x1)], [str(y0), str(y1)]]


def vk_to_json(vk: VerifyingKey) -> Dict[str, Any]:
    return {
        "protocol": "groth16",
        "curve": "bn128",
        "nPublic": vk.n_public,
        "vk_alpha_1": g1_json(vk.alpha1),
        "vk_beta_2": g2_json(vk.beta2),
        "vk_gamma_2": g2_json(vk.gamma2),
        "vk_delta_2": g2_json(vk.delta2),
        "IC": [g1_json(p) for p in vk.IC],
    }


def _vk_x(IC: Sequence[G1Point], inputs: Sequence[int]) -> G1Point:
    """VK_x = IC[0] + Σ inputs[i] · IC[i+1] in G1."""
    acc = IC[0]
    for i, s in enumerate(inputs):
        if s != 0:
            acc = add(acc, multiply(IC[i + 1], s))
    return acc


def verify(vk: VerifyingKey, proof: Any, public_signals: Sequence[int]) -> bool:
    """
    Check a Groth16 proof given as affine integers (`proof.a`, `proof.b`,
    `proof.c`, as on `zk.proof.Groth16Proof`).
    """
    if len(public_signals) != vk.n_public:
        log.debug("public signal count mismatch", extra={"got": len(public_signals), "want": vk.n_public})
        return False
    if any((not isinstance(s, int)) or s < 0 or s >= _FR for s in public_signals):
        return False
    try:
        A = g1_from_affine(*proof.a)
        B = g2_from_affine(*proof.b)
        C = g1_from_affine(*proof.c)
    except ValueError as e:
        log.debug("proof points rejected", extra={"reason": str(e)})
        return False

    vkx = _vk_x(vk.IC, public_signals)
    pairs = [
        (A, B),
        (neg(vk.alpha1), vk.beta2),
        (neg(vkx), vk.gamma2),
        (neg(C), vk.delta2),
    ]
    return check_pairing_product(pairs)


__all__ = ["VerifyingKey", "load_vk", "vk_to_json", "verify", "g1_json", "g2_json"]
