"""
zk.prover.groth16_bn254
=======================

Groth16 prover over BN254 for programs described by `zk.r1cs.Program`.

Proving key JSON
----------------
    {
      "protocol": "groth16", "curve": "bn128",
      "nPublic": ℓ, "nWires": n, "domainSize": m,
      "program_sha256": "<hex>",                  # optional binding to the program artifact
      "alpha_1": g1, "beta_1": g1, "beta_2": g2, "delta_1": g1, "delta_2": g2,
      "A":  [g1 × n]      u_i(τ)·G1
      "B1": [g1 × n]      v_i(τ)·G1
      "B2": [g2 × n]      v_i(τ)·G2
      "C":  [g1 × (n-ℓ-1)] (β·u_i + α·v_i + w_i)(τ)/δ · G1   for private wires i > ℓ
      "H":  [g1 × (m-1)]  τ^j·Z(τ)/δ · G1
    }

Proof (r, s fresh random scalars):
    A = α + Σ w_i·A_i + r·δ                      (G1)
    B = β + Σ w_i·B_i + s·δ                      (G2, and mirrored in G1 as B1)
    C = Σ_{i>ℓ} w_i·C_i + Σ h_j·H_j + s·A + r·B1 - r·s·δ
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from ..proof import Groth16Proof
from ..qap import h_coefficients
from ..r1cs import R, Program, first_unsatisfied
from ..verifiers.groth16_bn254 import _g1, _g2, g1_json, g2_json
from ..verifiers.pairing_bn254 import (G1Point, G2Point, add, g1_zero,
                                       g2_zero, multiply, neg, normalize_g1,
                                       normalize_g2)


@dataclass(frozen=True)
class ProvingKey:
    n_public: int
    n_wires: int
    domain_size: int
    alpha1: G1Point
    beta1: G1Point
    beta2: G2Point
    delta1: G1Point
    delta2: G2Point
    A: Tuple[G1Point, ...]
    B1: Tuple[G1Point, ...]
    B2: Tuple[G2Point, ...]
    C: Tuple[G1Point, ...]
    H: Tuple[G1Point, ...]
    program_sha256: Optional[str] = None

    def check_shape(self) -> None:
        n, l, m = self.n_wires, self.n_public, self.domain_size
        if not (len(self.A) == len(self.B1) == len(self.B2) == n):
            raise ValueError("A/B query length does not match nWires")
        if len(self.C) != n - l - 1:
            raise ValueError("C query length does not match private wire count")
        if len(self.H) != max(m - 1, 0):
            raise ValueError("H query length does not match domain size")

    def matches(self, program: Program) -> bool:
        return (
            program.n_wires == self.n_wires
            and program.n_public == self.n_public
            and program.domain_size == self.domain_size
        )


def load_pk(obj: Mapping[str, Any]) -> ProvingKey:
    """Parse a proving key JSON object. Raises ValueError/KeyError on malformed input."""
    pk = ProvingKey(
        n_public=int(obj["nPublic"]),
        n_wires=int(obj["nWires"]),
        domain_size=int(obj["domainSize"]),
        alpha1=_g1(obj["alpha_1"]),
        beta1=_g1(obj["beta_1"]),
        beta2=_g2(obj["beta_2"]),
        delta1=_g1(obj["delta_1"]),
        delta2=_g2(obj["delta_2"]),
        A=tuple(_g1(p) for p in obj["A"]),
        B1=tuple(_g1(p) for p in obj["B1"]),
        B2=tuple(_g2(p) for p in obj["B2"]),
        C=tuple(_g1(p) for p in obj["C"]),
        H=tuple(_g1(p) for p in obj["H"]),
        program_sha256=obj.get("program_sha256"),
    )
    pk.check_shape()
    return pk


def pk_to_json(pk: ProvingKey) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "protocol": "groth16",
        "curve": "bn128",
        "nPublic": pk.n_public,
        "nWires": pk.n_wires,
        "domainSize": pk.domain_size,
        "alpha_1": g1_json(pk.alpha1),
        "beta_1": g1_json(pk.beta1),
        "beta_2": g2_json(pk.beta2),
        "delta_1": g1_json(pk.delta1),
        "delta_2": g2_json(pk.delta2),
        "A": [g1_json(p) for p in pk.A],
        "B1": [g1_json(p) for p in pk.B1],
        "B2": [g2_json(p) for p in pk.B2],
        "C": [g1_json(p) for p in pk.C],
        "H": [g1_json(p) for p in pk.H],
    }
    if pk.program_sha256:
        out["program_sha256"] = pk.program_sha256
    return out


def msm(points: Sequence[Any], scalars: Sequence[int], zero: Any) -> Any:
    """Σ scalars[i]·points[i], skipping zero scalars."""
    acc = zero
    for P, s in zip(points, scalars):
        s %= R
        if s:
            acc = add(acc, multiply(P, s))
    return acc


def _random_scalar() -> int:
    return secrets.randbelow(R - 1) + 1


def prove(
    pk: ProvingKey,
    program: Program,
    witness: Sequence[int],
    *,
    rand: Callable[[], int] = _random_scalar,
) -> Groth16Proof:
    """
    Produce a Groth16 proof. Raises ValueError when the key does not fit the
    program or the witness does not satisfy the constraint system.
    """
    if not pk.matches(program):
        raise ValueError("proving key does not match program shape")
    if len(witness) != pk.n_wires:
        raise ValueError("witness length does not match nWires")
    bad = first_unsatisfied(program.rows, witness)
    if bad is not None:
        raise ValueError(f"constraint {bad} is not satisfied")
    h = h_coefficients(program.rows, witness)

    r, s = rand() % R, rand() % R
    l = pk.n_public

    A = add(add(pk.alpha1, msm(pk.A, witness, g1_zero())), multiply(pk.delta1, r))
    B2 = add(add(pk.beta2, msm(pk.B2, witness, g2_zero())), multiply(pk.delta2, s))
    B1 = add(add(pk.beta1, msm(pk.B1, witness, g1_zero())), multiply(pk.delta1, s))

    C = msm(pk.C, witness[l + 1 :], g1_zero())
    C = add(C, msm(pk.H, h, g1_zero()))
    C = add(C, multiply(A, s))
    C = add(C, multiply(B1, r))
    C = add(C, neg(multiply(pk.delta1, r * s % R)))

    return Groth16Proof(a=normalize_g1(A), b=normalize_g2(B2), c=normalize_g1(C))


__all__ = ["ProvingKey", "load_pk", "pk_to_json", "prove", "msm"]
