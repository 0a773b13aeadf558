"""
zk.ceremony
===========

Single-party Groth16 setup for development and test networks.

Samples τ, α, β, γ, δ, evaluates the program's QAP at τ and writes a proving
key (see `zk.prover.groth16_bn254`) plus a snarkjs-layout verification key:

    IC_i = (β·u_i(τ) + α·v_i(τ) + w_i(τ)) / γ · G1     for public wires i = 0..ℓ

The toxic waste lives only in this function's locals. A `seed` makes the
output reproducible, which is handy for fixtures and never acceptable for a
production key.
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .prover.groth16_bn254 import ProvingKey, pk_to_json
from .qap import evaluate, inv, vanishing, wire_polys_at
from .r1cs import R, Program
from .verifiers.groth16_bn254 import VerifyingKey, vk_to_json
from .verifiers.pairing_bn254 import g1_generator, g2_generator, multiply

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupResult:
    program: Program
    proving_key: ProvingKey
    verifying_key: VerifyingKey

    def program_bytes(self) -> bytes:
        return self.program.to_bytes()

    def proving_key_bytes(self) -> bytes:
        return _dump(pk_to_json(self.proving_key))

    def verification_key_bytes(self) -> bytes:
        return _dump(vk_to_json(self.verifying_key))


def _dump(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def setup(program: Program, *, seed: Optional[Union[int, str, bytes]] = None) -> SetupResult:
    rng: Any = random.Random(seed) if seed is not None else secrets.SystemRandom()

    def rand() -> int:
        return rng.randrange(1, R)

    m = program.domain_size
    n = program.n_wires
    l = program.n_public

    tau = rand()
    while 1 <= tau <= m:
        tau = rand()
    alpha, beta, gamma, delta = rand(), rand(), rand(), rand()

    u, v, w = wire_polys_at(program.rows, n, tau)
    z_tau = evaluate(vanishing(m), tau)
    gamma_inv, delta_inv = inv(gamma), inv(delta)

    G1, G2 = g1_generator(), g2_generator()

    def g1(s: int) -> Any:
        return multiply(G1, s % R)

    def g2(s: int) -> Any:
        return multiply(G2, s % R)

    def lc(i: int) -> int:
        return (beta * u[i] + alpha * v[i] + w[i]) % R

    program_sha = hashlib.sha256(program.to_bytes()).hexdigest()
    pk = ProvingKey(
        n_public=l,
        n_wires=n,
        domain_size=m,
        alpha1=g1(alpha),
        beta1=g1(beta),
        beta2=g2(beta),
        delta1=g1(delta),
        delta2=g2(delta),
        A=tuple(g1(x) for x in u),
        B1=tuple(g1(x) for x in v),
        B2=tuple(g2(x) for x in v),
        C=tuple(g1(lc(i) * delta_inv) for i in range(l + 1, n)),
        H=tuple(g1(pow(tau, j, R) * z_tau * delta_inv) for j in range(m - 1)),
        program_sha256=program_sha,
    )
    vk = VerifyingKey(
        alpha1=pk.alpha1,
        beta2=pk.beta2,
        gamma2=g2(gamma),
        delta2=pk.delta2,
        IC=tuple(g1(lc(i) * gamma_inv) for i in range(l + 1)),
    )
    log.info(
        "groth16 setup complete",
        extra={"circuit": program.name, "wires": n, "constraints": m, "public": l, "seeded": seed is not None},
    )
    return SetupResult(program=program, proving_key=pk, verifying_key=vk)


__all__ = ["SetupResult", "setup"]
