"""zk.prover — proof generation backends, keyed by proof system."""

from __future__ import annotations

from .groth16_bn254 import ProvingKey, load_pk, pk_to_json
from .groth16_bn254 import prove as prove_groth16

__all__ = ["ProvingKey", "load_pk", "pk_to_json", "prove_groth16"]
