# zk/verifiers/__init__.py
"""
zk verifiers: BN254 pairing helpers and the Groth16 verifier.

    from zk.verifiers import load_vk, verify_groth16
    ok = verify_groth16(load_vk(vk_json), proof, public_signals)
"""

from __future__ import annotations

from .groth16_bn254 import VerifyingKey, load_vk, vk_to_json
from .groth16_bn254 import verify as verify_groth16

__all__ = ["VerifyingKey", "load_vk", "vk_to_json", "verify_groth16"]
