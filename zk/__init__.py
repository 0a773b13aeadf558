"""
zk — circuit registry, artifact cache and Groth16 (BN254) proof engine.

    from zk import ArtifactCache, CircuitRegistry, ProofEngine
"""

from __future__ import annotations

from .artifacts import ArtifactBundle, ArtifactCache
from .engine import ProofEngine
from .proof import Groth16Proof, ProofArtifact, compact, expand
from .registry import CircuitConfig, CircuitRegistry

__all__ = [
    "ArtifactBundle",
    "ArtifactCache",
    "CircuitConfig",
    "CircuitRegistry",
    "Groth16Proof",
    "ProofArtifact",
    "ProofEngine",
    "compact",
    "expand",
]
