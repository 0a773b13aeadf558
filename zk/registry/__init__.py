"""
zk.registry
===========

Circuit name → artifact locations and declared input schema.

    from zk.registry import CircuitRegistry
    reg = CircuitRegistry.from_file("circuits.yaml")
    cfg = reg.get("inference")      # raises CircuitNotConfigured if unknown
"""

from __future__ import annotations

from .circuits import (INPUT_TYPES, SUPPORTED_PROOF_SYSTEMS, ArtifactLocation,
                       CircuitArtifacts, CircuitConfig, CircuitRegistry,
                       parse_circuit)

__all__ = [
    "INPUT_TYPES",
    "SUPPORTED_PROOF_SYSTEMS",
    "ArtifactLocation",
    "CircuitArtifacts",
    "CircuitConfig",
    "CircuitRegistry",
    "parse_circuit",
]
