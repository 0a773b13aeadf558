"""
zk.errors
=========

Errors raised by the circuit registry, the artifact cache and the proof engine.
Each one slots into the shared taxonomy from `core.errors`, so callers can
decide on retries by category alone.
"""

from __future__ import annotations

from core.errors import ConfigurationError, IntegrityError, HauntiError, TransientInfraError


class CircuitNotConfigured(ConfigurationError):
    code = "ZK/CIRCUIT_NOT_CONFIGURED"
    http_status = 404

    def __init__(self, circuit: str, *, known: tuple = ()) -> None:
        super().__init__("circuit is not configured", details={"circuit": circuit, "known": list(known)})
        self.circuit = circuit


class MalformedCircuitConfig(ConfigurationError):
    code = "ZK/MALFORMED_CIRCUIT_CONFIG"


class InputSchemaViolation(ConfigurationError):
    code = "ZK/INPUT_SCHEMA_VIOLATION"


class ProvingKeyMissing(ConfigurationError):
    code = "ZK/PROVING_KEY_MISSING"


class VerificationKeyMissing(ConfigurationError):
    code = "ZK/VERIFICATION_KEY_MISSING"


class ArtifactFetchFailed(TransientInfraError):
    code = "ZK/ARTIFACT_FETCH_FAILED"


class ArtifactIntegrityFailed(IntegrityError):
    code = "ZK/ARTIFACT_INTEGRITY_FAILED"


class VerificationEngineError(IntegrityError):
    """The proof value could not be decoded at all (wrong length or type)."""

    code = "ZK/VERIFICATION_ENGINE_ERROR"


class ProofGenerationFailed(HauntiError):
    code = "ZK/PROOF_GENERATION_FAILED"
    category = "proving"


class ProofTimeout(TransientInfraError):
    code = "ZK/PROOF_TIMEOUT"
    http_status = 504


__all__ = [
    "CircuitNotConfigured",
    "MalformedCircuitConfig",
    "InputSchemaViolation",
    "ProvingKeyMissing",
    "VerificationKeyMissing",
    "ArtifactFetchFailed",
    "ArtifactIntegrityFailed",
    "VerificationEngineError",
    "ProofGenerationFailed",
    "ProofTimeout",
]
