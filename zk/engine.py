"""
zk.engine
=========

ProofEngine: generate and verify proofs for registered circuits.

    engine = ProofEngine(registry, ArtifactCache(registry, store))
    art = await engine.prove("inference", {"x0": 3, "x1": 4, "w0": 2, "w1": 5, "bias": 1,
                                           "model_hash": "9f…"}, timeout=30)
    ok = await engine.verify("inference", art.compact(), art.public_signals)

Proving and verifying are CPU bound and run in an executor, so the event loop
keeps serving other tasks. `verify` answers False for any well-formed but
invalid proof and raises VerificationEngineError only when the proof bytes
cannot be decoded at all.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor
from typing import Any, Mapping, Optional, Sequence, Union

from .artifacts import ArtifactBundle, ArtifactCache
from .errors import (InputSchemaViolation, ProofGenerationFailed,
                     ProofTimeout, ProvingKeyMissing, VerificationEngineError,
                     VerificationKeyMissing)
from .proof import (Groth16Proof, ProofArtifact, coerce_proof, decode_signals,
                    proof_id)
from .prover.groth16_bn254 import prove as groth16_prove
from .registry import CircuitConfig, CircuitRegistry
from .verifiers.groth16_bn254 import verify as groth16_verify

log = logging.getLogger(__name__)

_PY_TYPES = {"int": int, "str": str, "bool": bool}


def validate_inputs(cfg: CircuitConfig, inputs: Mapping[str, Any]) -> None:
    """Presence and primitive type of every declared input; unknown keys are rejected."""
    if not isinstance(inputs, Mapping):
        raise InputSchemaViolation("inputs must be a mapping", details={"circuit": cfg.name})
    schema = cfg.input_schema
    missing = sorted(set(schema) - set(inputs))
    unknown = sorted(set(inputs) - set(schema))
    if missing or unknown:
        raise InputSchemaViolation(
            "inputs do not match the circuit schema",
            details={"circuit": cfg.name, "missing": missing, "unknown": unknown},
        )
    for name, kind in schema.items():
        value = inputs[name]
        want = _PY_TYPES[kind]
        # bool is an int subclass; keep the two apart.
        ok = isinstance(value, want) and (kind == "bool" or not isinstance(value, bool))
        if not ok:
            raise InputSchemaViolation(
                "input has the wrong type",
                details={"circuit": cfg.name, "field": name, "expected": kind, "got": type(value).__name__},
            )


class ProofEngine:
    def __init__(
        self,
        registry: CircuitRegistry,
        cache: ArtifactCache,
        *,
        executor: Optional[Executor] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._executor = executor
        self.default_timeout = default_timeout

    @property
    def cache(self) -> ArtifactCache:
        return self._cache

    async def prove(
        self,
        circuit: str,
        inputs: Mapping[str, Any],
        *,
        timeout: Optional[float] = None,
    ) -> ProofArtifact:
        cfg = self._registry.get(circuit)
        validate_inputs(cfg, inputs)
        bundle = await self._cache.ensure_loaded(circuit)
        if not bundle.can_prove:
            raise ProvingKeyMissing("circuit has no program or proving key configured", details={"circuit": circuit})

        budget = timeout if timeout is not None else self.default_timeout
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        fut = loop.run_in_executor(self._executor, _prove_sync, bundle, dict(inputs))
        try:
            artifact = await asyncio.wait_for(fut, budget)
        except asyncio.TimeoutError:
            raise ProofTimeout(
                "proof generation exceeded its time budget", details={"circuit": circuit, "timeout": budget}
            ) from None
        log.info(
            "proof generated",
            extra={"circuit": circuit, "proof_id": artifact.proof_id, "seconds": round(time.perf_counter() - started, 3)},
        )
        return artifact

    async def verify(
        self,
        circuit: str,
        proof: Union[bytes, bytearray, memoryview, Groth16Proof, ProofArtifact],
        public_signals: Union[Sequence[int], bytes],
    ) -> bool:
        self._registry.get(circuit)
        pf = coerce_proof(proof)
        signals = coerce_signals(public_signals)
        bundle = await self._cache.ensure_loaded(circuit)
        if bundle.verification_key is None:
            raise VerificationKeyMissing("circuit has no verification key", details={"circuit": circuit})
        loop = asyncio.get_running_loop()
        ok = await loop.run_in_executor(self._executor, groth16_verify, bundle.verification_key, pf, signals)
        log.info("proof verified", extra={"circuit": circuit, "valid": ok})
        return ok


def coerce_signals(signals: Union[Sequence[Any], bytes]) -> list:
    """Public signals as ints. Accepts ints, decimal or 0x strings, or the u32-count wire form."""
    if isinstance(signals, (bytes, bytearray, memoryview)):
        return decode_signals(signals)
    out = []
    for s in signals:
        if isinstance(s, bool):
            raise VerificationEngineError("public signal must be an integer")
        if isinstance(s, int):
            out.append(s)
        elif isinstance(s, str):
            try:
                out.append(int(s, 0) if s.lower().startswith("0x") else int(s))
            except ValueError as e:
                raise VerificationEngineError("public signal is not an integer", details={"value": s}) from e
        else:
            raise VerificationEngineError("public signal must be an integer", details={"type": type(s).__name__})
    return out


def _prove_sync(bundle: ArtifactBundle, inputs: Mapping[str, Any]) -> ProofArtifact:
    program, pk = bundle.program, bundle.proving_key
    assert program is not None and pk is not None
    try:
        witness = program.compute_witness(inputs)
        proof = groth16_prove(pk, program, witness)
    except (ValueError, KeyError, TypeError, ArithmeticError) as e:
        raise ProofGenerationFailed(
            "proof generation failed", details={"circuit": bundle.circuit, "reason": str(e)}, cause=e
        ) from e
    return ProofArtifact(
        circuit=bundle.circuit,
        proof=proof,
        public_signals=tuple(program.public_signals(witness)),
        proof_id=proof_id(inputs, bundle.program_sha256 or "", bundle.proving_key_sha256 or ""),
        program_sha256=bundle.program_sha256 or "",
        proving_key_sha256=bundle.proving_key_sha256 or "",
    )


__all__ = ["ProofEngine", "validate_inputs", "coerce_signals"]
