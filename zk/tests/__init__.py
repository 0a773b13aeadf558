"""
zk.tests helpers

Shared by zk/* tests.

Exports:
- env_flag(name, default=False) -> bool
- configure_test_logging() -> None
- deploy(results, latency=0.0) -> (CircuitRegistry, MemoryBlobStore)
- SAMPLE_INPUTS: valid inputs per built-in circuit

Environment toggles:
- ZK_TEST_LOG=1   → enable INFO logging for zk.*
"""

from __future__ import annotations

import hashlib
import logging
import os
from typing import Any, Dict, Iterable, Tuple

from core.blobs import MemoryBlobStore
from zk.ceremony import SetupResult
from zk.programs import input_schema
from zk.registry import ArtifactLocation, CircuitArtifacts, CircuitConfig, CircuitRegistry

MODEL_HASH = "5f" * 32

SAMPLE_INPUTS: Dict[str, Dict[str, Any]] = {
    "inference": {"x0": 3, "x1": 4, "model_hash": MODEL_HASH, "w0": 2, "w1": 5, "bias": 7},
    "training": {"x": 6, "label": 20, "model_hash": MODEL_HASH, "w": 3, "b": 1},
}


def env_flag(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on"}


def configure_test_logging(level: int = logging.INFO) -> None:
    if env_flag("ZK_TEST_LOG", False):
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logging.getLogger("zk").setLevel(level)


def deploy(
    results: Iterable[SetupResult],
    *,
    latency: float = 0.0,
    verify_only: Iterable[str] = (),
) -> Tuple[CircuitRegistry, MemoryBlobStore]:
    """Put setup artifacts into a fresh in-memory store and pin them in a registry."""
    store = MemoryBlobStore(latency=latency)
    verify_only = set(verify_only)
    configs = []
    for res in results:
        name = res.program.name
        locs = {}
        for kind, data in (
            ("program", res.program_bytes()),
            ("proving_key", res.proving_key_bytes()),
            ("verification_key", res.verification_key_bytes()),
        ):
            if name in verify_only and kind != "verification_key":
                continue
            locs[kind] = ArtifactLocation(ref=store.put(data), sha256=hashlib.sha256(data).hexdigest())
        configs.append(
            CircuitConfig(name=name, artifacts=CircuitArtifacts(**locs), input_schema=input_schema(res.program))
        )
    return CircuitRegistry(configs), store


configure_test_logging()

__all__ = [
    "MODEL_HASH",
    "SAMPLE_INPUTS",
    "env_flag",
    "configure_test_logging",
    "deploy",
]
