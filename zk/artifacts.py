"""
zk.artifacts
============

ArtifactCache: per-circuit cache of program logic, proving key and
verification key, fetched from blob storage.

Guarantees
----------
- Single flight: concurrent `ensure_loaded(name)` calls share one in-flight
  load, so each artifact is fetched once per load no matter how many callers.
  Waiters are shielded; cancelling one caller does not cancel the shared load.
- Atomic replace: a forced reload swaps the cached bundle only after every
  artifact is fetched, hash-checked and parsed. Readers see the old bundle or
  the new one, never a mix.
- Loads for different circuits never wait on each other.

Error mapping
-------------
- storage failure (missing blob, transport error)      -> ArtifactFetchFailed (transient)
- content hash mismatch, unparsable or inconsistent key -> ArtifactIntegrityFailed
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional, Tuple

from core.blobs import BlobIntegrityError, BlobStore
from core.errors import HauntiError

from .errors import ArtifactFetchFailed, ArtifactIntegrityFailed
from .prover.groth16_bn254 import ProvingKey, load_pk
from .r1cs import Program
from .registry import ArtifactLocation, CircuitConfig, CircuitRegistry
from .verifiers.groth16_bn254 import VerifyingKey, load_vk

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactBundle:
    circuit: str
    verification_key: VerifyingKey
    verification_key_bytes: bytes
    hashes: Dict[str, str]
    program: Optional[Program] = None
    program_bytes: Optional[bytes] = None
    proving_key: Optional[ProvingKey] = None
    proving_key_bytes: Optional[bytes] = None
    generation: int = 0

    @property
    def can_prove(self) -> bool:
        return self.program is not None and self.proving_key is not None

    @property
    def program_sha256(self) -> Optional[str]:
        return self.hashes.get("program")

    @property
    def proving_key_sha256(self) -> Optional[str]:
        return self.hashes.get("proving_key")


class ArtifactCache:
    def __init__(
        self,
        registry: CircuitRegistry,
        store: BlobStore,
        *,
        on_fetch: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._on_fetch = on_fetch
        self._bundles: Dict[str, ArtifactBundle] = {}
        self._inflight: Dict[str, "asyncio.Task[ArtifactBundle]"] = {}
        self._generation = 0
        self.fetches: Dict[str, int] = {}

    @property
    def registry(self) -> CircuitRegistry:
        return self._registry

    def peek(self, name: str) -> Optional[ArtifactBundle]:
        return self._bundles.get(name)

    def loaded(self) -> Tuple[str, ...]:
        return tuple(sorted(self._bundles))

    def evict(self, name: str) -> bool:
        return self._bundles.pop(name, None) is not None

    async def ensure_loaded(self, name: str, *, force_reload: bool = False) -> ArtifactBundle:
        cfg = self._registry.get(name)
        if not force_reload:
            cached = self._bundles.get(name)
            if cached is not None:
                return cached

        task = self._inflight.get(name)
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._load(cfg), name=f"artifacts:{name}")
            self._inflight[name] = task
            task.add_done_callback(lambda t, n=name: self._settle(n, t))
        return await asyncio.shield(task)

    def _settle(self, name: str, task: "asyncio.Task[ArtifactBundle]") -> None:
        if self._inflight.get(name) is task:
            del self._inflight[name]
        if not task.cancelled() and task.exception() is not None:
            log.warning("artifact load failed", extra={"circuit": name, "error": str(task.exception())})

    async def _load(self, cfg: CircuitConfig) -> ArtifactBundle:
        kinds = [k for k, _ in cfg.artifacts.items()]
        locs = [loc for _, loc in cfg.artifacts.items()]
        log.debug("fetching circuit artifacts", extra={"circuit": cfg.name, "artifacts": kinds})
        blobs = await asyncio.gather(*(self._fetch(cfg.name, k, loc) for k, loc in zip(kinds, locs)))
        raw = dict(zip(kinds, blobs))
        hashes = {k: hashlib.sha256(v).hexdigest() for k, v in raw.items()}

        loop = asyncio.get_running_loop()
        bundle = await loop.run_in_executor(None, self._parse, cfg, raw, hashes)

        self._generation += 1
        bundle = replace(bundle, generation=self._generation)
        self._bundles[cfg.name] = bundle
        log.info("circuit artifacts loaded", extra={"circuit": cfg.name, "generation": bundle.generation})
        return bundle

    async def _fetch(self, circuit: str, kind: str, loc: ArtifactLocation) -> bytes:
        self.fetches[circuit] = self.fetches.get(circuit, 0) + 1
        if self._on_fetch is not None:
            self._on_fetch(circuit, kind)
        details = {"circuit": circuit, "artifact": kind, "ref": loc.ref}
        try:
            data = await self._store.fetch(loc.ref)
        except BlobIntegrityError as e:
            raise ArtifactIntegrityFailed("artifact content does not match its reference", details=details, cause=e) from e
        except HauntiError as e:
            raise ArtifactFetchFailed("artifact fetch failed", details=details, cause=e) from e
        except OSError as e:
            raise ArtifactFetchFailed("artifact fetch failed", details=details, cause=e) from e
        if loc.sha256 is not None:
            got = hashlib.sha256(data).hexdigest()
            if got != loc.sha256:
                raise ArtifactIntegrityFailed(
                    "artifact hash mismatch", details={**details, "expected": loc.sha256, "got": got}
                )
        return data

    @staticmethod
    def _parse(cfg: CircuitConfig, raw: Dict[str, bytes], hashes: Dict[str, str]) -> ArtifactBundle:
        def fail(kind: str, e: BaseException) -> ArtifactIntegrityFailed:
            return ArtifactIntegrityFailed(
                f"{kind} artifact is malformed", details={"circuit": cfg.name, "artifact": kind}, cause=e
            )

        try:
            vk = load_vk(json.loads(raw["verification_key"]))
        except (ValueError, KeyError, TypeError, IndexError) as e:
            raise fail("verification_key", e) from e

        program = pk = None
        if "program" in raw:
            try:
                program = Program.from_json(raw["program"])
            except (ValueError, KeyError, TypeError) as e:
                raise fail("program", e) from e
            if program.n_public != vk.n_public:
                raise ArtifactIntegrityFailed(
                    "program and verification key disagree on public signal count",
                    details={"circuit": cfg.name, "program": program.n_public, "vk": vk.n_public},
                )
        if "proving_key" in raw:
            try:
                pk = load_pk(json.loads(raw["proving_key"]))
            except (ValueError, KeyError, TypeError, IndexError) as e:
                raise fail("proving_key", e) from e
            if program is not None:
                if not pk.matches(program):
                    raise ArtifactIntegrityFailed("proving key does not fit the program", details={"circuit": cfg.name})
                canonical = hashlib.sha256(program.to_bytes()).hexdigest()
                if pk.program_sha256 and pk.program_sha256 != canonical:
                    raise ArtifactIntegrityFailed(
                        "proving key was generated for a different program",
                        details={"circuit": cfg.name, "expected": pk.program_sha256, "got": canonical},
                    )

        return ArtifactBundle(
            circuit=cfg.name,
            verification_key=vk,
            verification_key_bytes=raw["verification_key"],
            hashes=hashes,
            program=program,
            program_bytes=raw.get("program"),
            proving_key=pk,
            proving_key_bytes=raw.get("proving_key"),
        )


__all__ = ["ArtifactBundle", "ArtifactCache"]
