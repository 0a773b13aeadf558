"""
zk.registry.circuits
====================

Circuit configuration records and the process-wide registry that maps a circuit
name to where its artifacts live and what inputs it accepts.

File format (YAML or JSON)
--------------------------
    circuits:
      inference:
        proof_system: groth16_bn254
        description: linear model inference
        input_schema:
          model_hash: str
          x0: int
          x1: int
          w0: int
          w1: int
          bias: int
        artifacts:
          program:          {ref: "sha256:…"}
          proving_key:      {ref: "keys/inference.pk.json", sha256: "…"}
          verification_key: "sha256:…"          # shorthand for {ref: …}

`program` and `proving_key` may be omitted on verification-only deployments.
Records are msgspec Structs: immutable, cheap to copy, strict on decode.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, Iterator, Literal, Mapping, Optional, Tuple, Union

import msgspec
import yaml

from ..errors import CircuitNotConfigured, MalformedCircuitConfig

log = logging.getLogger(__name__)

SUPPORTED_PROOF_SYSTEMS: Tuple[str, ...] = ("groth16_bn254",)
INPUT_TYPES: Tuple[str, ...] = ("int", "str", "bool")

_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_NAME = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")

InputType = Literal["int", "str", "bool"]


class ArtifactLocation(msgspec.Struct, frozen=True, omit_defaults=True):
    """Blob reference plus an optional expected sha256 (lower-case hex)."""

    ref: str
    sha256: Optional[str] = None


class CircuitArtifacts(msgspec.Struct, frozen=True, omit_defaults=True):
    verification_key: ArtifactLocation
    program: Optional[ArtifactLocation] = None
    proving_key: Optional[ArtifactLocation] = None

    def items(self) -> Iterator[Tuple[str, ArtifactLocation]]:
        for kind in ("program", "proving_key", "verification_key"):
            loc = getattr(self, kind)
            if loc is not None:
                yield kind, loc


class CircuitConfig(msgspec.Struct, frozen=True, omit_defaults=True):
    name: str
    artifacts: CircuitArtifacts
    input_schema: Dict[str, InputType] = msgspec.field(default_factory=dict)
    proof_system: str = "groth16_bn254"
    description: str = ""

    @property
    def can_prove(self) -> bool:
        return self.artifacts.program is not None and self.artifacts.proving_key is not None

    def validate(self) -> "CircuitConfig":
        if not _NAME.match(self.name):
            raise MalformedCircuitConfig("invalid circuit name", details={"circuit": self.name})
        if self.proof_system not in SUPPORTED_PROOF_SYSTEMS:
            raise MalformedCircuitConfig(
                "unsupported proof system",
                details={"circuit": self.name, "proof_system": self.proof_system},
            )
        for kind, loc in self.artifacts.items():
            if not loc.ref:
                raise MalformedCircuitConfig("empty artifact ref", details={"circuit": self.name, "artifact": kind})
            if loc.sha256 is not None and not _HEX64.match(loc.sha256):
                raise MalformedCircuitConfig(
                    "expected sha256 must be 64 lower-case hex chars",
                    details={"circuit": self.name, "artifact": kind},
                )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return msgspec.to_builtins(self)


def _normalize_artifacts(raw: Any) -> Any:
    if not isinstance(raw, Mapping):
        return raw
    out: Dict[str, Any] = {}
    for k, v in raw.items():
        out[k] = {"ref": v} if isinstance(v, str) else v
    return out


def parse_circuit(name: str, raw: Mapping[str, Any]) -> CircuitConfig:
    """Decode one circuit entry. Raises MalformedCircuitConfig on any shape problem."""
    if not isinstance(raw, Mapping):
        raise MalformedCircuitConfig("circuit entry must be a mapping", details={"circuit": name})
    body = dict(raw)
    body["name"] = name
    body["artifacts"] = _normalize_artifacts(body.get("artifacts"))
    try:
        cfg = msgspec.convert(body, type=CircuitConfig)
    except msgspec.ValidationError as e:
        raise MalformedCircuitConfig(str(e), details={"circuit": name}, cause=e) from e
    return cfg.validate()


class CircuitRegistry:
    """
    Name → CircuitConfig. Built once at process start; `register` exists for
    tooling and tests.
    """

    def __init__(self, configs: Iterable[CircuitConfig] = ()) -> None:
        self._lock = RLock()
        self._configs: Dict[str, CircuitConfig] = {}
        for cfg in configs:
            self.register(cfg)

    # -- construction ------------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CircuitRegistry":
        circuits = data.get("circuits", data) if isinstance(data, Mapping) else None
        if not isinstance(circuits, Mapping):
            raise MalformedCircuitConfig("expected a mapping of circuits")
        return cls(parse_circuit(str(name), body) for name, body in circuits.items())

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CircuitRegistry":
        p = Path(path).expanduser()
        try:
            text = p.read_text(encoding="utf-8")
        except OSError as e:
            raise MalformedCircuitConfig("cannot read circuit config", details={"path": str(p)}, cause=e) from e
        try:
            if p.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(text) or {}
            else:
                data = json.loads(text)
        except (yaml.YAMLError, ValueError) as e:
            raise MalformedCircuitConfig("circuit config is not valid YAML/JSON", details={"path": str(p)}, cause=e) from e
        reg = cls.from_mapping(data)
        log.info("loaded circuit registry", extra={"path": str(p), "circuits": list(reg.names())})
        return reg

    # -- API ---------------------------------------------------------------

    def register(self, cfg: CircuitConfig, *, overwrite: bool = False) -> CircuitConfig:
        cfg.validate()
        with self._lock:
            if cfg.name in self._configs and not overwrite:
                raise MalformedCircuitConfig("circuit already registered", details={"circuit": cfg.name})
            self._configs[cfg.name] = cfg
        return cfg

    def get(self, name: str) -> CircuitConfig:
        with self._lock:
            try:
                return self._configs[name]
            except KeyError:
                raise CircuitNotConfigured(name, known=tuple(sorted(self._configs))) from None

    def names(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._configs))

    def __contains__(self, name: object) -> bool:
        return name in self._configs

    def __len__(self) -> int:
        return len(self._configs)

    def __iter__(self) -> Iterator[CircuitConfig]:
        return iter([self._configs[n] for n in self.names()])

    def to_dict(self) -> Dict[str, Any]:
        return {"circuits": {c.name: {k: v for k, v in c.to_dict().items() if k != "name"} for c in self}}


__all__ = [
    "SUPPORTED_PROOF_SYSTEMS",
    "INPUT_TYPES",
    "ArtifactLocation",
    "CircuitArtifacts",
    "CircuitConfig",
    "CircuitRegistry",
    "parse_circuit",
]
