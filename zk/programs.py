"""
zk.programs
===========

Built-in circuit programs for the two task types, and a helper that runs the
dev setup for them and publishes the artifacts to a blob store.

inference   y = w0·x0 + w1·x1 + bias
            public: x0, x1, model_hash   private: w0, w1, bias   output: y

training    pred = w·x + b ; err = pred - label ; loss = err²
            public: x, label, model_hash   private: w, b          outputs: loss, pred

`model_hash` is not used by any gate; its input-consistency row binds the
proof to the model digest all the same.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, Iterable, Optional, Union

from core.blobs import BlobStore

from .ceremony import SetupResult, setup
from .r1cs import Program
from .registry import ArtifactLocation, CircuitArtifacts, CircuitConfig, CircuitRegistry

INFERENCE: Dict[str, Any] = {
    "name": "inference",
    "version": 1,
    "inputs": {"public": ["x0", "x1", "model_hash"], "private": ["w0", "w1", "bias"]},
    "outputs": ["y"],
    "gates": [
        {"out": "t0", "a": {"w0": 1}, "b": {"x0": 1}},
        {"out": "t1", "a": {"w1": 1}, "b": {"x1": 1}},
        {"out": "y", "a": {"t0": 1, "t1": 1, "bias": 1}, "b": {"one": 1}},
    ],
}

TRAINING: Dict[str, Any] = {
    "name": "training",
    "version": 1,
    "inputs": {"public": ["x", "label", "model_hash"], "private": ["w", "b"]},
    "outputs": ["loss", "pred"],
    "gates": [
        {"out": "wx", "a": {"w": 1}, "b": {"x": 1}},
        {"out": "pred", "a": {"wx": 1, "b": 1}, "b": {"one": 1}},
        {"out": "err", "a": {"pred": 1, "label": -1}, "b": {"one": 1}},
        {"out": "loss", "a": {"err": 1}, "b": {"err": 1}},
    ],
}

BUILTIN: Dict[str, Dict[str, Any]] = {"inference": INFERENCE, "training": TRAINING}

_STR_INPUTS = frozenset({"model_hash"})


def builtin_program(name: str) -> Program:
    try:
        return Program.from_json(BUILTIN[name])
    except KeyError:
        raise KeyError(f"no built-in program named {name!r}") from None


def input_schema(program: Program) -> Dict[str, str]:
    return {n: ("str" if n in _STR_INPUTS else "int") for n in program.input_names}


async def publish(
    result: SetupResult,
    store: BlobStore,
    *,
    description: str = "",
    schema: Optional[Dict[str, str]] = None,
) -> CircuitConfig:
    """Store program, proving key and verification key; return a pinned CircuitConfig."""
    locs = {}
    for kind, data in (
        ("program", result.program_bytes()),
        ("proving_key", result.proving_key_bytes()),
        ("verification_key", result.verification_key_bytes()),
    ):
        ref = await store.store(data)
        locs[kind] = ArtifactLocation(ref=ref, sha256=hashlib.sha256(data).hexdigest())
    return CircuitConfig(
        name=result.program.name,
        artifacts=CircuitArtifacts(**locs),
        input_schema=schema if schema is not None else input_schema(result.program),
        description=description,
    ).validate()


async def provision(
    store: BlobStore,
    names: Iterable[str] = ("inference", "training"),
    *,
    seed: Optional[Union[int, str, bytes]] = None,
) -> CircuitRegistry:
    """Dev setup for built-in circuits, published to `store`."""
    configs = []
    for name in names:
        s = None if seed is None else f"{seed}:{name}"
        result = setup(builtin_program(name), seed=s)
        configs.append(await publish(result, store, description=f"built-in {name} circuit"))
    return CircuitRegistry(configs)


__all__ = [
    "INFERENCE",
    "TRAINING",
    "BUILTIN",
    "builtin_program",
    "input_schema",
    "publish",
    "provision",
]
