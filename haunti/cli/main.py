from __future__ import annotations

"""
haunti.cli.main
---------------

Operator tooling for circuits and proofs.

Examples
--------
# Dev setup for the built-in circuits; artifacts go to a file store and the
# registry file pins their refs and hashes
haunti circuits setup inference training --store ./blobs --out circuits.yaml --seed devnet

# What is configured
haunti circuits list --circuits circuits.yaml

# Pin an externally produced artifact
haunti circuits hash keys/inference.vk.json

# Prove and verify
haunti prove inference --circuits circuits.yaml --store ./blobs --inputs @inputs.json --out proof.json
haunti verify inference proof.json --circuits circuits.yaml --store ./blobs

# Effective configuration, and the RPC server
haunti config
haunti serve --port 8080 --dev-seed devnet

Exit codes: 0 ok, 1 proof invalid, 2 usage or domain error.
"""

import asyncio
import hashlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from core import logging as hlog
from core.blobs import content_ref, open_blob_store
from core.errors import HauntiError
from haunti import config as hconfig
from zk.artifacts import ArtifactCache
from zk.engine import ProofEngine
from zk.programs import BUILTIN, builtin_program, input_schema, provision
from zk.proof import ProofArtifact
from zk.registry import CircuitRegistry

log = logging.getLogger(__name__)

app = typer.Typer(
    name="haunti",
    add_completion=False,
    no_args_is_help=True,
    help="Haunti compute settlement: circuits, proofs and the RPC server.",
)
circuits_app = typer.Typer(no_args_is_help=True, help="Circuit registry and dev setup.")
app.add_typer(circuits_app, name="circuits")

DEFAULT_STORE = "./haunti-blobs"


# -------------------- utils --------------------

def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2, sort_keys=True))


def _fail(e: HauntiError) -> "typer.Exit":
    typer.echo(json.dumps({"error": e.to_dict()}, sort_keys=True), err=True)
    return typer.Exit(code=2)


def _read_json_arg(value: str) -> Any:
    """Inline JSON, or @path to a JSON file."""
    s = value.strip()
    if s.startswith("@"):
        s = Path(s[1:]).read_text(encoding="utf-8")
    try:
        return json.loads(s)
    except ValueError as e:
        raise typer.BadParameter(f"not valid JSON: {e}") from e


def _engine(circuits: Path, store: str) -> ProofEngine:
    registry = CircuitRegistry.from_file(circuits)
    return ProofEngine(registry, ArtifactCache(registry, open_blob_store(store)))


def _write_registry(registry: CircuitRegistry, out: Path) -> None:
    data = registry.to_dict()
    if out.suffix.lower() == ".json":
        text = json.dumps(data, indent=2, sort_keys=True)
    else:
        text = yaml.safe_dump(data, sort_keys=True)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")


# -------------------- root --------------------

@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Configure logging at this level."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--log-text", help="Log format (default from env)."),
) -> None:
    if log_level is not None or log_json is not None:
        hlog.configure(json=log_json, level=log_level or "INFO")


# -------------------- circuits --------------------

@circuits_app.command("list")
def circuits_list(
    circuits: Optional[Path] = typer.Option(None, "--circuits", "-c", help="Registry file (YAML/JSON)."),
) -> None:
    """List configured circuits, or the built-in programs when no registry is given."""
    rows: List[Dict[str, Any]] = []
    try:
        if circuits is None:
            for name in sorted(BUILTIN):
                prog = builtin_program(name)
                rows.append({"name": name, "source": "builtin", "inputs": input_schema(prog),
                             "public": list(prog.public), "outputs": list(prog.outputs)})
        else:
            for cfg in CircuitRegistry.from_file(circuits):
                rows.append({"name": cfg.name, "proof_system": cfg.proof_system, "can_prove": cfg.can_prove,
                             "inputs": dict(cfg.input_schema), "description": cfg.description})
    except HauntiError as e:
        raise _fail(e) from e
    _echo_json(rows)


@circuits_app.command("setup")
def circuits_setup(
    names: Optional[List[str]] = typer.Argument(None, help="Built-in circuits (default: all)."),
    store: str = typer.Option(DEFAULT_STORE, "--store", "-s", help="Blob store URI or directory."),
    out: Path = typer.Option(Path("circuits.yaml"), "--out", "-o", help="Registry file to write."),
    seed: Optional[str] = typer.Option(None, "--seed", help="Deterministic setup (never for production keys)."),
) -> None:
    """Run the single-party dev setup and publish artifacts to the store."""
    wanted = list(names or sorted(BUILTIN))
    unknown = sorted(set(wanted) - set(BUILTIN))
    if unknown:
        raise typer.BadParameter(f"unknown built-in circuit(s): {', '.join(unknown)}")
    if seed is not None:
        typer.echo("warning: seeded setup is reproducible and unsafe for production", err=True)
    try:
        registry = asyncio.run(provision(open_blob_store(store), wanted, seed=seed))
    except HauntiError as e:
        raise _fail(e) from e
    _write_registry(registry, out)
    log.info("circuits published", extra={"circuits": wanted, "out": str(out)})
    _echo_json({"out": str(out), "store": store, "circuits": registry.to_dict()["circuits"]})


@circuits_app.command("hash")
def circuits_hash(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    """sha256 and content ref of artifact files, for pinning in a registry file."""
    for p in files:
        data = p.read_bytes()
        typer.echo(f"{hashlib.sha256(data).hexdigest()}  {content_ref(data)}  {p}")


# -------------------- proofs --------------------

@app.command("prove")
def prove(
    circuit: str = typer.Argument(...),
    inputs: str = typer.Option(..., "--inputs", "-i", help="Inputs as JSON or @file.json."),
    circuits: Path = typer.Option(Path("circuits.yaml"), "--circuits", "-c"),
    store: str = typer.Option(DEFAULT_STORE, "--store", "-s"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the proof artifact here."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Proving budget in seconds."),
) -> None:
    """Generate a proof; prints (or writes) the proof artifact JSON."""
    values = _read_json_arg(inputs)
    try:
        engine = _engine(circuits, store)
        art = asyncio.run(engine.prove(circuit, values, timeout=timeout))
    except HauntiError as e:
        raise _fail(e) from e
    if out is not None:
        out.write_bytes(art.to_json())
        typer.echo(json.dumps({"proof_id": art.proof_id, "out": str(out), "compact": art.compact().hex()}))
    else:
        _echo_json(art.to_dict())


@app.command("verify")
def verify(
    circuit: str = typer.Argument(...),
    proof: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True,
                                 help="Proof artifact JSON written by `prove`."),
    circuits: Path = typer.Option(Path("circuits.yaml"), "--circuits", "-c"),
    store: str = typer.Option(DEFAULT_STORE, "--store", "-s"),
) -> None:
    """Verify a proof artifact. Exit code 1 when the proof is invalid."""
    try:
        art = ProofArtifact.from_json(proof.read_bytes())
        engine = _engine(circuits, store)
        ok = asyncio.run(engine.verify(circuit, art.proof, art.public_signals))
    except HauntiError as e:
        raise _fail(e) from e
    typer.echo(json.dumps({"circuit": circuit, "proof_id": art.proof_id, "valid": ok}))
    if not ok:
        raise typer.Exit(code=1)


# -------------------- config / server --------------------

@app.command("config")
def show_config() -> None:
    """Print the effective configuration ($HAUNTI_CONFIG_FILE, then HAUNTI_* env)."""
    try:
        typer.echo(hconfig.pretty(hconfig.load()))
    except HauntiError as e:
        raise _fail(e) from e


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8080, "--port"),
    dev_seed: Optional[str] = typer.Option(None, "--dev-seed", help="Seed for the dev setup when no circuits file is configured."),
) -> None:
    """Run the REST/WebSocket surface over an in-process ledger."""
    import uvicorn

    from haunti.orchestrator import build_stack
    from haunti.rpc import create_app

    if not logging.getLogger().handlers:
        hlog.configure_from_env()
    try:
        stack = asyncio.run(build_stack(hconfig.load(), dev_seed=dev_seed))
    except HauntiError as e:
        raise _fail(e) from e
    uvicorn.run(create_app(stack), host=host, port=port, log_config=None)


def run() -> None:
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":  # pragma: no cover
    run()
