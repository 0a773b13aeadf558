from __future__ import annotations
"""
Haunti - compute settlement package.

Untrusted providers run AI training/inference jobs off-chain and must prove
them correct before they are paid. This package holds the settlement side:
task lifecycle, staking/slashing ledger, the orchestrator façade over both, and
the RPC/CLI surfaces. Proof generation and verification live in `zk`.

Public surface (lazily loaded):
- config, errors, metrics, retry
- aitypes, ledger, staking, tasks, orchestrator
- rpc, cli
"""


from typing import List

from .version import __version__

__all__: List[str] = [
    "__version__",
    # lazily importable subpackages/modules
    "config",
    "errors",
    "metrics",
    "retry",
    "aitypes",
    "ledger",
    "staking",
    "tasks",
    "orchestrator",
    "rpc",
    "cli",
]

# --- Lazy module loader (PEP 562) -------------------------------------------------
import importlib


_lazy_modules = set(__all__) - {"__version__"}


def __getattr__(name: str):
    if name in _lazy_modules:
        return importlib.import_module(f".{name}", __name__)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(set(globals().keys()) | _lazy_modules)


def get_version() -> str:
    """Return the haunti package version string."""
    return __version__
