from __future__ import annotations

"""
Deterministic account addresses.

    address = sha3_256(b"haunti/addr/v1" ‖ lp(domain) ‖ lp(seed_0) ‖ …)

where lp(x) = u32_be(len(x)) ‖ x. Length prefixes keep ("ab", "c") and
("a", "bc") apart. Seeds may be str (UTF-8), bytes or int (decimal).

Layout
------
task(owner, model_ref, nonce)      the task id
nonce(owner)                        per-owner task counter
pool(pool)                          pool record
position(pool, staker)              StakePosition
escrow(task_id)                     reward escrow for a task
vault(pool_address)                 staked principal
reward_vault(pool_address)          accrued staker rewards awaiting claim
treasury()                          slash proceeds / forfeits (overridable in config)
"""

import hashlib
import struct
from typing import Any, Union

ADDRESS_DOMAIN = b"haunti/addr/v1"

Seed = Union[str, bytes, int]


def _seed_bytes(s: Seed) -> bytes:
    if isinstance(s, bytes):
        return s
    if isinstance(s, bool):
        raise TypeError("bool is not a valid address seed")
    if isinstance(s, int):
        return str(s).encode("ascii")
    if isinstance(s, str):
        return s.encode("utf-8")
    raise TypeError(f"unsupported seed type {type(s).__name__}")


def derive_address(domain: str, *seeds: Seed) -> str:
    h = hashlib.sha3_256()
    h.update(ADDRESS_DOMAIN)
    for part in (domain.encode("utf-8"), *(_seed_bytes(s) for s in seeds)):
        h.update(struct.pack(">I", len(part)))
        h.update(part)
    return h.hexdigest()


def _pool_name(pool: Any) -> str:
    return str(getattr(pool, "value", pool))


def task_address(owner: str, model_ref: str, nonce: int) -> str:
    return derive_address("task", owner, model_ref, int(nonce))


def nonce_address(owner: str) -> str:
    return derive_address("nonce", owner)


def pool_address(pool: Any) -> str:
    return derive_address("pool", _pool_name(pool))


def position_address(pool: Any, staker: str) -> str:
    return derive_address("position", pool_address(pool), staker)


def escrow_address(task_id: str) -> str:
    return derive_address("escrow", task_id)


def vault_address(pool: Any) -> str:
    return derive_address("vault", pool_address(pool))


def reward_vault_address(pool: Any) -> str:
    return derive_address("reward_vault", pool_address(pool))


def treasury_address() -> str:
    return derive_address("treasury")


__all__ = [
    "ADDRESS_DOMAIN",
    "derive_address",
    "task_address",
    "nonce_address",
    "pool_address",
    "position_address",
    "escrow_address",
    "vault_address",
    "reward_vault_address",
    "treasury_address",
]
