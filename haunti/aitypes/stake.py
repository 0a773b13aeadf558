from __future__ import annotations

"""
Stake positions and slash records.

A position is keyed by (staker, pool). Amounts are integers in the smallest
token unit; timestamps are UNIX seconds from the ledger clock.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .task import PoolType


@dataclass(frozen=True)
class StakePosition:
    staker: str
    pool: PoolType
    amount: int = 0
    lock_start: float = 0.0
    lock_end: float = 0.0
    pending_rewards: int = 0
    rewards_claimed: int = 0
    total_slashed: int = 0
    version: int = 0  # ledger account version (0 = never written)

    def is_locked(self, now: float) -> bool:
        return now < self.lock_end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staker": self.staker,
            "pool": self.pool.value,
            "amount": self.amount,
            "lock_start": self.lock_start,
            "lock_end": self.lock_end,
            "pending_rewards": self.pending_rewards,
            "rewards_claimed": self.rewards_claimed,
            "total_slashed": self.total_slashed,
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any], *, version: int = 0) -> "StakePosition":
        return StakePosition(
            staker=str(d["staker"]),
            pool=PoolType(d["pool"]),
            amount=int(d.get("amount", 0)),
            lock_start=float(d.get("lock_start", 0.0)),
            lock_end=float(d.get("lock_end", 0.0)),
            pending_rewards=int(d.get("pending_rewards", 0)),
            rewards_claimed=int(d.get("rewards_claimed", 0)),
            total_slashed=int(d.get("total_slashed", 0)),
            version=version,
        )


@dataclass(frozen=True)
class SlashResult:
    staker: str
    pool: PoolType
    fraction: float
    slashed: int
    remaining: int
    reason: str
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staker": self.staker,
            "pool": self.pool.value,
            "fraction": self.fraction,
            "slashed": self.slashed,
            "remaining": self.remaining,
            "reason": self.reason,
            "task_id": self.task_id,
        }


__all__ = ["StakePosition", "SlashResult"]
