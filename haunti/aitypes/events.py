"""
Settlement event types.

Every committed ledger transaction carries the events it produced; the ledger
publishes them on the in-process bus after the commit applies, so a subscriber
never sees an event for state that did not persist.

Events:
  - TaskCreated / TaskClaimed / ProofSubmitted
  - TaskCompleted / TaskFailed / TaskCancelled / TaskExpired
  - StakeSlashed / Staked / Unstaked / RewardAccrued / RewardsClaimed

`subject` is the task id for task events and the position address for stake
events. Stake events raised while settling a task also carry `task_id` in
`data`. Timestamps are UNIX milliseconds taken from the ledger clock.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


class EventType(str, Enum):
    TASK_CREATED = "TaskCreated"
    TASK_CLAIMED = "TaskClaimed"
    PROOF_SUBMITTED = "ProofSubmitted"
    TASK_COMPLETED = "TaskCompleted"
    TASK_FAILED = "TaskFailed"
    TASK_CANCELLED = "TaskCancelled"
    TASK_EXPIRED = "TaskExpired"
    STAKE_SLASHED = "StakeSlashed"
    STAKED = "Staked"
    UNSTAKED = "Unstaked"
    REWARD_ACCRUED = "RewardAccrued"
    REWARDS_CLAIMED = "RewardsClaimed"


TASK_EVENTS = frozenset(
    {
        EventType.TASK_CREATED,
        EventType.TASK_CLAIMED,
        EventType.PROOF_SUBMITTED,
        EventType.TASK_COMPLETED,
        EventType.TASK_FAILED,
        EventType.TASK_CANCELLED,
        EventType.TASK_EXPIRED,
    }
)


@dataclass(frozen=True)
class Event:
    etype: EventType
    ts_ms: int
    subject: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def task_id(self) -> Optional[str]:
        if self.etype in TASK_EVENTS:
            return self.subject
        tid = self.data.get("task_id")
        return str(tid) if tid is not None else None

    @staticmethod
    def new(etype: EventType, subject: str, *, ts_ms: Optional[int] = None, **data: Any) -> "Event":
        return Event(etype=etype, ts_ms=now_ms() if ts_ms is None else int(ts_ms), subject=subject, data=dict(data))

    def to_dict(self) -> Dict[str, Any]:
        return {"etype": self.etype.value, "ts_ms": self.ts_ms, "subject": self.subject, "data": dict(self.data)}

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Event":
        return Event(
            etype=EventType(d["etype"]),
            ts_ms=int(d["ts_ms"]),
            subject=str(d["subject"]),
            data=dict(d.get("data") or {}),
        )


__all__ = ["EventType", "TASK_EVENTS", "Event", "now_ms"]
