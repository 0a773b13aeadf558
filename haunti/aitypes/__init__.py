from __future__ import annotations

"""
Shared settlement types: tasks and their status, stake positions, events.

Conventions
-----------
- Addresses and task ids are lowercase hex strings (sha3-256, no 0x).
- Monetary values are ints in the smallest token unit.
- Task and stake timestamps are UNIX seconds; event timestamps are milliseconds.
"""

from .events import TASK_EVENTS, Event, EventType, now_ms
from .stake import SlashResult, StakePosition
from .task import (STATUS_TYPES, TERMINAL, Cancelled, Claimed, Completed,
                   Expired, Failed, Pending, PoolType, ProofSubmitted,
                   ResourceRequirements, SettlementOutcome, Task, TaskParams,
                   TaskStatus, TaskView, status_from_dict, status_to_dict)

__all__ = [
    "Event",
    "EventType",
    "TASK_EVENTS",
    "now_ms",
    "StakePosition",
    "SlashResult",
    "PoolType",
    "ResourceRequirements",
    "TaskParams",
    "Pending",
    "Claimed",
    "ProofSubmitted",
    "Completed",
    "Failed",
    "Cancelled",
    "Expired",
    "TaskStatus",
    "STATUS_TYPES",
    "TERMINAL",
    "status_to_dict",
    "status_from_dict",
    "Task",
    "TaskView",
    "SettlementOutcome",
]
