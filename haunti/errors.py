from __future__ import annotations
# haunti/errors.py
"""
Settlement-layer error types. Each one slots into the shared taxonomy in
`core.errors`, so the orchestrator and the RPC bridge can act on the category
alone (retry transient, surface everything else).

Exports:
- InvalidTaskParams, InvalidAmount          (ConfigurationError)
- TaskNotFound                              (NotFound)
- Unauthorized                              (re-exported from core.errors)
- InvalidTransition, VersionConflict,
  TaskExpired                               (StateConflict)
- InsufficientStake, LockActive,
  InsufficientBalance, NoRewardsAvailable   (EconomicError)
- LedgerUnavailable, ConfirmationTimeout,
  OutcomeUnknown                            (TransientInfraError)
- ProofRejected                             (VerificationFailure)
"""


from typing import Any, Mapping, Optional

from core.errors import (ConfigurationError, EconomicError, NotFound,
                         StateConflict, TransientInfraError, Unauthorized,
                         VerificationFailure)


class InvalidTaskParams(ConfigurationError):
    """Task creation parameters failed validation (reward, deadline, references)."""
    code = "HAUNTI/INVALID_TASK_PARAMS"

    def __init__(self, message: str = "invalid task parameters", *, field: Optional[str] = None,
                 details: Optional[Mapping[str, Any]] = None) -> None:
        d = dict(details or {})
        if field is not None:
            d.setdefault("field", field)
        super().__init__(message, details=d)


class InvalidAmount(ConfigurationError):
    code = "HAUNTI/INVALID_AMOUNT"


class TaskNotFound(NotFound):
    code = "HAUNTI/TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__("task not found", details={"task_id": task_id})


class InvalidTransition(StateConflict):
    """The requested operation is not allowed from the task's current status."""
    code = "HAUNTI/INVALID_TRANSITION"

    def __init__(self, *, task_id: str, status: str, op: str, message: str = "transition not allowed") -> None:
        super().__init__(message, details={"task_id": task_id, "status": status, "op": op})


class VersionConflict(StateConflict):
    """A compare-and-transition precondition no longer holds (someone committed first)."""
    code = "HAUNTI/VERSION_CONFLICT"

    def __init__(self, *, address: str, expected: int, actual: int) -> None:
        super().__init__(
            "account version changed", details={"address": address, "expected": expected, "actual": actual}
        )
        self.address = address


class TaskExpired(StateConflict):
    code = "HAUNTI/TASK_EXPIRED"

    def __init__(self, *, task_id: str, deadline: float, now: float) -> None:
        super().__init__("task deadline has passed", details={"task_id": task_id, "deadline": deadline, "now": now})


class InsufficientStake(EconomicError):
    code = "HAUNTI/INSUFFICIENT_STAKE"

    def __init__(
        self,
        *,
        required: int,
        actual: int,
        staker: Optional[str] = None,
        pool: Optional[str] = None,
        message: str = "insufficient stake",
    ) -> None:
        d = {"required": int(required), "actual": int(actual)}
        if staker is not None:
            d["staker"] = staker
        if pool is not None:
            d["pool"] = pool
        super().__init__(message, details=d)


class LockActive(EconomicError):
    code = "HAUNTI/LOCK_ACTIVE"

    def __init__(self, *, lock_end: float, now: float, staker: str, pool: str) -> None:
        super().__init__(
            "stake is still locked", details={"lock_end": lock_end, "now": now, "staker": staker, "pool": pool}
        )


class InsufficientBalance(EconomicError):
    code = "HAUNTI/INSUFFICIENT_BALANCE"

    def __init__(self, *, address: str, required: int, available: int) -> None:
        super().__init__(
            "insufficient balance",
            details={"address": address, "required": int(required), "available": int(available)},
        )


class NoRewardsAvailable(EconomicError):
    code = "HAUNTI/NO_REWARDS"


class LedgerUnavailable(TransientInfraError):
    code = "HAUNTI/LEDGER_UNAVAILABLE"


class ConfirmationTimeout(TransientInfraError):
    """The commit was sent but not confirmed in time. It may or may not have applied."""
    code = "HAUNTI/CONFIRMATION_TIMEOUT"


class OutcomeUnknown(TransientInfraError):
    """Retry budget exhausted on transient failures; re-check state before acting."""
    code = "HAUNTI/OUTCOME_UNKNOWN"
    retryable = False


class ProofRejected(VerificationFailure):
    code = "HAUNTI/PROOF_REJECTED"


__all__ = [
    "InvalidTaskParams",
    "InvalidAmount",
    "TaskNotFound",
    "Unauthorized",
    "InvalidTransition",
    "VersionConflict",
    "TaskExpired",
    "InsufficientStake",
    "LockActive",
    "InsufficientBalance",
    "NoRewardsAvailable",
    "LedgerUnavailable",
    "ConfirmationTimeout",
    "OutcomeUnknown",
    "ProofRejected",
]
