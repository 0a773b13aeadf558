from __future__ import annotations

"""
Task records and their lifecycle status.

Status is a closed set of frozen dataclasses, one per state, each carrying the
fields that only make sense in that state:

    Pending ─┬─> Claimed ──> ProofSubmitted ─┬─> Completed
             │      │                        └─> Failed
             │      └─> Expired
             ├─> Cancelled
             └─> Expired

`Task.effective_status(now)` is a pure function of the stored status, the
stored timestamps and `now`: a Pending task past its deadline (or a Claimed
task past its submission deadline) reads as Expired even before anyone
persists that.

Serialization: `to_dict()` / `from_dict()` produce JSON-safe dicts; the status
carries its name under "state". `version` is the ledger account version and
is never serialized.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

from haunti.errors import InvalidTaskParams


class PoolType(str, Enum):
    GPU = "gpu"
    VALIDATOR = "validator"
    TRAINER = "trainer"


def pool_type(value: Any) -> PoolType:
    try:
        return PoolType(value)
    except ValueError as e:
        raise InvalidTaskParams("unknown pool", field="pool", details={"pool": str(value)}) from e


def _whole(d: Mapping[str, Any], key: str) -> int:
    # no coercion: 100.9 and True are not amounts
    v = d[key]
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidTaskParams(f"{key} must be an integer", field=key, details={key: repr(v)})
    return v


@dataclass(frozen=True)
class ResourceRequirements:
    gpu_type: str = "any"
    gpu_count: int = 1
    memory_gb: int = 16
    storage_gb: int = 50
    timeout_secs: int = 3_600

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Optional[Mapping[str, Any]]) -> "ResourceRequirements":
        d = d or {}
        return ResourceRequirements(
            gpu_type=str(d.get("gpu_type", "any")),
            gpu_count=int(d.get("gpu_count", 1)),
            memory_gb=int(d.get("memory_gb", 16)),
            storage_gb=int(d.get("storage_gb", 50)),
            timeout_secs=int(d.get("timeout_secs", 3_600)),
        )


@dataclass(frozen=True)
class TaskParams:
    """What a requester supplies to create a task. `time_limit` counts from creation."""
    model_ref: str
    dataset_ref: str
    circuit: str
    reward: int
    time_limit: int
    resources: ResourceRequirements = field(default_factory=ResourceRequirements)
    pool: Optional[PoolType] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_ref": self.model_ref,
            "dataset_ref": self.dataset_ref,
            "circuit": self.circuit,
            "reward": self.reward,
            "time_limit": self.time_limit,
            "resources": self.resources.to_dict(),
            "pool": self.pool.value if self.pool is not None else None,
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "TaskParams":
        return TaskParams(
            model_ref=str(d["model_ref"]),
            dataset_ref=str(d["dataset_ref"]),
            circuit=str(d["circuit"]),
            reward=_whole(d, "reward"),
            time_limit=_whole(d, "time_limit"),
            resources=ResourceRequirements.from_dict(d.get("resources")),
            pool=pool_type(d["pool"]) if d.get("pool") else None,
        )


# ────────────────────────────────────────────────────────────────────────────────
# Status variants
# ────────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Pending:
    name: ClassVar[str] = "pending"


@dataclass(frozen=True)
class Claimed:
    claimant: str
    claimed_at: float
    submit_by: float
    name: ClassVar[str] = "claimed"


@dataclass(frozen=True)
class ProofSubmitted:
    claimant: str
    claimed_at: float
    submitted_at: float
    result_ref: str
    public_signals: Tuple[str, ...]     # decimal strings; field elements exceed 64 bits
    name: ClassVar[str] = "proof_submitted"


@dataclass(frozen=True)
class Completed:
    claimant: str
    result_ref: str
    completed_at: float
    provider_reward: int
    staker_reward: int
    treasury_share: int
    name: ClassVar[str] = "completed"


@dataclass(frozen=True)
class Failed:
    claimant: str
    result_ref: str
    failed_at: float
    slashed: int
    forfeited: int
    forfeited_to: str
    reason: str = "invalid_proof"
    name: ClassVar[str] = "failed"


@dataclass(frozen=True)
class Cancelled:
    cancelled_at: float
    name: ClassVar[str] = "cancelled"


@dataclass(frozen=True)
class Expired:
    expired_at: float
    claimant: Optional[str] = None
    name: ClassVar[str] = "expired"


TaskStatus = Union[Pending, Claimed, ProofSubmitted, Completed, Failed, Cancelled, Expired]

STATUS_TYPES: Dict[str, type] = {
    cls.name: cls for cls in (Pending, Claimed, ProofSubmitted, Completed, Failed, Cancelled, Expired)
}
TERMINAL = (Completed, Failed, Cancelled, Expired)


def status_to_dict(status: TaskStatus) -> Dict[str, Any]:
    d = asdict(status)
    if isinstance(status, ProofSubmitted):
        d["public_signals"] = list(status.public_signals)
    d["state"] = status.name
    return d


def status_from_dict(d: Mapping[str, Any]) -> TaskStatus:
    body = dict(d)
    state = body.pop("state", None)
    cls = STATUS_TYPES.get(state)
    if cls is None:
        raise ValueError(f"unknown task state {state!r}")
    if cls is ProofSubmitted:
        body["public_signals"] = tuple(str(s) for s in body.get("public_signals", ()))
    return cls(**body)


# ────────────────────────────────────────────────────────────────────────────────
# Task
# ────────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Task:
    id: str
    owner: str
    nonce: int
    model_ref: str
    dataset_ref: str
    circuit: str
    pool: PoolType
    reward: int
    resources: ResourceRequirements
    created_at: float
    deadline: float
    status: TaskStatus = Pending()
    version: int = field(default=0, compare=False)

    @property
    def claimant(self) -> Optional[str]:
        return getattr(self.status, "claimant", None)

    @property
    def result_ref(self) -> Optional[str]:
        return getattr(self.status, "result_ref", None)

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.status, TERMINAL)

    def effective_status(self, now: float) -> TaskStatus:
        s = self.status
        if isinstance(s, Pending):
            if now >= self.deadline:
                return Expired(expired_at=self.deadline)
            return s
        if isinstance(s, Claimed):
            if now >= s.submit_by:
                return Expired(expired_at=s.submit_by, claimant=s.claimant)
            return s
        return s

    def at(self, now: float) -> "Task":
        """Copy with the effective status (stored version kept)."""
        eff = self.effective_status(now)
        return self if eff is self.status else replace(self, status=eff)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "nonce": self.nonce,
            "model_ref": self.model_ref,
            "dataset_ref": self.dataset_ref,
            "circuit": self.circuit,
            "pool": self.pool.value,
            "reward": self.reward,
            "resources": self.resources.to_dict(),
            "created_at": self.created_at,
            "deadline": self.deadline,
            "status": status_to_dict(self.status),
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any], *, version: int = 0) -> "Task":
        return Task(
            id=str(d["id"]),
            owner=str(d["owner"]),
            nonce=int(d["nonce"]),
            model_ref=str(d["model_ref"]),
            dataset_ref=str(d["dataset_ref"]),
            circuit=str(d["circuit"]),
            pool=PoolType(d["pool"]),
            reward=int(d["reward"]),
            resources=ResourceRequirements.from_dict(d.get("resources")),
            created_at=float(d["created_at"]),
            deadline=float(d["deadline"]),
            status=status_from_dict(d["status"]),
            version=version,
        )


@dataclass(frozen=True)
class TaskView:
    """What callers see: the stored task plus its status as of the read."""
    task: Task
    status: TaskStatus
    as_of: float

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def state(self) -> str:
        return self.status.name

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.status, TERMINAL)

    @property
    def pending_persist(self) -> bool:
        """True when the status is derived (lazy expiry) and not yet written."""
        return self.status is not self.task.status

    def to_dict(self) -> Dict[str, Any]:
        d = self.task.to_dict()
        d["status"] = status_to_dict(self.status)
        d["stored_state"] = self.task.status.name
        d["version"] = self.task.version
        d["as_of"] = self.as_of
        return d


@dataclass(frozen=True)
class SettlementOutcome:
    task_id: str
    status: Union[Completed, Failed]
    verified: bool

    @property
    def completed(self) -> bool:
        return isinstance(self.status, Completed)

    @property
    def slashed(self) -> int:
        return self.status.slashed if isinstance(self.status, Failed) else 0

    def raise_for_failure(self) -> "SettlementOutcome":
        """Raise ProofRejected for a Failed outcome; return self otherwise."""
        if isinstance(self.status, Failed):
            from haunti.errors import ProofRejected

            raise ProofRejected(
                "submitted proof did not verify",
                details={"task_id": self.task_id, "slashed": self.status.slashed},
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "verified": self.verified, "status": status_to_dict(self.status)}

    @staticmethod
    def from_task(task: Task) -> "SettlementOutcome":
        s = task.status
        if not isinstance(s, (Completed, Failed)):
            raise ValueError(f"task {task.id} has no settlement outcome (state={s.name})")
        return SettlementOutcome(task_id=task.id, status=s, verified=isinstance(s, Completed))


__all__ = [
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
