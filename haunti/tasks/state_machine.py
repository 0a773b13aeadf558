from __future__ import annotations

"""
haunti.tasks.state_machine
==========================

Task lifecycle with escrowed rewards:

    create ──> Pending ──claim──> Claimed ──submit_proof──> ProofSubmitted ──settle──> Completed | Failed
                  │                  │
                  ├──cancel──> Cancelled
                  └──(deadline)──> Expired <──(submission deadline)──┘

Every transition is one ledger transaction that expects the task version it
read, so concurrent callers race on the ledger and exactly one wins; the
others see a VersionConflict (StateConflict). Funds move inside the same
transaction as the status change, so a transition is all-or-nothing.

Accounts touched
----------------
task(id)                 the Task record (versioned)
nonce(owner)             per-owner counter used to derive task ids
escrow(id)               reward held between create and settlement
position(pool, claimant) locked until submit_by at claim; slashed or credited at settlement

Expiry is lazy: `get()` reports Expired as soon as the clock passes the
relevant deadline, but the status (and the escrow refund) is only persisted by
`reclaim_expired()` or by a late `submit_proof()`.

Settlement is idempotent: settling a task that already reached Completed or
Failed returns the recorded outcome without touching the ledger.
"""

import logging
import re
from dataclasses import replace
from typing import Any, Optional, Sequence, Union

from core.blobs import BlobStore
from core.errors import Unauthorized
from haunti import metrics
from haunti.aitypes.events import Event, EventType
from haunti.aitypes.task import (Cancelled, Claimed, Completed, Expired,
                                 Failed, Pending, PoolType, ProofSubmitted,
                                 SettlementOutcome, Task, TaskParams,
                                 TaskView, pool_type)
from haunti.config import HauntiConfig
from haunti.errors import (InvalidTaskParams, InvalidTransition, TaskExpired,
                           TaskNotFound, VersionConflict)
from haunti.ledger.addresses import escrow_address, nonce_address, task_address
from haunti.ledger.store import Ledger, Transaction, submit, with_cas
from haunti.staking.ledger import StakeLedger
from zk.engine import ProofEngine, coerce_signals
from zk.errors import CircuitNotConfigured
from zk.proof import ProofArtifact, coerce_proof

log = logging.getLogger(__name__)

_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_URI = re.compile(r"^[a-z][a-z0-9+.\-]*://\S+$")

ProofInput = Union[bytes, bytearray, memoryview, ProofArtifact, Any]


def _ms(ts: float) -> int:
    return int(ts * 1000)


def is_model_ref(ref: Any) -> bool:
    if not isinstance(ref, str):
        return False
    if ref.startswith("sha256:"):
        ref = ref[len("sha256:"):]
    return bool(_HEX64.match(ref))


def is_dataset_ref(ref: Any) -> bool:
    return is_model_ref(ref) or (isinstance(ref, str) and bool(_URI.match(ref)))


class TaskStateMachine:
    def __init__(
        self,
        ledger: Ledger,
        stakes: StakeLedger,
        engine: ProofEngine,
        store: BlobStore,
        config: Optional[HauntiConfig] = None,
    ) -> None:
        self._ledger = ledger
        self._stakes = stakes
        self._engine = engine
        self._store = store
        self._cfg = config or stakes.config
        self._timeout = self._cfg.ledger.confirm_timeout_secs

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def stakes(self) -> StakeLedger:
        return self._stakes

    @property
    def engine(self) -> ProofEngine:
        return self._engine

    @property
    def config(self) -> HauntiConfig:
        return self._cfg

    def _now(self) -> float:
        return self._ledger.clock()

    # ── reads ───────────────────────────────────────────────────────────────

    async def find(self, task_id: str) -> Optional[Task]:
        rec = await self._ledger.get(task_id)
        if rec is None or "status" not in rec.data:
            return None
        return Task.from_dict(rec.data, version=rec.version)

    async def load(self, task_id: str) -> Task:
        task = await self.find(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def get(self, task_id: str) -> TaskView:
        task = await self.load(task_id)
        now = self._now()
        return TaskView(task=task, status=task.effective_status(now), as_of=now)

    async def next_nonce(self, owner: str) -> int:
        rec = await self._ledger.get(nonce_address(owner))
        return int(rec.data["next"]) if rec is not None else 0

    # ── transitions ─────────────────────────────────────────────────────────

    def validate_params(self, params: TaskParams) -> PoolType:
        """Check creation parameters; return the pool the task will be claimed from."""
        limits = self._cfg.tasks
        reward = params.reward
        if isinstance(reward, bool) or not isinstance(reward, int) or reward <= 0:
            raise InvalidTaskParams("reward must be a positive integer", field="reward")
        if not (limits.min_reward <= reward <= limits.max_reward):
            raise InvalidTaskParams(
                "reward out of bounds",
                field="reward",
                details={"reward": reward, "min": limits.min_reward, "max": limits.max_reward},
            )
        tl = params.time_limit
        if isinstance(tl, bool) or not isinstance(tl, int) or tl <= 0:
            raise InvalidTaskParams("deadline must be in the future", field="time_limit")
        if not (limits.min_time_limit_secs <= tl <= limits.max_time_limit_secs):
            raise InvalidTaskParams(
                "time limit out of bounds",
                field="time_limit",
                details={"time_limit": tl, "min": limits.min_time_limit_secs, "max": limits.max_time_limit_secs},
            )
        if not is_model_ref(params.model_ref):
            raise InvalidTaskParams("model reference must be a sha256 digest", field="model_ref")
        if not is_dataset_ref(params.dataset_ref):
            raise InvalidTaskParams("dataset reference is malformed", field="dataset_ref")
        try:
            self._engine.cache.registry.get(params.circuit)
        except CircuitNotConfigured as e:
            raise InvalidTaskParams("unknown circuit", field="circuit", details=e.details) from e
        res = params.resources
        if res.gpu_count < 0 or res.memory_gb <= 0 or res.storage_gb < 0 or res.timeout_secs <= 0:
            raise InvalidTaskParams("resource requirements are out of range", field="resources",
                                    details=res.to_dict())
        if params.pool is not None:
            return pool_type(params.pool)
        return PoolType(self._cfg.stake.pool_for(params.circuit))

    async def create(self, owner: str, params: TaskParams) -> Task:
        pool = self.validate_params(params)
        naddr = nonce_address(owner)

        async def attempt() -> Task:
            rec = await self._ledger.get(naddr)
            nonce = int(rec.data["next"]) if rec is not None else 0
            nver = rec.version if rec is not None else 0
            tid = task_address(owner, params.model_ref, nonce)
            now = self._now()
            task = Task(
                id=tid,
                owner=owner,
                nonce=nonce,
                model_ref=params.model_ref,
                dataset_ref=params.dataset_ref,
                circuit=params.circuit,
                pool=pool,
                reward=params.reward,
                resources=params.resources,
                created_at=now,
                deadline=now + params.time_limit,
                status=Pending(),
                version=1,
            )
            tx = Transaction(memo="task.create")
            tx.expect_version(naddr, nver).put(naddr, {"owner": owner, "next": nonce + 1})
            tx.expect_version(tid, 0).put(tid, task.to_dict())
            tx.transfer(owner, escrow_address(tid), params.reward)
            tx.emit(Event.new(EventType.TASK_CREATED, tid, ts_ms=_ms(now), owner=owner, circuit=task.circuit,
                              pool=pool.value, reward=task.reward, deadline=task.deadline))
            await submit(self._ledger, tx, timeout=self._timeout)
            return task

        task = await with_cas(attempt, retry_if=lambda e: e.address == naddr)
        self._committed(task, "task created")
        return task

    async def claim(self, task_id: str, provider: str) -> Task:
        async def attempt() -> Task:
            task = await self.load(task_id)
            now = self._now()
            eff = task.effective_status(now)
            if isinstance(eff, Expired):
                raise TaskExpired(task_id=task_id, deadline=task.deadline, now=now)
            if not isinstance(eff, Pending):
                raise InvalidTransition(task_id=task_id, status=eff.name, op="claim")
            pos = await self._stakes.require_minimum(provider, task.pool)
            submit_by = min(task.deadline, now + self._cfg.tasks.claim_window_secs)
            new = replace(task, status=Claimed(claimant=provider, claimed_at=now, submit_by=submit_by),
                          version=task.version + 1)
            tx = Transaction(memo="task.claim")
            tx.expect_version(task.id, task.version).put(task.id, new.to_dict())
            # the stake must still be in place when the claim lands, and stays until submit_by
            self._stakes.stage_lock(tx, pos, submit_by)
            tx.emit(Event.new(EventType.TASK_CLAIMED, task.id, ts_ms=_ms(now), claimant=provider,
                              submit_by=submit_by))
            await submit(self._ledger, tx, timeout=self._timeout)
            return new

        # only a moved position is worth another read; a moved task means we lost
        task = await with_cas(attempt, retry_if=lambda e: e.address != task_id)
        self._committed(task, "task claimed")
        return task

    async def submit_proof(
        self,
        task_id: str,
        claimant: str,
        proof: ProofInput,
        public_signals: Union[Sequence[Any], bytes],
    ) -> SettlementOutcome:
        task = await self.load(task_id)
        now = self._now()
        s = task.status
        if not isinstance(s, Claimed):
            raise InvalidTransition(task_id=task_id, status=task.effective_status(now).name, op="submit_proof")
        if s.claimant != claimant:
            raise Unauthorized("only the claimant may submit a proof", details={"task_id": task_id})
        if now >= s.submit_by:
            try:
                await self._expire(task, now)
            except VersionConflict:
                log.info("task changed while recording expiry", extra={"task_id": task_id})
            raise TaskExpired(task_id=task_id, deadline=s.submit_by, now=now)

        # undecodable input raises VerificationEngineError here, before any transition
        compact = coerce_proof(proof).compact()
        signals = coerce_signals(public_signals)
        result_ref = await self._store.store(compact)

        now = self._now()
        new = replace(
            task,
            status=ProofSubmitted(
                claimant=claimant,
                claimed_at=s.claimed_at,
                submitted_at=now,
                result_ref=result_ref,
                public_signals=tuple(str(x) for x in signals),
            ),
            version=task.version + 1,
        )
        tx = Transaction(memo="task.submit_proof")
        tx.expect_version(task.id, task.version).put(task.id, new.to_dict())
        tx.emit(Event.new(EventType.PROOF_SUBMITTED, task.id, ts_ms=_ms(now), claimant=claimant,
                          result_ref=result_ref))
        await submit(self._ledger, tx, timeout=self._timeout)
        self._committed(new, "proof submitted")
        return await self.settle(task_id)

    async def settle(self, task_id: str) -> SettlementOutcome:
        with metrics.time_settlement():
            # settle is idempotent, so any conflict is worth a fresh read
            return await with_cas(lambda: self._settle_once(task_id))

    async def _settle_once(self, task_id: str) -> SettlementOutcome:
        task = await self.load(task_id)
        s = task.status
        if isinstance(s, (Completed, Failed)):
            return SettlementOutcome.from_task(task)
        if not isinstance(s, ProofSubmitted):
            raise InvalidTransition(task_id=task_id, status=s.name, op="settle")

        proof = await self._store.fetch(s.result_ref)
        signals = [int(x) for x in s.public_signals]
        with metrics.time_verify(task.circuit):
            ok = await self._engine.verify(task.circuit, proof, signals)
        metrics.record_proof_verified(task.circuit, "valid" if ok else "invalid")

        now = self._now()
        escrow = escrow_address(task.id)
        pos = await self._stakes.get_position(s.claimant, task.pool)
        tx = Transaction(memo="task.settle")
        tx.expect_version(task.id, task.version)
        slash = None
        status: Union[Completed, Failed]
        if ok:
            parts = self._cfg.split.split(task.reward)
            tx.transfer(escrow, s.claimant, parts["provider"])
            if parts["staker"]:
                self._stakes.stage_accrual(tx, pos, parts["staker"], source=escrow, now=now, task_id=task.id)
            tx.transfer(escrow, self._stakes.treasury, parts["treasury"])
            status = Completed(
                claimant=s.claimant,
                result_ref=s.result_ref,
                completed_at=now,
                provider_reward=parts["provider"],
                staker_reward=parts["staker"],
                treasury_share=parts["treasury"],
            )
            event = Event.new(EventType.TASK_COMPLETED, task.id, ts_ms=_ms(now), claimant=s.claimant,
                              provider_reward=status.provider_reward, staker_reward=status.staker_reward,
                              treasury_share=status.treasury_share)
        else:
            slash, _ = self._stakes.stage_slash(
                tx, pos, self._cfg.slashing.invalid_proof_fraction, "invalid_proof", task_id=task.id, now=now
            )
            dest = task.owner if self._cfg.slashing.forfeit_to == "owner" else self._stakes.treasury
            tx.transfer(escrow, dest, task.reward)
            status = Failed(
                claimant=s.claimant,
                result_ref=s.result_ref,
                failed_at=now,
                slashed=slash.slashed,
                forfeited=task.reward,
                forfeited_to=dest,
            )
            event = Event.new(EventType.TASK_FAILED, task.id, ts_ms=_ms(now), claimant=s.claimant,
                              slashed=status.slashed, forfeited=status.forfeited, forfeited_to=dest,
                              reason=status.reason)

        new = replace(task, status=status, version=task.version + 1)
        tx.put(task.id, new.to_dict())
        tx.emit(event)
        await submit(self._ledger, tx, timeout=self._timeout)

        if slash is not None:
            self._stakes.record_slash(slash)
        self._committed(new, "task settled")
        return SettlementOutcome(task_id=task.id, status=status, verified=ok)

    async def cancel(self, task_id: str, owner: str) -> Task:
        task = await self.load(task_id)
        if task.owner != owner:
            raise Unauthorized("only the owner may cancel a task", details={"task_id": task_id})
        now = self._now()
        eff = task.effective_status(now)
        if not isinstance(eff, Pending):
            raise InvalidTransition(task_id=task_id, status=eff.name, op="cancel")

        new = replace(task, status=Cancelled(cancelled_at=now), version=task.version + 1)
        tx = Transaction(memo="task.cancel")
        tx.expect_version(task.id, task.version).put(task.id, new.to_dict())
        tx.transfer(escrow_address(task.id), task.owner, task.reward)
        tx.emit(Event.new(EventType.TASK_CANCELLED, task.id, ts_ms=_ms(now), owner=owner, refunded=task.reward))
        await submit(self._ledger, tx, timeout=self._timeout)
        self._committed(new, "task cancelled")
        return new

    async def reclaim_expired(self, task_id: str, owner: str) -> Task:
        task = await self.load(task_id)
        if task.owner != owner:
            raise Unauthorized("only the owner may reclaim escrow", details={"task_id": task_id})
        if isinstance(task.status, Expired):
            return task
        now = self._now()
        eff = task.effective_status(now)
        if not isinstance(eff, Expired):
            raise InvalidTransition(task_id=task_id, status=eff.name, op="reclaim_expired",
                                    message="task has not expired")
        return await self._expire(task, now)

    async def _expire(self, task: Task, now: float) -> Task:
        eff = task.effective_status(now)
        if not isinstance(eff, Expired):
            eff = Expired(expired_at=now, claimant=task.claimant)
        new = replace(task, status=eff, version=task.version + 1)
        tx = Transaction(memo="task.expire")
        tx.expect_version(task.id, task.version).put(task.id, new.to_dict())
        tx.transfer(escrow_address(task.id), task.owner, task.reward)
        tx.emit(Event.new(EventType.TASK_EXPIRED, task.id, ts_ms=_ms(now), owner=task.owner,
                          claimant=eff.claimant, refunded=task.reward))
        await submit(self._ledger, tx, timeout=self._timeout)
        self._committed(new, "task expired")
        return new

    def _committed(self, task: Task, msg: str) -> None:
        metrics.record_transition(task.status.name)
        log.info(msg, extra={"task_id": task.id, "state": task.status.name, "version": task.version})


__all__ = ["TaskStateMachine", "is_model_ref", "is_dataset_ref"]
