from __future__ import annotations

"""
haunti.orchestrator
===================

Client façade over the task state machine, the stake ledger and the proof
engine, bound to one identity (the requester or provider acting).

    stack = await build_stack(cfg)
    alice = stack.orchestrator("alice")
    tid = await alice.create_task(params)

    bob = stack.orchestrator("bob")
    await bob.stake("gpu", 5_000_000)
    await bob.claim_task(tid)
    art = await bob.prove("inference", inputs)
    outcome = await bob.submit_proof(tid, art.compact(), art.public_signals)

Retry rules
-----------
- Transient errors (ledger unavailable, confirmation timeout, blob fetch) are
  retried with bounded exponential backoff and jitter.
- Before each retry the orchestrator re-reads state: a timed-out commit may
  have applied, and applying it twice must not happen.
- When the budget runs out, OutcomeUnknown ("re-check state") is raised.
- ProofTimeout from `prove` surfaces on the first attempt: nothing changed,
  and the same budget would run out again.
- StateConflict, configuration, integrity and economic errors surface at once.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import (Any, Awaitable, Callable, Mapping, Optional, Sequence,
                    Tuple, Type, Union)

from core.blobs import BlobStore, open_blob_store
from haunti import metrics
from haunti.aitypes.events import Event
from haunti.aitypes.stake import StakePosition
from haunti.aitypes.task import (Cancelled, Claimed, Completed, Expired,
                                 Failed, ProofSubmitted,
                                 SettlementOutcome, Task, TaskParams, TaskView)
from haunti.config import HauntiConfig
from haunti.ledger.addresses import task_address
from haunti.ledger.clock import Clock, system_clock
from haunti.ledger.events import EventFilter, Subscription
from haunti.ledger.store import Ledger, MemoryLedger
from haunti.retry import UNRESOLVED, RetryPolicy, call_with_retry
from haunti.staking.ledger import StakeLedger
from haunti.tasks.state_machine import TaskStateMachine
from zk.artifacts import ArtifactCache
from zk.engine import ProofEngine
from zk.errors import ProofTimeout
from zk.programs import provision
from zk.proof import ProofArtifact
from zk.registry import CircuitRegistry

log = logging.getLogger(__name__)

EventCallback = Callable[[Event], Union[None, Awaitable[None]]]


class TaskOrchestrator:
    def __init__(
        self,
        identity: str,
        machine: TaskStateMachine,
        *,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not identity:
            raise ValueError("identity is required")
        self._id = identity
        self._sm = machine
        self._policy = policy or RetryPolicy.from_config(machine.config.retry)
        self._sleep = sleep
        self._rng = rng

    @property
    def identity(self) -> str:
        return self._id

    @property
    def machine(self) -> TaskStateMachine:
        return self._sm

    def as_identity(self, identity: str) -> "TaskOrchestrator":
        return TaskOrchestrator(identity, self._sm, policy=self._policy, sleep=self._sleep, rng=self._rng)

    async def _retry(self, op: str, fn: Callable[[], Awaitable[Any]],
                     recheck: Optional[Callable[[], Awaitable[Any]]] = None,
                     surface: Tuple[Type[BaseException], ...] = ()) -> Any:
        return await call_with_retry(
            fn, op=op, policy=self._policy, recheck=recheck, sleep=self._sleep, rng=self._rng, surface=surface
        )

    def _view(self, task: Task) -> TaskView:
        now = self._sm.ledger.clock()
        return TaskView(task=task, status=task.effective_status(now), as_of=now)

    # ── requester ───────────────────────────────────────────────────────────

    async def create_task(self, params: TaskParams) -> str:
        # the id a create would get if it lands; refreshed on every attempt
        candidate = {"id": None}

        async def attempt() -> str:
            nonce = await self._sm.next_nonce(self._id)
            candidate["id"] = task_address(self._id, params.model_ref, nonce)
            task = await self._sm.create(self._id, params)
            return task.id

        async def recheck() -> Any:
            tid = candidate["id"]
            if tid is None:
                return UNRESOLVED
            task = await self._sm.find(tid)
            return task.id if task is not None and task.owner == self._id else UNRESOLVED

        return await self._retry("create_task", attempt, recheck)

    async def cancel_task(self, task_id: str) -> TaskView:
        async def attempt() -> TaskView:
            return self._view(await self._sm.cancel(task_id, self._id))

        async def recheck() -> Any:
            task = await self._sm.load(task_id)
            return self._view(task) if isinstance(task.status, Cancelled) else UNRESOLVED

        return await self._retry("cancel_task", attempt, recheck)

    async def reclaim_escrow(self, task_id: str) -> TaskView:
        async def attempt() -> TaskView:
            return self._view(await self._sm.reclaim_expired(task_id, self._id))

        async def recheck() -> Any:
            task = await self._sm.load(task_id)
            return self._view(task) if isinstance(task.status, Expired) else UNRESOLVED

        return await self._retry("reclaim_escrow", attempt, recheck)

    async def get_task_status(self, task_id: str) -> TaskView:
        return await self._retry("get_task_status", lambda: self._sm.get(task_id))

    def subscribe_to_task_events(
        self,
        flt: Union[EventFilter, str, None],
        callback: EventCallback,
    ) -> Subscription:
        """`flt` may be an EventFilter, a task id, or None for every event."""
        if isinstance(flt, str):
            flt = EventFilter(task_id=flt)
        return self._sm.ledger.bus.subscribe(flt, callback)

    # ── provider ────────────────────────────────────────────────────────────

    async def claim_task(self, task_id: str) -> TaskView:
        async def attempt() -> TaskView:
            return self._view(await self._sm.claim(task_id, self._id))

        async def recheck() -> Any:
            task = await self._sm.load(task_id)
            if isinstance(task.status, Claimed) and task.claimant == self._id:
                return self._view(task)
            return UNRESOLVED

        return await self._retry("claim_task", attempt, recheck)

    async def submit_proof(
        self,
        task_id: str,
        proof: Any,
        public_signals: Union[Sequence[Any], bytes],
    ) -> SettlementOutcome:
        async def attempt() -> SettlementOutcome:
            task = await self._sm.load(task_id)
            s = task.status
            # a previous attempt may have landed the submission (or the settlement)
            if isinstance(s, ProofSubmitted) and s.claimant == self._id:
                return await self._sm.settle(task_id)
            if isinstance(s, (Completed, Failed)) and s.claimant == self._id:
                return SettlementOutcome.from_task(task)
            return await self._sm.submit_proof(task_id, self._id, proof, public_signals)

        return await self._retry("submit_proof", attempt)

    async def settle(self, task_id: str) -> SettlementOutcome:
        return await self._retry("settle", lambda: self._sm.settle(task_id))

    async def prove(self, circuit: str, inputs: Mapping[str, Any], *, timeout: Optional[float] = None) -> ProofArtifact:
        budget = timeout if timeout is not None else self._sm.config.ledger.proof_timeout_secs

        async def attempt() -> ProofArtifact:
            started = time.perf_counter()
            art = await self._sm.engine.prove(circuit, inputs, timeout=budget)
            metrics.record_proof_generated(circuit, time.perf_counter() - started)
            return art

        # artifact fetches are retried; running out of budget is not
        return await self._retry("prove", attempt, surface=(ProofTimeout,))

    async def stake(self, pool: Any, amount: int, lockup_period: Optional[int] = None) -> StakePosition:
        stakes = self._sm.stakes
        before = await stakes.get_position(self._id, pool)

        async def recheck() -> Any:
            pos = await stakes.get_position(self._id, pool)
            if pos.version > before.version and pos.amount == before.amount + amount:
                return pos
            return UNRESOLVED

        return await self._retry("stake", lambda: stakes.stake(self._id, pool, amount, lockup_period), recheck)

    async def unstake(self, pool: Any, amount: int) -> StakePosition:
        stakes = self._sm.stakes
        before = await stakes.get_position(self._id, pool)

        async def recheck() -> Any:
            pos = await stakes.get_position(self._id, pool)
            if pos.version > before.version and pos.amount == before.amount - amount:
                return pos
            return UNRESOLVED

        return await self._retry("unstake", lambda: stakes.unstake(self._id, pool, amount), recheck)

    async def claim_rewards(self, pool: Any) -> int:
        stakes = self._sm.stakes
        before = await stakes.get_position(self._id, pool)

        async def recheck() -> Any:
            pos = await stakes.get_position(self._id, pool)
            if pos.version > before.version and pos.rewards_claimed == before.rewards_claimed + before.pending_rewards:
                return before.pending_rewards
            return UNRESOLVED

        return await self._retry("claim_rewards", lambda: stakes.claim_rewards(self._id, pool), recheck)

    async def get_position(self, pool: Any) -> StakePosition:
        return await self._retry("get_position", lambda: self._sm.stakes.get_position(self._id, pool))

    async def balance(self) -> int:
        return await self._retry("balance", lambda: self._sm.ledger.balance(self._id))


# ────────────────────────────────────────────────────────────────────────────────
# Wiring
# ────────────────────────────────────────────────────────────────────────────────


@dataclass
class SettlementStack:
    config: HauntiConfig
    ledger: Ledger
    store: BlobStore
    registry: CircuitRegistry
    cache: ArtifactCache
    engine: ProofEngine
    stakes: StakeLedger
    machine: TaskStateMachine

    def orchestrator(self, identity: str, **kw: Any) -> TaskOrchestrator:
        return TaskOrchestrator(identity, self.machine, **kw)


async def build_stack(
    config: Optional[HauntiConfig] = None,
    *,
    registry: Optional[CircuitRegistry] = None,
    store: Optional[BlobStore] = None,
    ledger: Optional[Ledger] = None,
    clock: Clock = system_clock,
    dev_seed: Optional[str] = None,
) -> SettlementStack:
    """
    Assemble the settlement components from configuration.

    Registry precedence: explicit `registry`, then `ledger.circuits_file`, then a
    dev setup of the built-in circuits published to the blob store.
    """
    cfg = (config or HauntiConfig()).validate()
    store = store if store is not None else open_blob_store(cfg.ledger.blob_store)
    if registry is None:
        if cfg.ledger.circuits_file:
            registry = CircuitRegistry.from_file(cfg.ledger.circuits_file)
        else:
            log.warning("no circuits file configured; running dev setup for built-in circuits")
            registry = await provision(store, seed=dev_seed)
    ledger = ledger if ledger is not None else MemoryLedger(clock=clock)
    cache = ArtifactCache(registry, store, on_fetch=metrics.record_artifact_fetch)
    engine = ProofEngine(registry, cache, default_timeout=cfg.ledger.proof_timeout_secs)
    stakes = StakeLedger(ledger, cfg)
    machine = TaskStateMachine(ledger, stakes, engine, store, cfg)
    return SettlementStack(
        config=cfg,
        ledger=ledger,
        store=store,
        registry=registry,
        cache=cache,
        engine=engine,
        stakes=stakes,
        machine=machine,
    )


__all__ = ["TaskOrchestrator", "SettlementStack", "build_stack"]
