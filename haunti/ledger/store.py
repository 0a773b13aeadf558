from __future__ import annotations

"""
Account ledger collaborator.

The settlement layer needs a small set of things from a ledger:

- versioned account records with compare-and-transition writes
  (a write commits only if every expected version still matches; 0 = absent)
- token balances and transfers
- append-only logs (reward accrual history, slash history)
- events, published only after the transaction applies
- a confirmation timeout whose outcome is *unknown* to the caller

`Transaction` collects preconditions, writes, transfers, log appends and
events; `Ledger.commit()` applies all of them or none. Commits are
de-duplicated by `tx_id`: resubmitting a transaction that already applied
returns the original receipt instead of applying it twice.

`MemoryLedger` is the in-process implementation used by tests, the CLI and the
dev RPC server. It supports fault injection (`fail_next`) to exercise the
retry and re-check paths.
"""

import asyncio
import copy
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import (Any, Awaitable, Callable, Deque, Dict, List, Mapping,
                    Optional, Protocol, Tuple, TypeVar)

from core.errors import HauntiError
from haunti import metrics
from haunti.aitypes.events import Event
from haunti.errors import (ConfirmationTimeout, InsufficientBalance,
                           InvalidAmount, LedgerUnavailable, VersionConflict)

from .clock import Clock, system_clock
from .events import EventBus

log = logging.getLogger(__name__)

T = TypeVar("T")

FAULT_MODES = ("unavailable", "timeout_before_apply", "timeout_after_apply")


@dataclass(frozen=True)
class Versioned:
    address: str
    version: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class Receipt:
    tx_id: str
    slot: int
    applied_at: float
    events: Tuple[Event, ...] = ()
    duplicate: bool = False


class Transaction:
    """Builder for one atomic ledger transaction. Methods chain."""

    def __init__(self, tx_id: Optional[str] = None, *, memo: str = "") -> None:
        self.tx_id = tx_id or uuid.uuid4().hex
        self.memo = memo
        self.expects: Dict[str, int] = {}
        self.writes: Dict[str, Dict[str, Any]] = {}
        self.transfers: List[Tuple[str, str, int]] = []
        self.log_appends: List[Tuple[str, Dict[str, Any]]] = []
        self.events: List[Event] = []

    def expect_version(self, address: str, version: int) -> "Transaction":
        prev = self.expects.get(address)
        if prev is not None and prev != version:
            raise ValueError(f"conflicting preconditions for {address}: {prev} vs {version}")
        self.expects[address] = int(version)
        return self

    def put(self, address: str, data: Mapping[str, Any]) -> "Transaction":
        self.writes[address] = dict(data)
        return self

    def transfer(self, src: str, dst: str, amount: int) -> "Transaction":
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount("transfer amount must be an integer", details={"amount": repr(amount)})
        if amount < 0:
            raise InvalidAmount("transfer amount must be non-negative", details={"amount": amount})
        if amount and src != dst:
            self.transfers.append((src, dst, amount))
        return self

    def append_log(self, key: str, entry: Mapping[str, Any]) -> "Transaction":
        self.log_appends.append((key, dict(entry)))
        return self

    def emit(self, event: Event) -> "Transaction":
        self.events.append(event)
        return self

    def __repr__(self) -> str:
        return (
            f"Transaction(tx_id={self.tx_id!r}, memo={self.memo!r}, expects={len(self.expects)}, "
            f"writes={len(self.writes)}, transfers={len(self.transfers)}, events={len(self.events)})"
        )


class Ledger(Protocol):
    @property
    def clock(self) -> Clock: ...
    @property
    def bus(self) -> EventBus: ...
    async def get(self, address: str) -> Optional[Versioned]: ...
    async def balance(self, address: str) -> int: ...
    async def read_log(self, key: str) -> List[Dict[str, Any]]: ...
    async def commit(self, tx: Transaction, timeout: Optional[float] = None) -> Receipt: ...
    async def mint(self, address: str, amount: int) -> int: ...


class MemoryLedger:
    def __init__(self, *, clock: Clock = system_clock, bus: Optional[EventBus] = None,
                 latency: float = 0.0) -> None:
        self._clock = clock
        self._bus = bus or EventBus()
        self._latency = float(latency)
        self._accounts: Dict[str, Versioned] = {}
        self._balances: Dict[str, int] = defaultdict(int)
        self._logs: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._receipts: Dict[str, Receipt] = {}
        self._faults: Deque[str] = deque()
        self._lock = asyncio.Lock()
        self._slot = 0
        self.attempts = 0

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def slot(self) -> int:
        return self._slot

    # ── reads ───────────────────────────────────────────────────────────────

    async def get(self, address: str) -> Optional[Versioned]:
        rec = self._accounts.get(address)
        if rec is None:
            return None
        return Versioned(rec.address, rec.version, copy.deepcopy(rec.data))

    async def balance(self, address: str) -> int:
        return self._balances.get(address, 0)

    async def read_log(self, key: str) -> List[Dict[str, Any]]:
        return [dict(e) for e in self._logs.get(key, ())]

    # ── writes ──────────────────────────────────────────────────────────────

    async def mint(self, address: str, amount: int) -> int:
        if amount <= 0:
            raise InvalidAmount("mint amount must be positive", details={"amount": amount})
        async with self._lock:
            self._balances[address] += int(amount)
            return self._balances[address]

    def fail_next(self, n: int = 1, mode: str = "unavailable") -> None:
        """Make the next `n` commits fail in `mode` (see FAULT_MODES)."""
        if mode not in FAULT_MODES:
            raise ValueError(f"unknown fault mode {mode!r}")
        self._faults.extend([mode] * n)

    async def commit(self, tx: Transaction, timeout: Optional[float] = None) -> Receipt:
        self.attempts += 1
        fault = self._faults.popleft() if self._faults else None
        if fault == "unavailable":
            raise LedgerUnavailable("ledger endpoint unavailable", details={"tx_id": tx.tx_id})

        done = self._receipts.get(tx.tx_id)
        if done is not None:
            return _as_duplicate(done)

        if self._latency:
            try:
                await asyncio.wait_for(asyncio.sleep(self._latency), timeout)
            except asyncio.TimeoutError:
                raise ConfirmationTimeout(
                    "commit not confirmed in time", details={"tx_id": tx.tx_id, "timeout": timeout}
                ) from None
        if fault == "timeout_before_apply":
            raise ConfirmationTimeout("commit not confirmed in time", details={"tx_id": tx.tx_id})

        async with self._lock:
            done = self._receipts.get(tx.tx_id)
            if done is not None:
                return _as_duplicate(done)
            receipt = self._apply(tx)
            # under the lock, so subscribers see commits in slot order
            self._bus.publish(receipt.events)

        log.debug("ledger commit %s slot=%d memo=%s", tx.tx_id, receipt.slot, tx.memo)

        if fault == "timeout_after_apply":
            raise ConfirmationTimeout("commit not confirmed in time", details={"tx_id": tx.tx_id})
        return receipt

    def _apply(self, tx: Transaction) -> Receipt:
        for addr, expected in tx.expects.items():
            cur = self._accounts.get(addr)
            actual = cur.version if cur is not None else 0
            if actual != expected:
                raise VersionConflict(address=addr, expected=expected, actual=actual)

        staged: Dict[str, int] = {}
        for src, dst, amount in tx.transfers:
            have = staged.get(src, self._balances.get(src, 0))
            if have < amount:
                raise InsufficientBalance(address=src, required=amount, available=have)
            staged[src] = have - amount
            staged[dst] = staged.get(dst, self._balances.get(dst, 0)) + amount

        self._slot += 1
        for addr, data in tx.writes.items():
            cur = self._accounts.get(addr)
            version = (cur.version if cur is not None else 0) + 1
            self._accounts[addr] = Versioned(addr, version, copy.deepcopy(data))
        self._balances.update(staged)
        for key, entry in tx.log_appends:
            self._logs[key].append(dict(entry, slot=self._slot))

        receipt = Receipt(tx_id=tx.tx_id, slot=self._slot, applied_at=self._clock(), events=tuple(tx.events))
        self._receipts[tx.tx_id] = receipt
        return receipt


async def submit(ledger: Ledger, tx: Transaction, *, timeout: Optional[float] = None) -> Receipt:
    """Commit through `ledger` and count the result in haunti metrics."""
    try:
        receipt = await ledger.commit(tx, timeout=timeout)
    except VersionConflict:
        metrics.record_commit("conflict")
        raise
    except HauntiError:
        metrics.record_commit("error")
        raise
    metrics.record_commit("duplicate" if receipt.duplicate else "ok")
    return receipt


async def with_cas(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 5,
    retry_if: Optional[Callable[[VersionConflict], bool]] = None,
) -> T:
    """
    Run a read-build-commit closure, re-running it when a version precondition
    fails. `retry_if` narrows which conflicts are worth a fresh read; the rest
    propagate to the caller as a lost race.
    """
    for i in range(attempts):
        try:
            return await fn()
        except VersionConflict as e:
            if i == attempts - 1 or (retry_if is not None and not retry_if(e)):
                raise
            log.debug("version conflict on %s; re-reading (attempt %d)", e.address, i + 1)
    raise AssertionError("unreachable")


def _as_duplicate(r: Receipt) -> Receipt:
    return Receipt(tx_id=r.tx_id, slot=r.slot, applied_at=r.applied_at, events=r.events, duplicate=True)


__all__ = ["Versioned", "Receipt", "Transaction", "Ledger", "MemoryLedger", "FAULT_MODES", "submit", "with_cas"]
