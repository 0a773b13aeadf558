import asyncio

import pytest

from haunti.aitypes.events import Event, EventType
from haunti.errors import (ConfirmationTimeout, InsufficientBalance,
                           InvalidAmount, LedgerUnavailable, VersionConflict)
from haunti.ledger import (EventBus, EventFilter, ManualClock, MemoryLedger,
                           Transaction, derive_address, escrow_address,
                           position_address, task_address, vault_address,
                           with_cas)


# ── addresses ────────────────────────────────────────────────────────────────

def test_addresses_are_deterministic_and_separated():
    a = task_address("alice", "sha256:" + "00" * 32, 0)
    assert a == task_address("alice", "sha256:" + "00" * 32, 0)
    assert a != task_address("alice", "sha256:" + "00" * 32, 1)
    assert len(a) == 64 and int(a, 16) >= 0
    # length prefixes keep seed boundaries apart
    assert derive_address("x", "ab", "c") != derive_address("x", "a", "bc")
    assert position_address("gpu", "bob") != position_address("trainer", "bob")
    assert escrow_address(a) != a
    assert vault_address("gpu") == vault_address("gpu")


def test_bool_seed_rejected():
    with pytest.raises(TypeError):
        derive_address("x", True)


def test_manual_clock_never_goes_back():
    clock = ManualClock(100.0)
    assert clock.advance(5) == 105.0
    with pytest.raises(ValueError):
        clock.advance(-1)
    with pytest.raises(ValueError):
        clock.set(1.0)


# ── transactions ─────────────────────────────────────────────────────────────

def test_transaction_builder_rules():
    tx = Transaction(memo="t")
    tx.expect_version("a", 1).expect_version("a", 1)
    with pytest.raises(ValueError):
        tx.expect_version("a", 2)
    with pytest.raises(InvalidAmount):
        tx.transfer("a", "b", -1)
    with pytest.raises(InvalidAmount):
        tx.transfer("a", "b", 1.5)
    tx.transfer("a", "b", 0).transfer("a", "a", 5)
    assert tx.transfers == []


@pytest.mark.asyncio
async def test_commit_applies_everything_or_nothing():
    ledger = MemoryLedger(clock=ManualClock())
    await ledger.mint("alice", 10)

    tx = Transaction()
    tx.expect_version("acct", 0).put("acct", {"n": 1})
    tx.transfer("alice", "bob", 7)
    tx.append_log("hist", {"what": "first"})
    receipt = await ledger.commit(tx)
    assert receipt.slot == 1 and not receipt.duplicate

    rec = await ledger.get("acct")
    assert rec.version == 1 and rec.data == {"n": 1}
    assert await ledger.balance("alice") == 3
    assert await ledger.balance("bob") == 7
    assert await ledger.read_log("hist") == [{"what": "first", "slot": 1}]

    # stale precondition: nothing moves
    stale = Transaction().expect_version("acct", 0).put("acct", {"n": 2}).transfer("alice", "bob", 1)
    with pytest.raises(VersionConflict) as ei:
        await ledger.commit(stale)
    assert ei.value.address == "acct"
    assert (await ledger.get("acct")).data == {"n": 1}
    assert await ledger.balance("alice") == 3

    # overdraft inside a chain of transfers: nothing moves
    over = Transaction().expect_version("acct", 1).put("acct", {"n": 3})
    over.transfer("alice", "carol", 3).transfer("alice", "dave", 1)
    with pytest.raises(InsufficientBalance):
        await ledger.commit(over)
    assert (await ledger.get("acct")).version == 1
    assert await ledger.balance("carol") == 0


@pytest.mark.asyncio
async def test_reads_are_copies():
    ledger = MemoryLedger()
    await ledger.commit(Transaction().put("acct", {"items": [1]}))
    rec = await ledger.get("acct")
    rec.data["items"].append(2)
    assert (await ledger.get("acct")).data == {"items": [1]}


@pytest.mark.asyncio
async def test_resubmission_is_deduplicated():
    ledger = MemoryLedger()
    await ledger.mint("alice", 5)
    tx = Transaction("tx-1").transfer("alice", "bob", 5)
    ledger.fail_next(1, "timeout_after_apply")
    with pytest.raises(ConfirmationTimeout):
        await ledger.commit(tx)
    # the timed-out commit applied; a blind resubmission must not apply twice
    again = await ledger.commit(tx)
    assert again.duplicate is True
    assert await ledger.balance("bob") == 5
    assert await ledger.balance("alice") == 0


@pytest.mark.asyncio
async def test_fault_modes():
    ledger = MemoryLedger()
    ledger.fail_next(1, "unavailable")
    ledger.fail_next(1, "timeout_before_apply")
    with pytest.raises(LedgerUnavailable):
        await ledger.commit(Transaction().put("a", {}))
    with pytest.raises(ConfirmationTimeout):
        await ledger.commit(Transaction().put("a", {}))
    assert await ledger.get("a") is None
    await ledger.commit(Transaction().put("a", {}))
    assert ledger.attempts == 3
    with pytest.raises(ValueError):
        ledger.fail_next(1, "explode")


@pytest.mark.asyncio
async def test_latency_beyond_timeout_is_unknown_outcome():
    ledger = MemoryLedger(latency=0.2)
    with pytest.raises(ConfirmationTimeout):
        await ledger.commit(Transaction().put("a", {}), timeout=0.01)


@pytest.mark.asyncio
async def test_with_cas_rereads_on_conflict():
    ledger = MemoryLedger()
    await ledger.commit(Transaction().put("ctr", {"n": 0}))
    calls = []

    async def bump():
        rec = await ledger.get("ctr")
        if not calls:
            # someone else commits between our read and our write
            await ledger.commit(Transaction().expect_version("ctr", rec.version).put("ctr", {"n": 100}))
        calls.append(rec.version)
        tx = Transaction().expect_version("ctr", rec.version).put("ctr", {"n": rec.data["n"] + 1})
        await ledger.commit(tx)
        return rec.data["n"] + 1

    assert await with_cas(bump) == 101
    assert calls == [1, 2]

    with pytest.raises(VersionConflict):
        await with_cas(lambda: ledger.commit(Transaction().expect_version("ctr", 0)), attempts=2)


# ── events ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_events_published_after_apply_with_filters():
    ledger = MemoryLedger()
    seen, task_only, boom_calls = [], [], []

    async def on_async(ev):
        await asyncio.sleep(0)
        task_only.append(ev.etype)

    def boom(ev):
        boom_calls.append(ev)
        raise RuntimeError("subscriber bug")

    ledger.bus.subscribe(None, boom)
    sub = ledger.bus.subscribe(None, seen.append)
    ledger.bus.subscribe(EventFilter.of(task_id="t1"), on_async)

    tx = Transaction()
    tx.emit(Event.new(EventType.TASK_CREATED, "t1", ts_ms=1))
    tx.emit(Event.new(EventType.STAKE_SLASHED, "pos", ts_ms=2, task_id="t1"))
    tx.emit(Event.new(EventType.STAKED, "pos", ts_ms=3))
    await ledger.commit(tx)

    assert [e.etype for e in seen] == [EventType.TASK_CREATED, EventType.STAKE_SLASHED, EventType.STAKED]
    await ledger.bus.drain()
    assert task_only == [EventType.TASK_CREATED, EventType.STAKE_SLASHED]
    assert len(boom_calls) == 3

    # failed commits publish nothing
    with pytest.raises(VersionConflict):
        await ledger.commit(Transaction().expect_version("x", 9).emit(Event.new(EventType.STAKED, "p")))
    assert len(seen) == 3

    sub.cancel()
    assert not sub.active
    await ledger.commit(Transaction().emit(Event.new(EventType.UNSTAKED, "p")))
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_slow_async_subscriber_does_not_hold_commits():
    ledger = MemoryLedger()
    gate = asyncio.Event()
    got = []

    async def stuck(ev):
        await gate.wait()
        got.append(ev.subject)

    sub = ledger.bus.subscribe(None, stuck)
    for i in range(3):
        receipt = await asyncio.wait_for(ledger.commit(Transaction().emit(Event.new(EventType.STAKED, f"p{i}"))), 1.0)
        assert receipt.slot == i + 1
    assert got == [] and sub.pending >= 2

    gate.set()
    await ledger.bus.drain()
    assert got == ["p0", "p1", "p2"]
    sub.cancel()
    assert len(ledger.bus) == 0


@pytest.mark.asyncio
async def test_concurrent_commits_publish_in_slot_order():
    ledger = MemoryLedger(latency=0.001)
    order = []

    async def on_event(ev):
        order.append(ev.data["slot_hint"])

    ledger.bus.subscribe(None, on_event)
    receipts = await asyncio.gather(*(
        ledger.commit(Transaction().emit(Event.new(EventType.STAKED, "p", slot_hint=i))) for i in range(5)
    ))
    await ledger.bus.drain()
    by_slot = [r.events[0].data["slot_hint"] for r in sorted(receipts, key=lambda r: r.slot)]
    assert order == by_slot


def test_full_subscriber_queue_drops_and_counts():
    async def run():
        bus = EventBus(queue_size=1)
        gate = asyncio.Event()

        async def stuck(ev):
            await gate.wait()

        sub = bus.subscribe(None, stuck)
        bus.publish([Event.new(EventType.STAKED, "a"), Event.new(EventType.STAKED, "b"),
                     Event.new(EventType.STAKED, "c")])
        # the first is taken by the pump only once it runs, so the queue is full now
        assert sub.dropped == 2
        gate.set()
        await bus.drain()
        sub.cancel()

    asyncio.run(run())


def test_event_roundtrip_and_filter_types():
    ev = Event.new(EventType.REWARD_ACCRUED, "pos", ts_ms=5, amount=3, task_id="t9")
    assert Event.from_dict(ev.to_dict()) == ev
    assert ev.task_id == "t9"
    flt = EventFilter.of(types=["RewardAccrued", EventType.STAKED])
    assert flt.matches(ev)
    assert not flt.matches(Event.new(EventType.UNSTAKED, "pos"))
    assert len(EventBus()) == 0
