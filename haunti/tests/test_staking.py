import asyncio

import pytest

from haunti.aitypes.events import EventType
from haunti.aitypes.task import PoolType
from haunti.errors import (InsufficientStake, InvalidAmount, LockActive,
                           NoRewardsAvailable)
from haunti.ledger import (EventFilter, ManualClock, MemoryLedger,
                           position_address, reward_vault_address,
                           vault_address)
from haunti.staking import SECONDS_PER_YEAR, StakeLedger, slash_amount
from haunti.tests import small_config


async def _stakes(clock=None, **cfg):
    ledger = MemoryLedger(clock=clock or ManualClock())
    return ledger, StakeLedger(ledger, small_config(**cfg))


@pytest.mark.parametrize(
    "amount,fraction,expected",
    [(50, 0.1, 5), (99, 0.1, 9), (7, 0.0, 0), (7, 1.0, 7), (7, 2.5, 7), (10**30, 0.3, 3 * 10**29)],
)
def test_slash_amount_floors_and_clamps(amount, fraction, expected):
    assert slash_amount(amount, fraction) == expected


@pytest.mark.asyncio
async def test_stake_locks_and_moves_funds():
    clock = ManualClock(1_000.0)
    ledger, stakes = await _stakes(clock)
    await ledger.mint("bob", 100)

    pos = await stakes.stake("bob", "gpu", 60)
    assert pos.amount == 60 and pos.lock_start == 1_000.0 and pos.lock_end == 1_600.0
    assert await ledger.balance("bob") == 40
    assert await stakes.total_staked(PoolType.GPU) == 60

    # a shorter lock never shortens an existing one
    clock.advance(100)
    pos = await stakes.stake("bob", "gpu", 10, lockup_period=0)
    assert pos.amount == 70 and pos.lock_end == 1_600.0

    with pytest.raises(LockActive):
        await stakes.unstake("bob", "gpu", 10)
    clock.set(1_600.0)
    with pytest.raises(InsufficientStake):
        await stakes.unstake("bob", "gpu", 71)
    pos = await stakes.unstake("bob", "gpu", 30)
    assert pos.amount == 40
    assert await ledger.balance("bob") == 60
    assert await ledger.balance(vault_address("gpu")) == 40


@pytest.mark.asyncio
async def test_invalid_amounts():
    ledger, stakes = await _stakes()
    for bad in (0, -5, 1.5, True):
        with pytest.raises(InvalidAmount):
            await stakes.stake("bob", "gpu", bad)
    with pytest.raises(InvalidAmount):
        await stakes.slash("bob", "gpu", -0.1, "test")
    with pytest.raises(InvalidAmount):
        await stakes.slash("bob", "gpu", float("nan"), "test")


@pytest.mark.asyncio
async def test_require_minimum():
    ledger, stakes = await _stakes()
    with pytest.raises(InsufficientStake) as ei:
        await stakes.require_minimum("bob", "gpu")
    assert ei.value.details == {"required": 10, "actual": 0, "staker": "bob", "pool": "gpu"}
    await ledger.mint("bob", 10)
    await stakes.stake("bob", "gpu", 10)
    assert (await stakes.require_minimum("bob", "gpu")).amount == 10


@pytest.mark.asyncio
async def test_slash_ignores_lock_and_goes_to_treasury():
    ledger, stakes = await _stakes()
    await ledger.mint("bob", 50)
    await stakes.stake("bob", "gpu", 50)
    slashed = []
    ledger.bus.subscribe(EventFilter.of(types=[EventType.STAKE_SLASHED]), slashed.append)

    res = await stakes.slash("bob", "gpu", 0.1, "invalid_proof", task_id="t1")
    assert (res.slashed, res.remaining) == (5, 45)
    pos = await stakes.get_position("bob", "gpu")
    assert pos.amount == 45 and pos.total_slashed == 5
    assert await ledger.balance(stakes.treasury) == 5
    assert await ledger.balance(vault_address("gpu")) == 45
    assert len(slashed) == 1 and slashed[0].task_id == "t1"

    # more than the whole position: clamps and reports what was taken
    res = await stakes.slash("bob", "gpu", 3.0, "fraud")
    assert (res.slashed, res.remaining) == (45, 0)
    # nothing left: no transaction, no event
    version = (await stakes.get_position("bob", "gpu")).version
    res = await stakes.slash("bob", "gpu", 0.5, "again")
    assert res.slashed == 0
    assert (await stakes.get_position("bob", "gpu")).version == version
    assert len(slashed) == 2


@pytest.mark.asyncio
async def test_rewards_accrue_and_claim():
    ledger, stakes = await _stakes()
    await ledger.mint(stakes.treasury, 30)
    with pytest.raises(NoRewardsAvailable):
        await stakes.claim_rewards("bob", "gpu")

    pos = await stakes.accrue_reward("bob", "gpu", 20)
    assert pos.pending_rewards == 20
    assert await ledger.balance(reward_vault_address("gpu")) == 20

    paid = await stakes.claim_rewards("bob", "gpu")
    assert paid == 20
    pos = await stakes.get_position("bob", "gpu")
    assert (pos.pending_rewards, pos.rewards_claimed) == (0, 20)
    assert await ledger.balance("bob") == 20
    assert await ledger.balance(reward_vault_address("gpu")) == 0


@pytest.mark.asyncio
async def test_apy_zero_principal_and_windowed():
    clock = ManualClock(10_000_000.0)
    ledger, stakes = await _stakes(clock)
    assert await stakes.get_apy("gpu") == 0.0

    await ledger.mint(stakes.treasury, 100)
    # accrual with no principal still reports 0, never divides by zero
    await stakes.accrue_reward("bob", "gpu", 10)
    assert await stakes.get_apy("gpu") == 0.0

    await ledger.mint("bob", 1_000)
    await stakes.stake("bob", "gpu", 1_000)
    window = stakes.config.stake.apy_window_secs
    assert await stakes.get_apy("gpu") == pytest.approx(10 / 1_000 * SECONDS_PER_YEAR / window)

    clock.advance(window + 1)
    assert await stakes.get_apy("gpu") == 0.0


@pytest.mark.asyncio
async def test_positions_for_different_pairs_do_not_conflict():
    ledger, stakes = await _stakes()
    for who in ("a", "b", "c"):
        await ledger.mint(who, 30)
    await asyncio.gather(
        stakes.stake("a", "gpu", 10),
        stakes.stake("b", "gpu", 10),
        stakes.stake("c", "trainer", 10),
        stakes.stake("a", "trainer", 10),
    )
    assert (await ledger.get(position_address("gpu", "a"))).version == 1
    assert await stakes.total_staked("gpu") == 20
    assert await stakes.total_staked("trainer") == 20


@pytest.mark.asyncio
async def test_concurrent_stakes_on_one_position_all_land():
    ledger = MemoryLedger(clock=ManualClock(), latency=0.001)
    stakes = StakeLedger(ledger, small_config())
    await ledger.mint("bob", 100)
    await asyncio.gather(*(stakes.stake("bob", "gpu", 5) for _ in range(4)))
    pos = await stakes.get_position("bob", "gpu")
    assert pos.amount == 20 and pos.version == 4
    assert await ledger.balance("bob") == 80
