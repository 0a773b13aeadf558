from __future__ import annotations

"""
StakeLedger: collateral that providers lock per pool, the rewards it accrues,
and slashing.

Accounts
--------
position(pool, staker)   StakePosition record (versioned; the unit of mutual exclusion)
vault(pool)              staked principal for the pool
reward_vault(pool)       accrued staker rewards awaiting claim
treasury                 slash proceeds

Every operation reads the position, builds one Transaction that expects the
version it read, and commits. Positions for different (staker, pool) pairs
never conflict. A lost race on the position is retried a few times with a
fresh read.

The state machine settles a task in a single transaction that also touches
the claimant's position; `stage_slash()` and `stage_accrual()` add the
position-side part of such a transaction without committing it.

Amounts are integers; slashing uses `floor(amount * fraction)` computed with
Decimal so large positions do not lose precision to float rounding.
"""

import logging
import math
from dataclasses import replace
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Optional, Tuple

from haunti import metrics
from haunti.aitypes.events import Event, EventType
from haunti.aitypes.stake import SlashResult, StakePosition
from haunti.aitypes.task import PoolType
from haunti.config import HauntiConfig
from haunti.errors import (InsufficientStake, InvalidAmount, LockActive,
                           NoRewardsAvailable)
from haunti.ledger.addresses import (position_address, reward_vault_address,
                                     treasury_address, vault_address)
from haunti.ledger.store import Ledger, Transaction, submit, with_cas

log = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 86_400


def _ms(ts: float) -> int:
    return int(ts * 1000)


def _check_amount(amount: Any, what: str = "amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{what} must be an integer", details={what: repr(amount)})
    if amount <= 0:
        raise InvalidAmount(f"{what} must be positive", details={what: amount})
    return amount


def _check_fraction(fraction: Any) -> float:
    if isinstance(fraction, bool) or not isinstance(fraction, (int, float)):
        raise InvalidAmount("slash fraction must be a number", details={"fraction": repr(fraction)})
    f = float(fraction)
    if math.isnan(f) or f < 0:
        raise InvalidAmount("slash fraction must be non-negative", details={"fraction": repr(fraction)})
    return f


def slash_amount(amount: int, fraction: float) -> int:
    """floor(amount * fraction), clamped to the position."""
    if fraction >= 1.0:
        return amount
    raw = (Decimal(amount) * Decimal(str(fraction))).to_integral_value(rounding=ROUND_FLOOR)
    return min(amount, int(raw))


class StakeLedger:
    def __init__(self, ledger: Ledger, config: Optional[HauntiConfig] = None) -> None:
        self._ledger = ledger
        self._cfg = config or HauntiConfig()
        self.treasury = self._cfg.ledger.treasury_address or treasury_address()
        self._timeout = self._cfg.ledger.confirm_timeout_secs

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def config(self) -> HauntiConfig:
        return self._cfg

    def _now(self) -> float:
        return self._ledger.clock()

    # ── reads ───────────────────────────────────────────────────────────────

    async def get_position(self, staker: str, pool: Any) -> StakePosition:
        pool = PoolType(pool)
        rec = await self._ledger.get(position_address(pool, staker))
        if rec is None:
            return StakePosition(staker=staker, pool=pool)
        return StakePosition.from_dict(rec.data, version=rec.version)

    async def require_minimum(self, staker: str, pool: Any) -> StakePosition:
        pos = await self.get_position(staker, pool)
        need = self._cfg.stake.min_stake_for(pos.pool)
        if pos.amount < need:
            raise InsufficientStake(required=need, actual=pos.amount, staker=staker, pool=pos.pool.value)
        return pos

    async def total_staked(self, pool: Any) -> int:
        return await self._ledger.balance(vault_address(PoolType(pool)))

    async def get_apy(self, pool: Any) -> float:
        """Accruals inside the APY window over current principal, annualised. 0.0 with no principal."""
        pool = PoolType(pool)
        principal = await self.total_staked(pool)
        if principal <= 0:
            return 0.0
        window = self._cfg.stake.apy_window_secs
        since = self._now() - window
        accrued = sum(int(e["amount"]) for e in await self._ledger.read_log(_accruals_key(pool)) if e["ts"] > since)
        return (accrued / principal) * (SECONDS_PER_YEAR / window)

    # ── operations ──────────────────────────────────────────────────────────

    async def stake(self, staker: str, pool: Any, amount: int, lockup_period: Optional[int] = None) -> StakePosition:
        amount = _check_amount(amount)
        pool = PoolType(pool)
        lockup = self._cfg.stake.lockup_period_secs if lockup_period is None else int(lockup_period)
        if lockup < 0:
            raise InvalidAmount("lockup period must be non-negative", details={"lockup_period": lockup})

        async def attempt() -> StakePosition:
            pos = await self.get_position(staker, pool)
            now = self._now()
            new = replace(
                pos,
                amount=pos.amount + amount,
                lock_start=now,
                lock_end=max(pos.lock_end, now + lockup),
                version=pos.version + 1,
            )
            addr = position_address(pool, staker)
            tx = Transaction(memo="stake")
            tx.expect_version(addr, pos.version).put(addr, new.to_dict())
            tx.transfer(staker, vault_address(pool), amount)
            tx.emit(Event.new(EventType.STAKED, addr, ts_ms=_ms(now), staker=staker, pool=pool.value,
                              amount=amount, total=new.amount, lock_end=new.lock_end))
            await submit(self._ledger, tx, timeout=self._timeout)
            return new

        pos = await with_cas(attempt)
        log.info("stake locked", extra={"staker": staker, "pool": pool.value, "amount": amount, "total": pos.amount})
        return pos

    async def unstake(self, staker: str, pool: Any, amount: int) -> StakePosition:
        amount = _check_amount(amount)
        pool = PoolType(pool)

        async def attempt() -> StakePosition:
            pos = await self.get_position(staker, pool)
            now = self._now()
            if pos.is_locked(now):
                raise LockActive(lock_end=pos.lock_end, now=now, staker=staker, pool=pool.value)
            if amount > pos.amount:
                raise InsufficientStake(required=amount, actual=pos.amount, staker=staker, pool=pool.value,
                                        message="unstake amount exceeds position")
            new = replace(pos, amount=pos.amount - amount, version=pos.version + 1)
            addr = position_address(pool, staker)
            tx = Transaction(memo="unstake")
            tx.expect_version(addr, pos.version).put(addr, new.to_dict())
            tx.transfer(vault_address(pool), staker, amount)
            tx.emit(Event.new(EventType.UNSTAKED, addr, ts_ms=_ms(now), staker=staker, pool=pool.value,
                              amount=amount, total=new.amount))
            await submit(self._ledger, tx, timeout=self._timeout)
            return new

        pos = await with_cas(attempt)
        log.info("stake released", extra={"staker": staker, "pool": pool.value, "amount": amount, "total": pos.amount})
        return pos

    async def slash(self, staker: str, pool: Any, fraction: float, reason: str,
                    task_id: Optional[str] = None) -> SlashResult:
        """Immediate; ignores the lock. fraction > 1 takes the whole position."""
        fraction = _check_fraction(fraction)
        pool = PoolType(pool)

        async def attempt() -> SlashResult:
            pos = await self.get_position(staker, pool)
            tx = Transaction(memo="slash")
            result, _ = self.stage_slash(tx, pos, fraction, reason, task_id=task_id, now=self._now())
            if result.slashed:
                await submit(self._ledger, tx, timeout=self._timeout)
            return result

        result = await with_cas(attempt)
        self.record_slash(result)
        return result

    async def accrue_reward(self, staker: str, pool: Any, amount: int, source: Optional[str] = None) -> StakePosition:
        """Fund the pool reward vault from `source` (treasury by default) and credit the position."""
        amount = _check_amount(amount)
        pool = PoolType(pool)
        src = self.treasury if source is None else source

        async def attempt() -> StakePosition:
            pos = await self.get_position(staker, pool)
            tx = Transaction(memo="accrue")
            new = self.stage_accrual(tx, pos, amount, source=src, now=self._now())
            await submit(self._ledger, tx, timeout=self._timeout)
            return new

        return await with_cas(attempt)

    async def claim_rewards(self, staker: str, pool: Any) -> int:
        pool = PoolType(pool)

        async def attempt() -> int:
            pos = await self.get_position(staker, pool)
            if pos.pending_rewards <= 0:
                raise NoRewardsAvailable("no pending rewards", details={"staker": staker, "pool": pool.value})
            now = self._now()
            paid = pos.pending_rewards
            new = replace(pos, pending_rewards=0, rewards_claimed=pos.rewards_claimed + paid, version=pos.version + 1)
            addr = position_address(pool, staker)
            tx = Transaction(memo="claim_rewards")
            tx.expect_version(addr, pos.version).put(addr, new.to_dict())
            tx.transfer(reward_vault_address(pool), staker, paid)
            tx.emit(Event.new(EventType.REWARDS_CLAIMED, addr, ts_ms=_ms(now), staker=staker, pool=pool.value,
                              amount=paid))
            await submit(self._ledger, tx, timeout=self._timeout)
            return paid

        paid = await with_cas(attempt)
        log.info("rewards claimed", extra={"staker": staker, "pool": pool.value, "amount": paid})
        return paid

    # ── staging (no commit) ─────────────────────────────────────────────────

    def stage_slash(
        self,
        tx: Transaction,
        pos: StakePosition,
        fraction: float,
        reason: str,
        *,
        task_id: Optional[str] = None,
        now: float,
    ) -> Tuple[SlashResult, StakePosition]:
        fraction = _check_fraction(fraction)
        amount = slash_amount(pos.amount, fraction)
        new = replace(pos, amount=pos.amount - amount, total_slashed=pos.total_slashed + amount,
                      version=pos.version + 1)
        result = SlashResult(staker=pos.staker, pool=pos.pool, fraction=fraction, slashed=amount,
                             remaining=new.amount, reason=reason, task_id=task_id)
        if amount == 0:
            return result, pos

        addr = position_address(pos.pool, pos.staker)
        tx.expect_version(addr, pos.version).put(addr, new.to_dict())
        tx.transfer(vault_address(pos.pool), self.treasury, amount)
        tx.append_log(_slashes_key(pos.pool), {"ts": now, **result.to_dict()})
        tx.emit(Event.new(EventType.STAKE_SLASHED, addr, ts_ms=_ms(now), **result.to_dict()))
        return result, new

    def stage_lock(self, tx: Transaction, pos: StakePosition, until: float) -> StakePosition:
        """Hold the position at least until `until`; a claim keeps its collateral in place this way."""
        new = replace(pos, lock_end=max(pos.lock_end, until), version=pos.version + 1)
        addr = position_address(pos.pool, pos.staker)
        tx.expect_version(addr, pos.version).put(addr, new.to_dict())
        return new

    def stage_accrual(
        self,
        tx: Transaction,
        pos: StakePosition,
        amount: int,
        *,
        source: str,
        now: float,
        task_id: Optional[str] = None,
    ) -> StakePosition:
        new = replace(pos, pending_rewards=pos.pending_rewards + amount, version=pos.version + 1)
        addr = position_address(pos.pool, pos.staker)
        tx.expect_version(addr, pos.version).put(addr, new.to_dict())
        tx.transfer(source, reward_vault_address(pos.pool), amount)
        tx.append_log(_accruals_key(pos.pool), {"ts": now, "staker": pos.staker, "amount": amount, "task_id": task_id})
        tx.emit(Event.new(EventType.REWARD_ACCRUED, addr, ts_ms=_ms(now), staker=pos.staker, pool=pos.pool.value,
                          amount=amount, pending=new.pending_rewards, task_id=task_id))
        return new

    @staticmethod
    def record_slash(result: SlashResult) -> None:
        if result.slashed:
            metrics.record_slash(result.pool.value, result.reason, result.slashed)
            log.warning(
                "stake slashed",
                extra={"staker": result.staker, "pool": result.pool.value, "amount": result.slashed,
                       "reason": result.reason, "task_id": result.task_id},
            )



def _accruals_key(pool: PoolType) -> str:
    return f"accruals:{pool.value}"


def _slashes_key(pool: PoolType) -> str:
    return f"slashes:{pool.value}"


__all__ = ["StakeLedger", "slash_amount", "SECONDS_PER_YEAR"]
