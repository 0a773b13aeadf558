"""Stake positions per (staker, pool): lock, unstake, slash, rewards."""

from .ledger import SECONDS_PER_YEAR, StakeLedger, slash_amount

__all__ = ["StakeLedger", "slash_amount", "SECONDS_PER_YEAR"]
