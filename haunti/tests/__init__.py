"""
haunti.tests helpers

Exports:
- MODEL_REF, DATASET_REF: well-formed task references
- small_config(**sections) -> HauntiConfig with small stake/reward bounds and instant retries
- task_params(**overrides) -> TaskParams for the inference circuit
- make_stack(setups, ...) -> SettlementStack over a MemoryLedger and an in-memory blob store

Stacks hold asyncio primitives; build them inside the test's event loop.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from haunti.aitypes.task import TaskParams
from haunti.config import (HauntiConfig, LedgerConfig, RetryConfig,
                           StakeConfig, TaskLimits)
from haunti.ledger.clock import ManualClock
from haunti.ledger.store import MemoryLedger
from haunti.orchestrator import SettlementStack, build_stack
from zk.tests import deploy

MODEL_REF = "sha256:" + "ab" * 32
DATASET_REF = "ipfs://bafybeigdyrztdataset"


def small_config(**sections: Any) -> HauntiConfig:
    cfg = HauntiConfig(
        stake=StakeConfig(min_stake_gpu=10, min_stake_validator=10, min_stake_trainer=10, lockup_period_secs=600),
        tasks=TaskLimits(min_reward=1, max_reward=1_000_000, min_time_limit_secs=60,
                         max_time_limit_secs=86_400, claim_window_secs=1_800),
        retry=RetryConfig(attempts=3, base_delay=0.0, multiplier=1.0, max_delay=0.0, jitter_fraction=0.0),
        ledger=LedgerConfig(confirm_timeout_secs=5.0, proof_timeout_secs=120.0),
    )
    return replace(cfg, **sections).validate()


def task_params(**overrides: Any) -> TaskParams:
    base = dict(model_ref=MODEL_REF, dataset_ref=DATASET_REF, circuit="inference", reward=100, time_limit=3_600)
    base.update(overrides)
    return TaskParams(**base)


async def make_stack(
    setups,
    *,
    clock: Optional[ManualClock] = None,
    config: Optional[HauntiConfig] = None,
    latency: float = 0.0,
) -> SettlementStack:
    registry, store = deploy([setups["inference"], setups["training"]])
    ledger = MemoryLedger(clock=clock or ManualClock(), latency=latency)
    return await build_stack(config or small_config(), registry=registry, store=store, ledger=ledger)


__all__ = ["MODEL_REF", "DATASET_REF", "small_config", "task_params", "make_stack"]
