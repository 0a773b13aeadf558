from __future__ import annotations

"""
haunti.retry
============

Bounded retry for transient infrastructure failures (blob fetch, ledger
unavailable, confirmation timeout).

Usage
-----
    policy = RetryPolicy.from_config(cfg.retry)
    task_id = await call_with_retry(lambda: sm.create(owner, params),
                                    op="create_task", policy=policy,
                                    recheck=find_created_task)

Design notes
------------
- Exponential backoff with jitter and an upper bound.
- Only errors flagged `retryable` are retried; everything else surfaces at once.
- A transient failure may have applied anyway (a confirmation timeout is an
  unknown outcome), so between attempts the caller's `recheck` re-reads state.
  If it finds the effect already in place it returns the result and the loop
  stops; if it returns UNRESOLVED the operation is attempted again.
- When the attempt cap is reached, OutcomeUnknown is raised: the caller must
  re-check state before acting.
- Some retryable errors are final for a given operation (a proof timeout is
  deterministic for the same budget). Callers name those in `surface`.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from core.errors import HauntiError, is_retryable

from . import metrics
from .config import RetryConfig
from .errors import OutcomeUnknown

log = logging.getLogger(__name__)

T = TypeVar("T")

UNRESOLVED: Any = object()


@dataclass(frozen=True)
class RetryPolicy:
    """
    attempts_cap: total attempts including the first one.
    base_delay: delay before the first retry.
    multiplier: exponential scale factor per attempt.
    max_delay: upper bound for a single backoff.
    jitter_fraction: +/- fraction applied as random jitter to avoid herd effects.
    """

    attempts_cap: int = 4
    base_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter_fraction: float = 0.20

    @staticmethod
    def from_config(cfg: RetryConfig) -> "RetryPolicy":
        return RetryPolicy(
            attempts_cap=cfg.attempts,
            base_delay=cfg.base_delay,
            multiplier=cfg.multiplier,
            max_delay=cfg.max_delay,
            jitter_fraction=cfg.jitter_fraction,
        )

    @staticmethod
    def classify(exc: BaseException) -> str:
        if is_retryable(exc):
            return "transient"
        return "permanent"

    def backoff_seconds(self, attempts: int) -> float:
        """attempts = 1 → first retry delay = base_delay"""
        a = max(1, int(attempts))
        raw = self.base_delay * (self.multiplier ** (a - 1))
        return float(min(self.max_delay, raw))

    def with_jitter(self, seconds: float, rng: Optional[random.Random] = None) -> float:
        r = (rng or random).random()
        jitter = seconds * self.jitter_fraction * (2.0 * r - 1.0)
        return max(0.0, seconds + jitter)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    op: str,
    policy: RetryPolicy,
    recheck: Optional[Callable[[], Awaitable[Any]]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
    surface: Tuple[Type[BaseException], ...] = (),
) -> T:
    """`surface` lists retryable error types that the caller wants raised on first sight."""
    last: Optional[HauntiError] = None
    for attempt in range(1, max(1, policy.attempts_cap) + 1):
        if attempt > 1 and recheck is not None:
            try:
                found = await recheck()
            except HauntiError as e:
                if policy.classify(e) != "transient":
                    raise
                log.info("retry: recheck failed transiently (op=%s err=%s)", op, e.code)
            else:
                if found is not UNRESOLVED:
                    log.info("retry: effect already applied (op=%s attempt=%d)", op, attempt)
                    return found
        try:
            return await fn()
        except HauntiError as e:
            if isinstance(e, surface) or policy.classify(e) != "transient":
                raise
            last = e
        if attempt >= policy.attempts_cap:
            break
        delay = policy.with_jitter(policy.backoff_seconds(attempt), rng)
        metrics.record_retry(op, last.code)
        log.warning("retry: transient failure (op=%s attempt=%d delay=%.2fs error=%s)", op, attempt, delay, last.code)
        await sleep(delay)

    assert last is not None
    log.error("retry: attempts exhausted (op=%s attempts=%d last=%s)", op, policy.attempts_cap, last.code)
    raise OutcomeUnknown(
        "operation outcome unknown after retries; re-check state before acting",
        details={"op": op, "attempts": policy.attempts_cap, "last_error": last.code},
        cause=last,
    ) from last


__all__ = ["RetryPolicy", "call_with_retry", "UNRESOLVED"]
