import random

import pytest

from core.errors import StateConflict
from haunti import metrics
from haunti.config import RetryConfig
from haunti.errors import ConfirmationTimeout, LedgerUnavailable, OutcomeUnknown
from haunti.retry import UNRESOLVED, RetryPolicy, call_with_retry
from zk.errors import ProofTimeout


class _Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _flaky(failures, result="done", exc=LedgerUnavailable):
    calls = {"n": 0}

    async def fn():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise exc("injected")
        return result

    return fn, calls


def test_backoff_is_exponential_and_capped():
    p = RetryPolicy(base_delay=0.5, multiplier=2.0, max_delay=3.0, jitter_fraction=0.0)
    assert [p.backoff_seconds(a) for a in (1, 2, 3, 4, 5)] == [0.5, 1.0, 2.0, 3.0, 3.0]
    assert p.backoff_seconds(0) == 0.5


def test_jitter_stays_within_fraction():
    p = RetryPolicy(jitter_fraction=0.2)
    rng = random.Random(7)
    for _ in range(200):
        d = p.with_jitter(1.0, rng)
        assert 0.8 <= d <= 1.2


def test_policy_from_config_and_classify():
    p = RetryPolicy.from_config(RetryConfig(attempts=6, base_delay=0.1))
    assert p.attempts_cap == 6 and p.base_delay == 0.1
    assert RetryPolicy.classify(ConfirmationTimeout()) == "transient"
    assert RetryPolicy.classify(StateConflict()) == "permanent"
    # exhaustion is itself final
    assert RetryPolicy.classify(OutcomeUnknown()) == "permanent"
    assert RetryPolicy.classify(ValueError()) == "permanent"


@pytest.mark.asyncio
async def test_retries_transient_then_succeeds():
    sleeps = _Sleeps()
    fn, calls = _flaky(2)
    policy = RetryPolicy(attempts_cap=4, base_delay=0.1, multiplier=2.0, jitter_fraction=0.0)
    before = metrics.REGISTRY.get_sample_value(
        "haunti_retry_attempts_total", {"op": "unit", "code": LedgerUnavailable.code}
    ) or 0.0
    assert await call_with_retry(fn, op="unit", policy=policy, sleep=sleeps) == "done"
    assert calls["n"] == 3
    assert sleeps.delays == pytest.approx([0.1, 0.2])
    after = metrics.REGISTRY.get_sample_value(
        "haunti_retry_attempts_total", {"op": "unit", "code": LedgerUnavailable.code}
    )
    assert after == before + 2


@pytest.mark.asyncio
async def test_non_transient_surfaces_immediately():
    sleeps = _Sleeps()
    fn, calls = _flaky(5, exc=StateConflict)
    with pytest.raises(StateConflict):
        await call_with_retry(fn, op="unit", policy=RetryPolicy(), sleep=sleeps)
    assert calls["n"] == 1 and sleeps.delays == []


@pytest.mark.asyncio
async def test_surfaced_transient_errors_are_not_retried():
    sleeps = _Sleeps()
    fn, calls = _flaky(5, exc=ProofTimeout)
    with pytest.raises(ProofTimeout):
        await call_with_retry(fn, op="unit", policy=RetryPolicy(), sleep=sleeps, surface=(ProofTimeout,))
    assert calls["n"] == 1 and sleeps.delays == []

    # other transient errors still go round the loop
    fn, calls = _flaky(1, exc=LedgerUnavailable)
    assert await call_with_retry(fn, op="unit", policy=RetryPolicy(), sleep=sleeps, surface=(ProofTimeout,)) == "done"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_exhaustion_raises_outcome_unknown():
    sleeps = _Sleeps()
    fn, calls = _flaky(10, exc=ConfirmationTimeout)
    with pytest.raises(OutcomeUnknown) as ei:
        await call_with_retry(fn, op="unit", policy=RetryPolicy(attempts_cap=3, jitter_fraction=0.0), sleep=sleeps)
    assert calls["n"] == 3
    assert len(sleeps.delays) == 2
    assert ei.value.details == {"op": "unit", "attempts": 3, "last_error": ConfirmationTimeout.code}
    assert isinstance(ei.value.cause, ConfirmationTimeout)
    assert ei.value.retryable is False


@pytest.mark.asyncio
async def test_recheck_short_circuits_when_effect_landed():
    sleeps = _Sleeps()
    fn, calls = _flaky(10, exc=ConfirmationTimeout)
    checks = []

    async def recheck():
        checks.append(1)
        return "already-there" if len(checks) >= 2 else UNRESOLVED

    out = await call_with_retry(fn, op="unit", policy=RetryPolicy(attempts_cap=5), recheck=recheck, sleep=sleeps)
    assert out == "already-there"
    # attempt 1 fails, recheck unresolved, attempt 2 fails, recheck finds it
    assert calls["n"] == 2 and len(checks) == 2


@pytest.mark.asyncio
async def test_recheck_errors_follow_the_same_rules():
    sleeps = _Sleeps()
    fn, calls = _flaky(1, exc=ConfirmationTimeout)

    async def flaky_recheck():
        raise LedgerUnavailable("read failed")

    # a transient recheck failure just means "try again"
    assert await call_with_retry(fn, op="unit", policy=RetryPolicy(), recheck=flaky_recheck, sleep=sleeps) == "done"

    fn, _ = _flaky(1, exc=ConfirmationTimeout)

    async def broken_recheck():
        raise StateConflict("gone")

    with pytest.raises(StateConflict):
        await call_with_retry(fn, op="unit", policy=RetryPolicy(), recheck=broken_recheck, sleep=sleeps)
