import json

import pytest

from core.errors import (ConfigurationError, EconomicError, HauntiError,
                         IntegrityError, NotFound, StateConflict,
                         TransientInfraError, Unauthorized,
                         VerificationFailure, http_status_for, is_retryable,
                         wrap)
from haunti import errors as herr
from zk import errors as zerr


@pytest.mark.parametrize(
    "cls,category,status,retryable",
    [
        (ConfigurationError, "configuration", 400, False),
        (TransientInfraError, "transient", 503, True),
        (IntegrityError, "integrity", 422, False),
        (VerificationFailure, "verification", 422, False),
        (StateConflict, "state", 409, False),
        (EconomicError, "economic", 402, False),
        (NotFound, "not_found", 404, False),
        (Unauthorized, "authorization", 403, False),
    ],
)
def test_categories(cls, category, status, retryable):
    e = cls("boom")
    assert e.category == category
    assert http_status_for(e) == status
    assert is_retryable(e) is retryable


def test_domain_errors_slot_into_categories():
    assert isinstance(herr.VersionConflict(address="a", expected=1, actual=2), StateConflict)
    assert isinstance(herr.TaskExpired(task_id="t", deadline=1.0, now=2.0), StateConflict)
    assert isinstance(herr.LockActive(lock_end=5.0, now=1.0, staker="s", pool="gpu"), EconomicError)
    assert isinstance(herr.ProofRejected(), VerificationFailure)
    assert isinstance(zerr.ArtifactIntegrityFailed(), IntegrityError)
    assert is_retryable(zerr.ArtifactFetchFailed())
    assert is_retryable(herr.ConfirmationTimeout())
    # exhausting retries is final for the caller
    assert not is_retryable(herr.OutcomeUnknown())
    assert http_status_for(ValueError()) == 500


def test_to_dict_is_json_safe():
    e = herr.InsufficientStake(required=10, actual=3, staker="bob", pool="gpu")
    d = e.to_dict()
    assert d == {
        "code": "HAUNTI/INSUFFICIENT_STAKE",
        "category": "economic",
        "message": "insufficient stake",
        "details": {"required": 10, "actual": 3, "staker": "bob", "pool": "gpu"},
        "retryable": False,
    }
    json.dumps(d)
    assert str(e).startswith("HAUNTI/INSUFFICIENT_STAKE: insufficient stake [")


def test_details_are_coerced():
    e = HauntiError("x", details={"raw": b"\x01\x02", "items": (1, {"k": object}), 3: None})
    assert e.details["raw"] == "0102"
    assert e.details["items"][0] == 1
    assert isinstance(e.details["items"][1]["k"], str)
    assert e.details["3"] is None


def test_wrap_keeps_cause_and_merges_context():
    low = OSError("disk gone")
    e = wrap(low, TransientInfraError, circuit="inference")
    assert e.cause is low and e.details == {"circuit": "inference"}
    assert e.to_dict(include_cause=True)["cause"] == {"type": "OSError", "message": "disk gone"}

    typed = ConfigurationError("bad")
    assert wrap(typed, ConfigurationError, key="v") is typed
    assert typed.details == {"key": "v"}
    assert "key" in str(typed)
