import asyncio

import pytest

from zk.artifacts import ArtifactCache
from zk.engine import ProofEngine
from zk.errors import (CircuitNotConfigured, InputSchemaViolation, ProofTimeout,
                       ProvingKeyMissing, VerificationEngineError)
from zk.proof import ProofArtifact, encode_signals, proof_id
from zk.r1cs import R, encode_input
from zk.tests import MODEL_HASH, SAMPLE_INPUTS, deploy


def _mk_engine(setups, **kw):
    registry, store = deploy([setups["inference"], setups["training"]], **kw)
    return ProofEngine(registry, ArtifactCache(registry, store))


@pytest.fixture(scope="module")
def proven(setups):
    """One proof per built-in circuit, shared by the read-only tests below."""

    async def run():
        engine = _mk_engine(setups)
        return {name: await engine.prove(name, SAMPLE_INPUTS[name]) for name in SAMPLE_INPUTS}

    return asyncio.run(run())


def test_prove_reports_outputs_then_public_inputs(proven):
    art = proven["inference"]
    assert isinstance(art, ProofArtifact)
    assert list(art.public_signals) == [33, 3, 4, encode_input(MODEL_HASH)]
    assert len(art.compact()) == 256
    assert art.proof_id == proof_id(SAMPLE_INPUTS["inference"], art.program_sha256, art.proving_key_sha256)


@pytest.mark.asyncio
@pytest.mark.parametrize("circuit", ["inference", "training"])
async def test_honest_proof_verifies(setups, proven, circuit):
    engine = _mk_engine(setups)
    art = proven[circuit]
    assert await engine.verify(circuit, art.compact(), art.public_signals) is True
    # expanded proof and the signal blob are accepted too
    assert await engine.verify(circuit, art.proof, art.signals_bytes()) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("pos", [0, 31, 63, 100, 160, 200, 255])
async def test_single_byte_tamper_is_rejected(setups, proven, pos):
    engine = _mk_engine(setups)
    art = proven["inference"]
    raw = bytearray(art.compact())
    raw[pos] ^= 0x01
    assert await engine.verify("inference", bytes(raw), art.public_signals) is False


@pytest.mark.asyncio
async def test_altered_public_signal_is_rejected(setups, proven):
    engine = _mk_engine(setups)
    art = proven["inference"]
    sigs = list(art.public_signals)
    sigs[0] += 1  # claim y = 34
    assert await engine.verify("inference", art.compact(), sigs) is False


@pytest.mark.asyncio
async def test_proof_for_other_circuit_is_rejected(setups, proven):
    engine = _mk_engine(setups)
    art = proven["training"]
    assert await engine.verify("inference", art.compact(), art.public_signals) is False


@pytest.mark.asyncio
async def test_out_of_range_or_miscounted_signals_are_false(setups, proven):
    engine = _mk_engine(setups)
    art = proven["inference"]
    sigs = list(art.public_signals)
    assert await engine.verify("inference", art.compact(), sigs[:-1]) is False
    assert await engine.verify("inference", art.compact(), sigs + [0]) is False
    assert await engine.verify("inference", art.compact(), [sigs[0] + R] + sigs[1:]) is False


@pytest.mark.asyncio
async def test_all_zero_proof_is_false_not_error(setups):
    engine = _mk_engine(setups)
    assert await engine.verify("inference", b"\x00" * 256, [0, 0, 0, 0]) is False
    assert await engine.verify("inference", b"\xff" * 256, encode_signals([0, 0, 0, 0])) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", [b"", b"\x00" * 255, b"\x00" * 300])
async def test_undecodable_proof_raises(setups, bad):
    engine = _mk_engine(setups)
    with pytest.raises(VerificationEngineError):
        await engine.verify("inference", bad, [0, 0, 0, 0])


@pytest.mark.asyncio
async def test_unknown_circuit(setups):
    engine = _mk_engine(setups)
    with pytest.raises(CircuitNotConfigured):
        await engine.prove("nope", {})
    with pytest.raises(CircuitNotConfigured):
        await engine.verify("nope", b"\x00" * 256, [])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "patch",
    [
        {"x0": None},  # dropped below
        {"extra": 1},
        {"x0": "3"},
        {"x0": True},
        {"model_hash": 5},
    ],
)
async def test_schema_violations_are_rejected_before_proving(setups, patch):
    registry, store = deploy([setups["inference"]])
    engine = ProofEngine(registry, ArtifactCache(registry, store))
    inputs = dict(SAMPLE_INPUTS["inference"])
    for k, v in patch.items():
        if v is None:
            inputs.pop(k)
        else:
            inputs[k] = v
    with pytest.raises(InputSchemaViolation):
        await engine.prove("inference", inputs)
    assert sum(store.fetch_counts.values()) == 0


@pytest.mark.asyncio
async def test_verification_only_deployment_cannot_prove(setups, proven):
    registry, store = deploy([setups["inference"]], verify_only=["inference"])
    engine = ProofEngine(registry, ArtifactCache(registry, store))
    with pytest.raises(ProvingKeyMissing):
        await engine.prove("inference", SAMPLE_INPUTS["inference"])
    art = proven["inference"]
    assert await engine.verify("inference", art.compact(), art.public_signals) is True


@pytest.mark.asyncio
async def test_prove_timeout_is_transient(setups):
    engine = _mk_engine(setups)
    await engine.cache.ensure_loaded("training")
    with pytest.raises(ProofTimeout) as ei:
        await engine.prove("training", SAMPLE_INPUTS["training"], timeout=1e-4)
    assert ei.value.retryable
