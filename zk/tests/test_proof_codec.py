import pytest

from zk.errors import VerificationEngineError
from zk.proof import (G16_COMPACT_LEN, Groth16Proof, ProofArtifact, compact,
                      decode_signals, encode_signals, expand, proof_id)
from zk.tests import MODEL_HASH

P = Groth16Proof(a=(1, 2), b=((3, 4), (5, 6)), c=(7, 8))


def test_compact_layout_is_big_endian_coordinates_in_order():
    raw = compact(P)
    assert len(raw) == G16_COMPACT_LEN == 256
    for i in range(8):
        chunk = raw[i * 32 : (i + 1) * 32]
        assert int.from_bytes(chunk, "big") == i + 1


def test_expand_inverts_compact_both_ways():
    assert expand(compact(P)) == P
    arbitrary = bytes(range(256))
    assert compact(expand(arbitrary)) == arbitrary


def test_infinity_is_all_zero():
    inf = Groth16Proof(a=(0, 0), b=((0, 0), (0, 0)), c=(0, 0))
    assert compact(inf) == b"\x00" * 256


@pytest.mark.parametrize("bad", [b"", b"\x00" * 255, b"\x00" * 257, "00" * 256, None])
def test_expand_rejects_wrong_length_or_type(bad):
    with pytest.raises(VerificationEngineError):
        expand(bad)


def test_signal_codec():
    sigs = [0, 1, 2**255 + 17]
    blob = encode_signals(sigs)
    assert blob[:4] == b"\x00\x00\x00\x03"
    assert decode_signals(blob) == sigs
    with pytest.raises(VerificationEngineError):
        decode_signals(blob[:-1])


def test_proof_id_binds_inputs_and_artifacts():
    a, b = "aa" * 32, "bb" * 32
    base = proof_id({"x": 1, "model_hash": MODEL_HASH}, a, b)
    assert base == proof_id({"model_hash": MODEL_HASH, "x": 1}, a, b)  # key order irrelevant
    assert base != proof_id({"x": 2, "model_hash": MODEL_HASH}, a, b)
    assert base != proof_id({"x": 1, "model_hash": MODEL_HASH}, b, a)
    assert len(base) == 64


def test_artifact_json_keeps_large_field_elements():
    big = 21888242871839275222246405745257275088548364400416034343698204186575808495616
    art = ProofArtifact(
        circuit="inference",
        proof=Groth16Proof(a=(big, 2), b=((3, big), (5, 6)), c=(7, 8)),
        public_signals=(big, 1),
        proof_id="ab" * 32,
        program_sha256="cd" * 32,
        proving_key_sha256="ef" * 32,
    )
    back = ProofArtifact.from_json(art.to_json())
    assert back == art
    assert back.compact() == art.compact()


def test_artifact_from_bad_json_raises_engine_error():
    with pytest.raises(VerificationEngineError):
        ProofArtifact.from_json(b"{not json")
    with pytest.raises(VerificationEngineError):
        ProofArtifact.from_json(b'{"circuit": "x"}')
