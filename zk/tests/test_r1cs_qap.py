import pytest

from zk import qap
from zk.programs import INFERENCE, TRAINING, builtin_program
from zk.r1cs import ONE, R, Program, encode_input, first_unsatisfied
from zk.tests import MODEL_HASH, SAMPLE_INPUTS


def test_wire_layout_puts_public_signals_first():
    p = builtin_program("inference")
    assert p.wires[:5] == (ONE, "y", "x0", "x1", "model_hash")
    assert p.n_public == 4
    # three gates plus one consistency row per public wire (and "one")
    assert p.domain_size == 3 + 5


def test_inference_witness_and_public_signals():
    p = builtin_program("inference")
    w = p.compute_witness(SAMPLE_INPUTS["inference"])
    assert w[0] == 1
    assert p.public_signals(w) == [33, 3, 4, encode_input(MODEL_HASH)]
    assert first_unsatisfied(p.rows, w) is None


def test_training_negative_error_wraps_mod_r():
    p = builtin_program("training")
    w = p.compute_witness(SAMPLE_INPUTS["training"])
    values = dict(zip(p.wires, w))
    assert values["pred"] == 19
    assert values["err"] == R - 1
    assert values["loss"] == 1
    assert p.public_signals(w)[:2] == [1, 19]


def test_witness_is_deterministic():
    p = builtin_program("training")
    assert p.compute_witness(SAMPLE_INPUTS["training"]) == p.compute_witness(dict(SAMPLE_INPUTS["training"]))


def test_encode_input_types():
    assert encode_input(True) == 1
    assert encode_input(False) == 0
    assert encode_input(-1) == R - 1
    assert encode_input("abc") == encode_input("abc")
    assert encode_input("abc") != encode_input("abd")
    with pytest.raises(TypeError):
        encode_input(1.5)


def test_tampered_witness_is_detected():
    p = builtin_program("inference")
    w = p.compute_witness(SAMPLE_INPUTS["inference"])
    w[1] = (w[1] + 1) % R  # claim a different y
    assert first_unsatisfied(p.rows, w) == 2
    with pytest.raises(ValueError):
        qap.h_coefficients(p.rows, w)


@pytest.mark.parametrize(
    "mutate, msg",
    [
        (lambda d: d["gates"].append({"out": "z", "a": {"nope": 1}, "b": {"one": 1}}), "unassigned"),
        (lambda d: d["gates"].append({"out": "x0", "a": {"one": 1}, "b": {"one": 1}}), "reassigns"),
        (lambda d: d.update(outputs=["missing"]), "not produced"),
        (lambda d: d.update(gates=[]), "gates"),
        (lambda d: d["inputs"]["public"].append("w0"), "duplicate"),
    ],
)
def test_malformed_programs_are_rejected(mutate, msg):
    import copy

    d = copy.deepcopy(INFERENCE)
    mutate(d)
    with pytest.raises(ValueError, match=msg):
        Program.from_json(d)


def test_program_json_roundtrip_is_canonical():
    p = Program.from_json(TRAINING)
    again = Program.from_json(p.to_bytes())
    assert again == p
    assert again.to_bytes() == p.to_bytes()


def test_interpolate_hits_every_domain_point():
    ys = [5, 0, R - 3, 42, 7]
    poly = qap.interpolate(ys)
    assert [qap.evaluate(poly, k) for k in range(1, 6)] == [y % R for y in ys]


def test_vanishing_polynomial_roots():
    z = qap.vanishing(6)
    assert all(qap.evaluate(z, k) == 0 for k in range(1, 7))
    assert qap.evaluate(z, 7) != 0


def test_lagrange_at_matches_interpolation():
    ys = [3, 1, 4, 1, 5, 9]
    tau = 123456789
    lag = qap.lagrange_at(len(ys), tau)
    direct = qap.evaluate(qap.interpolate(ys), tau)
    assert sum(y * l for y, l in zip(ys, lag)) % R == direct
    with pytest.raises(ValueError):
        qap.lagrange_at(6, 3)


def test_h_times_z_reconstructs_constraint_polynomial():
    p = builtin_program("inference")
    w = p.compute_witness(SAMPLE_INPUTS["inference"])
    h = qap.h_coefficients(p.rows, w)
    assert len(h) == p.domain_size - 1
    tau = 987654321
    u, v, ww = qap.wire_polys_at(p.rows, p.n_wires, tau)
    a = sum(x * y for x, y in zip(u, w)) % R
    b = sum(x * y for x, y in zip(v, w)) % R
    c = sum(x * y for x, y in zip(ww, w)) % R
    z = qap.evaluate(qap.vanishing(p.domain_size), tau)
    assert (a * b - c) % R == qap.evaluate(h, tau) * z % R
