"""
zk.qap
======

Quadratic arithmetic program helpers over the BN254 scalar field.

Polynomials are lists of coefficients, lowest degree first. The evaluation
domain is the points 1..m (one per constraint row), so the vanishing
polynomial is Z(x) = ∏_{k=1..m} (x - k).
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from .r1cs import R, Row, eval_lc

Poly = List[int]


def inv(x: int) -> int:
    x %= R
    if x == 0:
        raise ZeroDivisionError("inverse of zero in Fr")
    return pow(x, -1, R)


def trim(p: Poly) -> Poly:
    out = list(p)
    while out and out[-1] == 0:
        out.pop()
    return out


def evaluate(p: Sequence[int], x: int) -> int:
    acc = 0
    for c in reversed(p):
        acc = (acc * x + c) % R
    return acc


def add(p: Sequence[int], q: Sequence[int]) -> Poly:
    n = max(len(p), len(q))
    return [((p[i] if i < len(p) else 0) + (q[i] if i < len(q) else 0)) % R for i in range(n)]


def sub(p: Sequence[int], q: Sequence[int]) -> Poly:
    n = max(len(p), len(q))
    return [((p[i] if i < len(p) else 0) - (q[i] if i < len(q) else 0)) % R for i in range(n)]


def mul(p: Sequence[int], q: Sequence[int]) -> Poly:
    if not p or not q:
        return []
    out = [0] * (len(p) + len(q) - 1)
    for i, a in enumerate(p):
        if a == 0:
            continue
        for j, b in enumerate(q):
            out[i + j] = (out[i + j] + a * b) % R
    return out


def vanishing(m: int) -> Poly:
    z: Poly = [1]
    for k in range(1, m + 1):
        z = mul(z, [(-k) % R, 1])
    return z


def divmod_poly(num: Sequence[int], den: Sequence[int]) -> Tuple[Poly, Poly]:
    num = trim(num)
    den = trim(den)
    if not den:
        raise ZeroDivisionError("polynomial division by zero")
    if len(num) < len(den):
        return [], num
    rem = list(num)
    lead_inv = inv(den[-1])
    quot = [0] * (len(num) - len(den) + 1)
    for i in range(len(quot) - 1, -1, -1):
        coef = rem[i + len(den) - 1] * lead_inv % R
        quot[i] = coef
        if coef:
            for j, d in enumerate(den):
                rem[i + j] = (rem[i + j] - coef * d) % R
    return quot, trim(rem[: len(den) - 1])


def _synthetic_div(z: Sequence[int], k: int) -> Poly:
    """z(x) / (x - k) for a root k of z."""
    n = len(z) - 1
    out = [0] * n
    acc = 0
    for i in range(n, 0, -1):
        acc = (acc * k + z[i]) % R
        out[i - 1] = acc
    return out


def _basis_denominators(m: int) -> List[int]:
    """∏_{j≠k} (k - j) for k = 1..m."""
    dens = []
    for k in range(1, m + 1):
        d = 1
        for j in range(1, m + 1):
            if j != k:
                d = d * (k - j) % R
        dens.append(d)
    return dens


def interpolate(ys: Sequence[int]) -> Poly:
    """Coefficients of the unique degree < m polynomial with p(k) = ys[k-1]."""
    m = len(ys)
    if m == 0:
        return []
    z = vanishing(m)
    out = [0] * m
    for k, (y, d) in enumerate(zip(ys, _basis_denominators(m)), start=1):
        if y % R == 0:
            continue
        scale = y * inv(d) % R
        for i, c in enumerate(_synthetic_div(z, k)):
            out[i] = (out[i] + c * scale) % R
    return out


def lagrange_at(m: int, tau: int) -> List[int]:
    """L_k(tau) for k = 1..m. `tau` must lie outside the domain."""
    tau %= R
    if 1 <= tau <= m:
        raise ValueError("tau lies in the evaluation domain")
    z_tau = evaluate(vanishing(m), tau)
    return [z_tau * inv((tau - k) * d) % R for k, d in zip(range(1, m + 1), _basis_denominators(m))]


def wire_polys_at(rows: Sequence[Row], n_wires: int, tau: int) -> Tuple[List[int], List[int], List[int]]:
    """u_i(tau), v_i(tau), w_i(tau) for every wire i."""
    lag = lagrange_at(len(rows), tau)
    u = [0] * n_wires
    v = [0] * n_wires
    w = [0] * n_wires
    for lk, (a, b, c) in zip(lag, rows):
        for i, coef in a.items():
            u[i] = (u[i] + coef * lk) % R
        for i, coef in b.items():
            v[i] = (v[i] + coef * lk) % R
        for i, coef in c.items():
            w[i] = (w[i] + coef * lk) % R
    return u, v, w


def h_coefficients(rows: Sequence[Row], witness: Sequence[int]) -> Poly:
    """
    Quotient h(x) = (A(x)·B(x) - C(x)) / Z(x), padded to m-1 coefficients.
    Raises ValueError if the division leaves a remainder (witness does not satisfy).
    """
    m = len(rows)
    a_ev = [eval_lc(a, witness) for a, _, _ in rows]
    b_ev = [eval_lc(b, witness) for _, b, _ in rows]
    c_ev = [eval_lc(c, witness) for _, _, c in rows]
    p = sub(mul(interpolate(a_ev), interpolate(b_ev)), interpolate(c_ev))
    h, rem = divmod_poly(p, vanishing(m))
    if rem:
        raise ValueError("QAP division left a remainder")
    h = list(h) + [0] * (max(m - 1, 0) - len(h))
    return h[: max(m - 1, 0)]


__all__ = [
    "Poly",
    "inv",
    "evaluate",
    "add",
    "sub",
    "mul",
    "vanishing",
    "divmod_poly",
    "interpolate",
    "lagrange_at",
    "wire_polys_at",
    "h_coefficients",
]
