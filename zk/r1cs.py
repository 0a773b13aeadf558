"""
zk.r1cs
=======

Circuit program logic: a small JSON description of an arithmetic circuit over
the BN254 scalar field, its rank-1 constraint system, and witness generation.

Program JSON
------------
    {
      "name": "inference",
      "version": 1,
      "inputs":  {"public": ["x0", "x1", "model_hash"], "private": ["w0", "w1", "bias"]},
      "outputs": ["y"],
      "gates": [
        {"out": "t0", "a": {"w0": 1}, "b": {"x0": 1}},
        {"out": "t1", "a": {"w1": 1}, "b": {"x1": 1}},
        {"out": "y",  "a": {"t0": 1, "t1": 1, "bias": 1}, "b": {"one": 1}}
      ]
    }

Each gate assigns   out = (Σ a[w]·w) · (Σ b[w]·w)   where "one" is the
constant-1 wire. Coefficients are ints or decimal/0x strings; negatives are
reduced mod r. A gate may only read wires that are already assigned, and each
wire is assigned exactly once.

Wire layout (snarkjs convention)
--------------------------------
    [one, outputs…, public inputs…, private inputs…, internal…]

Public signals are wires 1..n_public, i.e. outputs followed by public inputs.

Constraint rows
---------------
One row per gate (A=a, B=b, C={out:1}), then one input-consistency row per
public wire including "one" (A={i:1}, B=0, C=0), which keeps every public
wire's QAP polynomial non-zero and so bound by the verifier.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .verifiers.pairing_bn254 import curve_order

R: int = curve_order()
ONE = "one"

LinearCombination = Dict[int, int]
Row = Tuple[LinearCombination, LinearCombination, LinearCombination]

_STR_DOMAIN = b"haunti/field/str/v1"


def encode_input(value: Union[int, str, bool]) -> int:
    """
    Map a primitive input to a scalar field element:
      bool -> 0/1, int -> value mod r, str -> sha3-256(domain ‖ utf8) mod r.
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        return value % R
    if isinstance(value, str):
        digest = hashlib.sha3_256(_STR_DOMAIN + value.encode("utf-8")).digest()
        return int.from_bytes(digest, "big") % R
    raise TypeError(f"unsupported input type: {type(value).__name__}")


def _coef(v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError("boolean is not a coefficient")
    if isinstance(v, int):
        return v % R
    s = str(v).strip().lower()
    neg = s.startswith("-")
    if neg:
        s = s[1:]
    n = int(s, 16) if s.startswith("0x") else int(s)
    return (-n if neg else n) % R


@dataclass(frozen=True)
class Gate:
    out: str
    a: Dict[str, int]
    b: Dict[str, int]


@dataclass(frozen=True)
class Program:
    name: str
    public: Tuple[str, ...]
    private: Tuple[str, ...]
    outputs: Tuple[str, ...]
    gates: Tuple[Gate, ...]
    version: int = 1
    wires: Tuple[str, ...] = field(default=(), compare=False)
    index: Dict[str, int] = field(default_factory=dict, compare=False, repr=False)
    rows: Tuple[Row, ...] = field(default=(), compare=False, repr=False)

    @property
    def n_public(self) -> int:
        return len(self.outputs) + len(self.public)

    @property
    def n_wires(self) -> int:
        return len(self.wires)

    @property
    def domain_size(self) -> int:
        return len(self.rows)

    @property
    def input_names(self) -> Tuple[str, ...]:
        return self.public + self.private

    # -- parsing -----------------------------------------------------------

    @classmethod
    def from_json(cls, data: Union[bytes, str, Mapping[str, Any]]) -> "Program":
        """Parse and validate a program. Raises ValueError on any structural problem."""
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        obj = json.loads(data) if isinstance(data, str) else dict(data)
        if not isinstance(obj, dict):
            raise ValueError("program must be a JSON object")

        inputs = obj.get("inputs") or {}
        public = tuple(str(x) for x in inputs.get("public", ()))
        private = tuple(str(x) for x in inputs.get("private", ()))
        outputs = tuple(str(x) for x in obj.get("outputs", ()))
        raw_gates = obj.get("gates")
        if not isinstance(raw_gates, list) or not raw_gates:
            raise ValueError("program needs a non-empty 'gates' list")
        if not outputs:
            raise ValueError("program needs at least one output")

        declared = (ONE,) + public + private
        if len(set(declared)) != len(declared):
            raise ValueError("duplicate input names (or an input named 'one')")

        assigned = set(declared)
        gates: List[Gate] = []
        for i, g in enumerate(raw_gates):
            try:
                out = str(g["out"])
                a = {str(k): _coef(v) for k, v in dict(g["a"]).items()}
                b = {str(k): _coef(v) for k, v in dict(g["b"]).items()}
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"gate {i} is malformed: {e}") from e
            for w in list(a) + list(b):
                if w not in assigned:
                    raise ValueError(f"gate {i} reads unassigned wire {w!r}")
            if out in assigned:
                raise ValueError(f"gate {i} reassigns wire {out!r}")
            assigned.add(out)
            gates.append(Gate(out=out, a=a, b=b))

        for o in outputs:
            if o not in assigned or o in declared:
                raise ValueError(f"output {o!r} is not produced by a gate")
        if len(set(outputs)) != len(outputs):
            raise ValueError("duplicate output names")

        internal = tuple(g.out for g in gates if g.out not in outputs)
        wires = (ONE,) + outputs + public + private + internal
        index = {w: i for i, w in enumerate(wires)}

        rows: List[Row] = []
        for g in gates:
            rows.append(
                (
                    {index[w]: c for w, c in g.a.items() if c},
                    {index[w]: c for w, c in g.b.items() if c},
                    {index[g.out]: 1},
                )
            )
        n_public = len(outputs) + len(public)
        for i in range(n_public + 1):
            rows.append(({i: 1}, {}, {}))

        return cls(
            name=str(obj.get("name", "")),
            public=public,
            private=private,
            outputs=outputs,
            gates=tuple(gates),
            version=int(obj.get("version", 1)),
            wires=wires,
            index=index,
            rows=tuple(rows),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "inputs": {"public": list(self.public), "private": list(self.private)},
            "outputs": list(self.outputs),
            "gates": [{"out": g.out, "a": dict(g.a), "b": dict(g.b)} for g in self.gates],
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_json(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    # -- witness -----------------------------------------------------------

    def compute_witness(self, inputs: Mapping[str, Any]) -> List[int]:
        """Deterministically evaluate every wire. Raises KeyError for a missing input."""
        values: Dict[str, int] = {ONE: 1}
        for name in self.input_names:
            values[name] = encode_input(inputs[name])
        for g in self.gates:
            values[g.out] = (_lc(g.a, values) * _lc(g.b, values)) % R
        return [values[w] for w in self.wires]

    def public_signals(self, witness: Sequence[int]) -> List[int]:
        return list(witness[1 : self.n_public + 1])


def _lc(terms: Mapping[str, int], values: Mapping[str, int]) -> int:
    return sum(c * values[w] for w, c in terms.items()) % R


def eval_lc(lc: LinearCombination, witness: Sequence[int]) -> int:
    return sum(c * witness[i] for i, c in lc.items()) % R


def first_unsatisfied(rows: Sequence[Row], witness: Sequence[int]) -> Optional[int]:
    """Index of the first row with A·B != C, or None when the witness satisfies all rows."""
    for k, (a, b, c) in enumerate(rows):
        if eval_lc(a, witness) * eval_lc(b, witness) % R != eval_lc(c, witness):
            return k
    return None


__all__ = [
    "R",
    "ONE",
    "Gate",
    "Program",
    "Row",
    "encode_input",
    "eval_lc",
    "first_unsatisfied",
]
