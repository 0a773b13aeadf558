"""
zk.proof
========

Proof values, their wire format, and the ProofArtifact envelope produced by
`ProofEngine.prove`.

Compact proof (groth16_bn254, 256 bytes)
----------------------------------------
    A.x ‖ A.y ‖ B.x.c0 ‖ B.x.c1 ‖ B.y.c0 ‖ B.y.c1 ‖ C.x ‖ C.y

each a 32-byte big-endian integer; the point at infinity is all zeros. The
expanded form is the same integers held as affine tuples, so
expand(compact(p)) == p and compact(expand(b)) == b for any 256-byte b.
`expand` only checks length and type; range and curve checks belong to the
verifier, which answers False rather than raising.

Public signals
--------------
    u32 big-endian count ‖ count × 32-byte big-endian values

Proof identifier
----------------
    sha3-256( "haunti/proof-id/v1" ‖ canonical-JSON(inputs) ‖ program sha256 ‖ proving-key sha256 )
"""

from __future__ import annotations

import hashlib
import json
import struct
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

import msgspec

from .errors import VerificationEngineError

COORD_BYTES = 32
G16_COMPACT_LEN = 8 * COORD_BYTES
PROOF_ID_DOMAIN = b"haunti/proof-id/v1"

AffineG1 = Tuple[int, int]
AffineG2 = Tuple[Tuple[int, int], Tuple[int, int]]
BytesLike = Union[bytes, bytearray, memoryview]


class Groth16Proof(msgspec.Struct, frozen=True, tag="groth16_bn254", tag_field="system"):
    """Expanded Groth16 proof: affine integer coordinates."""

    a: AffineG1
    b: AffineG2
    c: AffineG1

    def compact(self) -> bytes:
        return compact(self)

    def to_snarkjs(self) -> Dict[str, Any]:
        return {
            "protocol": "groth16",
            "curve": "bn128",
            "pi_a": [str(self.a[0]), str(self.a[1]), "1"],
            "pi_b": [
                [str(self.b[0][0]), str(self.b[0][1])],
                [str(self.b[1][0]), str(self.b[1][1])],
                ["1", "0"],
            ],
            "pi_c": [str(self.c[0]), str(self.c[1]), "1"],
        }


# Closed set of proof values; extend the Union when a new system lands.
ProofValue = Groth16Proof


def _be32(n: int) -> bytes:
    if not isinstance(n, int) or n < 0 or n >= 1 << 256:
        raise VerificationEngineError("coordinate does not fit in 32 bytes")
    return n.to_bytes(COORD_BYTES, "big")


def compact(proof: Groth16Proof) -> bytes:
    a, b, c = proof.a, proof.b, proof.c
    coords = (a[0], a[1], b[0][0], b[0][1], b[1][0], b[1][1], c[0], c[1])
    return b"".join(_be32(x) for x in coords)


def expand(data: BytesLike) -> Groth16Proof:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise VerificationEngineError(
            "compact proof must be bytes", details={"type": type(data).__name__}
        )
    raw = bytes(data)
    if len(raw) != G16_COMPACT_LEN:
        raise VerificationEngineError(
            "compact proof has the wrong length",
            details={"expected": G16_COMPACT_LEN, "got": len(raw)},
        )
    v = [int.from_bytes(raw[i : i + COORD_BYTES], "big") for i in range(0, G16_COMPACT_LEN, COORD_BYTES)]
    return Groth16Proof(a=(v[0], v[1]), b=((v[2], v[3]), (v[4], v[5])), c=(v[6], v[7]))


def coerce_proof(proof: Any) -> Groth16Proof:
    """Accept compact bytes, an expanded proof or a ProofArtifact."""
    if isinstance(proof, Groth16Proof):
        return proof
    if isinstance(proof, ProofArtifact):
        return proof.proof
    return expand(proof)


def encode_signals(signals: Sequence[int]) -> bytes:
    return struct.pack(">I", len(signals)) + b"".join(_be32(int(s)) for s in signals)


def decode_signals(data: BytesLike) -> List[int]:
    raw = bytes(data)
    if len(raw) < 4:
        raise VerificationEngineError("public signals blob is truncated")
    (n,) = struct.unpack(">I", raw[:4])
    if len(raw) != 4 + n * COORD_BYTES:
        raise VerificationEngineError(
            "public signals blob has the wrong length", details={"count": n, "got": len(raw)}
        )
    return [int.from_bytes(raw[4 + i * COORD_BYTES : 4 + (i + 1) * COORD_BYTES], "big") for i in range(n)]


def canonical_json_bytes(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def proof_id(inputs: Mapping[str, Any], program_sha256: str, proving_key_sha256: str) -> str:
    h = hashlib.sha3_256()
    h.update(PROOF_ID_DOMAIN)
    h.update(canonical_json_bytes(dict(inputs)))
    h.update(bytes.fromhex(program_sha256))
    h.update(bytes.fromhex(proving_key_sha256))
    return h.hexdigest()


class ProofArtifact(msgspec.Struct, frozen=True):
    circuit: str
    proof: ProofValue
    public_signals: Tuple[int, ...]
    proof_id: str
    program_sha256: str
    proving_key_sha256: str

    def compact(self) -> bytes:
        return compact(self.proof)

    def signals_bytes(self) -> bytes:
        return encode_signals(self.public_signals)

    # Field elements exceed 64 bits, so the JSON form carries them as decimal strings.
    def to_dict(self) -> Dict[str, Any]:
        p = self.proof
        return {
            "circuit": self.circuit,
            "proof": {
                "system": "groth16_bn254",
                "a": [str(x) for x in p.a],
                "b": [[str(x) for x in p.b[0]], [str(x) for x in p.b[1]]],
                "c": [str(x) for x in p.c],
            },
            "public_signals": [str(s) for s in self.public_signals],
            "proof_id": self.proof_id,
            "program_sha256": self.program_sha256,
            "proving_key_sha256": self.proving_key_sha256,
        }

    def to_json(self) -> bytes:
        return msgspec.json.encode(self.to_dict())

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ProofArtifact":
        try:
            p = d["proof"]
            if p.get("system", "groth16_bn254") != "groth16_bn254":
                raise ValueError(f"unsupported proof system {p.get('system')!r}")
            proof = Groth16Proof(
                a=(int(p["a"][0]), int(p["a"][1])),
                b=((int(p["b"][0][0]), int(p["b"][0][1])), (int(p["b"][1][0]), int(p["b"][1][1]))),
                c=(int(p["c"][0]), int(p["c"][1])),
            )
            return cls(
                circuit=str(d["circuit"]),
                proof=proof,
                public_signals=tuple(int(s) for s in d["public_signals"]),
                proof_id=str(d["proof_id"]),
                program_sha256=str(d["program_sha256"]),
                proving_key_sha256=str(d["proving_key_sha256"]),
            )
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise VerificationEngineError("proof artifact is malformed", cause=e) from e

    @classmethod
    def from_json(cls, data: Union[BytesLike, str]) -> "ProofArtifact":
        try:
            obj = msgspec.json.decode(data.encode() if isinstance(data, str) else bytes(data))
        except msgspec.DecodeError as e:
            raise VerificationEngineError("proof artifact JSON is malformed", cause=e) from e
        if not isinstance(obj, dict):
            raise VerificationEngineError("proof artifact JSON must be an object")
        return cls.from_dict(obj)


__all__ = [
    "G16_COMPACT_LEN",
    "Groth16Proof",
    "ProofValue",
    "ProofArtifact",
    "compact",
    "expand",
    "coerce_proof",
    "encode_signals",
    "decode_signals",
    "canonical_json_bytes",
    "proof_id",
]
