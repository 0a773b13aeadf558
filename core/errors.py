"""
Haunti — core.errors
--------------------

One error taxonomy shared by the zk engine, the staking ledger, the task state
machine and the orchestrator.

Categories
----------
- ConfigurationError   unknown circuit, malformed schema, missing key material.
                       Never retried.
- TransientInfraError  storage fetch failures, ledger unavailable,
                       confirmation timeouts. Retryable (by the orchestrator only).
- IntegrityError       artifact hash mismatch, undecodable proof bytes.
                       Never retried.
- VerificationFailure  a cryptographically invalid proof. This is a business
                       outcome (task Failed + slash), not a fault.
- StateConflict        lost a compare-and-transition race, or the transition is
                       not allowed from the current state.
- EconomicError        insufficient stake, lock still active, insufficient
                       balance.

Every error carries a machine-stable `code`, a human `message`, JSON-safe
`details` and a `retryable` flag. `to_dict()` is safe for logs and RPC.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional, Type, TypeVar


class HauntiError(Exception):
    """Root of every domain error raised by this repository."""

    code: str = "HAUNTI/ERROR"
    category: str = "internal"
    retryable: bool = False
    http_status: int = 500

    def __init__(
        self,
        message: str = "",
        *,
        details: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.message = message or self.__class__.__name__
        self.details = _jsonmap(details or {})
        self.cause = cause
        super().__init__(self.__str__())

    def with_context(self, **ctx: Any) -> "HauntiError":
        """Merge extra context into `details` (in place) and return self."""
        self.details.update(_jsonmap(ctx))
        self.args = (self.__str__(),)
        return self

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }
        if include_cause and self.cause is not None:
            out["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return out

    def __str__(self) -> str:
        if self.details:
            try:
                packed = json.dumps(self.details, sort_keys=True, separators=(",", ":"))
            except (TypeError, ValueError):
                packed = str(self.details)
            return f"{self.code}: {self.message} [{packed}]"
        return f"{self.code}: {self.message}"


class ConfigurationError(HauntiError):
    code = "HAUNTI/CONFIG"
    category = "configuration"
    http_status = 400


class TransientInfraError(HauntiError):
    code = "HAUNTI/TRANSIENT"
    category = "transient"
    retryable = True
    http_status = 503


class IntegrityError(HauntiError):
    code = "HAUNTI/INTEGRITY"
    category = "integrity"
    http_status = 422


class VerificationFailure(HauntiError):
    code = "HAUNTI/VERIFICATION_FAILED"
    category = "verification"
    http_status = 422


class StateConflict(HauntiError):
    code = "HAUNTI/STATE_CONFLICT"
    category = "state"
    http_status = 409


class EconomicError(HauntiError):
    code = "HAUNTI/ECONOMIC"
    category = "economic"
    http_status = 402


class NotFound(HauntiError):
    code = "HAUNTI/NOT_FOUND"
    category = "not_found"
    http_status = 404


class Unauthorized(HauntiError):
    code = "HAUNTI/UNAUTHORIZED"
    category = "authorization"
    http_status = 403


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

T = TypeVar("T", bound=HauntiError)


def wrap(exc: BaseException, as_: Type[T], message: str = "", **ctx: Any) -> T:
    """
    Wrap a foreign exception into a HauntiError subclass, keeping it as `cause`.
    Already-typed errors are returned with the extra context merged.
    """
    if isinstance(exc, as_):
        exc.with_context(**ctx)
        return exc
    return as_(message or f"{type(exc).__name__}: {exc}", details=ctx, cause=exc)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, HauntiError) and exc.retryable


def http_status_for(exc: BaseException) -> int:
    """Best-effort HTTP status mapping for the REST bridge."""
    if isinstance(exc, HauntiError):
        return exc.http_status
    return 500


def _jsonmap(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(k): _coerce_json(v) for k, v in data.items()}


def _coerce_json(v: Any) -> Any:
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).hex()
    if isinstance(v, (list, tuple)):
        return [_coerce_json(x) for x in v]
    if isinstance(v, dict):
        return _jsonmap(v)
    return str(v)


__all__ = [
    "HauntiError",
    "ConfigurationError",
    "TransientInfraError",
    "IntegrityError",
    "VerificationFailure",
    "StateConflict",
    "EconomicError",
    "NotFound",
    "Unauthorized",
    "wrap",
    "is_retryable",
    "http_status_for",
]
