from __future__ import annotations

"""
haunti.rpc.methods
------------------

Method implementations for the settlement RPC surface.

Exposed methods (bind via `make_methods`):
  • haunti.createTask
  • haunti.claimTask
  • haunti.submitProof
  • haunti.cancelTask
  • haunti.reclaimEscrow
  • haunti.getTask
  • haunti.stake
  • haunti.unstake
  • haunti.claimRewards
  • haunti.getPosition

Design:
  - Transport-agnostic. `make_methods(stack)` returns a dict of async
    callables taking keyword params; `build_rest_router(stack)` exposes the
    task lifecycle over FastAPI using the same callables.
  - Every call acts as an identity. REST takes it from the `X-Haunti-Identity`
    header; authentication in front of this surface is the deployer's job.
  - Errors from the taxonomy map to HTTP statuses by category and carry
    `HauntiError.to_dict()` as the response detail.

Usage:
    from fastapi import FastAPI
    from haunti.orchestrator import build_stack
    from haunti.rpc import create_app
    app = create_app(await build_stack(cfg))
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from core.errors import ConfigurationError, HauntiError, http_status_for
from haunti.aitypes.task import PoolType, TaskParams
from haunti.errors import InvalidTaskParams
from haunti.orchestrator import SettlementStack, TaskOrchestrator
from zk.errors import VerificationEngineError

log = logging.getLogger(__name__)

IDENTITY_HEADER = "X-Haunti-Identity"

Method = Callable[..., Awaitable[Dict[str, Any]]]


def _params(body: Any) -> TaskParams:
    if not isinstance(body, Mapping):
        raise InvalidTaskParams("task parameters must be an object")
    try:
        return TaskParams.from_dict(body)
    except KeyError as e:
        raise InvalidTaskParams("missing task parameter", field=str(e.args[0])) from e
    except (TypeError, ValueError) as e:
        raise InvalidTaskParams("malformed task parameters", details={"reason": str(e)}) from e


def _pool(pool: Any) -> PoolType:
    try:
        return PoolType(pool)
    except ValueError:
        raise ConfigurationError("unknown pool", details={"pool": pool, "known": [p.value for p in PoolType]}) from None


def decode_proof(proof: Union[str, bytes]) -> bytes:
    """Compact proof bytes from hex (with or without 0x)."""
    if isinstance(proof, (bytes, bytearray)):
        return bytes(proof)
    if not isinstance(proof, str):
        raise VerificationEngineError("proof must be a hex string", details={"type": type(proof).__name__})
    s = proof[2:] if proof.lower().startswith("0x") else proof
    try:
        return bytes.fromhex(s)
    except ValueError as e:
        raise VerificationEngineError("proof is not valid hex") from e


def make_methods(stack: SettlementStack) -> Dict[str, Method]:
    """
    Build a name → async callable map. Every method takes `identity` plus its
    own keyword params and returns a JSON-safe dict.
    """

    def as_(identity: str) -> TaskOrchestrator:
        return stack.orchestrator(identity)

    async def create_task(*, identity: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        orch = as_(identity)
        tid = await orch.create_task(_params(params))
        view = await orch.get_task_status(tid)
        return view.to_dict()

    async def claim_task(*, identity: str, taskId: str) -> Dict[str, Any]:
        return (await as_(identity).claim_task(taskId)).to_dict()

    async def submit_proof(*, identity: str, taskId: str, proof: Union[str, bytes],
                           publicSignals: Any) -> Dict[str, Any]:
        outcome = await as_(identity).submit_proof(taskId, decode_proof(proof), publicSignals)
        return outcome.to_dict()

    async def cancel_task(*, identity: str, taskId: str) -> Dict[str, Any]:
        return (await as_(identity).cancel_task(taskId)).to_dict()

    async def reclaim_escrow(*, identity: str, taskId: str) -> Dict[str, Any]:
        return (await as_(identity).reclaim_escrow(taskId)).to_dict()

    async def get_task(*, identity: str, taskId: str) -> Dict[str, Any]:
        return (await as_(identity).get_task_status(taskId)).to_dict()

    async def stake(*, identity: str, pool: str, amount: int,
                    lockupPeriod: Optional[int] = None) -> Dict[str, Any]:
        return (await as_(identity).stake(_pool(pool), amount, lockupPeriod)).to_dict()

    async def unstake(*, identity: str, pool: str, amount: int) -> Dict[str, Any]:
        return (await as_(identity).unstake(_pool(pool), amount)).to_dict()

    async def claim_rewards(*, identity: str, pool: str) -> Dict[str, Any]:
        paid = await as_(identity).claim_rewards(_pool(pool))
        return {"staker": identity, "pool": pool, "claimed": paid}

    async def get_position(*, identity: str, pool: str) -> Dict[str, Any]:
        return (await as_(identity).get_position(_pool(pool))).to_dict()

    return {
        "haunti.createTask": create_task,
        "haunti.claimTask": claim_task,
        "haunti.submitProof": submit_proof,
        "haunti.cancelTask": cancel_task,
        "haunti.reclaimEscrow": reclaim_escrow,
        "haunti.getTask": get_task,
        "haunti.stake": stake,
        "haunti.unstake": unstake,
        "haunti.claimRewards": claim_rewards,
        "haunti.getPosition": get_position,
    }


def build_rest_router(stack: SettlementStack):
    """
    Return a FastAPI APIRouter for the task lifecycle and stake positions.

      POST /tasks                    body: TaskParams
      GET  /tasks/{task_id}
      POST /tasks/{task_id}/claim
      POST /tasks/{task_id}/proof    body: {"proof": "<hex>", "public_signals": [...]}
      POST /tasks/{task_id}/cancel
      POST /tasks/{task_id}/reclaim
      POST /stake/{pool}             body: {"amount": int, "lockup_period": int?}
      POST /stake/{pool}/unstake     body: {"amount": int}
      POST /stake/{pool}/claim
      GET  /stake/{pool}
    """
    from fastapi import APIRouter, Body, Header, HTTPException

    router = APIRouter()
    methods = make_methods(stack)

    async def call(name: str, **kw: Any) -> Dict[str, Any]:
        try:
            return await methods[name](**kw)
        except HauntiError as e:
            status = http_status_for(e)
            if status >= 500:
                log.warning("rpc call failed", extra={"method": name, "code": e.code})
            raise HTTPException(status_code=status, detail=e.to_dict()) from e

    @router.post("/tasks", status_code=201)
    async def http_create_task(
        params: Dict[str, Any] = Body(...),
        identity: str = Header(..., alias=IDENTITY_HEADER),
    ):
        return await call("haunti.createTask", identity=identity, params=params)

    @router.get("/tasks/{task_id}")
    async def http_get_task(task_id: str, identity: str = Header("anonymous", alias=IDENTITY_HEADER)):
        return await call("haunti.getTask", identity=identity, taskId=task_id)

    @router.post("/tasks/{task_id}/claim")
    async def http_claim_task(task_id: str, identity: str = Header(..., alias=IDENTITY_HEADER)):
        return await call("haunti.claimTask", identity=identity, taskId=task_id)

    @router.post("/tasks/{task_id}/proof")
    async def http_submit_proof(
        task_id: str,
        body: Dict[str, Any] = Body(...),
        identity: str = Header(..., alias=IDENTITY_HEADER),
    ):
        if "proof" not in body or "public_signals" not in body:
            raise HTTPException(status_code=422, detail="body requires 'proof' and 'public_signals'")
        return await call("haunti.submitProof", identity=identity, taskId=task_id,
                          proof=body["proof"], publicSignals=body["public_signals"])

    @router.post("/tasks/{task_id}/cancel")
    async def http_cancel_task(task_id: str, identity: str = Header(..., alias=IDENTITY_HEADER)):
        return await call("haunti.cancelTask", identity=identity, taskId=task_id)

    @router.post("/tasks/{task_id}/reclaim")
    async def http_reclaim_escrow(task_id: str, identity: str = Header(..., alias=IDENTITY_HEADER)):
        return await call("haunti.reclaimEscrow", identity=identity, taskId=task_id)

    @router.post("/stake/{pool}")
    async def http_stake(
        pool: str,
        body: Dict[str, Any] = Body(...),
        identity: str = Header(..., alias=IDENTITY_HEADER),
    ):
        return await call("haunti.stake", identity=identity, pool=pool,
                          amount=body.get("amount"), lockupPeriod=body.get("lockup_period"))

    @router.post("/stake/{pool}/unstake")
    async def http_unstake(
        pool: str,
        body: Dict[str, Any] = Body(...),
        identity: str = Header(..., alias=IDENTITY_HEADER),
    ):
        return await call("haunti.unstake", identity=identity, pool=pool, amount=body.get("amount"))

    @router.post("/stake/{pool}/claim")
    async def http_claim_rewards(pool: str, identity: str = Header(..., alias=IDENTITY_HEADER)):
        return await call("haunti.claimRewards", identity=identity, pool=pool)

    @router.get("/stake/{pool}")
    async def http_get_position(pool: str, identity: str = Header(..., alias=IDENTITY_HEADER)):
        return await call("haunti.getPosition", identity=identity, pool=pool)

    return router


__all__ = ["IDENTITY_HEADER", "decode_proof", "make_methods", "build_rest_router"]
