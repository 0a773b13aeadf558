"""
haunti.rpc
----------

FastAPI surface over a SettlementStack: REST task lifecycle, stake positions,
a WebSocket event stream and the Prometheus endpoint.

    from haunti.orchestrator import build_stack
    from haunti.rpc import create_app

    app = create_app(await build_stack())
    # uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

from typing import Any, Optional

from haunti import metrics
from haunti.orchestrator import SettlementStack

from .methods import IDENTITY_HEADER, build_rest_router, decode_proof, make_methods
from .ws import EventWebSocketHub, build_ws_router


def mount_haunti(app: Any, stack: SettlementStack, *, prefix: str = "") -> EventWebSocketHub:
    """Mount REST and WebSocket routers under `prefix`; returns the event hub."""
    hub = EventWebSocketHub(stack.ledger.bus)
    app.include_router(build_rest_router(stack), prefix=prefix, tags=["haunti"])
    app.include_router(build_ws_router(hub), prefix=prefix)
    return hub


def create_app(stack: SettlementStack, *, prefix: str = "", metrics_path: Optional[str] = "/metrics"):
    from fastapi import FastAPI

    from haunti.version import __version__

    app = FastAPI(title="haunti", version=__version__)
    app.state.stack = stack
    app.state.hub = mount_haunti(app, stack, prefix=prefix)
    if metrics_path:
        metrics.mount_fastapi(app, metrics_path)
    return app


__all__ = [
    "IDENTITY_HEADER",
    "build_rest_router",
    "build_ws_router",
    "create_app",
    "decode_proof",
    "make_methods",
    "mount_haunti",
    "EventWebSocketHub",
]
