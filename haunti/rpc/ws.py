from __future__ import annotations

"""
haunti.rpc.ws
-------------

WebSocket hub streaming settlement events from the ledger event bus.

Clients connect to `/ws` and may narrow the stream with query params:

- topics:  comma-separated event types (TaskCreated, StakeSlashed, ...);
           all events when omitted
- task_id: only events about one task (stake events raised while settling
           that task included)

Example client (browser):
    const ws = new WebSocket("wss://host/haunti/ws?topics=TaskCompleted,TaskFailed");
    ws.onmessage = (e) => console.log(JSON.parse(e.data));

Every message uses the envelope
    {"event": "<EventType>", "ts": <unix_sec>, "subject": "<address>", "data": {...}}

Sending "ping" gets {"event": "pong", ...} back; anything else is ignored.
"""

import asyncio
import json
import logging
import time
from typing import Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from haunti.aitypes.events import Event, EventType
from haunti.ledger.events import EventBus, EventFilter, Subscription

log = logging.getLogger(__name__)

ALL_TOPICS = tuple(t.value for t in EventType)


def envelope(ev: Event) -> str:
    msg = {"event": ev.etype.value, "ts": ev.ts_ms / 1000, "subject": ev.subject, "data": ev.data}
    return json.dumps(msg, separators=(",", ":"), ensure_ascii=False, default=str)


class EventWebSocketHub:
    """
    Tracks WebSocket subscribers with their filters and forwards matching bus
    events. The hub holds a single bus subscription while it has clients.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._clients: Dict[WebSocket, EventFilter] = {}
        self._lock = asyncio.Lock()
        self._sub: Optional[Subscription] = None

    def __len__(self) -> int:
        return len(self._clients)

    async def subscribe(self, ws: WebSocket, flt: EventFilter) -> None:
        async with self._lock:
            self._clients[ws] = flt
            if self._sub is None:
                self._sub = self._bus.subscribe(None, self.emit)

    async def unsubscribe(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.pop(ws, None)
            if not self._clients and self._sub is not None:
                self._sub.cancel()
                self._sub = None

    async def emit(self, ev: Event) -> None:
        # snapshot so sends happen without the lock
        async with self._lock:
            targets = [ws for ws, flt in self._clients.items() if flt.matches(ev)]
        if not targets:
            return

        msg = envelope(ev)
        stale = []
        for ws in targets:
            try:
                await ws.send_text(msg)
            except (WebSocketDisconnect, RuntimeError, OSError):
                stale.append(ws)

        for ws in stale:
            log.debug("dropping closed websocket")
            await self.unsubscribe(ws)


def parse_topics(topics: Optional[str]) -> Optional[frozenset]:
    if not topics:
        return None
    wanted = [t.strip() for t in topics.split(",") if t.strip()]
    known = frozenset(EventType(t) for t in wanted if t in ALL_TOPICS)
    return known or None


def build_ws_router(hub: EventWebSocketHub) -> APIRouter:
    """
    Return a FastAPI APIRouter serving the event stream at `/ws`.
    """
    router = APIRouter()

    @router.websocket("/ws")
    async def haunti_ws(
        websocket: WebSocket,
        topics: Optional[str] = Query(default=None),
        task_id: Optional[str] = Query(default=None),
    ) -> None:
        flt = EventFilter(types=parse_topics(topics), task_id=task_id)
        await websocket.accept()
        await hub.subscribe(websocket, flt)
        try:
            while True:
                try:
                    text = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                if text == "ping":
                    await websocket.send_text(json.dumps({"event": "pong", "ts": time.time()}))
        finally:
            await hub.unsubscribe(websocket)

    return router


__all__ = ["ALL_TOPICS", "EventWebSocketHub", "build_ws_router", "envelope", "parse_topics"]
