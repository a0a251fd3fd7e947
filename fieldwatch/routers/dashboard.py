"""
Dashboard router: merged live state and the write-side feed operations.

Endpoints:
  GET  /dashboard/snapshot                       current merged state
  POST /dashboard/nodes                          register a node
  PUT  /dashboard/nodes/{node_id}/alerts/{kind}  raise or clear a node alert flag
  POST /dashboard/alerts                         record (upsert) an alert
  POST /dashboard/connections                    add a network link
  WS   /dashboard/ws                             live snapshots and dispatcher events
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from ..core.feed import FeedError, FeedWriteError
from ..core.session import DashboardSession
from ..schemas.feed import (
    Alert,
    AlertCreate,
    AlertFlagUpdate,
    DashboardSnapshot,
    NetworkConnection,
    Node,
    NodeCreate,
)
from .deps import get_session

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/snapshot", response_model=DashboardSnapshot)
async def get_snapshot(session: DashboardSession = Depends(get_session)) -> DashboardSnapshot:
    return session.store.snapshot()


@router.post("/nodes", response_model=Node, status_code=201)
async def create_node(request: NodeCreate, session: DashboardSession = Depends(get_session)) -> Node:
    try:
        return await session.store.create_node(
            name=request.name,
            sector=request.sector,
            location=request.location,
            node_id=request.id,
            status=request.status,
            battery=request.battery,
            signal_strength=request.signal_strength,
            role=request.role,
        )
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except FeedError as e:
        raise HTTPException(502, detail=f"Feed unavailable: {e}")


@router.put("/nodes/{node_id}/alerts/{kind}")
async def set_node_alert(
    node_id: str, kind: str, request: AlertFlagUpdate, session: DashboardSession = Depends(get_session)
) -> dict:
    if not any(n.id == node_id for n in session.store.snapshot().nodes):
        raise HTTPException(404, detail=f"Unknown node: {node_id}")
    try:
        await session.store.set_node_alert_flag(node_id, kind, request.active)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except FeedWriteError as e:
        raise HTTPException(502, detail=f"Feed write failed: {e}")
    return {"node_id": node_id, "kind": kind, "active": request.active}


@router.post("/alerts", response_model=Alert, status_code=201)
async def record_alert(request: AlertCreate, session: DashboardSession = Depends(get_session)) -> Alert:
    alert = Alert(
        id=request.id or f"alert-{uuid.uuid4().hex[:12]}",
        kind=request.kind,
        node_id=request.node_id,
        timestamp=request.timestamp or datetime.now(timezone.utc),
        description=request.description or f"{request.kind} detected",
        severity=request.severity,
        acknowledged=request.acknowledged,
    )
    try:
        await session.store.record_alert(alert)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except FeedWriteError as e:
        raise HTTPException(502, detail=f"Feed write failed: {e}")
    return alert


@router.post("/connections", status_code=201)
async def add_connection(request: NetworkConnection, session: DashboardSession = Depends(get_session)) -> dict:
    try:
        key = await session.store.add_connection(request)
    except FeedWriteError as e:
        raise HTTPException(502, detail=f"Feed write failed: {e}")
    return {"key": key, **request.model_dump()}


def _message(kind: str, payload: Any) -> dict[str, Any]:
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json", by_alias=True)
    return {"type": kind, "data": payload}


@router.websocket("/ws")
async def dashboard_ws(websocket: WebSocket) -> None:
    """
    Pushes {"type", "data"} messages: snapshot, audio_cue, prompt,
    deployment, fleet, assessment, recommendations. Incoming text is ignored.
    """
    session: DashboardSession = websocket.app.state.session
    await websocket.accept()

    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    handles = [
        session.store.snapshot_changed.subscribe(lambda s: queue.put_nowait(_message("snapshot", s))),
        session.dispatcher.audio_cues.subscribe(lambda c: queue.put_nowait(_message("audio_cue", c))),
        session.dispatcher.prompts.subscribe(lambda p: queue.put_nowait(_message("prompt", p))),
        session.dispatcher.outcomes.subscribe(lambda o: queue.put_nowait(_message("deployment", o))),
        session.fleet.changed.subscribe(lambda u: queue.put_nowait(_message("fleet", u))),
        session.assessments.subscribe(lambda a: queue.put_nowait(_message("assessment", a))),
        session.recommendations_changed.subscribe(lambda r: queue.put_nowait(_message("recommendations", r))),
    ]
    queue.put_nowait(_message("snapshot", session.store.snapshot()))
    queue.put_nowait(_message("prompt", session.dispatcher.prompt))

    async def _sender() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(_sender())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        for handle in handles:
            handle()
