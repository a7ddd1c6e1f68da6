"""
Realtime dashboard endpoints (Server-Sent Events)
"""
import asyncio
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from bizos.realtime.registry import format_sse

router = APIRouter(prefix="/realtime", tags=["realtime"])

HEARTBEAT_SECONDS = 30


@router.get("/connections")
async def list_connections(request: Request, workspace_id: Optional[str] = Query(None)):
    registry = request.app.state.realtime
    connections = registry.connections(workspace_id)
    return {
        "total_connections": len(connections),
        "connections": [c.to_dict() for c in connections],
    }


@router.get("/stream")
async def stream(request: Request, workspace_id: str = Query(...)):
    registry = request.app.state.realtime
    connection = registry.register(workspace_id)

    async def events():
        try:
            yield format_sse("connected", {
                "connection_id": connection.id,
                "workspace_id": workspace_id,
                "connected_at": connection.connected_at.isoformat(),
            })
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(connection.queue.get(), timeout=HEARTBEAT_SECONDS)
                    yield format_sse(event.type, event.to_dict())
                except asyncio.TimeoutError:
                    yield format_sse("heartbeat", {
                        "timestamp": datetime.utcnow().isoformat(),
                        "active_connections": registry.count(),
                    })
        finally:
            registry.deregister(connection.id)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
    )
