"""
Realtime connection registry

Tracks live dashboard connections per workspace and fans out events to
them. One registry is owned by the application and handed to whatever
publishes events (webhook gateway, sync runner).
"""
import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from bizos.models.base import generate_id
from bizos.utils.logger import log

QUEUE_SIZE = 100


@dataclass
class RealtimeEvent:
    type: str
    workspace_id: str
    data: Dict[str, Any]
    id: str = field(default_factory=generate_id)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Connection:
    workspace_id: str
    id: str = field(default_factory=generate_id)
    connected_at: datetime = field(default_factory=datetime.utcnow)
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=QUEUE_SIZE))
    dropped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_id": self.id,
            "workspace_id": self.workspace_id,
            "connected_at": self.connected_at.isoformat(),
            "pending": self.queue.qsize(),
            "dropped": self.dropped,
        }


class ConnectionRegistry:
    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, workspace_id: str) -> Connection:
        connection = Connection(workspace_id=workspace_id)
        self._connections[connection.id] = connection
        log.debug(f"Realtime connection {connection.id} opened for workspace {workspace_id}")
        return connection

    def deregister(self, connection_id: str) -> bool:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False
        log.debug(f"Realtime connection {connection_id} closed")
        return True

    def connections(self, workspace_id: Optional[str] = None) -> List[Connection]:
        return [
            c for c in self._connections.values()
            if workspace_id is None or c.workspace_id == workspace_id
        ]

    def count(self, workspace_id: Optional[str] = None) -> int:
        return len(self.connections(workspace_id))

    def publish(self, workspace_id: str, event_type: str, data: Dict[str, Any]) -> int:
        """Queue an event for every connection in the workspace; returns how many received it."""
        event = RealtimeEvent(type=event_type, workspace_id=workspace_id, data=data)
        delivered = 0
        for connection in self.connections(workspace_id):
            try:
                connection.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                connection.dropped += 1
                log.warning(f"Realtime queue full for connection {connection.id}; dropped {event_type}")
        return delivered


def format_sse(event_type: str, data: Dict[str, Any]) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"
