from bizos.realtime.registry import Connection, ConnectionRegistry, RealtimeEvent, format_sse

__all__ = ["Connection", "ConnectionRegistry", "RealtimeEvent", "format_sse"]
