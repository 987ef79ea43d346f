"""WebSocket handler for real-time job progress."""
import asyncio
import json
import logging
from typing import Set, Dict, Optional
from fastapi import WebSocket, WebSocketDisconnect
import redis.asyncio as redis

from api.services.publisher import TERMINAL_EVENTS
from shared.config import settings

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections for job progress."""

    def __init__(self):
        # Map of job_id to set of WebSocket connections
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        # Connections watching every job (for broadcast)
        self.all_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket, job_id: Optional[str] = None):
        """Accept a new WebSocket connection."""
        await websocket.accept()

        if job_id:
            self.active_connections.setdefault(job_id, set()).add(websocket)
        else:
            self.all_connections.add(websocket)

    def disconnect(self, websocket: WebSocket, job_id: Optional[str] = None):
        """Remove a WebSocket connection."""
        self.all_connections.discard(websocket)

        if job_id and job_id in self.active_connections:
            self.active_connections[job_id].discard(websocket)
            if not self.active_connections[job_id]:
                del self.active_connections[job_id]

    async def send_to_job(self, job_id: str, message: dict):
        """Send message to all connections watching a job; close them after a terminal event."""
        connections = list(self.active_connections.get(job_id, ()))
        terminal = message.get("event") in TERMINAL_EVENTS

        for connection in connections:
            try:
                await connection.send_json(message)
                if terminal:
                    await connection.close()
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping WebSocket for job {job_id}: {e}")
                self.disconnect(connection, job_id)
                continue
            if terminal:
                self.disconnect(connection, job_id)

    async def broadcast(self, message: dict):
        """Send message to all connected clients."""
        disconnected = set()
        for connection in list(self.all_connections):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                disconnected.add(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            self.all_connections.discard(conn)


# Global connection manager
manager = ConnectionManager()


def to_client_message(payload: dict) -> dict:
    """Reshape a published progress event for WebSocket clients."""
    return {"event": payload.get("type"), "jobId": payload.get("job_id"), **(payload.get("data") or {})}


async def redis_subscriber(redis_client: redis.Redis):
    """Subscribe to the progress channel and forward events to WebSocket clients."""
    pubsub = redis_client.pubsub()
    await pubsub.subscribe(settings.redis_progress_channel)

    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                payload = json.loads(message["data"])
            except json.JSONDecodeError:
                logger.warning(f"Ignoring malformed progress message: {message['data']!r}")
                continue

            client_message = to_client_message(payload)
            if client_message["jobId"]:
                await manager.send_to_job(client_message["jobId"], client_message)
            await manager.broadcast(client_message)
    except asyncio.CancelledError:
        pass
    finally:
        await pubsub.unsubscribe(settings.redis_progress_channel)
        await pubsub.aclose()


async def websocket_endpoint(websocket: WebSocket, job_id: Optional[str] = None):
    """WebSocket endpoint for job progress."""
    await manager.connect(websocket, job_id)

    try:
        while True:
            # Keep connection alive with heartbeat
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=settings.ws_heartbeat_interval
                )
                # Handle ping/pong
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                # Send heartbeat
                await websocket.send_json({"event": "heartbeat"})
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug(f"WebSocket closed for job {job_id or '*'}: {e}")
    finally:
        manager.disconnect(websocket, job_id)
