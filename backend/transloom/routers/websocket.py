"""
WebSocket Router
Real-time progress updates for chapter jobs.
"""

import json
from typing import Dict, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from transloom.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


class ConnectionManager:
    """Manage WebSocket connections by book."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, book_id: str):
        await websocket.accept()
        if book_id not in self.active_connections:
            self.active_connections[book_id] = set()
        self.active_connections[book_id].add(websocket)

    def disconnect(self, websocket: WebSocket, book_id: str):
        if book_id in self.active_connections:
            self.active_connections[book_id].discard(websocket)
            if not self.active_connections[book_id]:
                del self.active_connections[book_id]

    async def broadcast(self, book_id: str, message: dict):
        if book_id not in self.active_connections:
            return

        json_message = json.dumps(message, ensure_ascii=False)
        disconnected = set()
        for connection in list(self.active_connections[book_id]):
            try:
                await connection.send_text(json_message)
            except Exception:
                disconnected.add(connection)

        for connection in disconnected:
            self.disconnect(connection, book_id)


manager = ConnectionManager()


@router.websocket("/ws/{book_id}/progress")
async def websocket_endpoint(websocket: WebSocket, book_id: str):
    """WebSocket endpoint for chapter job progress."""
    await manager.connect(websocket, book_id)

    try:
        await websocket.send_json({
            "type": "connected",
            "message": "Connected to TransLoom progress updates",
            "book_id": book_id,
        })

        while True:
            data = await websocket.receive_text()
            await websocket.send_json({
                "type": "pong",
                "timestamp": data,
            })

    except WebSocketDisconnect:
        manager.disconnect(websocket, book_id)
    except Exception as exc:
        logger.error("WebSocket error: %s", exc, exc_info=True)
        manager.disconnect(websocket, book_id)


async def broadcast_progress(payload: dict) -> None:
    """Controller listener: forward a progress payload to the book's clients."""
    book_id = payload.get("book_id")
    if not book_id:
        return
    await manager.broadcast(book_id, payload)
