"""
API Routers / API 路由
"""

from .tasks import router as tasks_router
from .chapters import router as chapters_router
from .assistant import router as assistant_router
from .websocket import router as websocket_router

__all__ = [
    "tasks_router",
    "chapters_router",
    "assistant_router",
    "websocket_router",
]
