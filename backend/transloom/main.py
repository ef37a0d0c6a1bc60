"""
TransLoom FastAPI Application Entry Point
FastAPI 应用入口
"""

import os
import socket
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from transloom.config import settings
from transloom.dependencies import get_controller
from transloom.routers import assistant_router, chapters_router, tasks_router, websocket_router
from transloom.routers.websocket import broadcast_progress
from transloom.utils.logger import get_logger

logger = get_logger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])

# Create FastAPI application / 创建 FastAPI 应用
app = FastAPI(
    title="TransLoom API",
    description="Chunked AI Translation Workflow Engine / 章节级 AI 翻译工作流引擎",
    version="0.1.0",
    debug=settings.debug
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Global exception handler: internal details never reach clients
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return a safe 500 response."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )

# Configure CORS / 配置跨域
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Dev: Vite dev server
        "http://localhost:8000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers / 注册路由
# Strategy: Dual Mount
# Mount at root "/" for Dev mode (where Vite proxy strips /api)
# Mount at "/api" for Prod mode (where frontend calls /api directly)
routers = [
    tasks_router,
    chapters_router,
    assistant_router,
    websocket_router,
]

for router in routers:
    app.include_router(router)                  # Dev: http://localhost:8000/tasks
    app.include_router(router, prefix="/api")   # Prod: http://localhost:8000/api/tasks


@app.get("/health")
async def health_check():
    """Health check endpoint / 健康检查"""
    data_dir = Path(settings.data_dir)
    return {
        "status": "ok",
        "version": app.version,
        "storage_accessible": data_dir.exists(),
    }


@app.on_event("startup")
async def on_startup():
    """Startup event handler / 启动事件处理"""
    get_controller().add_listener(broadcast_progress)
    logger.info("TransLoom started, data dir: %s", settings.data_dir)


def _port_available(host: str, port: int) -> bool:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, int(port)))
            return True
    except OSError:
        return False


def _pick_port(host: str, preferred: int, max_tries: int = 20) -> int:
    base = int(preferred or 0)
    if base <= 0:
        return 8000
    for port in range(base, base + max_tries):
        if _port_available(host, port):
            return port
    return base


if __name__ == "__main__":
    import uvicorn

    chosen_port = settings.port
    auto_port = str(os.getenv("TRANSLOOM_AUTO_PORT", "")).strip().lower() in {"1", "true", "yes", "on"}
    if auto_port and not _port_available(settings.host, chosen_port):
        new_port = _pick_port(settings.host, chosen_port + 1)
        if new_port != chosen_port:
            logger.warning("Port %s is in use. Switching to available port %s.", chosen_port, new_port)
            chosen_port = new_port

    logger.info("Running in Dev Mode")
    uvicorn.run(
        "transloom.main:app",
        host=settings.host,
        port=chosen_port,
        reload=settings.debug
    )
