# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  文件锁管理器 - 基于 asyncio.Lock 的进程内按文件加锁
  File Lock Manager - Per-file asyncio locks serializing writers within one process.

实现方式 / Implementation:
  锁不可重入：持锁期间请直接使用 BaseStorage._atomic_write。
  Locks are not re-entrant; while holding one, write with BaseStorage._atomic_write.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional


class AsyncFileLock:
    """
    异步文件锁 / Async file lock registry

    Each resolved file path maps to its own asyncio.Lock, so writes to
    different chapters never wait on each other.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, file_path: Path) -> asyncio.Lock:
        key = str(file_path.resolve())
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def lock(self, file_path: Path, timeout: Optional[float] = 30.0):
        """
        获取文件锁（上下文管理器）/ Hold the lock for ``file_path``

        Raises:
            asyncio.TimeoutError: 超时未获得锁 / Lock not acquired within timeout
        """
        lock = self._get_lock(file_path)
        if timeout is not None:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        else:
            await lock.acquire()
        try:
            yield
        finally:
            lock.release()


_file_lock: Optional[AsyncFileLock] = None


def get_file_lock() -> AsyncFileLock:
    """获取全局文件锁实例 / Global lock registry singleton."""
    global _file_lock
    if _file_lock is None:
        _file_lock = AsyncFileLock()
    return _file_lock
