# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  协作式取消句柄 - 在每个挂起点检查，不做强制抢占
  Cooperative abort handle - checked at every suspension point, never preemptive.
"""

import asyncio
from typing import Optional

from transloom.exceptions import TaskCancelledError


class AbortHandle:
    """
    取消句柄 / Abort handle

    触发后无法复位；持有者在下一个挂起点观察到取消并抛出 TaskCancelledError。
    Once fired it stays fired; holders observe it at their next suspension point.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise TaskCancelledError(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"AbortHandle(aborted={self.aborted})"
