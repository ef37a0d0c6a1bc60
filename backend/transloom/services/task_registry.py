# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  任务注册表 - 记录进行中的 AI 任务（类型、工作流状态、取消句柄、章节关联）
  Task Registry - In-memory record of in-flight AI tasks (type, workflow status,
  abort handle and chapter association). Injected into every component that
  needs task lookup; tests construct their own instance.
"""

from typing import Any, Dict, List, Optional

from transloom.exceptions import TaskNotFoundError
from transloom.schemas.task import AITask, TaskDescriptor, TaskRunStatus, TaskType
from transloom.utils.ids import generate_short_id
from transloom.utils.logger import get_logger

logger = get_logger(__name__)


class TaskRegistry:
    """
    进程内任务注册表 / In-process task registry

    Tasks stay in the registry after reaching a terminal status so their final
    state can still be queried; ``active_tasks`` only lists non-terminal ones.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, AITask] = {}

    def add_task(self, descriptor: TaskDescriptor, **fields: Any) -> str:
        """
        注册新任务 / Register a new task

        Args:
            descriptor: 任务描述 / Task type and chapter/book association
            **fields: 额外的初始字段（如 workflow_status）/ Extra initial fields

        Returns:
            新任务ID / The new task id
        """
        task_id = generate_short_id()
        task = AITask(
            id=task_id,
            type=descriptor.type,
            chapter_id=descriptor.chapter_id,
            book_id=descriptor.book_id,
            message=descriptor.message,
            **fields,
        )
        self._tasks[task_id] = task
        logger.info("Task registered: %s (%s, chapter=%s)", task_id, task.type.value, task.chapter_id)
        return task_id

    def get_task(self, task_id: str) -> Optional[AITask]:
        return self._tasks.get(task_id)

    def require_task(self, task_id: str) -> AITask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    def update_task(self, task_id: str, **fields: Any) -> AITask:
        """
        部分更新任务字段 / Apply a partial update to a task

        Raises:
            TaskNotFoundError: 任务不存在 / Unknown task id
        """
        task = self.require_task(task_id)
        for key, value in fields.items():
            if not hasattr(task, key):
                raise AttributeError(f"AITask has no field '{key}'")
            setattr(task, key, value)
        return task

    def remove_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    @property
    def active_tasks(self) -> List[AITask]:
        return [task for task in self._tasks.values() if not task.is_terminal]

    def all_tasks(self) -> List[AITask]:
        return list(self._tasks.values())

    def stop_tasks(self, task_type: TaskType, chapter_id: Optional[str]) -> int:
        """
        停止指定章节+类型的所有活动任务 / Stop active tasks for a chapter and kind

        Fires each task's abort handle and marks it cancelled.

        Returns:
            被停止的任务数 / Number of tasks stopped
        """
        stopped = 0
        for task in self.active_tasks:
            if task.type != task_type or task.chapter_id != chapter_id:
                continue
            task.abort_handle.abort("cancelled by user")
            task.status = TaskRunStatus.CANCELLED
            task.message = "已取消 / Cancelled"
            stopped += 1
        if stopped:
            logger.info("Stopped %d %s task(s) for chapter %s", stopped, task_type.value, chapter_id)
        return stopped
