# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  应用级异常层次 - 定义业务逻辑层异常的完整继承树
  Application-level Exception Hierarchy - Business logic exception definitions.

说明 / Note:
  面向 LLM 工具调用的校验失败不抛异常，而是返回结构化的 ToolResult。
  Validation failures on the tool-facing surface are returned as structured
  ToolResult objects instead of being raised.
"""

from typing import Iterable, List


class TransLoomError(Exception):
    """
    TransLoom 业务错误的基类

    Base exception for all TransLoom business errors.
    """


class StorageError(TransLoomError):
    """
    存储操作失败异常

    Raised when a storage operation fails (read/write/delete).
    """


class ParagraphNotFoundError(StorageError):
    """
    批量更新引用了不存在的段落

    Raised by an atomic paragraph update when referenced paragraphs are missing.
    Nothing has been written when this is raised.
    """

    def __init__(self, paragraph_ids: Iterable[str]):
        self.paragraph_ids: List[str] = list(paragraph_ids)
        super().__init__(f"Paragraphs not found: {', '.join(self.paragraph_ids)}")


class BookNotFoundError(StorageError):
    """Raised when a book's metadata file does not exist."""


class ChapterNotFoundError(StorageError):
    """Raised when a chapter cannot be located in its book."""


class LLMError(TransLoomError):
    """
    LLM调用失败异常

    Raised when an LLM call fails (timeout, rate limit, bad response).
    """


class TokenLimitError(LLMError):
    """The provider rejected the request because the context is too long."""


class WorkflowError(TransLoomError):
    """
    工作流状态错误

    Raised when a chunk session cannot make progress (turn cap exhausted,
    model never reached a terminal status).
    """


class TaskNotFoundError(TransLoomError):
    """Raised when a task id is not present in the registry."""


class TaskCancelledError(TransLoomError):
    """
    任务被取消

    Raised at a suspension point after the task's abort handle fired.
    Cancellation is a normal terminal path, not a failure.
    """


class PersistenceError(TransLoomError):
    """
    已写入内存但未能落盘

    Raised when a deferred chapter flush fails after updates were applied in memory.
    """
