"""
Pydantic Data Models / Pydantic 数据模型
Define data structures for API and internal use / 定义 API 和内部使用的数据结构
"""

from .novel import Chapter, ChapterTitle, Novel, Paragraph, Translation, Volume
from .task import AITask, TaskDescriptor, TaskProgress, TaskRunStatus, TaskType, WorkflowStatus
from .tools import ActionInfo, BatchItem, ParagraphUpdate, ToolCall, ToolResult

__all__ = [
    "Chapter",
    "ChapterTitle",
    "Novel",
    "Paragraph",
    "Translation",
    "Volume",
    "AITask",
    "TaskDescriptor",
    "TaskProgress",
    "TaskRunStatus",
    "TaskType",
    "WorkflowStatus",
    "ActionInfo",
    "BatchItem",
    "ParagraphUpdate",
    "ToolCall",
    "ToolResult",
]
