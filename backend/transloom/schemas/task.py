"""
AI Task Data Models / AI 任务数据模型
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from transloom.services.abort import AbortHandle


class TaskType(str, Enum):
    """Task type / 任务类型"""

    TRANSLATION = "translation"
    POLISH = "polish"
    PROOFREADING = "proofreading"
    CHAPTER_SUMMARY = "chapter_summary"
    ASSISTANT = "assistant"


class WorkflowStatus(str, Enum):
    """
    工作流状态 / Workflow status

    translation: planning -> working -> review -> (working | end)
    polish / proofreading / chapter_summary: planning -> working -> end
    """

    PLANNING = "planning"
    WORKING = "working"
    REVIEW = "review"
    END = "end"


class TaskRunStatus(str, Enum):
    """Top-level task status / 任务整体状态（区别于工作流状态）"""

    PROCESSING = "processing"
    END = "end"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_RUN_STATUSES = frozenset(
    {TaskRunStatus.END, TaskRunStatus.COMPLETED, TaskRunStatus.CANCELLED, TaskRunStatus.ERROR}
)


class TaskProgress(BaseModel):
    """Progress counters / 进度"""

    current: int = Field(default=0, description="Processed units / 已处理数")
    total: int = Field(default=0, description="Total units / 总数")
    message: str = Field(default="", description="Free-text progress message / 进度说明")


class TaskDescriptor(BaseModel):
    """New task request / 创建任务请求"""

    type: TaskType = Field(..., description="Task type / 任务类型")
    chapter_id: Optional[str] = Field(default=None, description="Associated chapter / 关联章节")
    book_id: Optional[str] = Field(default=None, description="Associated book / 关联书籍")
    message: str = Field(default="", description="Initial message / 初始说明")


class AITask(BaseModel):
    """In-flight AI task record / 进行中的 AI 任务"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(..., description="Task ID / 任务ID")
    type: TaskType = Field(..., description="Task type / 任务类型")
    workflow_status: Optional[WorkflowStatus] = Field(
        default=None,
        description="Workflow status, None until the first transition / 工作流状态",
    )
    status: TaskRunStatus = Field(default=TaskRunStatus.PROCESSING, description="Run status / 运行状态")
    chapter_id: Optional[str] = Field(default=None, description="Associated chapter / 关联章节")
    book_id: Optional[str] = Field(default=None, description="Associated book / 关联书籍")
    progress: TaskProgress = Field(default_factory=TaskProgress, description="Progress / 进度")
    message: str = Field(default="", description="Status message / 状态说明")
    created_at: datetime = Field(default_factory=datetime.now, description="Created at / 创建时间")
    abort_handle: AbortHandle = Field(
        default_factory=AbortHandle,
        exclude=True,
        description="Cancellation handle owned by this task / 任务独占的取消句柄",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES
