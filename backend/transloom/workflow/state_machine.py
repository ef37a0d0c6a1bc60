# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  任务状态机 - 按任务类型校验并应用工作流状态转换；进入 review 前检查章节完整性
  Task State Machine - Validates and applies workflow-status transitions per task
  type, and gates ``working -> review`` behind a chapter completeness check.

转换表 / Transition tables:
  translation:                       planning → working → review → (working | end)
  polish / proofreading / summary:   planning → working → end
"""

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Protocol, Union

from transloom.config import workflow_setting
from transloom.exceptions import StorageError
from transloom.schemas.novel import Chapter
from transloom.schemas.task import AITask, TaskRunStatus, TaskType, WorkflowStatus
from transloom.schemas.tools import ActionInfo, ToolResult
from transloom.services.task_registry import TaskRegistry
from transloom.utils.logger import get_logger
from transloom.utils.text import format_id_list
from transloom.workflow.chunks import ChunkBoundary

logger = get_logger(__name__)

_P, _W, _R, _E = (
    WorkflowStatus.PLANNING,
    WorkflowStatus.WORKING,
    WorkflowStatus.REVIEW,
    WorkflowStatus.END,
)

_LINEAR_RULES: Dict[WorkflowStatus, FrozenSet[WorkflowStatus]] = {
    _P: frozenset({_W}),
    _W: frozenset({_E}),
    _E: frozenset(),
}

TRANSITION_RULES: Dict[TaskType, Dict[WorkflowStatus, FrozenSet[WorkflowStatus]]] = {
    TaskType.TRANSLATION: {
        _P: frozenset({_W}),
        _W: frozenset({_R}),
        _R: frozenset({_W, _E}),
        _E: frozenset(),
    },
    TaskType.POLISH: _LINEAR_RULES,
    TaskType.PROOFREADING: _LINEAR_RULES,
    TaskType.CHAPTER_SUMMARY: _LINEAR_RULES,
}

VALID_STATUSES: List[str] = [status.value for status in WorkflowStatus]

ActionCallback = Callable[[ActionInfo], None]


class ChapterSource(Protocol):
    """Anything that can hand out the live version of a chapter."""

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter: ...


@dataclass(frozen=True)
class TransitionResult:
    """校验结果 / Outcome of a transition check"""

    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


def parse_status(value: Union[str, WorkflowStatus, None]) -> Optional[WorkflowStatus]:
    if isinstance(value, WorkflowStatus):
        return value
    try:
        return WorkflowStatus(str(value).strip().lower())
    except ValueError:
        return None


def _label(status: Optional[WorkflowStatus]) -> str:
    return status.value if status is not None else "initial"


def validate_transition(
    task_type: Union[TaskType, str],
    current: Optional[WorkflowStatus],
    requested: WorkflowStatus,
) -> TransitionResult:
    """
    校验状态转换 / Validate a workflow-status transition

    A task without a status may only move to ``planning``. Otherwise the pair
    must appear in the task type's table; nothing is ever coerced.

    Example:
        >>> validate_transition(TaskType.POLISH, WorkflowStatus.WORKING, WorkflowStatus.REVIEW).reason
        'invalid transition working → review'
    """
    if current is None:
        if requested != WorkflowStatus.PLANNING:
            return TransitionResult(False, f"initial status must be planning, got {requested.value}")
        return TransitionResult(True)

    try:
        rules = TRANSITION_RULES.get(TaskType(task_type))
    except ValueError:
        rules = None
    if rules is None:
        type_name = task_type.value if isinstance(task_type, TaskType) else task_type
        return TransitionResult(False, f"unknown task type: {type_name}")

    if requested not in rules.get(current, frozenset()):
        return TransitionResult(False, f"invalid transition {current.value} → {requested.value}")
    return TransitionResult(True)


class TaskStateMachine:
    """
    任务状态机 / Task state machine

    Reads tasks from the injected registry and chapters from the injected
    source, which is the paragraph store for standalone calls or the in-memory
    chapter session during a controller run.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        chapters: ChapterSource,
        on_action: Optional[ActionCallback] = None,
        max_missing_reported: Optional[int] = None,
    ):
        self.registry = registry
        self.chapters = chapters
        self.on_action = on_action
        self.max_missing_reported = max_missing_reported or workflow_setting("max_missing_ids_reported")

    async def apply(
        self,
        task_id: str,
        requested: Union[str, WorkflowStatus],
        boundary: Optional[ChunkBoundary] = None,
        require_title: bool = True,
    ) -> ToolResult:
        """
        应用状态转换 / Apply a guarded status change

        Returns:
            ToolResult: 成功时包含 new_status；失败时 error 为可读原因
        """
        if not task_id:
            return ToolResult.fail("task id is required")

        status = parse_status(requested)
        if status is None:
            return ToolResult.fail(
                f'invalid status value "{requested}"; valid values: {", ".join(VALID_STATUSES)}'
            )

        task = self.registry.get_task(task_id)
        if task is None:
            return ToolResult.fail(f"task not found: {task_id}")

        previous = task.workflow_status
        result = validate_transition(task.type, previous, status)
        if not result:
            logger.warning("Rejected transition for task %s: %s", task_id, result.reason)
            return ToolResult.fail(result.reason)

        if status == WorkflowStatus.REVIEW and task.type == TaskType.TRANSLATION:
            gate_error = await self.check_review_gate(task, boundary, require_title)
            if gate_error:
                logger.warning("Review gate blocked task %s: %s", task_id, gate_error)
                return ToolResult.fail(gate_error)

        fields = {"workflow_status": status}
        if status == WorkflowStatus.END:
            fields["status"] = TaskRunStatus.END
        self.registry.update_task(task_id, **fields)

        change = f"{_label(previous)} → {status.value}"
        logger.info("Task %s status: %s", task_id, change)
        self._emit(ActionInfo(type="update", entity="task", data={"id": task_id, "name": f"Task status: {change}"}))
        return ToolResult.ok(
            message=f"Task status updated: {change}",
            task_id=task_id,
            new_status=status.value,
        )

    async def check_review_gate(
        self,
        task: AITask,
        boundary: Optional[ChunkBoundary],
        require_title: bool = True,
    ) -> str:
        """
        检查进入 review 的完整性条件 / Check the review-entry completeness gate

        Returns:
            空字符串表示通过，否则为拒绝原因 / Empty when the gate passes, else the reason
        """
        if not task.book_id or not task.chapter_id:
            return "cannot enter review: task is not associated with a chapter"
        try:
            chapter = await self.chapters.load_chapter(task.book_id, task.chapter_id)
        except StorageError as exc:
            return f"cannot enter review: chapter could not be loaded ({exc})"

        problems: List[str] = []
        if require_title and not chapter.title.is_translated:
            problems.append("the chapter title has no translation (call update_chapter_title)")

        scope = "current chunk" if boundary is not None else "whole chapter"
        missing = [
            p.id
            for p in chapter.paragraphs()
            if not p.is_empty
            and (boundary is None or p.id in boundary)
            and not p.is_translated
        ]
        if missing:
            problems.append(
                f"{len(missing)} paragraph(s) in the {scope} are untranslated: "
                f"{format_id_list(missing, self.max_missing_reported)}"
            )

        if not problems:
            return ""
        return f"cannot enter review ({scope}): " + "; ".join(problems)

    def _emit(self, action: ActionInfo) -> None:
        if self.on_action is None:
            return
        try:
            self.on_action(action)
        except Exception as exc:
            logger.warning("Action callback failed: %s", exc)
