# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  工具注册与分发 - 工具定义（JSON Schema 参数）、参数弹性解析、统一的结构化结果
  Tool Registry and Dispatch - Tool definitions with JSON-schema parameters,
  lenient argument parsing, and structured results for every outcome.

工具 / Tools:
  - update_task_status     所有章节任务 / every chapter task
  - add_translation_batch  所有章节任务 / every chapter task
  - update_chapter_title   仅翻译任务 / translation only
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from transloom.exceptions import TaskCancelledError
from transloom.schemas.task import TaskType
from transloom.schemas.tools import ToolCall, ToolResult
from transloom.utils.llm_output import parse_tool_arguments
from transloom.utils.logger import get_logger
from transloom.workflow.chunks import ChunkBoundary, SubmittedIdsLedger
from transloom.workflow.gateway import BatchSubmissionGateway
from transloom.workflow.state_machine import VALID_STATUSES, TaskStateMachine

logger = get_logger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[ToolResult]]


@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: ToolHandler

    def definition(self) -> Dict[str, Any]:
        """OpenAI function-tool format; providers convert as needed."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """
    工具注册表 / Tool registry

    ``dispatch`` never raises for bad input: unknown tools, unparsable
    arguments and handler failures all come back as ``ToolResult.fail``.
    Cancellation is the exception and propagates.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def definitions(self) -> List[Dict[str, Any]]:
        return [spec.definition() for spec in self._tools.values()]

    async def dispatch(self, call: ToolCall) -> ToolResult:
        spec = self._tools.get(call.name)
        if spec is None:
            available = ", ".join(self._tools) or "(none)"
            return ToolResult.fail(f"unknown or unavailable tool: {call.name}; available tools: {available}")

        arguments, error_code = parse_tool_arguments(call.arguments)
        if arguments is None:
            return ToolResult.fail(f"arguments for {call.name} are not valid JSON ({error_code})")

        try:
            return await spec.handler(arguments)
        except TaskCancelledError:
            raise
        except Exception as exc:
            logger.error("Tool %s failed: %s", call.name, exc, exc_info=True)
            return ToolResult.fail(f"{call.name} failed: {exc}")


@dataclass
class WorkflowToolContext:
    """
    工具调用上下文 / Per-session context bound into the workflow tools

    The boundary and ledger belong to the chunk currently being processed and
    are swapped by the runner between chunks.
    """

    task_id: str
    book_id: str
    chapter_id: str
    model_id: str
    boundary: Optional[ChunkBoundary] = None
    ledger: Optional[SubmittedIdsLedger] = field(default_factory=SubmittedIdsLedger)
    require_title: bool = True


_STATUS_PARAMETERS = {
    "type": "object",
    "properties": {
        "status": {
            "type": "string",
            "enum": VALID_STATUSES,
            "description": "New workflow status",
        },
        "reason": {"type": "string", "description": "Optional note explaining the change"},
    },
    "required": ["status"],
}

_BATCH_PARAMETERS = {
    "type": "object",
    "properties": {
        "paragraphs": {
            "type": "array",
            "description": "Paragraph results, addressed by the id shown as [ID: ...]",
            "items": {
                "type": "object",
                "properties": {
                    "paragraph_id": {"type": "string"},
                    "translated_text": {"type": "string"},
                },
                "required": ["paragraph_id", "translated_text"],
            },
        },
    },
    "required": ["paragraphs"],
}

_TITLE_PARAMETERS = {
    "type": "object",
    "properties": {
        "translated_title": {"type": "string", "description": "Translated chapter title"},
    },
    "required": ["translated_title"],
}


def build_workflow_tools(
    state_machine: TaskStateMachine,
    gateway: BatchSubmissionGateway,
    context: WorkflowToolContext,
    kind: TaskType,
) -> ToolRegistry:
    """
    构建章节任务工具集 / Build the tool set of one chapter task session

    Handlers read ``context`` at call time, so replacing its boundary or
    ledger takes effect for the next call.
    """
    registry = ToolRegistry()

    async def update_task_status(args: Dict[str, Any]) -> ToolResult:
        status = args.get("status")
        if status is None:
            return ToolResult.fail(f"status is required; valid values: {', '.join(VALID_STATUSES)}")
        return await state_machine.apply(
            context.task_id,
            status,
            boundary=context.boundary,
            require_title=context.require_title,
        )

    async def add_translation_batch(args: Dict[str, Any]) -> ToolResult:
        return await gateway.submit(
            context.task_id,
            context.chapter_id,
            context.model_id,
            args.get("paragraphs"),
            boundary=context.boundary,
            ledger=context.ledger,
        )

    async def update_chapter_title(args: Dict[str, Any]) -> ToolResult:
        return await gateway.submit_title(
            context.task_id,
            context.chapter_id,
            context.model_id,
            args.get("translated_title"),
        )

    registry.register(ToolSpec(
        name="update_task_status",
        description=(
            "Change the workflow status of the current task. "
            "Move to working before submitting results; finish with end."
        ),
        parameters=_STATUS_PARAMETERS,
        handler=update_task_status,
    ))
    registry.register(ToolSpec(
        name="add_translation_batch",
        description=(
            "Submit results for paragraphs of the current chunk. "
            "Only allowed while the task is working. Each call appends a new version."
        ),
        parameters=_BATCH_PARAMETERS,
        handler=add_translation_batch,
    ))
    if kind == TaskType.TRANSLATION:
        registry.register(ToolSpec(
            name="update_chapter_title",
            description="Submit the translated chapter title. Required before entering review.",
            parameters=_TITLE_PARAMETERS,
            handler=update_chapter_title,
        ))
    return registry
