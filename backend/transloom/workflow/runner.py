# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  章节任务执行器 - 把章节切块，逐块运行有轮次上限的工具调用会话，
  以异步生成器的形式产出已提交的段落结果
  Chapter Task Runner - Splits a chapter into chunks, runs one bounded tool-call
  session per chunk, and yields committed paragraph results as an async generator.

事件顺序 / Event order (per chunk):
  ChunkStarted → (ParagraphsCommitted | TitleCommitted)* → ChunkFinished

  生成器在每个事件处挂起，消费者处理完事件后才会继续下一次工具调用。
  The generator suspends at every event; the next tool call only runs after the
  consumer has handled it.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from transloom.config import workflow_setting
from transloom.exceptions import WorkflowError
from transloom.llm_gateway.gateway import LLMGateway
from transloom.schemas.novel import Paragraph
from transloom.schemas.task import TaskRunStatus, TaskType, WorkflowStatus
from transloom.schemas.tools import ParagraphUpdate
from transloom.services.abort import AbortHandle
from transloom.services.task_registry import TaskRegistry
from transloom.utils.logger import get_logger
from transloom.workflow.chunks import SubmittedIdsLedger, TextChunk, build_chunks, formatter_for
from transloom.workflow.gateway import BatchSubmissionGateway
from transloom.workflow.prompts import chunk_user_prompt, status_nudge_prompt, system_prompt_for
from transloom.workflow.session import StagingParagraphWriter
from transloom.workflow.state_machine import ActionCallback, ChapterSource, TaskStateMachine
from transloom.workflow.tools import ToolRegistry, WorkflowToolContext, build_workflow_tools

logger = get_logger(__name__)


@dataclass
class ChunkStarted:
    chunk_index: int
    chunk_count: int
    paragraph_ids: List[str]


@dataclass
class ParagraphsCommitted:
    updates: List[ParagraphUpdate]
    chunk_index: int


@dataclass
class TitleCommitted:
    text: str


@dataclass
class ChunkFinished:
    chunk_index: int


RunEvent = Union[ChunkStarted, ParagraphsCommitted, TitleCommitted, ChunkFinished]


@dataclass
class RunRequest:
    """
    一次章节运行的输入 / Input of one chapter run

    Attributes:
        targets: 待处理段落（已排除空段）/ Paragraphs to process, empty ones excluded
        writer: 暂存写入器，批次提交到这里 / Staging writer batches commit into
        chapters: 状态机读取的章节来源 / Chapter source read by the review gate
        single: 单段模式 / One paragraph, no ledger, no title requirement
    """

    kind: TaskType
    task_id: str
    book_id: str
    chapter_id: str
    targets: List[Paragraph]
    model_id: str
    writer: StagingParagraphWriter
    chapters: ChapterSource
    abort: AbortHandle
    single: bool = False
    provider: Optional[str] = None


class TaskSession:
    """
    单块任务会话 / Tool-call session for one chunk

    Runs at most ``max_turns`` model rounds. The chunk is finished once the
    task's workflow status is ``end``; a round without tool calls gets a
    status reminder instead of ending the session.
    """

    def __init__(
        self,
        llm: LLMGateway,
        tools: ToolRegistry,
        registry: TaskRegistry,
        task_id: str,
        abort: AbortHandle,
        max_turns: int,
        provider: Optional[str] = None,
    ):
        self.llm = llm
        self.tools = tools
        self.registry = registry
        self.task_id = task_id
        self.abort = abort
        self.max_turns = max_turns
        self.provider = provider

    def _status(self) -> Optional[WorkflowStatus]:
        return self.registry.require_task(self.task_id).workflow_status

    async def run(
        self,
        messages: List[Dict[str, Any]],
        writer: StagingParagraphWriter,
        chunk_index: int,
    ) -> AsyncIterator[RunEvent]:
        definitions = self.tools.definitions()
        for turn in range(self.max_turns):
            self.abort.raise_if_aborted()
            result = await self.llm.generate(
                messages,
                tools=definitions,
                provider=self.provider,
                abort=self.abort,
            )
            messages.append(result.assistant_message())

            if not result.tool_calls:
                status = self._status()
                if status == WorkflowStatus.END:
                    return
                messages.append({"role": "user", "content": status_nudge_prompt(status)})
                continue

            for call in result.tool_calls:
                self.abort.raise_if_aborted()
                outcome = await self.tools.dispatch(call)
                if not outcome.success:
                    logger.info("Tool %s rejected in task %s: %s", call.name, self.task_id, outcome.error)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": outcome.to_tool_output(),
                })
                staged = writer.drain()
                if staged.paragraphs:
                    yield ParagraphsCommitted(updates=staged.paragraphs, chunk_index=chunk_index)
                if staged.title is not None:
                    yield TitleCommitted(text=staged.title)

            if self._status() == WorkflowStatus.END:
                return

        status = self._status()
        current = status.value if status is not None else "unset"
        raise WorkflowError(
            f"chunk {chunk_index + 1} did not finish within {self.max_turns} turns (status: {current})"
        )


class ChapterTaskRunner:
    """
    章节任务执行器 / Chapter task runner

    Builds the per-run state machine, gateway and tools around the request's
    writer, then drives one TaskSession per chunk.
    """

    def __init__(
        self,
        llm: LLMGateway,
        registry: TaskRegistry,
        on_action: Optional[ActionCallback] = None,
        chunk_char_limit: Optional[int] = None,
        max_turns_per_chunk: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        self.llm = llm
        self.registry = registry
        self.on_action = on_action
        self.chunk_char_limit = chunk_char_limit or workflow_setting("chunk_char_limit")
        self.max_turns_per_chunk = max_turns_per_chunk or workflow_setting("max_turns_per_chunk")
        self.provider = provider

    @property
    def model_id(self) -> str:
        return self.llm.model_id(self.provider)

    def plan_chunks(self, kind: TaskType, targets: List[Paragraph], single: bool = False) -> List[TextChunk]:
        formatter = formatter_for(kind)
        if single:
            return [TextChunk(text=formatter(p), paragraph_ids=[p.id]) for p in targets]
        return build_chunks(targets, self.chunk_char_limit, formatter)

    async def run(self, request: RunRequest) -> AsyncIterator[RunEvent]:
        """
        运行章节任务 / Run a chapter task

        Yields:
            RunEvent: 块开始/段落提交/标题提交/块结束 / Chunk and commit events

        Raises:
            TaskCancelledError: 取消句柄触发 / The abort handle fired
            WorkflowError: 某块超出轮次上限 / A chunk exhausted its turn cap
            LLMError: 模型调用失败 / Provider failure
        """
        kind = request.kind
        chunks = self.plan_chunks(kind, request.targets, request.single)
        state_machine = TaskStateMachine(self.registry, request.chapters, self.on_action)
        gateway = BatchSubmissionGateway(self.registry, request.writer, self.on_action)
        context = WorkflowToolContext(
            task_id=request.task_id,
            book_id=request.book_id,
            chapter_id=request.chapter_id,
            model_id=request.model_id,
            ledger=None if request.single else SubmittedIdsLedger(),
            require_title=not request.single,
        )
        tools = build_workflow_tools(state_machine, gateway, context, kind)
        session = TaskSession(
            self.llm,
            tools,
            self.registry,
            request.task_id,
            request.abort,
            self.max_turns_per_chunk,
            provider=request.provider or self.provider,
        )

        logger.info(
            "Running %s for chapter %s: %d paragraph(s) in %d chunk(s)",
            kind.value, request.chapter_id, len(request.targets), len(chunks),
        )
        for index, chunk in enumerate(chunks):
            request.abort.raise_if_aborted()
            context.boundary = chunk.boundary()
            if context.ledger is not None:
                context.ledger.reset()
            self.registry.update_task(
                request.task_id,
                workflow_status=WorkflowStatus.PLANNING,
                status=TaskRunStatus.PROCESSING,
            )
            yield ChunkStarted(chunk_index=index, chunk_count=len(chunks), paragraph_ids=list(chunk.paragraph_ids))

            chapter = await request.chapters.load_chapter(request.book_id, request.chapter_id)
            title = None
            if kind == TaskType.TRANSLATION and not request.single and not chapter.title.is_translated:
                title = chapter.title.original
            messages: List[Dict[str, Any]] = [
                {"role": "system", "content": system_prompt_for(kind)},
                {"role": "user", "content": chunk_user_prompt(kind, chunk.text, index, len(chunks), title)},
            ]
            async for event in session.run(messages, request.writer, index):
                yield event

            logger.info("Chunk %d/%d of chapter %s finished", index + 1, len(chunks), request.chapter_id)
            yield ChunkFinished(chunk_index=index)
