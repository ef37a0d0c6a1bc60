# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  章节并发控制器 - 按章节+任务类型独立运行翻译/润色/校对，流式应用结果，
  无论正常结束、出错还是取消，都只做一次延迟落盘
  Chapter Concurrency Controller - Runs translate / polish / proofread jobs per
  chapter and kind, applies streamed results in memory as they arrive, and
  performs exactly one deferred flush whether the job completes, fails or is
  cancelled.

运行流程 / Run flow:
  1. 解析目标段落，初始化进度 {0, |targets|} / Resolve targets, init progress
  2. 消费执行器事件：去重后写入内存章节（skip-save）/ Apply deduped events in memory
  3. finally：有未落盘更新则整章保存一次 / Flush the chapter once if anything applied
  4. 落盘失败单独报告为“已保存到内存但未写入磁盘” / Flush failures reported distinctly
  5. 清除运行标志，延迟后重置进度 / Clear running flag, reset progress after a delay
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from transloom.config import workflow_setting
from transloom.exceptions import (
    ParagraphNotFoundError,
    PersistenceError,
    TaskCancelledError,
    TransLoomError,
    WorkflowError,
)
from transloom.schemas.novel import Chapter, Paragraph, Volume
from transloom.schemas.task import TaskDescriptor, TaskProgress, TaskRunStatus, TaskType, WorkflowStatus
from transloom.services.abort import AbortHandle
from transloom.services.task_registry import TaskRegistry
from transloom.utils.logger import get_logger
from transloom.workflow.runner import (
    ChapterTaskRunner,
    ChunkFinished,
    ChunkStarted,
    ParagraphsCommitted,
    RunEvent,
    RunRequest,
    TitleCommitted,
)
from transloom.workflow.session import ChapterSession

logger = get_logger(__name__)

CHAPTER_KINDS = (TaskType.TRANSLATION, TaskType.POLISH, TaskType.PROOFREADING)

ProgressListener = Callable[[Dict[str, Any]], Awaitable[None]]


class JobStatus(str, Enum):
    """Final status of a chapter job / 章节任务最终状态"""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PERSIST_FAILED = "persist_failed"
    NOTHING_TO_DO = "nothing_to_do"


_RUN_STATUS = {
    JobStatus.COMPLETED: TaskRunStatus.COMPLETED,
    JobStatus.CANCELLED: TaskRunStatus.CANCELLED,
    JobStatus.FAILED: TaskRunStatus.ERROR,
    JobStatus.PERSIST_FAILED: TaskRunStatus.ERROR,
}


@dataclass
class JobOutcome:
    status: JobStatus
    message: str = ""
    applied_count: int = 0
    flushed: bool = False
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "applied_count": self.applied_count,
            "flushed": self.flushed,
            "task_id": self.task_id,
        }


@dataclass
class ChapterJobState:
    """
    章节任务状态 / Per chapter+kind job state

    Created lazily and kept for the life of the process. ``abort`` belongs to
    the running task and is replaced on every run.
    """

    kind: TaskType
    chapter_id: str
    book_id: Optional[str] = None
    is_running: bool = False
    progress: TaskProgress = field(default_factory=TaskProgress)
    abort: Optional[AbortHandle] = None
    in_flight_ids: Set[str] = field(default_factory=set)
    task_id: Optional[str] = None
    last_outcome: Optional[JobOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "chapter_id": self.chapter_id,
            "book_id": self.book_id,
            "is_running": self.is_running,
            "progress": self.progress.model_dump(),
            "in_flight_ids": sorted(self.in_flight_ids),
            "task_id": self.task_id,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
        }


def select_targets(kind: TaskType, paragraphs: List[Paragraph], only_untranslated: bool = False) -> List[Paragraph]:
    """
    选择目标段落 / Pick the paragraphs a job works on

    Translation takes every non-empty paragraph (only untranslated ones when
    continuing); polish and proofreading take translated paragraphs only.
    """
    targets = [p for p in paragraphs if not p.is_empty]
    if kind == TaskType.TRANSLATION:
        if only_untranslated:
            targets = [p for p in targets if not p.is_translated]
        return targets
    return [p for p in targets if p.is_translated]


class ChapterConcurrencyController:
    """
    章节并发控制器 / Chapter concurrency controller

    Jobs for different chapters, or different kinds of the same chapter, run
    independently; a second job for a chapter+kind that is already running is
    refused.
    """

    def __init__(
        self,
        store: Any,
        registry: TaskRegistry,
        runner: ChapterTaskRunner,
        progress_reset_delay: Optional[float] = None,
    ):
        self.store = store
        self.registry = registry
        self.runner = runner
        if progress_reset_delay is None:
            progress_reset_delay = workflow_setting("progress_reset_delay")
        self.progress_reset_delay = progress_reset_delay
        self._states: Dict[Tuple[TaskType, str], ChapterJobState] = {}
        self._listeners: List[ProgressListener] = []
        self._reset_handles: Dict[Tuple[TaskType, str], asyncio.TimerHandle] = {}
        self._jobs: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State and listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def get_state(self, kind: TaskType, chapter_id: str) -> ChapterJobState:
        key = (TaskType(kind), chapter_id)
        state = self._states.get(key)
        if state is None:
            state = ChapterJobState(kind=key[0], chapter_id=chapter_id)
            self._states[key] = state
        return state

    async def _notify(self, state: ChapterJobState, event: str, **extra: Any) -> None:
        payload: Dict[str, Any] = {
            "type": event,
            "kind": state.kind.value,
            "book_id": state.book_id,
            "chapter_id": state.chapter_id,
            "state": state.to_dict(),
            "timestamp": int(time.time() * 1000),
        }
        payload.update(extra)
        for listener in list(self._listeners):
            try:
                await listener(payload)
            except Exception as exc:
                logger.warning("Progress listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_full_chapter(
        self,
        kind: TaskType,
        book_id: str,
        chapter_id: str,
        only_untranslated: bool = False,
        model_id: Optional[str] = None,
    ) -> JobOutcome:
        """
        运行整章任务 / Run a full-chapter job

        Raises:
            WorkflowError: 该章节同类任务正在运行 / Same chapter+kind already running
            StorageError: 书籍或章节不存在 / Unknown book or chapter
        """
        kind = self._check_kind(kind)
        abort = self._claim(kind, chapter_id)
        return await self._run_full(kind, book_id, chapter_id, abort, only_untranslated, model_id)

    async def run_single_paragraph(
        self,
        kind: TaskType,
        book_id: str,
        chapter_id: str,
        paragraph_id: str,
        model_id: Optional[str] = None,
    ) -> JobOutcome:
        """
        运行单段任务 / Run a one-paragraph job (flushes after every update)

        Raises:
            ParagraphNotFoundError: 段落不存在 / Unknown paragraph
        """
        kind = self._check_kind(kind)
        abort = self._claim(kind, chapter_id)
        try:
            book = await self.store.require_book(book_id)
            chapter = await self.store.load_chapter(book_id, chapter_id)
            paragraph = chapter.find_paragraph(paragraph_id)
            if paragraph is None:
                raise ParagraphNotFoundError([paragraph_id])
        except BaseException:
            self._release(kind, chapter_id, abort)
            raise
        targets = select_targets(kind, [paragraph])
        return await self._execute(
            kind, book_id, chapter, book.volumes, targets, abort, single=True, model_id=model_id
        )

    def start_full_chapter(
        self,
        kind: TaskType,
        book_id: str,
        chapter_id: str,
        only_untranslated: bool = False,
        model_id: Optional[str] = None,
    ) -> "asyncio.Task[JobOutcome]":
        """
        后台运行整章任务 / Schedule a full-chapter job in the background

        The chapter+kind is claimed before this returns, so a second start is
        refused and ``cancel`` takes effect even before the job has loaded the
        chapter.
        """
        kind = self._check_kind(kind)
        abort = self._claim(kind, chapter_id)
        job = asyncio.create_task(
            self._run_full(kind, book_id, chapter_id, abort, only_untranslated, model_id)
        )
        self._jobs.add(job)
        job.add_done_callback(lambda done: self._job_done(done, kind, chapter_id, abort))
        return job

    def _job_done(
        self,
        job: "asyncio.Task[JobOutcome]",
        kind: TaskType,
        chapter_id: str,
        abort: AbortHandle,
    ) -> None:
        self._jobs.discard(job)
        if job.cancelled():
            # cancelled before the coroutine got to run
            self._release(kind, chapter_id, abort)
            return
        exc = job.exception()
        if exc is not None:
            logger.error("Background chapter job failed: %s", exc)

    def cancel(self, kind: TaskType, chapter_id: str) -> bool:
        """
        取消章节任务 / Cancel the chapter+kind job

        Fires the running job's abort handle and stops registered tasks for the
        chapter. Already-applied results are still flushed by the job itself.

        Returns:
            是否有任务被取消 / Whether anything was cancelled
        """
        kind = self._check_kind(kind)
        state = self._states.get((kind, chapter_id))
        fired = False
        if state is not None and state.is_running and state.abort is not None:
            state.abort.abort("cancelled by user")
            fired = True
        stopped = self.registry.stop_tasks(kind, chapter_id)
        if fired or stopped:
            logger.info("Cancel requested for %s of chapter %s", kind.value, chapter_id)
        return fired or stopped > 0

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _check_kind(kind: Any) -> TaskType:
        kind = TaskType(kind)
        if kind not in CHAPTER_KINDS:
            raise WorkflowError(f"unsupported chapter job kind: {kind.value}")
        return kind

    def _claim(self, kind: TaskType, chapter_id: str) -> AbortHandle:
        """Mark the chapter+kind running and install the abort handle of the new job."""
        state = self.get_state(kind, chapter_id)
        if state.is_running:
            raise WorkflowError(f"{kind.value} is already running for chapter {chapter_id}")
        self._cancel_reset(kind, chapter_id)
        abort = AbortHandle()
        state.is_running = True
        state.abort = abort
        state.task_id = None
        state.in_flight_ids = set()
        return abort

    def _release(self, kind: TaskType, chapter_id: str, abort: AbortHandle) -> None:
        state = self._states.get((kind, chapter_id))
        if state is not None and state.abort is abort and state.is_running:
            state.is_running = False

    async def _run_full(
        self,
        kind: TaskType,
        book_id: str,
        chapter_id: str,
        abort: AbortHandle,
        only_untranslated: bool,
        model_id: Optional[str],
    ) -> JobOutcome:
        try:
            book = await self.store.require_book(book_id)
            chapter = await self.store.load_chapter(book_id, chapter_id)
        except BaseException:
            self._release(kind, chapter_id, abort)
            raise
        targets = select_targets(kind, chapter.paragraphs(), only_untranslated)
        return await self._execute(
            kind, book_id, chapter, book.volumes, targets, abort, single=False, model_id=model_id
        )

    async def _execute(
        self,
        kind: TaskType,
        book_id: str,
        chapter: Chapter,
        volumes: List[Volume],
        targets: List[Paragraph],
        abort: AbortHandle,
        single: bool,
        model_id: Optional[str],
    ) -> JobOutcome:
        state = self.get_state(kind, chapter.id)
        state.book_id = book_id

        if not targets:
            outcome = JobOutcome(JobStatus.NOTHING_TO_DO, "no paragraphs to process")
            state.is_running = False
            state.last_outcome = outcome
            state.progress = TaskProgress(current=0, total=0, message=outcome.message)
            logger.info("Nothing to do for %s of chapter %s", kind.value, chapter.id)
            await self._notify(state, "finished", outcome=outcome.to_dict())
            return outcome

        task_id = self.registry.add_task(
            TaskDescriptor(type=kind, chapter_id=chapter.id, book_id=book_id, message=f"{kind.value} started"),
            workflow_status=WorkflowStatus.PLANNING,
            abort_handle=abort,
        )
        task = self.registry.require_task(task_id)
        target_ids = [p.id for p in targets]

        state.task_id = task_id
        state.in_flight_ids = set()
        state.progress = TaskProgress(current=0, total=len(targets), message="starting")
        logger.info("Starting %s for chapter %s (%d paragraph(s))", kind.value, chapter.id, len(targets))
        await self._notify(state, "started")

        session = ChapterSession(book_id, chapter, volumes)
        status = JobStatus.COMPLETED
        message = ""
        persist_error: Optional[str] = None
        loop_cancelled = False
        try:
            abort.raise_if_aborted()
            request = RunRequest(
                kind=kind,
                task_id=task_id,
                book_id=book_id,
                chapter_id=chapter.id,
                targets=targets,
                model_id=model_id or self.runner.model_id,
                writer=session.writer,
                chapters=session,
                abort=task.abort_handle,
                single=single,
            )
            async for event in self.runner.run(request):
                await self._handle_event(state, session, event, request.model_id, target_ids)
                if single and session.unsaved:
                    persist_error = await self._flush(session)
                    if persist_error:
                        raise PersistenceError(persist_error)
        except TaskCancelledError:
            status, message = JobStatus.CANCELLED, "cancelled"
        except asyncio.CancelledError:
            status, message = JobStatus.CANCELLED, "cancelled"
            task.abort_handle.abort("job cancelled")
            loop_cancelled = True
        except PersistenceError as exc:
            status, message = JobStatus.PERSIST_FAILED, str(exc)
        except TransLoomError as exc:
            status, message = JobStatus.FAILED, str(exc)
            logger.error("%s failed for chapter %s: %s", kind.value, chapter.id, exc)
        except Exception as exc:
            status, message = JobStatus.FAILED, f"unexpected error: {exc}"
            logger.error("%s failed for chapter %s: %s", kind.value, chapter.id, exc, exc_info=True)
        finally:
            flushed = False
            if session.unsaved and persist_error is None:
                persist_error = await self._flush(session)
                flushed = persist_error is None
            elif session.dirty and persist_error is None:
                flushed = True

        if persist_error and status != JobStatus.PERSIST_FAILED:
            detail = f"; run ended as {status.value}" + (f" ({message})" if message else "")
            status, message = JobStatus.PERSIST_FAILED, persist_error + detail
        if status == JobStatus.COMPLETED:
            message = f"{session.applied_count} update(s) applied"

        outcome = JobOutcome(
            status=status,
            message=message,
            applied_count=session.applied_count,
            flushed=flushed,
            task_id=task_id,
        )
        self.registry.update_task(
            task_id,
            status=_RUN_STATUS[status],
            message=message,
            progress=state.progress.model_copy(),
        )
        state.is_running = False
        state.last_outcome = outcome
        state.progress = state.progress.model_copy(update={"message": message})
        logger.info("%s for chapter %s finished: %s (%s)", kind.value, chapter.id, status.value, message)
        await self._notify(state, "finished", outcome=outcome.to_dict())
        self._schedule_reset(kind, chapter.id)

        if loop_cancelled:
            raise asyncio.CancelledError()
        return outcome

    async def _handle_event(
        self,
        state: ChapterJobState,
        session: ChapterSession,
        event: RunEvent,
        model_id: str,
        target_ids: List[str],
    ) -> None:
        if isinstance(event, ChunkStarted):
            state.in_flight_ids = set(event.paragraph_ids)
            state.progress.message = f"chunk {event.chunk_index + 1}/{event.chunk_count}"
            await self._notify(state, "chunk_started", chunk_index=event.chunk_index)
        elif isinstance(event, ParagraphsCommitted):
            changed = session.apply(event.updates, model_id)
            if not changed:
                return
            state.in_flight_ids.difference_update(u.paragraph_id for u in changed)
            state.progress.current = sum(1 for pid in target_ids if pid in session.last_applied)
            await self._notify(
                state,
                "paragraphs",
                updates=[{"paragraph_id": u.paragraph_id, "text": u.text} for u in changed],
            )
        elif isinstance(event, TitleCommitted):
            if session.apply_title(event.text, model_id):
                await self._notify(state, "title", text=event.text)
        elif isinstance(event, ChunkFinished):
            state.in_flight_ids = set()
            await self._notify(state, "chunk_finished", chunk_index=event.chunk_index)

    async def _flush(self, session: ChapterSession) -> Optional[str]:
        """Save the whole chapter once; returns an error message instead of raising."""
        try:
            await self.store.save_chapter_content(session.book_id, session.chapter)
        except Exception as exc:
            logger.error("Flush of chapter %s failed: %s", session.chapter_id, exc, exc_info=True)
            return f"saved to memory but not to disk: {exc}"
        session.unsaved = False
        return None

    # ------------------------------------------------------------------
    # Progress reset
    # ------------------------------------------------------------------

    def _schedule_reset(self, kind: TaskType, chapter_id: str) -> None:
        key = (kind, chapter_id)
        self._cancel_reset(kind, chapter_id)
        if self.progress_reset_delay <= 0:
            self._reset_progress(key)
            return
        loop = asyncio.get_running_loop()
        self._reset_handles[key] = loop.call_later(self.progress_reset_delay, self._reset_progress, key)

    def _cancel_reset(self, kind: TaskType, chapter_id: str) -> None:
        handle = self._reset_handles.pop((kind, chapter_id), None)
        if handle is not None:
            handle.cancel()

    def _reset_progress(self, key: Tuple[TaskType, str]) -> None:
        self._reset_handles.pop(key, None)
        state = self._states.get(key)
        if state is None or state.is_running:
            return
        state.progress = TaskProgress()
        state.in_flight_ids = set()
