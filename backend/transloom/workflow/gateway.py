# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  批次提交网关 - LLM 工具调用提交段落结果的唯一写入路径
  Batch Submission Gateway - The only write path tool calls use to commit
  paragraph results.

校验顺序 / Check order (each a hard reject, nothing written):
  1. 任务存在且状态为 working / task exists and is ``working``
  2. 批次非空 / non-empty batch
  3. 每项使用稳定段落ID，不接受下标 / stable paragraph ids only, no indices
  4. 批次大小配额 / size quota
  5. 无重复ID / no duplicate ids
  6. 均在块边界内 / every id inside the chunk boundary
  7. 引号完整 / quote pairing preserved

  全部通过后：每项追加新译文版本并设为选中，一次原子写入，记入账本。
  Then: append a new version per item, select it, write once, record in the ledger.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from transloom.config import workflow_setting
from transloom.exceptions import ParagraphNotFoundError, StorageError
from transloom.schemas.novel import Chapter, ChapterTitle, Paragraph, Translation
from transloom.schemas.task import TaskType, WorkflowStatus
from transloom.schemas.tools import ActionInfo, BatchItem, ParagraphUpdate, ToolResult
from transloom.services.task_registry import TaskRegistry
from transloom.utils.logger import get_logger
from transloom.utils.quotes import find_quote_loss
from transloom.utils.text import format_id_list
from transloom.workflow.chunks import ChunkBoundary, SubmittedIdsLedger
from transloom.workflow.quota import check_batch_size
from transloom.workflow.state_machine import ActionCallback

logger = get_logger(__name__)


class ParagraphWriter(Protocol):
    """Commit target of the gateway: the paragraph store or a run's chapter session."""

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter: ...

    async def commit(self, book_id: str, chapter_id: str, model_id: str, updates: List[ParagraphUpdate]) -> None:
        """Apply all updates or none; raise ParagraphNotFoundError for unknown ids."""
        ...

    async def commit_title(self, book_id: str, chapter_id: str, model_id: str, text: str) -> None: ...


def append_translations(paragraphs: List[Paragraph], updates: Sequence[ParagraphUpdate], model_id: str) -> List[Paragraph]:
    """
    追加译文版本（全部或全不）/ Append one version per update, all or nothing

    Raises:
        ParagraphNotFoundError: 任一段落不存在，此时不做任何修改
    """
    by_id = {p.id: p for p in paragraphs}
    missing = [u.paragraph_id for u in updates if u.paragraph_id not in by_id]
    if missing:
        raise ParagraphNotFoundError(missing)
    for update in updates:
        by_id[update.paragraph_id].append_translation(update.text, model_id)
    return paragraphs


class StoreParagraphWriter:
    """Writes straight through to the paragraph store, one atomic update per batch."""

    def __init__(self, store: Any):
        self.store = store

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        return await self.store.load_chapter(book_id, chapter_id)

    async def commit(self, book_id: str, chapter_id: str, model_id: str, updates: List[ParagraphUpdate]) -> None:
        await self.store.update_paragraphs(
            book_id,
            chapter_id,
            lambda paragraphs: append_translations(paragraphs, updates, model_id),
        )

    async def commit_title(self, book_id: str, chapter_id: str, model_id: str, text: str) -> None:
        chapter = await self.store.load_chapter(book_id, chapter_id)
        title = ChapterTitle(original=chapter.title.original, translation=Translation(text=text, model_id=model_id))
        await self.store.save_chapter_title(book_id, chapter_id, title)


class BatchSubmissionGateway:
    """
    批次提交网关 / Batch submission gateway

    Every outcome is a ToolResult so it can be fed back to the model verbatim.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        writer: ParagraphWriter,
        on_action: Optional[ActionCallback] = None,
        max_batch_size: Optional[int] = None,
        tolerance_ratio: Optional[float] = None,
        max_out_of_range_reported: Optional[int] = None,
    ):
        self.registry = registry
        self.writer = writer
        self.on_action = on_action
        self.max_batch_size = max_batch_size or workflow_setting("max_batch_size")
        self.tolerance_ratio = tolerance_ratio or workflow_setting("batch_tolerance_ratio")
        self.max_out_of_range_reported = max_out_of_range_reported or workflow_setting(
            "max_out_of_range_ids_reported"
        )

    async def submit(
        self,
        task_id: str,
        chapter_id: Optional[str],
        model_id: str,
        items: Any,
        boundary: Optional[ChunkBoundary] = None,
        ledger: Optional[SubmittedIdsLedger] = None,
    ) -> ToolResult:
        """
        提交一批段落结果 / Submit one batch of paragraph results

        Args:
            task_id: 任务ID / Owning task
            chapter_id: 章节ID，None 时使用任务关联章节 / Chapter, defaults to the task's
            model_id: 生成模型ID / Producing model
            items: ``[{paragraph_id, translated_text}]`` 原始列表或 BatchItem 列表
            boundary: 当前块边界 / Active chunk boundary
            ledger: 本块已提交账本 / Submitted-ids ledger of the chunk

        Returns:
            ToolResult: processed_count，翻译任务附带 remaining_paragraph_ids
        """
        task = self.registry.get_task(task_id) if task_id else None
        if task is None:
            return ToolResult.fail(f"task not found: {task_id}")
        if task.workflow_status != WorkflowStatus.WORKING:
            current = task.workflow_status.value if task.workflow_status else "unset"
            return ToolResult.fail(
                f"batches can only be submitted while the task is working (current status: {current}); "
                "call update_task_status first"
            )

        if not isinstance(items, (list, tuple)) or not items:
            return ToolResult.fail("paragraphs must be a non-empty list")

        parsed, error = self._parse_items(items)
        if error:
            return ToolResult.fail(error)

        chunk_size = len(boundary) if boundary is not None else None
        submitted = 0
        if ledger is not None:
            submitted = ledger.submitted_in(boundary) if boundary is not None else len(ledger)
        quota = check_batch_size(len(parsed), self.max_batch_size, chunk_size, submitted, self.tolerance_ratio)
        if not quota.accepted:
            logger.warning("Batch rejected for task %s: %s", task_id, quota.error)
            return ToolResult.fail(quota.error)

        duplicates = self._duplicates(parsed)
        if duplicates:
            return ToolResult.fail(f"duplicate paragraph ids in batch: {', '.join(duplicates)}")

        if boundary is not None:
            outside = [item.paragraph_id for item in parsed if item.paragraph_id not in boundary]
            if outside:
                return ToolResult.fail(
                    f"paragraphs outside the current chunk: "
                    f"{format_id_list(outside, self.max_out_of_range_reported)}; "
                    f"allowed range: {boundary.describe()}"
                )

        chapter_id = chapter_id or task.chapter_id
        if not chapter_id or not task.book_id:
            return ToolResult.fail("task is not associated with a chapter")

        try:
            chapter = await self.writer.load_chapter(task.book_id, chapter_id)
        except StorageError as exc:
            return ToolResult.fail(f"chapter could not be loaded: {exc}")

        for item in parsed:
            paragraph = chapter.find_paragraph(item.paragraph_id)
            if paragraph is None:
                continue
            loss = find_quote_loss(paragraph.text, item.translated_text)
            if loss is not None:
                return ToolResult.fail(
                    f"paragraph {item.paragraph_id}: the translation is missing the {loss.side} quote mark(s) "
                    f"present in the source ({loss.source_count} in source, {loss.translated_count} in translation); "
                    "restore the quotes and resubmit the batch"
                )

        updates = [ParagraphUpdate(paragraph_id=i.paragraph_id, text=i.translated_text) for i in parsed]
        try:
            await self.writer.commit(task.book_id, chapter_id, model_id, updates)
        except ParagraphNotFoundError as exc:
            logger.warning("Batch rejected for task %s: %s", task_id, exc)
            return ToolResult.fail(
                f"paragraphs not found in chapter {chapter_id}: "
                f"{format_id_list(exc.paragraph_ids, self.max_out_of_range_reported)}; nothing was written"
            )

        ids = [u.paragraph_id for u in updates]
        if ledger is not None:
            ledger.record(ids)
        logger.info("Batch committed for task %s: %d paragraph(s) in %s", task_id, len(ids), chapter_id)
        self._emit(
            ActionInfo(
                type="update",
                entity="translation",
                data={"task_id": task_id, "chapter_id": chapter_id, "paragraph_ids": ids},
            )
        )

        data: Dict[str, Any] = {"processed_count": len(ids)}
        if task.type == TaskType.TRANSLATION and boundary is not None and ledger is not None:
            remaining = ledger.remaining(boundary)
            data["remaining_count"] = len(remaining)
            data["remaining_paragraph_ids"] = remaining
        warnings = [quota.warning] if quota.warning else []
        return ToolResult.ok(f"committed {len(ids)} paragraph(s)", warnings=warnings, **data)

    async def submit_title(
        self,
        task_id: str,
        chapter_id: Optional[str],
        model_id: str,
        translated_title: Any,
    ) -> ToolResult:
        """提交章节标题译文 / Commit the chapter title translation (working only)."""
        task = self.registry.get_task(task_id) if task_id else None
        if task is None:
            return ToolResult.fail(f"task not found: {task_id}")
        if task.workflow_status != WorkflowStatus.WORKING:
            current = task.workflow_status.value if task.workflow_status else "unset"
            return ToolResult.fail(f"the title can only be updated while the task is working (current status: {current})")
        if not isinstance(translated_title, str) or not translated_title.strip():
            return ToolResult.fail("translated_title must be a non-empty string")

        chapter_id = chapter_id or task.chapter_id
        if not chapter_id or not task.book_id:
            return ToolResult.fail("task is not associated with a chapter")
        try:
            await self.writer.commit_title(task.book_id, chapter_id, model_id, translated_title.strip())
        except StorageError as exc:
            return ToolResult.fail(f"title could not be saved: {exc}")

        logger.info("Chapter title committed for task %s (%s)", task_id, chapter_id)
        self._emit(ActionInfo(type="update", entity="chapter_title", data={"task_id": task_id, "chapter_id": chapter_id}))
        return ToolResult.ok("chapter title updated", chapter_id=chapter_id)

    @staticmethod
    def _parse_items(items: Sequence[Any]) -> Tuple[List[BatchItem], str]:
        parsed: List[BatchItem] = []
        for position, raw in enumerate(items):
            if isinstance(raw, BatchItem):
                parsed.append(raw)
                continue
            if not isinstance(raw, dict):
                return [], f"item {position} must be an object with paragraph_id and translated_text"
            paragraph_id = raw.get("paragraph_id")
            if not isinstance(paragraph_id, str) or not paragraph_id.strip():
                if "index" in raw:
                    return [], (
                        f"item {position} addresses a paragraph by index; "
                        "use the paragraph_id shown as [ID: ...] instead"
                    )
                return [], f"item {position} is missing paragraph_id"
            text = raw.get("translated_text")
            if not isinstance(text, str) or not text.strip():
                return [], f"item {position} ({paragraph_id}) is missing translated_text"
            parsed.append(BatchItem(paragraph_id=paragraph_id.strip(), translated_text=text))
        return parsed, ""

    @staticmethod
    def _duplicates(items: Sequence[BatchItem]) -> List[str]:
        seen = set()
        duplicates: List[str] = []
        for item in items:
            if item.paragraph_id in seen and item.paragraph_id not in duplicates:
                duplicates.append(item.paragraph_id)
            seen.add(item.paragraph_id)
        return duplicates

    def _emit(self, action: ActionInfo) -> None:
        if self.on_action is None:
            return
        try:
            self.on_action(action)
        except Exception as exc:
            logger.warning("Action callback failed: %s", exc)
