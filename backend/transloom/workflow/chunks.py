# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  分块 - 块边界快照、已提交ID账本、按字符上限切分章节并格式化
  Chunking - Chunk boundary snapshots, the submitted-ids ledger, and splitting a
  chapter into size-bounded chunks rendered as ``[ID: ...]`` lines.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from transloom.schemas.novel import Paragraph
from transloom.schemas.task import TaskType


@dataclass(frozen=True)
class ChunkBoundary:
    """
    块边界（只读快照）/ Read-only chunk boundary

    The ordered ids a single chunk may touch, with a set for membership tests
    and the first/last ids for error messages.
    """

    paragraph_ids: Tuple[str, ...]
    id_set: FrozenSet[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id_set", frozenset(self.paragraph_ids))

    @classmethod
    def from_ids(cls, ids: Iterable[str]) -> "ChunkBoundary":
        seen: Set[str] = set()
        ordered = []
        for pid in ids:
            if pid not in seen:
                seen.add(pid)
                ordered.append(pid)
        return cls(tuple(ordered))

    @property
    def first_id(self) -> Optional[str]:
        return self.paragraph_ids[0] if self.paragraph_ids else None

    @property
    def last_id(self) -> Optional[str]:
        return self.paragraph_ids[-1] if self.paragraph_ids else None

    def __contains__(self, paragraph_id: object) -> bool:
        return paragraph_id in self.id_set

    def __len__(self) -> int:
        return len(self.paragraph_ids)

    def describe(self) -> str:
        return f"{self.first_id} .. {self.last_id} ({len(self)} paragraphs)"


class SubmittedIdsLedger:
    """
    已提交ID账本 / Submitted-ids ledger

    Ids committed within the current chunk session, carried across batches and
    reset per chunk. Only used for quota math and the remaining-ids report.
    """

    def __init__(self) -> None:
        self._ids: Set[str] = set()

    def record(self, paragraph_ids: Iterable[str]) -> None:
        self._ids.update(paragraph_ids)

    def reset(self) -> None:
        self._ids.clear()

    def __contains__(self, paragraph_id: object) -> bool:
        return paragraph_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def submitted_in(self, boundary: ChunkBoundary) -> int:
        return sum(1 for pid in boundary.paragraph_ids if pid in self._ids)

    def remaining(self, boundary: ChunkBoundary) -> List[str]:
        """Boundary ids not yet submitted, in chapter order."""
        return [pid for pid in boundary.paragraph_ids if pid not in self._ids]


class LedgerRegistry:
    """
    按任务保存账本 / Ledgers of standalone batch submissions, per task

    A task keeps one ledger for its current chunk boundary; submitting with a
    different boundary starts a fresh ledger.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[ChunkBoundary, SubmittedIdsLedger]] = {}

    def ledger_for(self, task_id: str, boundary: Optional[ChunkBoundary]) -> Optional[SubmittedIdsLedger]:
        if boundary is None:
            return None
        entry = self._entries.get(task_id)
        if entry is None or entry[0] != boundary:
            entry = (boundary, SubmittedIdsLedger())
            self._entries[task_id] = entry
        return entry[1]

    def discard(self, task_id: str) -> None:
        self._entries.pop(task_id, None)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class TextChunk:
    """A rendered chunk and the paragraph ids it covers."""

    text: str
    paragraph_ids: List[str]

    def boundary(self) -> ChunkBoundary:
        return ChunkBoundary.from_ids(self.paragraph_ids)


ParagraphFormatter = Callable[[Paragraph], str]


def format_source_paragraph(paragraph: Paragraph) -> str:
    return f"[ID: {paragraph.id}] {paragraph.text}\n"


def format_revision_paragraph(paragraph: Paragraph) -> str:
    """Source plus the current translation, for polish / proofreading."""
    return (
        f"[ID: {paragraph.id}] Source: {paragraph.text}\n"
        f"Translation: {paragraph.selected_text()}\n\n"
    )


def formatter_for(kind: TaskType) -> ParagraphFormatter:
    if kind in (TaskType.POLISH, TaskType.PROOFREADING):
        return format_revision_paragraph
    return format_source_paragraph


def build_chunks(
    paragraphs: Sequence[Paragraph],
    char_limit: int,
    formatter: ParagraphFormatter = format_source_paragraph,
) -> List[TextChunk]:
    """
    按字符上限切分段落 / Split paragraphs into size-bounded chunks

    Empty paragraphs are skipped. A paragraph is never split: one larger than
    ``char_limit`` forms a chunk of its own.

    Example:
        >>> chunks = build_chunks(paragraphs, 2500)
        >>> chunks[0].paragraph_ids
        ['p1', 'p2']
    """
    chunks: List[TextChunk] = []
    text = ""
    ids: List[str] = []
    for paragraph in paragraphs:
        if paragraph.is_empty:
            continue
        rendered = formatter(paragraph)
        if text and len(text) + len(rendered) > char_limit:
            chunks.append(TextChunk(text=text, paragraph_ids=ids))
            text, ids = "", []
        text += rendered
        ids.append(paragraph.id)
    if ids:
        chunks.append(TextChunk(text=text, paragraph_ids=ids))
    return chunks
