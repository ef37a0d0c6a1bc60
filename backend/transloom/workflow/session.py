"""
Chapter Session / 章节会话
In-memory working copy of one chapter during a controller run.

Committed batches are staged by the session writer and applied by the
controller; the store is only written by the deferred flush.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from transloom.exceptions import ChapterNotFoundError, ParagraphNotFoundError
from transloom.schemas.novel import Chapter, ChapterTitle, Translation, Volume
from transloom.schemas.tools import ParagraphUpdate
from transloom.storage.books import find_chapter_in_volumes, update_chapter_content_in_volumes
from transloom.workflow.gateway import append_translations
from transloom.workflow.updates import select_changed


@dataclass
class StagedCommits:
    paragraphs: List[ParagraphUpdate] = field(default_factory=list)
    title: Optional[str] = None


class StagingParagraphWriter:
    """
    暂存写入器 / Staging writer for in-run commits

    Validates paragraph existence against the session's chapter and queues the
    batch; the runner drains the queue after each tool call.
    """

    def __init__(self, session: "ChapterSession"):
        self.session = session
        self._staged = StagedCommits()

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        return await self.session.load_chapter(book_id, chapter_id)

    async def commit(self, book_id: str, chapter_id: str, model_id: str, updates: List[ParagraphUpdate]) -> None:
        chapter = await self.session.load_chapter(book_id, chapter_id)
        missing = [u.paragraph_id for u in updates if chapter.find_paragraph(u.paragraph_id) is None]
        if missing:
            raise ParagraphNotFoundError(missing)
        self._staged.paragraphs.extend(updates)

    async def commit_title(self, book_id: str, chapter_id: str, model_id: str, text: str) -> None:
        await self.session.load_chapter(book_id, chapter_id)
        self._staged.title = text

    def drain(self) -> StagedCommits:
        staged, self._staged = self._staged, StagedCommits()
        return staged


class ChapterSession:
    """
    章节会话 / Working copy of a chapter

    Holds the book's volume tree with the chapter's paragraphs loaded, the
    last-applied text per paragraph, and whether anything was applied.
    """

    def __init__(self, book_id: str, chapter: Chapter, volumes: Optional[List[Volume]] = None):
        self.book_id = book_id
        self.chapter_id = chapter.id
        if volumes is None or find_chapter_in_volumes(volumes, chapter.id) is None:
            volumes = [Volume(id="_session", chapters=[chapter])]
        self.volumes: List[Volume] = update_chapter_content_in_volumes(volumes, chapter.id, chapter, list)
        self.last_applied: Dict[str, str] = {}
        self.applied_count = 0
        self.title_changed = False
        # applied in memory but not yet flushed to the store
        self.unsaved = False
        self.writer = StagingParagraphWriter(self)

    @property
    def chapter(self) -> Chapter:
        return find_chapter_in_volumes(self.volumes, self.chapter_id)

    @property
    def dirty(self) -> bool:
        return self.applied_count > 0 or self.title_changed

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        if book_id != self.book_id or chapter_id != self.chapter_id:
            raise ChapterNotFoundError(f"Chapter {book_id}/{chapter_id} is not part of this session")
        return self.chapter

    def apply(self, updates: List[ParagraphUpdate], model_id: str) -> List[ParagraphUpdate]:
        """
        应用流式更新（去重后）/ Apply streamed updates after de-duplication

        Returns:
            实际应用的更新 / The updates that were applied
        """
        changed = select_changed(updates, self.last_applied)
        if not changed:
            return []
        self.volumes = update_chapter_content_in_volumes(
            self.volumes,
            self.chapter_id,
            self.chapter,
            lambda paragraphs: append_translations(paragraphs, changed, model_id),
        )
        self.applied_count += len(changed)
        self.unsaved = True
        return changed

    def apply_title(self, text: str, model_id: str) -> bool:
        current = self.chapter.title
        if current.translation is not None and current.translation.text == text:
            return False
        title = ChapterTitle(original=current.original, translation=Translation(text=text, model_id=model_id))
        self.volumes = update_chapter_content_in_volumes(
            self.volumes,
            self.chapter_id,
            self.chapter.model_copy(update={"title": title}),
            list,
        )
        self.title_changed = True
        self.unsaved = True
        return True
