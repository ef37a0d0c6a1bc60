"""
Book Storage / 书籍存储
Paragraph store: book metadata in YAML, chapter paragraphs in JSON.

Layout::

    <data_dir>/books/<book_id>/book.yaml               # metadata, volumes, chapter titles
    <data_dir>/books/<book_id>/chapters/<chapter_id>.json
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import yaml

from transloom.config import config as app_cfg
from transloom.exceptions import BookNotFoundError, ChapterNotFoundError
from transloom.schemas.novel import Chapter, ChapterTitle, Novel, Paragraph, Volume
from transloom.storage.base import BaseStorage
from transloom.storage.file_lock import AsyncFileLock, get_file_lock
from transloom.utils.logger import get_logger
from transloom.utils.path_safety import ensure_safe_id

logger = get_logger(__name__)

ParagraphMapper = Callable[[List[Paragraph]], List[Paragraph]]

_storage_cfg = app_cfg.get("storage", {})
CHAPTER_FILE_SUFFIX = str(_storage_cfg.get("chapter_file_suffix", ".json"))


def update_chapter_content_in_volumes(
    volumes: List[Volume],
    chapter_id: str,
    loaded_chapter: Optional[Chapter],
    mapper: ParagraphMapper,
) -> List[Volume]:
    """
    在分卷树中替换某章节的段落 / Replace one chapter's paragraphs inside a volume tree

    The mapper receives deep copies, so an exception raised by it leaves
    ``volumes`` and ``loaded_chapter`` untouched. The content of
    ``loaded_chapter`` wins over whatever the tree holds (trees loaded from
    metadata carry ``content=None``).

    Returns:
        新的分卷列表；章节不存在时返回原列表 / New volume list, or the input when
        the chapter is absent
    """
    updated: List[Volume] = []
    found = False
    for volume in volumes:
        chapters: List[Chapter] = []
        touched = False
        for chapter in volume.chapters:
            if chapter.id != chapter_id:
                chapters.append(chapter)
                continue
            source = loaded_chapter if loaded_chapter is not None and loaded_chapter.content is not None else chapter
            content = mapper([p.model_copy(deep=True) for p in source.paragraphs()])
            chapters.append(
                chapter.model_copy(
                    update={
                        "title": source.title,
                        "content": content,
                        "last_edited": datetime.now(),
                    }
                )
            )
            touched = True
        if touched:
            found = True
            updated.append(volume.model_copy(update={"chapters": chapters}))
        else:
            updated.append(volume)
    return updated if found else volumes


def find_chapter_in_volumes(volumes: List[Volume], chapter_id: str) -> Optional[Chapter]:
    for volume in volumes:
        for chapter in volume.chapters:
            if chapter.id == chapter_id:
                return chapter
    return None


class BookStorage(BaseStorage):
    """File-based paragraph store."""

    def __init__(self, data_dir: Optional[str] = None, file_lock: Optional[AsyncFileLock] = None):
        super().__init__(data_dir)
        self.file_lock = file_lock or get_file_lock()

    def _book_file(self, book_id: str) -> Path:
        return self.get_book_path(ensure_safe_id(book_id)) / "book.yaml"

    def _chapter_file(self, book_id: str, chapter_id: str) -> Path:
        chapters_dir = self.get_book_path(ensure_safe_id(book_id)) / "chapters"
        return chapters_dir / f"{ensure_safe_id(chapter_id)}{CHAPTER_FILE_SUFFIX}"

    @staticmethod
    def _serialize_content(chapter_id: str, paragraphs: List[Paragraph]) -> str:
        payload = {
            "id": chapter_id,
            "content": [p.model_dump(mode="json") for p in paragraphs],
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    @staticmethod
    def _metadata(novel: Novel) -> dict:
        data = novel.model_dump(mode="json")
        for volume in data.get("volumes", []):
            for chapter in volume.get("chapters", []):
                chapter.pop("content", None)
        return data

    async def _read_content(self, path: Path) -> List[Paragraph]:
        if not path.exists():
            return []
        data = await self.read_json(path)
        return [Paragraph.model_validate(row) for row in data.get("content") or []]

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    async def get_book(self, book_id: str) -> Optional[Novel]:
        """Load book metadata; chapter content is left unloaded (None)."""
        path = self._book_file(book_id)
        if not path.exists():
            return None
        data = await self.read_yaml(path)
        return Novel.model_validate(data)

    async def require_book(self, book_id: str) -> Novel:
        book = await self.get_book(book_id)
        if book is None:
            raise BookNotFoundError(f"Book not found: {book_id}")
        return book

    async def save_book(self, novel: Novel) -> None:
        """
        保存书籍元数据；已加载内容的章节一并写入段落文件
        Save metadata, plus paragraph files for every chapter whose content is loaded.
        """
        book_file = self._book_file(novel.id)
        async with self.file_lock.lock(book_file):
            await self._atomic_write(
                book_file,
                self._dump_yaml(self._metadata(novel)),
            )
        for volume in novel.volumes:
            for chapter in volume.chapters:
                if chapter.content is not None:
                    path = self._chapter_file(novel.id, chapter.id)
                    async with self.file_lock.lock(path):
                        await self._atomic_write(path, self._serialize_content(chapter.id, chapter.content))

    @staticmethod
    def _dump_yaml(data: dict) -> str:
        return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    async def load_chapter_content(self, book_id: str, chapter_id: str) -> List[Paragraph]:
        await self.load_chapter_meta(book_id, chapter_id)
        return await self._read_content(self._chapter_file(book_id, chapter_id))

    async def load_chapter_meta(self, book_id: str, chapter_id: str) -> Chapter:
        book = await self.require_book(book_id)
        chapter = book.find_chapter(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(f"Chapter not found: {book_id}/{chapter_id}")
        return chapter

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        """Load a chapter with its title and paragraphs."""
        chapter = await self.load_chapter_meta(book_id, chapter_id)
        content = await self._read_content(self._chapter_file(book_id, chapter_id))
        return chapter.model_copy(update={"content": content})

    async def save_chapter_content(self, book_id: str, chapter: Chapter) -> bool:
        """
        保存章节（内容未变化时不写入）/ Save a chapter; unchanged content is not rewritten.

        Returns:
            是否发生写入 / Whether anything was written
        """
        stored = await self.load_chapter_meta(book_id, chapter.id)
        wrote = False

        path = self._chapter_file(book_id, chapter.id)
        payload = self._serialize_content(chapter.id, chapter.paragraphs())
        async with self.file_lock.lock(path):
            existing = await self.read_text(path) if path.exists() else None
            if existing != payload:
                await self._atomic_write(path, payload)
                wrote = True

        if stored.title != chapter.title:
            await self.save_chapter_title(book_id, chapter.id, chapter.title)
            wrote = True

        if wrote:
            logger.debug("Chapter saved: %s/%s", book_id, chapter.id)
        return wrote

    async def save_chapter_title(self, book_id: str, chapter_id: str, title: ChapterTitle) -> None:
        book_file = self._book_file(book_id)
        async with self.file_lock.lock(book_file):
            book = await self.require_book(book_id)
            if book.find_chapter(chapter_id) is None:
                raise ChapterNotFoundError(f"Chapter not found: {book_id}/{chapter_id}")
            for volume in book.volumes:
                for chapter in volume.chapters:
                    if chapter.id == chapter_id:
                        chapter.title = title
                        chapter.last_edited = datetime.now()
            book.last_edited = datetime.now()
            await self._atomic_write(book_file, self._dump_yaml(self._metadata(book)))

    async def update_paragraphs(self, book_id: str, chapter_id: str, mapper: ParagraphMapper) -> Chapter:
        """
        原子地更新章节段落 / Atomic read-modify-write of a chapter's paragraphs

        The chapter file stays locked from read to write. If ``mapper`` raises,
        the exception propagates and nothing is written.

        Returns:
            更新后的章节 / The updated chapter
        """
        path = self._chapter_file(book_id, chapter_id)
        async with self.file_lock.lock(path):
            book = await self.require_book(book_id)
            chapter = book.find_chapter(chapter_id)
            if chapter is None:
                raise ChapterNotFoundError(f"Chapter not found: {book_id}/{chapter_id}")
            loaded = chapter.model_copy(update={"content": await self._read_content(path)})

            volumes = update_chapter_content_in_volumes(book.volumes, chapter_id, loaded, mapper)
            updated = find_chapter_in_volumes(volumes, chapter_id)

            await self._atomic_write(path, self._serialize_content(chapter_id, updated.paragraphs()))
        return updated
