"""Pytest configuration and shared fakes for TransLoom backend tests."""
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

# Ensure the backend package is importable
backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from transloom.exceptions import BookNotFoundError, ChapterNotFoundError  # noqa: E402
from transloom.llm_gateway.gateway import LLMGateway  # noqa: E402
from transloom.llm_gateway.providers.base import BaseLLMProvider  # noqa: E402
from transloom.llm_gateway.types import StreamChunk  # noqa: E402
from transloom.schemas.novel import Chapter, ChapterTitle, Novel, Paragraph, Volume  # noqa: E402
from transloom.schemas.tools import ToolCall  # noqa: E402
from transloom.services.task_registry import TaskRegistry  # noqa: E402
from transloom.utils.ids import generate_short_id  # noqa: E402


class InMemoryParagraphStore:
    """Paragraph store fake that counts every write."""

    def __init__(self):
        self.books: Dict[str, Novel] = {}
        self.contents: Dict[Tuple[str, str], List[Paragraph]] = {}
        self.writes = 0
        self.fail_saves = False

    def add_chapter(
        self,
        book_id: str,
        chapter_id: str,
        texts: Dict[str, str],
        title: str = "",
    ) -> Chapter:
        book = self.books.setdefault(book_id, Novel(id=book_id, volumes=[Volume(id="v1")]))
        chapter = Chapter(id=chapter_id, title=ChapterTitle(original=title))
        book.volumes[0].chapters.append(chapter)
        self.contents[(book_id, chapter_id)] = [Paragraph(id=pid, text=text) for pid, text in texts.items()]
        return chapter

    def add_paragraph(self, book_id: str, chapter_id: str, paragraph_id: str, text: str) -> None:
        self.contents[(book_id, chapter_id)].append(Paragraph(id=paragraph_id, text=text))

    def paragraphs(self, book_id: str, chapter_id: str) -> Dict[str, Paragraph]:
        return {p.id: p for p in self.contents[(book_id, chapter_id)]}

    def title(self, book_id: str, chapter_id: str) -> ChapterTitle:
        return self.books[book_id].find_chapter(chapter_id).title

    async def get_book(self, book_id: str) -> Optional[Novel]:
        book = self.books.get(book_id)
        return book.model_copy(deep=True) if book else None

    async def require_book(self, book_id: str) -> Novel:
        book = await self.get_book(book_id)
        if book is None:
            raise BookNotFoundError(f"Book not found: {book_id}")
        return book

    async def load_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        book = await self.require_book(book_id)
        chapter = book.find_chapter(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(f"Chapter not found: {book_id}/{chapter_id}")
        content = [p.model_copy(deep=True) for p in self.contents[(book_id, chapter_id)]]
        return chapter.model_copy(update={"content": content})

    async def update_paragraphs(self, book_id: str, chapter_id: str, mapper: Callable) -> Chapter:
        chapter = await self.load_chapter(book_id, chapter_id)
        updated = mapper(chapter.paragraphs())
        self.contents[(book_id, chapter_id)] = updated
        self.writes += 1
        return chapter.model_copy(update={"content": updated})

    async def save_chapter_content(self, book_id: str, chapter: Chapter) -> bool:
        if self.fail_saves:
            raise OSError("disk full")
        self.contents[(book_id, chapter.id)] = [p.model_copy(deep=True) for p in chapter.paragraphs()]
        self._set_title(book_id, chapter.id, chapter.title)
        self.writes += 1
        return True

    async def save_chapter_title(self, book_id: str, chapter_id: str, title: ChapterTitle) -> None:
        self._set_title(book_id, chapter_id, title)
        self.writes += 1

    def _set_title(self, book_id: str, chapter_id: str, title: ChapterTitle) -> None:
        for volume in self.books[book_id].volumes:
            for chapter in volume.chapters:
                if chapter.id == chapter_id:
                    chapter.title = title


Step = Union[Tuple[str, List[ToolCall]], Exception, Callable[[List[Dict[str, Any]]], Any]]


def tool_call(name: str, **arguments: Any) -> ToolCall:
    return ToolCall(id=f"call_{generate_short_id(8)}", name=name, arguments=json.dumps(arguments, ensure_ascii=False))


def turn(*calls: ToolCall, text: str = "") -> Tuple[str, List[ToolCall]]:
    return text, list(calls)


def batch(**texts: str) -> ToolCall:
    return tool_call(
        "add_translation_batch",
        paragraphs=[{"paragraph_id": pid, "translated_text": text} for pid, text in texts.items()],
    )


def status(value: str) -> ToolCall:
    return tool_call("update_task_status", status=value)


class ScriptedProvider(BaseLLMProvider):
    """
    Provider fake replaying scripted turns.

    A step is ``(text, tool_calls)``, an exception to raise, or a callable
    receiving the message history and returning a step.
    """

    def __init__(self, steps: Optional[List[Step]] = None, summary: str = "summary of the conversation"):
        super().__init__(api_key="test", model="scripted")
        self.steps: List[Step] = list(steps or [])
        self.summary = summary
        self.generate_calls: List[List[Dict[str, Any]]] = []
        self.chat_calls: List[Dict[str, Any]] = []

    async def chat(self, messages, temperature=None, max_tokens=None):
        self.chat_calls.append({"messages": messages, "temperature": temperature})
        return {"content": self.summary, "usage": {}, "model": self.model, "finish_reason": "stop"}

    async def stream_generate(self, messages, tools=None, temperature=None, max_tokens=None, abort=None):
        self.generate_calls.append([dict(m) for m in messages])
        if not self.steps:
            raise AssertionError("scripted provider ran out of steps")
        step = self.steps.pop(0)
        if callable(step) and not isinstance(step, Exception):
            step = step(messages)
        if abort is not None:
            abort.raise_if_aborted()
        if isinstance(step, Exception):
            raise step
        text, calls = step
        if text:
            yield StreamChunk(text=text)
        yield StreamChunk(tool_calls=list(calls), finish_reason="tool_calls" if calls else "stop")

    def get_provider_name(self) -> str:
        return "fake"


def make_gateway(provider: ScriptedProvider) -> LLMGateway:
    return LLMGateway({"fake": provider}, default_provider="fake")


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
def store():
    return InMemoryParagraphStore()
