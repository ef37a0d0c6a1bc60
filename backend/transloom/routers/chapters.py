"""
Chapters Router
Chapter content and chapter job control (run, single paragraph, cancel, state).
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from transloom.dependencies import get_book_storage, get_controller
from transloom.exceptions import StorageError, WorkflowError
from transloom.schemas.task import TaskType
from transloom.storage.books import BookStorage
from transloom.workflow.controller import CHAPTER_KINDS, ChapterConcurrencyController

router = APIRouter(prefix="/books/{book_id}", tags=["chapters"])


class RunChapterRequest(BaseModel):
    """Request body for starting a chapter job."""

    only_untranslated: bool = Field(False, description="Continue translation: skip translated paragraphs")
    model_id: Optional[str] = Field(None, description="Override the recorded model id")


class RunParagraphRequest(BaseModel):
    """Request body for a single-paragraph job."""

    model_id: Optional[str] = Field(None, description="Override the recorded model id")


def _kind(kind: str) -> TaskType:
    try:
        job_kind = TaskType(kind)
    except ValueError:
        job_kind = None
    if job_kind not in CHAPTER_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown job kind: {kind}")
    return job_kind


@router.get("")
async def get_book(book_id: str, store: BookStorage = Depends(get_book_storage)):
    """Get book metadata."""
    book = await store.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book.model_dump(mode="json")


@router.get("/chapters/{chapter_id}")
async def get_chapter(book_id: str, chapter_id: str, store: BookStorage = Depends(get_book_storage)):
    """Get a chapter with its paragraphs."""
    try:
        chapter = await store.load_chapter(book_id, chapter_id)
    except StorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return chapter.model_dump(mode="json")


@router.post("/chapters/{chapter_id}/{kind}")
async def run_chapter(
    book_id: str,
    chapter_id: str,
    kind: str,
    request: Optional[RunChapterRequest] = None,
    store: BookStorage = Depends(get_book_storage),
    controller: ChapterConcurrencyController = Depends(get_controller),
):
    """Start a full-chapter job in the background."""
    job_kind = _kind(kind)
    request = request or RunChapterRequest()
    try:
        await store.load_chapter_meta(book_id, chapter_id)
        controller.start_full_chapter(
            job_kind,
            book_id,
            chapter_id,
            only_untranslated=request.only_untranslated,
            model_id=request.model_id,
        )
    except StorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except WorkflowError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"success": True, "message": f"{job_kind.value} started", "chapter_id": chapter_id}


@router.post("/chapters/{chapter_id}/{kind}/paragraphs/{paragraph_id}")
async def run_paragraph(
    book_id: str,
    chapter_id: str,
    kind: str,
    paragraph_id: str,
    request: Optional[RunParagraphRequest] = None,
    controller: ChapterConcurrencyController = Depends(get_controller),
):
    """Run a single-paragraph job and wait for its outcome."""
    job_kind = _kind(kind)
    request = request or RunParagraphRequest()
    try:
        outcome = await controller.run_single_paragraph(
            job_kind,
            book_id,
            chapter_id,
            paragraph_id,
            model_id=request.model_id,
        )
    except StorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except WorkflowError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return outcome.to_dict()


@router.post("/chapters/{chapter_id}/{kind}/cancel")
async def cancel_chapter(
    book_id: str,
    chapter_id: str,
    kind: str,
    controller: ChapterConcurrencyController = Depends(get_controller),
):
    """Cancel a running chapter job; streamed results are still saved."""
    cancelled = controller.cancel(_kind(kind), chapter_id)
    return {"success": cancelled}


@router.get("/chapters/{chapter_id}/{kind}/state")
async def get_chapter_state(
    book_id: str,
    chapter_id: str,
    kind: str,
    controller: ChapterConcurrencyController = Depends(get_controller),
):
    """Get the job state of a chapter and kind."""
    job_kind = _kind(kind)
    return controller.get_state(job_kind, chapter_id).to_dict()
