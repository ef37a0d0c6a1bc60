"""
Tasks Router
Task registration, guarded status changes and batch submission.

Structured rejections are returned as 200 with ``success: false`` so callers
can feed them back to a model as tool output.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from transloom.dependencies import get_book_storage, get_ledger_registry, get_task_registry
from transloom.schemas.task import TaskDescriptor, TaskType, WorkflowStatus
from transloom.services.task_registry import TaskRegistry
from transloom.storage.books import BookStorage
from transloom.workflow.chunks import ChunkBoundary, LedgerRegistry
from transloom.workflow.gateway import BatchSubmissionGateway, StoreParagraphWriter
from transloom.workflow.state_machine import TaskStateMachine

router = APIRouter(prefix="/tasks", tags=["tasks"])


class CreateTaskRequest(BaseModel):
    """Request body for registering a task."""

    type: TaskType = Field(..., description="Task type")
    chapter_id: Optional[str] = Field(None, description="Associated chapter")
    book_id: Optional[str] = Field(None, description="Associated book")
    message: str = Field("", description="Initial message")


class StatusRequest(BaseModel):
    """Request body for a status change."""

    status: str = Field(..., description="Requested workflow status")
    paragraph_ids: Optional[List[str]] = Field(None, description="Current chunk boundary")


class BatchRequest(BaseModel):
    """Request body for a batch submission."""

    chapter_id: Optional[str] = Field(None, description="Chapter, defaults to the task's")
    model_id: str = Field("manual", description="Producing model")
    paragraphs: List[Any] = Field(default_factory=list, description="[{paragraph_id, translated_text}]")
    paragraph_ids: Optional[List[str]] = Field(None, description="Current chunk boundary")


class TitleRequest(BaseModel):
    """Request body for a chapter title submission."""

    chapter_id: Optional[str] = Field(None, description="Chapter, defaults to the task's")
    model_id: str = Field("manual", description="Producing model")
    translated_title: str = Field(..., description="Translated title")


def _boundary(paragraph_ids: Optional[List[str]]) -> Optional[ChunkBoundary]:
    if paragraph_ids is None:
        return None
    return ChunkBoundary.from_ids(paragraph_ids)


@router.post("")
async def create_task(
    request: CreateTaskRequest,
    registry: TaskRegistry = Depends(get_task_registry),
):
    """Register a task; its workflow starts at planning."""
    descriptor = TaskDescriptor(
        type=request.type,
        chapter_id=request.chapter_id,
        book_id=request.book_id,
        message=request.message,
    )
    task_id = registry.add_task(descriptor, workflow_status=WorkflowStatus.PLANNING)
    return registry.require_task(task_id).model_dump(mode="json")


@router.get("")
async def list_tasks(active_only: bool = False, registry: TaskRegistry = Depends(get_task_registry)):
    """List tasks."""
    tasks = registry.active_tasks if active_only else registry.all_tasks()
    return [task.model_dump(mode="json") for task in tasks]


@router.get("/{task_id}")
async def get_task(task_id: str, registry: TaskRegistry = Depends(get_task_registry)):
    """Get a task."""
    task = registry.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.model_dump(mode="json")


@router.post("/{task_id}/status")
async def update_status(
    task_id: str,
    request: StatusRequest,
    registry: TaskRegistry = Depends(get_task_registry),
    store: BookStorage = Depends(get_book_storage),
    ledgers: LedgerRegistry = Depends(get_ledger_registry),
):
    """Apply a guarded workflow-status change."""
    if registry.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")
    machine = TaskStateMachine(registry, store)
    result = await machine.apply(task_id, request.status, boundary=_boundary(request.paragraph_ids))
    if result.success and result.data.get("new_status") == WorkflowStatus.END.value:
        ledgers.discard(task_id)
    return result.model_dump()


@router.post("/{task_id}/batches")
async def submit_batch(
    task_id: str,
    request: BatchRequest,
    registry: TaskRegistry = Depends(get_task_registry),
    store: BookStorage = Depends(get_book_storage),
    ledgers: LedgerRegistry = Depends(get_ledger_registry),
):
    """Submit a batch of paragraph results."""
    if registry.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")
    boundary = _boundary(request.paragraph_ids)
    gateway = BatchSubmissionGateway(registry, StoreParagraphWriter(store))
    result = await gateway.submit(
        task_id,
        request.chapter_id,
        request.model_id,
        request.paragraphs,
        boundary=boundary,
        ledger=ledgers.ledger_for(task_id, boundary),
    )
    return result.model_dump()


@router.post("/{task_id}/title")
async def submit_title(
    task_id: str,
    request: TitleRequest,
    registry: TaskRegistry = Depends(get_task_registry),
    store: BookStorage = Depends(get_book_storage),
):
    """Submit the chapter title translation."""
    if registry.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")
    gateway = BatchSubmissionGateway(registry, StoreParagraphWriter(store))
    result = await gateway.submit_title(task_id, request.chapter_id, request.model_id, request.translated_title)
    return result.model_dump()
