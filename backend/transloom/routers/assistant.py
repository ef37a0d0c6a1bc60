"""
Assistant Router
One invocation of the conversational tool-call loop with read-only tools.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from transloom.dependencies import get_book_storage, get_llm_gateway, get_task_registry
from transloom.exceptions import LLMError, StorageError
from transloom.llm_gateway import LLMGateway
from transloom.schemas.tools import ToolResult
from transloom.services.task_registry import TaskRegistry
from transloom.storage.books import BookStorage
from transloom.workflow.prompts import ASSISTANT_SYSTEM_PROMPT
from transloom.workflow.tool_loop import ConversationalToolLoop, reset_history
from transloom.workflow.tools import ToolRegistry, ToolSpec

router = APIRouter(prefix="/assistant", tags=["assistant"])


class ChatRequest(BaseModel):
    """Request body for an assistant turn."""

    message: str = Field(..., description="User message")
    history: List[Dict[str, Any]] = Field(default_factory=list, description="Earlier non-system messages")
    book_id: Optional[str] = Field(None, description="Book in focus")


def build_assistant_tools(store: BookStorage, registry: TaskRegistry, book_id: Optional[str]) -> ToolRegistry:
    """Read-only tools of the assistant."""
    tools = ToolRegistry()

    async def get_chapter_content(args: Dict[str, Any]) -> ToolResult:
        target_book = args.get("book_id") or book_id
        chapter_id = args.get("chapter_id")
        if not target_book or not chapter_id:
            return ToolResult.fail("book_id and chapter_id are required")
        try:
            chapter = await store.load_chapter(target_book, chapter_id)
        except StorageError as exc:
            return ToolResult.fail(str(exc))
        paragraphs = [
            {"id": p.id, "text": p.text, "translation": p.selected_text()}
            for p in chapter.paragraphs()
            if not p.is_empty
        ]
        return ToolResult.ok(
            chapter_id=chapter.id,
            title=chapter.title.original,
            translated_title=chapter.title.translation.text if chapter.title.translation else "",
            paragraphs=paragraphs,
        )

    async def list_tasks(args: Dict[str, Any]) -> ToolResult:
        tasks = [
            {
                "id": task.id,
                "type": task.type.value,
                "workflow_status": task.workflow_status.value if task.workflow_status else None,
                "chapter_id": task.chapter_id,
            }
            for task in registry.active_tasks
        ]
        return ToolResult.ok(tasks=tasks)

    tools.register(ToolSpec(
        name="get_chapter_content",
        description="Read a chapter's source paragraphs and their current translations.",
        parameters={
            "type": "object",
            "properties": {
                "chapter_id": {"type": "string"},
                "book_id": {"type": "string", "description": "Defaults to the book in focus"},
            },
            "required": ["chapter_id"],
        },
        handler=get_chapter_content,
    ))
    tools.register(ToolSpec(
        name="list_tasks",
        description="List the AI tasks that are currently running.",
        parameters={"type": "object", "properties": {}},
        handler=list_tasks,
    ))
    return tools


@router.post("/chat")
async def chat(
    request: ChatRequest,
    store: BookStorage = Depends(get_book_storage),
    registry: TaskRegistry = Depends(get_task_registry),
    llm: LLMGateway = Depends(get_llm_gateway),
):
    """Run the assistant loop for one user message."""
    messages = [{"role": "system", "content": ASSISTANT_SYSTEM_PROMPT}]
    messages.extend(m for m in request.history if m.get("role") != "system")
    messages.append({"role": "user", "content": request.message})

    loop = ConversationalToolLoop(llm, build_assistant_tools(store, registry, request.book_id))
    try:
        result = await loop.run(messages)
    except LLMError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    history = result.messages
    if result.needs_reset and result.summary is not None:
        history = reset_history(result.messages, result.summary)
    return {
        "text": result.text,
        "turns": result.turns,
        "needs_reset": result.needs_reset,
        "summary": result.summary,
        "hit_turn_limit": result.hit_turn_limit,
        "history": [m for m in history if m.get("role") != "system"],
    }
