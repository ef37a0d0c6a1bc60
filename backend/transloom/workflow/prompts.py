"""
Workflow Prompts / 工作流提示词
System prompts and message builders for chapter task sessions and the assistant loop.
"""

from typing import Optional

from transloom.schemas.task import TaskType, WorkflowStatus

_WORKFLOW_RULES = """Workflow rules:
- Call update_task_status with "working" before submitting any results.
- Submit results with add_translation_batch. Address every paragraph by the id shown as [ID: ...]; never by position.
- Only paragraphs of the current chunk may be submitted. Keep all quotation marks of the source.
- A rejected call changes nothing. Read the error, fix the input and call again."""

TRANSLATION_SYSTEM_PROMPT = f"""You are a professional literary translator working on a novel, one chunk of a chapter at a time.
Translate every paragraph of the chunk faithfully and fluently, keeping the tone and the paragraph structure.

{_WORKFLOW_RULES}
- Translate the chapter title with update_chapter_title.
- When every paragraph of the chunk is submitted, move to "review", check your work, then move to "end".
  To correct something during review, move back to "working" and resubmit the affected paragraphs."""

POLISH_SYSTEM_PROMPT = f"""You are a literary editor polishing an existing translation of a novel.
Improve fluency and style of the current translation while staying faithful to the source.
Only submit paragraphs you actually changed.

{_WORKFLOW_RULES}
- When you are done with the chunk, move to "end"."""

PROOFREADING_SYSTEM_PROMPT = f"""You are a proofreader checking a translation of a novel against its source.
Fix mistranslations, omissions, terminology and typos. Only submit paragraphs you actually corrected.

{_WORKFLOW_RULES}
- When you are done with the chunk, move to "end"."""

ASSISTANT_SYSTEM_PROMPT = """You are the assistant of a novel translation editor.
Answer the user's questions about the book and its translation. Use the available tools to look things up
instead of guessing."""

SUMMARY_SYSTEM_PROMPT = """Summarize the conversation below so it can continue in a fresh context.
Keep every fact, decision, open question and pending request; drop pleasantries and repetition.
Write plain prose, at most a few paragraphs."""

_SYSTEM_PROMPTS = {
    TaskType.TRANSLATION: TRANSLATION_SYSTEM_PROMPT,
    TaskType.POLISH: POLISH_SYSTEM_PROMPT,
    TaskType.PROOFREADING: PROOFREADING_SYSTEM_PROMPT,
}


def system_prompt_for(kind: TaskType) -> str:
    return _SYSTEM_PROMPTS.get(kind, TRANSLATION_SYSTEM_PROMPT)


def chunk_user_prompt(
    kind: TaskType,
    chunk_text: str,
    chunk_index: int,
    chunk_count: int,
    title: Optional[str] = None,
) -> str:
    """User message handing one chunk to the model."""
    action = {
        TaskType.TRANSLATION: "Translate",
        TaskType.POLISH: "Polish",
        TaskType.PROOFREADING: "Proofread",
    }.get(kind, "Process")
    lines = [f"{action} chunk {chunk_index + 1} of {chunk_count}."]
    if title:
        lines.append(f"Chapter title: {title}")
    lines.append("")
    lines.append(chunk_text.rstrip())
    return "\n".join(lines)


def status_nudge_prompt(status: Optional[WorkflowStatus]) -> str:
    """Reminder sent when a turn ends without any tool call."""
    current = status.value if status is not None else "unset"
    return (
        f"The task status is still {current}. Continue the workflow with tool calls; "
        'the chunk is only finished once the status is "end".'
    )


def summary_user_prompt(transcript: str) -> str:
    return f"Conversation so far:\n\n{transcript}"


def reset_seed_prompt(summary: str) -> str:
    """First user message of a conversation restarted from a summary."""
    return f"Summary of the earlier conversation:\n\n{summary}"
