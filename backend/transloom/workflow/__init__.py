"""
Workflow Engine / 工作流引擎
Task state machine, batch submission gateway, chapter controller and tool loops
任务状态机、批次提交网关、章节并发控制器与工具调用循环
"""

from .chunks import ChunkBoundary, SubmittedIdsLedger, TextChunk, build_chunks
from .quota import BatchLimit, QuotaDecision, check_batch_size, compute_batch_limit
from .state_machine import TRANSITION_RULES, TaskStateMachine, TransitionResult, validate_transition
from .gateway import BatchSubmissionGateway, StoreParagraphWriter, append_translations
from .session import ChapterSession, StagingParagraphWriter
from .tools import ToolRegistry, ToolSpec, WorkflowToolContext, build_workflow_tools
from .runner import ChapterTaskRunner, RunRequest, TaskSession
from .controller import ChapterConcurrencyController, ChapterJobState, JobOutcome, JobStatus
from .tool_loop import ConversationalToolLoop, ToolLoopResult, estimate_tokens

__all__ = [
    "ChunkBoundary",
    "SubmittedIdsLedger",
    "TextChunk",
    "build_chunks",
    "BatchLimit",
    "QuotaDecision",
    "check_batch_size",
    "compute_batch_limit",
    "TRANSITION_RULES",
    "TaskStateMachine",
    "TransitionResult",
    "validate_transition",
    "BatchSubmissionGateway",
    "StoreParagraphWriter",
    "append_translations",
    "ChapterSession",
    "StagingParagraphWriter",
    "ToolRegistry",
    "ToolSpec",
    "WorkflowToolContext",
    "build_workflow_tools",
    "ChapterTaskRunner",
    "RunRequest",
    "TaskSession",
    "ChapterConcurrencyController",
    "ChapterJobState",
    "JobOutcome",
    "JobStatus",
    "ConversationalToolLoop",
    "ToolLoopResult",
    "estimate_tokens",
]
