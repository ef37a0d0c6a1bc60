# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  对话式工具调用循环 - 反复执行模型请求的工具，直到某轮不再调用工具；
  上下文接近模型上限（或模型报超限）时先总结历史，再由调用方用摘要重开对话
  Conversational Tool-Call Loop - Executes requested tools until a turn makes no
  more calls. When the history nears the model's context limit, or the provider
  reports a token-limit error, the history is summarized and the caller restarts
  the conversation from the summary.

Token 估算 / Token estimate:
  字符数 × chars_to_tokens（默认 2，对中日韩文本偏保守）
  characters × ``chars_to_tokens`` (default 2, conservative for CJK-dense text)
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from transloom.config import settings, workflow_setting
from transloom.exceptions import LLMError
from transloom.llm_gateway.errors import is_token_limit_error
from transloom.llm_gateway.gateway import LLMGateway
from transloom.services.abort import AbortHandle
from transloom.utils.logger import get_logger
from transloom.workflow.prompts import SUMMARY_SYSTEM_PROMPT, reset_seed_prompt, summary_user_prompt
from transloom.workflow.tools import ToolRegistry

logger = get_logger(__name__)


def _message_chars(message: Dict[str, Any]) -> int:
    chars = len(str(message.get("content") or ""))
    if message.get("tool_calls"):
        chars += len(json.dumps(message["tool_calls"], ensure_ascii=False))
    return chars


def estimate_tokens(messages: List[Dict[str, Any]], chars_to_tokens: float = 2) -> int:
    """
    估算历史 token 数 / Conservative token estimate of a message history

    Example:
        >>> estimate_tokens([{"role": "user", "content": "你好"}])
        4
    """
    return int(sum(_message_chars(m) for m in messages) * chars_to_tokens)


def render_transcript(messages: List[Dict[str, Any]]) -> str:
    """Plain-text transcript of the non-system history, used for summarization."""
    lines: List[str] = []
    for message in messages:
        role = message.get("role")
        if role == "system":
            continue
        content = str(message.get("content") or "").strip()
        if role == "tool":
            lines.append(f"[tool result] {content}")
            continue
        if content:
            lines.append(f"[{role}] {content}")
        for call in message.get("tool_calls") or []:
            function = call.get("function", {})
            lines.append(f"[{role} called {function.get('name', '?')}] {function.get('arguments', '')}")
    return "\n".join(lines)


def reset_history(messages: List[Dict[str, Any]], summary: str) -> List[Dict[str, Any]]:
    """System messages of the old history followed by the summary seed."""
    system = [m for m in messages if m.get("role") == "system"]
    return system + [{"role": "user", "content": reset_seed_prompt(summary)}]


@dataclass
class ToolLoopResult:
    """
    循环结果 / Loop result

    Attributes:
        text: 最后一轮的文本回复 / Text of the last model turn
        messages: 完整历史（含工具结果）/ Full history including tool results
        turns: 实际调用模型的轮数 / Model rounds actually made
        needs_reset: 调用方应以 summary 重开对话 / Caller should restart from ``summary``
        hit_turn_limit: 达到轮次上限 / Stopped by the turn cap
    """

    text: str
    messages: List[Dict[str, Any]]
    turns: int
    needs_reset: bool = False
    summary: Optional[str] = None
    hit_turn_limit: bool = False


class ConversationalToolLoop:
    """
    对话式工具调用循环 / Conversational tool-call loop

    ``model_max_tokens`` of 0 disables the proactive budget check; the reactive
    reset on provider token-limit errors always applies.
    """

    def __init__(
        self,
        llm: LLMGateway,
        tools: ToolRegistry,
        model_max_tokens: Optional[int] = None,
        max_turns: Optional[int] = None,
        threshold_ratio: Optional[float] = None,
        chars_to_tokens: Optional[float] = None,
        summary_temperature: Optional[float] = None,
        provider: Optional[str] = None,
    ):
        self.llm = llm
        self.tools = tools
        self.model_max_tokens = settings.model_max_tokens if model_max_tokens is None else model_max_tokens
        self.max_turns = max_turns or workflow_setting("assistant_max_turns")
        self.threshold_ratio = threshold_ratio or workflow_setting("token_threshold_ratio")
        self.chars_to_tokens = chars_to_tokens or workflow_setting("chars_to_tokens")
        if summary_temperature is None:
            summary_temperature = workflow_setting("summary_temperature")
        self.summary_temperature = summary_temperature
        self.provider = provider

    @property
    def token_budget(self) -> int:
        if self.model_max_tokens <= 0:
            return 0
        return int(self.model_max_tokens * self.threshold_ratio)

    def over_budget(self, messages: List[Dict[str, Any]]) -> bool:
        budget = self.token_budget
        return budget > 0 and estimate_tokens(messages, self.chars_to_tokens) >= budget

    async def run(self, messages: List[Dict[str, Any]], abort: Optional[AbortHandle] = None) -> ToolLoopResult:
        """
        运行循环 / Run the loop

        Raises:
            TaskCancelledError: 取消句柄触发 / The abort handle fired
            LLMError: 非超限的模型错误 / Provider failures other than token limits
        """
        history = list(messages)
        definitions = self.tools.definitions() or None
        text = ""
        turns = 0
        while turns < self.max_turns:
            if abort is not None:
                abort.raise_if_aborted()

            if self.over_budget(history):
                logger.info(
                    "History reached %d estimated tokens (budget %d), summarizing",
                    estimate_tokens(history, self.chars_to_tokens), self.token_budget,
                )
                return await self._reset_result(text, history, turns)

            try:
                result = await self.llm.generate(history, tools=definitions, provider=self.provider, abort=abort)
            except LLMError as exc:
                if not is_token_limit_error(exc):
                    raise
                logger.info("Provider reported a token limit, summarizing: %s", exc)
                return await self._reset_result(text, history, turns)

            turns += 1
            history.append(result.assistant_message())
            text = result.text
            if not result.tool_calls:
                return ToolLoopResult(text=text, messages=history, turns=turns)

            for call in result.tool_calls:
                if abort is not None:
                    abort.raise_if_aborted()
                outcome = await self.tools.dispatch(call)
                history.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": outcome.to_tool_output(),
                })

        logger.warning("Tool loop stopped after %d turns", self.max_turns)
        return ToolLoopResult(text=text, messages=history, turns=turns, hit_turn_limit=True)

    async def _reset_result(self, text: str, history: List[Dict[str, Any]], turns: int) -> ToolLoopResult:
        summary = await self.summarize(history)
        return ToolLoopResult(
            text=text,
            messages=history,
            turns=turns,
            needs_reset=True,
            summary=summary,
        )

    async def summarize(self, history: List[Dict[str, Any]]) -> str:
        """
        总结非系统历史 / Summarize the non-system history

        The transcript keeps its most recent part when it would not fit the
        token budget itself.
        """
        transcript = render_transcript(history)
        if not transcript:
            return ""
        budget = self.token_budget
        if budget > 0:
            max_chars = max(int(budget / self.chars_to_tokens) - len(SUMMARY_SYSTEM_PROMPT), 1)
            if len(transcript) > max_chars:
                transcript = transcript[-max_chars:]

        response = await self.llm.chat(
            [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": summary_user_prompt(transcript)},
            ],
            provider=self.provider,
            temperature=self.summary_temperature,
        )
        summary = str(response.get("content") or "").strip()
        logger.info("Conversation summarized: %d chars -> %d chars", len(transcript), len(summary))
        return summary
