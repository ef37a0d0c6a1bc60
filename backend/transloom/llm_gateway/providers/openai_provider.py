# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  OpenAI 兼容 LLM 提供商适配器（OpenAI、DeepSeek 及其他兼容端点）
  OpenAI-compatible Provider - Chat Completions streaming with tool calls, usable
  with any endpoint reachable through ``base_url``.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from transloom.llm_gateway.providers.base import BaseLLMProvider
from transloom.llm_gateway.types import StreamChunk
from transloom.schemas.tools import ToolCall
from transloom.services.abort import AbortHandle


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI 兼容提供商 / OpenAI-compatible provider

    Attributes:
        client (AsyncOpenAI): 异步客户端 / Async client instance.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        max_tokens: int = 8000,
        temperature: float = 0.7,
        base_url: Optional[str] = None,
    ):
        super().__init__(api_key, model, max_tokens, temperature)
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url or None)

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """发送聊天请求 / Send a chat request."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.max_tokens,
        )
        choice = response.choices[0]
        usage = response.usage
        return {
            "content": choice.message.content or "",
            "usage": {
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
            "model": response.model,
            "finish_reason": choice.finish_reason,
        }

    async def stream_generate(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        abort: Optional[AbortHandle] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        流式生成 / Stream text deltas; tool-call fragments are assembled by index
        and emitted once the stream ends.
        """
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools

        if abort is not None:
            abort.raise_if_aborted()
        stream = await self.client.chat.completions.create(**kwargs)

        pending: Dict[int, Dict[str, str]] = {}
        finish_reason = ""
        usage: Dict[str, int] = {}
        try:
            async for chunk in stream:
                if abort is not None:
                    abort.raise_if_aborted()
                if getattr(chunk, "usage", None):
                    usage = {
                        "prompt_tokens": chunk.usage.prompt_tokens,
                        "completion_tokens": chunk.usage.completion_tokens,
                        "total_tokens": chunk.usage.total_tokens,
                    }
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield StreamChunk(text=delta.content)
                    for fragment in delta.tool_calls or []:
                        slot = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                        if fragment.id:
                            slot["id"] = fragment.id
                        if fragment.function is not None:
                            if fragment.function.name:
                                slot["name"] = fragment.function.name
                            if fragment.function.arguments:
                                slot["arguments"] += fragment.function.arguments
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        finally:
            await stream.close()

        calls = [
            ToolCall(id=slot["id"] or f"call_{index}", name=slot["name"], arguments=slot["arguments"])
            for index, slot in sorted(pending.items())
            if slot["name"]
        ]
        yield StreamChunk(tool_calls=calls, finish_reason=finish_reason, usage=usage)

    def get_provider_name(self) -> str:
        """获取提供商名称 / Get provider name."""
        return "openai"
