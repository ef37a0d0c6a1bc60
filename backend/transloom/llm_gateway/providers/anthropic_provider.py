# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  Anthropic (Claude) LLM提供商适配器
  Anthropic (Claude) Provider - Streaming tool calls over the Messages API.
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from anthropic import AsyncAnthropic

from transloom.llm_gateway.providers.base import BaseLLMProvider
from transloom.llm_gateway.types import StreamChunk
from transloom.schemas.tools import ToolCall
from transloom.services.abort import AbortHandle


def _decode_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        decoded = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def to_anthropic_messages(messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    转换 OpenAI 风格历史为 Claude 格式 / Convert OpenAI-style history for Claude

    System messages become the ``system`` parameter, tool results become
    ``tool_result`` blocks in a user turn, and consecutive turns of the same
    role are merged since Claude requires alternation.
    """
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for msg in messages:
        role = msg.get("role")
        if role == "system":
            system_parts.append(msg.get("content") or "")
            continue

        if role == "tool":
            entry = {
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": msg.get("tool_call_id", ""),
                    "content": msg.get("content") or "",
                }],
            }
        elif role == "assistant" and msg.get("tool_calls"):
            blocks: List[Dict[str, Any]] = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": msg["content"]})
            for call in msg["tool_calls"]:
                function = call.get("function", {})
                blocks.append({
                    "type": "tool_use",
                    "id": call.get("id", ""),
                    "name": function.get("name", ""),
                    "input": _decode_arguments(function.get("arguments")),
                })
            entry = {"role": "assistant", "content": blocks}
        else:
            entry = {"role": role, "content": [{"type": "text", "text": msg.get("content") or ""}]}

        if converted and converted[-1]["role"] == entry["role"]:
            converted[-1]["content"].extend(entry["content"])
        else:
            converted.append(entry)

    system = "\n\n".join(part for part in system_parts if part) or None
    return system, converted


def to_anthropic_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    converted = []
    for tool in tools:
        function = tool.get("function", tool)
        converted.append({
            "name": function["name"],
            "description": function.get("description", ""),
            "input_schema": function.get("parameters", {"type": "object", "properties": {}}),
        })
    return converted


class AnthropicProvider(BaseLLMProvider):
    """
    Anthropic API提供商 / Anthropic API provider for Claude models

    Attributes:
        client (AsyncAnthropic): 异步 Anthropic 客户端 / Async Anthropic client instance.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 8000,
        temperature: float = 0.7
    ):
        super().__init__(api_key, model, max_tokens, temperature)
        self.client = AsyncAnthropic(api_key=api_key)

    def _request_kwargs(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        system, converted = to_anthropic_messages(messages)
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": converted,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """发送聊天请求到 Anthropic / Send a chat request to Anthropic."""
        response = await self.client.messages.create(**self._request_kwargs(messages, temperature, max_tokens))
        text = "".join(block.text for block in response.content if block.type == "text")
        return {
            "content": text,
            "usage": {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens
            },
            "model": response.model,
            "finish_reason": response.stop_reason
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
        流式生成 / Stream text deltas, then emit tool_use blocks from the final message

        The abort handle is checked on every stream event, tool_use deltas
        included. Leaving the stream context early closes the HTTP response.
        """
        kwargs = self._request_kwargs(messages, temperature, max_tokens)
        if tools:
            kwargs["tools"] = to_anthropic_tools(tools)

        if abort is not None:
            abort.raise_if_aborted()
        async with self.client.messages.stream(**kwargs) as stream:
            async for event in stream:
                if abort is not None:
                    abort.raise_if_aborted()
                if event.type == "text" and event.text:
                    yield StreamChunk(text=event.text)
            final = await stream.get_final_message()

        calls = [
            ToolCall(id=block.id, name=block.name, arguments=block.input)
            for block in final.content
            if block.type == "tool_use"
        ]
        yield StreamChunk(
            tool_calls=calls,
            finish_reason=final.stop_reason or "",
            usage={
                "prompt_tokens": final.usage.input_tokens,
                "completion_tokens": final.usage.output_tokens,
                "total_tokens": final.usage.input_tokens + final.usage.output_tokens,
            },
        )

    def get_provider_name(self) -> str:
        """获取提供商名称 / Get provider name."""
        return "anthropic"
