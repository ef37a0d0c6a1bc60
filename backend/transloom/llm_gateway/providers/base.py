# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM提供商抽象基类 - 统一的对话与流式工具调用接口
  Base LLM Provider - Unified interface for plain chat and streaming tool calls.

消息格式 / Message format:
  历史记录统一使用 OpenAI 风格：role 为 system / user / assistant / tool，
  assistant 消息可带 tool_calls，tool 消息带 tool_call_id。
  History uses OpenAI-style messages; providers with other wire formats convert.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from transloom.llm_gateway.types import GenerationResult, StreamChunk
from transloom.services.abort import AbortHandle


class BaseLLMProvider(ABC):
    """
    大模型提供商抽象基类 / Abstract base class for LLM providers

    Attributes:
        api_key (str): API密钥 / API key
        model (str): 模型名称 / Model identifier, recorded as the producing model
        max_tokens (int): 最大生成token数 / Maximum tokens to generate
        temperature (float): 生成温度 / Sampling temperature
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 8000,
        temperature: float = 0.7
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        发送聊天请求（无工具）/ Send a plain chat request

        Returns:
            响应字典 / Response dict with keys ``content``, ``usage``, ``model``,
            ``finish_reason``
        """

    async def stream_generate(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        abort: Optional[AbortHandle] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        流式生成（可带工具）/ Stream a response, optionally with tools

        The default implementation ignores tools and falls back to ``chat``.
        Implementations must check ``abort`` between received chunks and raise
        TaskCancelledError once it fires.

        Yields:
            StreamChunk: 增量文本或完整的工具调用 / Incremental text or complete tool calls
        """
        if abort is not None:
            abort.raise_if_aborted()
        response = await self.chat(messages, temperature, max_tokens)
        if abort is not None:
            abort.raise_if_aborted()
        yield StreamChunk(
            text=response.get("content", ""),
            finish_reason=response.get("finish_reason") or "",
            usage=response.get("usage") or {},
        )

    async def generate(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        abort: Optional[AbortHandle] = None,
    ) -> GenerationResult:
        """Collect ``stream_generate`` into a single result."""
        result = GenerationResult()
        async for chunk in self.stream_generate(messages, tools, temperature, max_tokens, abort):
            result.add(chunk)
        return result

    @abstractmethod
    def get_provider_name(self) -> str:
        """获取提供商名称 / Provider name (e.g. 'openai', 'anthropic')."""
