# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM网关 - 多提供商门面：普通对话（带重试）与流式工具调用（不重试）
  LLM Gateway - Multi-provider facade: plain chat with retries, and streaming
  tool-call generation without retries (partial output may already be applied).

使用示例 / Usage:
    from transloom.llm_gateway import get_gateway

    gateway = get_gateway()
    response = await gateway.chat(messages=[{"role": "user", "content": "..."}], temperature=0.3)
    async for chunk in gateway.stream(messages, tools=tool_definitions, abort=handle):
        ...
"""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from transloom.config import Settings
from transloom.exceptions import LLMError, TaskCancelledError, TokenLimitError
from transloom.llm_gateway.errors import classify_error, get_retry_delay, is_token_limit_error
from transloom.llm_gateway.providers.anthropic_provider import AnthropicProvider
from transloom.llm_gateway.providers.base import BaseLLMProvider
from transloom.llm_gateway.providers.openai_provider import OpenAIProvider
from transloom.llm_gateway.types import GenerationResult, StreamChunk
from transloom.services.abort import AbortHandle
from transloom.utils.logger import get_logger

logger = get_logger(__name__)


class LLMGateway:
    """
    LLM 网关 / LLM gateway

    Attributes:
        providers (Dict[str, BaseLLMProvider]): 已配置的提供商 / Configured providers
        default_provider (str): 默认提供商名 / Default provider name
        max_retries (int): chat 的最大重试次数 / Retry budget for ``chat``
    """

    def __init__(
        self,
        providers: Dict[str, BaseLLMProvider],
        default_provider: Optional[str] = None,
        max_retries: int = 2,
    ):
        self.providers = dict(providers)
        self.default_provider = default_provider or next(iter(self.providers), "")
        self.max_retries = max_retries

    def get_provider(self, name: Optional[str] = None) -> BaseLLMProvider:
        key = name or self.default_provider
        provider = self.providers.get(key)
        if provider is None:
            raise LLMError(f"LLM provider not configured: {key or '(none)'}")
        return provider

    def model_id(self, provider: Optional[str] = None) -> str:
        """Identifier recorded on translations produced through this gateway."""
        selected = self.get_provider(provider)
        return f"{selected.get_provider_name()}:{selected.model}"

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        provider: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        普通对话（带退避重试）/ Plain chat with backoff retries

        Raises:
            TokenLimitError: 上下文超限 / Context too long (never retried)
            LLMError: 其他失败 / Any other provider failure
        """
        selected = self.get_provider(provider)
        attempt = 0
        while True:
            try:
                return await selected.chat(messages, temperature=temperature, max_tokens=max_tokens)
            except Exception as exc:
                if is_token_limit_error(exc):
                    raise TokenLimitError(str(exc)) from exc
                retryable, reason = classify_error(exc)
                if not retryable or attempt >= self.max_retries:
                    logger.error("LLM chat failed (%s, attempt %d): %s", reason, attempt + 1, exc)
                    raise LLMError(str(exc)) from exc
                delay = get_retry_delay(attempt)
                logger.warning("LLM chat failed (%s), retrying in %.1fs: %s", reason, delay, exc)
                await asyncio.sleep(delay)
                attempt += 1

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        provider: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        abort: Optional[AbortHandle] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        流式生成 / Stream one model turn

        Raises:
            TaskCancelledError: 取消句柄已触发 / The abort handle fired
            TokenLimitError: 上下文超限 / Context too long
            LLMError: 其他失败 / Any other provider failure
        """
        selected = self.get_provider(provider)
        try:
            async for chunk in selected.stream_generate(messages, tools, temperature, max_tokens, abort):
                yield chunk
        except (TaskCancelledError, LLMError):
            raise
        except Exception as exc:
            if is_token_limit_error(exc):
                raise TokenLimitError(str(exc)) from exc
            logger.error("LLM stream failed (%s): %s", selected.get_provider_name(), exc)
            raise LLMError(str(exc)) from exc

    async def generate(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        provider: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        abort: Optional[AbortHandle] = None,
    ) -> GenerationResult:
        """Collect one streamed turn."""
        result = GenerationResult()
        async for chunk in self.stream(messages, tools, provider, temperature, max_tokens, abort):
            result.add(chunk)
        return result


def build_gateway(settings: Settings) -> LLMGateway:
    """
    根据设置构建网关 / Build a gateway from settings

    Providers without credentials are skipped; calls then fail with LLMError
    instead of failing at import time.
    """
    providers: Dict[str, BaseLLMProvider] = {}
    if settings.openai_api_key:
        model = settings.default_model if settings.default_provider == "openai" else "gpt-4o-mini"
        providers["openai"] = OpenAIProvider(
            api_key=settings.openai_api_key,
            model=model,
            base_url=settings.openai_base_url,
        )
    if settings.anthropic_api_key:
        model = settings.default_model if settings.default_provider == "anthropic" else "claude-3-5-sonnet-20241022"
        providers["anthropic"] = AnthropicProvider(api_key=settings.anthropic_api_key, model=model)
    if not providers:
        logger.warning("No LLM provider credentials configured; AI runs will fail until one is set")
    return LLMGateway(providers, default_provider=settings.default_provider)
