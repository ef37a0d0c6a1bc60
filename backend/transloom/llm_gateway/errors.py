# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM错误分类 - 区分可重试/不可重试错误，并识别上下文超限错误
  LLM Error Classification - Retryable vs non-retryable errors, plus detection of
  context-length (token limit) failures that trigger a conversation reset.
"""

import random
from typing import List, Optional, Tuple

from transloom.exceptions import TokenLimitError

# 不可重试：认证、权限、无效请求、上下文超限、计费
NON_RETRYABLE_PATTERNS = (
    "invalid_api_key",
    "invalid api key",
    "authentication",
    "unauthorized",
    "permission",
    "forbidden",
    "access denied",
    "invalid_request_error",
    "model not found",
    "model_not_found",
    "context_length_exceeded",
    "context length",
    "maximum context",
    "token limit",
    "content_policy",
    "billing",
    "insufficient_quota",
    "quota exceeded",
)

# 可重试：超时、连接、服务端错误、临时限流
RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "server_error",
    "internal server",
    "502",
    "503",
    "504",
    "bad gateway",
    "service unavailable",
    "overloaded",
    "rate limit",
    "too many requests",
    "429",
)

# "token" 与下列任一关键词同时出现即视为上下文超限
TOKEN_LIMIT_KEYWORDS = ("limit", "exceed", "maximum", "too long", "context length")


def is_token_limit_error(error: BaseException) -> bool:
    """
    判断是否为上下文超限错误 / Whether the provider rejected an over-long context

    Example:
        >>> is_token_limit_error(ValueError("This model's maximum context length is 8192 tokens"))
        True
        >>> is_token_limit_error(TimeoutError("read timed out"))
        False
    """
    if isinstance(error, TokenLimitError):
        return True
    message = str(error).lower()
    if "token" not in message:
        return False
    return any(keyword in message for keyword in TOKEN_LIMIT_KEYWORDS)


def classify_error(error: BaseException) -> Tuple[bool, str]:
    """
    将错误分类为可重试或不可重试 / Classify an error as retryable or not

    Returns:
        元组 (is_retryable, reason) / Tuple of (is_retryable, reason code)

    Example:
        >>> classify_error(TimeoutError("Request timed out"))
        (True, 'connection_error')
        >>> classify_error(ValueError("invalid_api_key"))
        (False, 'non_retryable:invalid_api_key')
    """
    if is_token_limit_error(error):
        return False, "token_limit"

    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if any(t in error_type for t in ("timeout", "connection", "network", "socket")):
        return True, "connection_error"
    if any(t in error_type for t in ("authentication", "permission")):
        return False, "auth_error"

    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern in error_str:
            return False, f"non_retryable:{pattern}"
    for pattern in RETRYABLE_PATTERNS:
        if pattern in error_str:
            return True, f"retryable:{pattern}"

    return True, "unknown_error"


def get_retry_delay(attempt: int, base_delays: Optional[List[float]] = None, max_delay: float = 60.0) -> float:
    """
    计算带指数退避和抖动的重试延迟 / Exponential backoff with 0-10% jitter

    Example:
        >>> 1.0 <= get_retry_delay(0) <= 1.1
        True
    """
    if base_delays is None:
        base_delays = [1, 2, 4, 8, 16]

    if attempt < len(base_delays):
        delay = base_delays[attempt]
    else:
        delay = base_delays[-1] * (2 ** (attempt - len(base_delays) + 1))

    delay = min(delay, max_delay)
    return delay + delay * random.uniform(0, 0.1)
