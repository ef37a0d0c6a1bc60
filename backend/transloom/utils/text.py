# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  文本工具 - 换行规范化与面向模型的有界ID列表
  Text Utilities - Newline normalization and bounded id lists for model-facing messages.
"""

from typing import Sequence


def normalize_newlines(text: str | None) -> str:
    """
    规范化换行符（\\r\\n 和 \\r 转换为 \\n）

    Normalize \\\\r\\\\n and \\\\r to \\\\n. Accepts *None* safely.

    Example:
        >>> normalize_newlines("line1\\r\\nline2")
        "line1\\nline2"
    """
    return (text or "").replace("\r\n", "\n").replace("\r", "\n")


def normalize_for_compare(text: str | None) -> str:
    """
    规范化换行符并去除尾部空白用于比较

    Normalize newlines **and** strip trailing whitespace for comparison.
    """
    return normalize_newlines(text).rstrip()


def format_id_list(ids: Sequence[str], limit: int) -> str:
    """
    生成有界的 ID 列表文本

    Join at most ``limit`` ids; when more exist, append the total count so the
    message stays bounded.

    Example:
        >>> format_id_list(["a", "b", "c"], 2)
        "a, b (3 total)"
    """
    shown = list(ids)[: max(limit, 0)]
    text = ", ".join(shown)
    if len(ids) > len(shown):
        text += f" ({len(ids)} total)"
    return text
