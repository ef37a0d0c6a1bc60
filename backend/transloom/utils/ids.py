# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  短 ID 生成 - 译文版本、任务等实体的标识符
  Short ID generation for translations, tasks and tool calls.
"""

import uuid


def generate_short_id(length: int = 12) -> str:
    """
    生成短 ID（uuid4 十六进制前缀）

    Generate a short hex id taken from a uuid4.

    Args:
        length: ID 长度 / Id length (1-32)

    Returns:
        十六进制字符串 / Hex string, e.g. "e58ed7631a2b"
    """
    length = max(1, min(int(length), 32))
    return uuid.uuid4().hex[:length]
