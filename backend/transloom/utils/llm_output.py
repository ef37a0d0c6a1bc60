# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM输出解析工具 - 弹性解析工具调用参数（JSON字符串）
  LLM Output Parsing Helpers - Resilient parsing of tool-call argument payloads.

说明 / Note:
  模型给出的工具参数偶尔会被包裹在 markdown 代码块里，或在 JSON 前后夹带说明文字。
  Models occasionally wrap tool arguments in markdown fences or surround the JSON
  object with prose; both are tolerated here.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional, Tuple


def parse_tool_arguments(raw: Any) -> Tuple[Optional[Dict[str, Any]], str]:
    """
    解析工具调用参数

    Parse the ``arguments`` payload of a tool call into a dict.

    Args:
        raw: 字符串或已解析的字典 / JSON string or an already-decoded dict

    Returns:
        元组 (参数字典, 错误码) / Tuple of (arguments, error_code); error_code is
        empty on success, ``empty_arguments`` or ``invalid_json`` otherwise.

    Example:
        >>> parse_tool_arguments('{"status": "working"}')
        ({'status': 'working'}, '')
        >>> parse_tool_arguments('```json\\n{"status": "end"}\\n```')
        ({'status': 'end'}, '')
    """
    if isinstance(raw, dict):
        return raw, ""
    if raw is None or not str(raw).strip():
        return {}, "empty_arguments"

    for candidate in _candidates(str(raw)):
        data = _loads_object(candidate)
        if data is not None:
            return data, ""
        for segment in _object_segments(candidate):
            data = _loads_object(segment)
            if data is not None:
                return data, ""

    return None, "invalid_json"


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _candidates(text: str) -> Iterable[str]:
    """Full text first, then the bodies of any fenced code blocks."""
    cleaned = text.strip()
    yield cleaned

    if "```" not in cleaned:
        return

    parts = cleaned.split("```")
    for i in range(1, len(parts), 2):
        segment = parts[i].strip()
        lines = segment.splitlines()
        if lines and lines[0].strip().lower() in {"json", "jsonc"}:
            segment = "\n".join(lines[1:]).strip()
        if segment:
            yield segment


def _object_segments(text: str) -> Iterable[str]:
    """
    提取完整的 JSON 对象片段

    Yield balanced ``{...}`` segments, skipping braces inside string literals.
    """
    for start, ch in enumerate(text):
        if ch != "{":
            continue
        depth = 0
        in_string = False
        escape = False
        for idx in range(start, len(text)):
            cur = text[idx]
            if in_string:
                if escape:
                    escape = False
                elif cur == "\\":
                    escape = True
                elif cur == '"':
                    in_string = False
                continue
            if cur == '"':
                in_string = True
            elif cur == "{":
                depth += 1
            elif cur == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : idx + 1]
                    break
