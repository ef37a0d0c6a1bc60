# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  路径安全工具 - 书籍/章节ID在拼接为文件路径前的校验
  Path Safety Utilities - Validate book/chapter ids before they become file paths.
"""

import re
from pathlib import Path

# word characters (CJK included), hyphens, inner dots
_SAFE_ID_RE = re.compile(r"^[\w][\w\-\.]*$", re.UNICODE)


def ensure_safe_id(raw: str, max_length: int = 128) -> str:
    """
    校验标识符可安全用作文件名

    Return ``raw`` unchanged when it is a safe single path component.
    Ids are never rewritten: a sanitized id would point at a different file.

    Raises:
        ValueError: 空值、目录遍历或非法字符 / Empty, traversal or unsafe characters

    Example:
        >>> ensure_safe_id("ch-0001")
        'ch-0001'
        >>> ensure_safe_id("../etc")
        Traceback (most recent call last):
        ValueError: ...
    """
    if not raw or not isinstance(raw, str):
        raise ValueError("ID必须是非空字符串 / ID must be a non-empty string")
    if len(raw) > max_length or ".." in raw or not _SAFE_ID_RE.match(raw):
        raise ValueError(f"非法ID / Unsafe id: {raw!r}")
    return raw


def validate_path_within(child: Path, parent: Path) -> Path:
    """
    验证 child 路径位于 parent 目录内 / Ensure ``child`` resolves inside ``parent``.

    Raises:
        ValueError: 路径逃逸 / The child escapes the parent directory
    """
    resolved_parent = parent.resolve()
    resolved_child = child.resolve()
    if resolved_child != resolved_parent and resolved_parent not in resolved_child.parents:
        raise ValueError(f"路径逃逸数据目录 / Path escapes data directory: {child}")
    return resolved_child
