# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  引号完整性检查 - 检测译文是否丢失原文中的开/闭引号
  Quote Integrity Check - Detect translations that drop opening/closing quotes
  present in the source paragraph.

规则 / Rules:
  - 开引号与闭引号按"类"计数，不同引号风格可互相替换（「」 ↔ “” ↔ 『』）
    Quotes are counted per side, so style substitution (「」 -> “”) is allowed.
  - 直双引号 " 成对计数：奇数位计为开引号，偶数位计为闭引号
    Straight double quotes alternate: odd occurrences open, even ones close.
  - 单引号 ‘’ 和 ' 不参与计数（与撇号无法区分）
    Single quotes are ignored; they are indistinguishable from apostrophes.
  - 原文某一侧存在引号而译文该侧一个都没有时判定为丢失
    A side is "missing" when the source has at least one and the translation has none.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

OPENING_QUOTES = frozenset("“「『«〝")
CLOSING_QUOTES = frozenset("”」』»〞")
STRAIGHT_QUOTES = frozenset('"＂')


@dataclass(frozen=True)
class QuoteLoss:
    """译文丢失的引号 / A quote side dropped by the translation."""

    side: str  # "opening" | "closing"
    source_count: int
    translated_count: int


def count_quotes(text: str) -> Tuple[int, int]:
    """
    统计开/闭引号数量

    Count (opening, closing) quote glyphs in ``text``.

    Example:
        >>> count_quotes("「你好」他说。\\"走吧\\"")
        (2, 2)
    """
    opening = closing = straight = 0
    for char in text or "":
        if char in OPENING_QUOTES:
            opening += 1
        elif char in CLOSING_QUOTES:
            closing += 1
        elif char in STRAIGHT_QUOTES:
            straight += 1
    opening += (straight + 1) // 2
    closing += straight // 2
    return opening, closing


def find_quote_loss(source: str, translated: str) -> Optional[QuoteLoss]:
    """
    检查译文是否丢失原文的引号

    Return the first dropped side (opening before closing), or None when the
    translation keeps quote pairing.
    """
    src_open, src_close = count_quotes(source)
    dst_open, dst_close = count_quotes(translated)
    if src_open > 0 and dst_open == 0:
        return QuoteLoss("opening", src_open, dst_open)
    if src_close > 0 and dst_close == 0:
        return QuoteLoss("closing", src_close, dst_close)
    return None
