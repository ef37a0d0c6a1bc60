# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  批次配额 - 批次大小上限的纯函数计算
  Batch Quota - Pure computation of the batch-size ceiling.

规则 / Rules:
  - 不超过 max：直接接受 / Up to ``max``: accepted.
  - 超过 max、不超过 ceil(max * 1.1)：接受并给出警告 / Above ``max`` up to
    ``ceil(max * 1.1)``: accepted with a warning.
  - 当前块剩余未提交段落数 <= 2 * max 时，上限提升为 2 * max（允许一次收尾）
    When the chunk's remaining, not-yet-submitted count is ``<= 2 * max``, the
    ceiling becomes ``2 * max`` so the tail of a chunk can land in one batch.
  - 剩余数在本批次计入之前计算 / Remaining is evaluated before this batch is counted.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BatchLimit:
    """批次上限 / Applicable batch limits"""

    soft_limit: int
    hard_limit: int
    remaining: Optional[int] = None
    tail_allowance: bool = False


@dataclass(frozen=True)
class QuotaDecision:
    """配额判定 / Outcome of a batch-size check"""

    accepted: bool
    limit: BatchLimit
    warning: str = ""
    error: str = ""


def compute_batch_limit(
    max_batch_size: int,
    chunk_size: Optional[int] = None,
    submitted_count: int = 0,
    tolerance_ratio: float = 1.1,
) -> BatchLimit:
    """
    计算批次上限 / Compute the batch limits

    Args:
        max_batch_size: 名义上限 max / Nominal cap
        chunk_size: 当前块段落数，None 表示无块边界 / Chunk size, None without a boundary
        submitted_count: 本块已提交的段落数（账本大小）/ Ledger size for this chunk
        tolerance_ratio: 软溢出比例 / Soft overflow ratio

    Example:
        >>> compute_batch_limit(100).hard_limit
        110
        >>> compute_batch_limit(100, chunk_size=250, submitted_count=50).hard_limit
        200
    """
    soft = max_batch_size
    # round() keeps 100 * 1.1 from landing on 110.00000000000001
    hard = math.ceil(round(max_batch_size * tolerance_ratio, 6))
    remaining: Optional[int] = None
    tail = False
    if chunk_size is not None:
        remaining = max(chunk_size - submitted_count, 0)
        if remaining <= 2 * max_batch_size:
            hard = max(hard, 2 * max_batch_size)
            tail = True
    return BatchLimit(soft_limit=soft, hard_limit=hard, remaining=remaining, tail_allowance=tail)


def check_batch_size(
    received: int,
    max_batch_size: int,
    chunk_size: Optional[int] = None,
    submitted_count: int = 0,
    tolerance_ratio: float = 1.1,
) -> QuotaDecision:
    """
    检查批次大小 / Check a batch size against the applicable limits
    """
    limit = compute_batch_limit(max_batch_size, chunk_size, submitted_count, tolerance_ratio)
    if received <= limit.soft_limit:
        return QuotaDecision(accepted=True, limit=limit)
    if received <= limit.hard_limit:
        return QuotaDecision(
            accepted=True,
            limit=limit,
            warning=(
                f"Batch contains {received} paragraphs, above the recommended maximum of "
                f"{limit.soft_limit}; keep later batches at or below {limit.soft_limit}."
            ),
        )
    return QuotaDecision(
        accepted=False,
        limit=limit,
        error=(
            f"Batch too large: received {received} paragraphs, at most {limit.hard_limit} allowed. "
            f"Split the submission into batches of up to {limit.soft_limit}."
        ),
    )
