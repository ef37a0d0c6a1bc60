"""
LLM Gateway / LLM 网关
Provider abstraction, streaming types and error classification
"""

from functools import lru_cache

from transloom.config import settings
from transloom.llm_gateway.gateway import LLMGateway, build_gateway
from transloom.llm_gateway.types import GenerationResult, StreamChunk


@lru_cache(maxsize=1)
def get_gateway() -> LLMGateway:
    """获取全局网关实例 / Process-wide gateway built from settings."""
    return build_gateway(settings)


__all__ = [
    "GenerationResult",
    "LLMGateway",
    "StreamChunk",
    "build_gateway",
    "get_gateway",
]
