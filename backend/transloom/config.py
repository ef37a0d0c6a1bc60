# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  应用配置 - 环境变量设置 + YAML 工作流参数
  Application Configuration - Environment-driven settings plus YAML workflow knobs.

使用示例 / Usage:
    from transloom.config import settings, config

    settings.data_dir                       # 环境变量 TRANSLOOM_DATA_DIR
    config["workflow"]["max_batch_size"]    # config.yaml 中的 workflow 段
"""

import copy
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    运行时设置（来自环境变量 / .env 文件）

    Runtime settings loaded from environment variables prefixed with ``TRANSLOOM_``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRANSLOOM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    data_dir: str = "../data"
    config_path: Optional[str] = None
    log_dir: Optional[str] = None
    log_level: Optional[str] = None

    default_provider: str = "openai"
    default_model: str = "gpt-4o-mini"
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    # 模型上下文上限（token），0 表示不限制 / Model context limit, 0 means unlimited
    model_max_tokens: int = 128000


settings = Settings()


# Built-in defaults; config.yaml is deep-merged over these.
DEFAULT_CONFIG: Dict[str, Any] = {
    "workflow": {
        "max_batch_size": 100,
        "batch_tolerance_ratio": 1.1,
        "chunk_char_limit": 2500,
        "max_turns_per_chunk": 10,
        "assistant_max_turns": 50,
        "token_threshold_ratio": 0.85,
        "chars_to_tokens": 2,
        "summary_temperature": 0.3,
        "progress_reset_delay": 1.0,
        "max_missing_ids_reported": 10,
        "max_out_of_range_ids_reported": 5,
    },
    "storage": {
        "chapter_file_suffix": ".json",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_config_path(explicit: Optional[str]) -> Path:
    if explicit:
        return Path(explicit)
    return Path(__file__).resolve().parent.parent / "config.yaml"


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    加载 YAML 配置并与默认值合并

    Load config.yaml (if present) and deep-merge it over DEFAULT_CONFIG.

    Args:
        path: 配置文件路径，None 使用默认位置 / Config path, None for the default location

    Returns:
        合并后的配置字典 / Merged configuration dict
    """
    config_file = _resolve_config_path(path)
    if not config_file.exists():
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(config_file, "r", encoding="utf-8") as fh:
        loaded = yaml.safe_load(fh) or {}
    if not isinstance(loaded, dict):
        return copy.deepcopy(DEFAULT_CONFIG)
    return _deep_merge(DEFAULT_CONFIG, loaded)


config: Dict[str, Any] = load_config(settings.config_path)


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _non_negative(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0


_WORKFLOW_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "max_batch_size": lambda v: _positive(v) and float(v).is_integer(),
    "batch_tolerance_ratio": lambda v: _positive(v) and v >= 1,
    "chunk_char_limit": _positive,
    "max_turns_per_chunk": _positive,
    "assistant_max_turns": _positive,
    "token_threshold_ratio": lambda v: _positive(v) and v <= 1,
    "chars_to_tokens": _positive,
    "summary_temperature": _non_negative,
    "progress_reset_delay": _non_negative,
    "max_missing_ids_reported": _positive,
    "max_out_of_range_ids_reported": _positive,
}


def workflow_setting(key: str) -> Any:
    """
    读取工作流参数 / Read a workflow knob

    Missing or invalid values fall back to the built-in default with a warning.
    """
    default = DEFAULT_CONFIG["workflow"][key]
    value = config.get("workflow", {}).get(key)
    if value is None:
        return default
    check = _WORKFLOW_CHECKS.get(key)
    if check is not None and not check(value):
        logging.getLogger(__name__).warning(
            "Invalid workflow.%s=%r in config, using default %r", key, value, default
        )
        return default
    if isinstance(default, int) and isinstance(value, float) and value.is_integer():
        return int(value)
    return value
