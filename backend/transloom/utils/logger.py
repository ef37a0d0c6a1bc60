# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  集中式日志系统 - 所有模块的 logger 挂在 "transloom" 根 logger 下，统一配置一次
  Centralized Logging - Every module logger hangs off the "transloom" root
  logger, which is configured once (console + rotating file).

配置 / Settings:
  TRANSLOOM_LOG_LEVEL   日志级别，默认 debug 模式为 DEBUG，否则 INFO
  TRANSLOOM_LOG_DIR     日志目录，默认 backend/logs

使用示例 / Usage:
    from transloom.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("批次已提交 / Batch committed")
    logger.error("落盘失败 / Flush failed", exc_info=True)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from transloom.config import settings

ROOT_LOGGER_NAME = "transloom"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_configured = False


def _log_level() -> int:
    if settings.log_level:
        level = logging.getLevelName(settings.log_level.strip().upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if settings.debug else logging.INFO


def _log_dir() -> Path:
    if settings.log_dir:
        return Path(settings.log_dir)
    return Path(__file__).resolve().parent.parent.parent / "logs"


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = _log_level()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    try:
        log_dir = _log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "transloom.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding='utf-8'
        )
    except OSError as exc:
        root.warning("File logging disabled: %s", exc)
        return
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """
    获取模块 logger / Get a module logger

    ``transloom.*`` names propagate to the configured root logger; any other
    name is placed under it.

    Args:
        name: Logger名称，通常为 __name__ / Logger name (typically __name__)
    """
    _configure_root()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
