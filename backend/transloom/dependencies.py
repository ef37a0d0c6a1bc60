# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  依赖注入工厂 - FastAPI Depends() 工厂函数，统一管理存储、任务注册表与控制器实例
  Dependency Injection - FastAPI Depends() factories for the store, the task
  registry, the LLM gateway and the chapter controller.

设计原则 / Design Principles:
  所有Router通过 Depends() 获取实例，测试中可用 app.dependency_overrides 替换。
  Routers get instances through Depends(), so tests can swap them with
  ``app.dependency_overrides``.
"""

from functools import lru_cache

from transloom.llm_gateway import LLMGateway, get_gateway
from transloom.services.task_registry import TaskRegistry
from transloom.storage.books import BookStorage
from transloom.workflow.chunks import LedgerRegistry
from transloom.workflow.controller import ChapterConcurrencyController
from transloom.workflow.runner import ChapterTaskRunner


@lru_cache(maxsize=1)
def get_book_storage() -> BookStorage:
    """
    获取或创建BookStorage的单例实例

    Get or create singleton BookStorage instance.
    """
    return BookStorage()


@lru_cache(maxsize=1)
def get_task_registry() -> TaskRegistry:
    """
    获取或创建TaskRegistry的单例实例

    Get or create singleton TaskRegistry instance.
    """
    return TaskRegistry()


@lru_cache(maxsize=1)
def get_ledger_registry() -> LedgerRegistry:
    """
    获取批量提交账本注册表 / Ledgers used by the HTTP batch endpoint
    """
    return LedgerRegistry()


def get_llm_gateway() -> LLMGateway:
    """Process-wide LLM gateway built from settings."""
    return get_gateway()


@lru_cache(maxsize=1)
def get_chapter_runner() -> ChapterTaskRunner:
    return ChapterTaskRunner(get_llm_gateway(), get_task_registry())


@lru_cache(maxsize=1)
def get_controller() -> ChapterConcurrencyController:
    """
    获取或创建章节并发控制器 / Get or create the chapter controller

    Progress listeners are attached by the application at startup.
    """
    return ChapterConcurrencyController(get_book_storage(), get_task_registry(), get_chapter_runner())
