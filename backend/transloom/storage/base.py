# -*- coding: utf-8 -*-
"""
译织 TransLoom - 章节级 AI 翻译工作流引擎
TransLoom - Chunked AI Translation Workflow Engine

Copyright © 2025-2026 TransLoom Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  存储基类 - 基于文件的 YAML/JSON/文本读写，写入使用临时文件原子替换
  Base Storage - File-based YAML/JSON/text IO; writes go through a temp file and
  an atomic ``os.replace`` so readers never observe a half-written file.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import yaml

from transloom.config import settings
from transloom.storage.file_lock import get_file_lock


class BaseStorage:
    """
    文件存储基类 / Base class for file-backed storages

    Attributes:
        data_dir (Path): 数据根目录 / Data root directory
        encoding (str): 文件编码 / File encoding
    """

    encoding = "utf-8"

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = Path(data_dir or settings.data_dir)

    def get_book_path(self, book_id: str) -> Path:
        """Directory holding a single book's files."""
        return self.data_dir / "books" / book_id

    def ensure_dir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    async def read_text(self, file_path: Path) -> str:
        async with aiofiles.open(file_path, "r", encoding=self.encoding) as f:
            return await f.read()

    async def write_text(self, file_path: Path, content: str) -> None:
        async with get_file_lock().lock(file_path):
            await self._atomic_write(file_path, content)

    async def read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """
        读取 YAML 文件 / Read a YAML mapping

        Raises:
            FileNotFoundError: 文件不存在 / Missing file
        """
        raw = await self.read_text(file_path)
        return yaml.safe_load(raw) or {}

    async def write_yaml(self, file_path: Path, data: Dict[str, Any]) -> None:
        payload = yaml.safe_dump(data, allow_unicode=True, sort_keys=False)
        await self.write_text(file_path, payload)

    async def read_json(self, file_path: Path) -> Any:
        raw = await self.read_text(file_path)
        return json.loads(raw)

    async def _atomic_write(self, file_path: Path, content: str) -> None:
        """
        原子写入 / Atomic write

        Content is written to a sibling temp file, then swapped in with
        ``os.replace``. Callers that need read-modify-write must hold the file
        lock themselves.
        """
        self.ensure_dir(file_path.parent)
        tmp_path = file_path.with_name(f".{file_path.name}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding=self.encoding) as f:
                await f.write(content)
            os.replace(tmp_path, file_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
